"""
Global pytest fixtures.

No test talks to Postgres, PostHog, Upstash or an OTLP collector: the service
container is built out of the in-memory fakes below, and tracing uses the
memory exporter with every successful span kept.
"""

from __future__ import annotations

import datetime as dt
from collections.abc import AsyncIterator, Iterator
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import Any
from uuid import UUID

import pytest  # type: ignore[import-not-found]
from fastapi import FastAPI  # type: ignore[import-not-found]
from fastapi.testclient import TestClient  # type: ignore[import-not-found]

from tally.admin.service import AdminService
from tally.api.main import build_app
from tally.auth.models import Session, User
from tally.auth.service import AuthService
from tally.commons.ids import new_id
from tally.core.container import Services
from tally.core.settings import Settings
from tally.counter.service import CounterService
from tally.flags.service import FeatureFlagService
from tally.ratelimit.service import RateLimitService
from tally.telemetry.analytics import AnalyticsService
from tally.telemetry.otlp import OtlpLogEmitter
from tally.telemetry.tracing import TracingService

# Database


class FakeResult:
    def __init__(self, rows: list[tuple[Any, ...]] | None = None) -> None:
        self.rows = rows or []
        self.rowcount = len(self.rows)

    def all(self) -> list[tuple[Any, ...]]:
        return list(self.rows)

    def scalar_one(self) -> Any:
        return self.rows[0][0]


class FakeSession:
    """Stands in for AsyncSession: counts commits and keeps executed statements."""

    def __init__(self) -> None:
        self.commits = 0
        self.rollbacks = 0
        self.executed: list[Any] = []

    async def execute(self, stmt: Any, params: Any = None) -> FakeResult:
        self.executed.append(stmt)
        return FakeResult([(1,)])

    async def flush(self) -> None:
        return None

    async def commit(self) -> None:
        self.commits += 1

    async def rollback(self) -> None:
        self.rollbacks += 1

    async def close(self) -> None:
        return None


class FakeDatabaseManager:
    def __init__(self, *, fail: bool = False) -> None:
        self.fail = fail
        self.initialized = False
        self.sessions: list[FakeSession] = []

    async def initialize(self) -> None:
        self.initialized = True

    async def shutdown(self) -> None:
        self.initialized = False

    @asynccontextmanager
    async def session(self) -> AsyncIterator[FakeSession]:
        if self.fail:
            raise ConnectionError("database unavailable")
        s = FakeSession()
        self.sessions.append(s)
        try:
            yield s
        except Exception:
            await s.rollback()
            raise


# Repositories


class InMemoryAuthRepository:
    def __init__(self) -> None:
        self.users: dict[UUID, User] = {}
        self.sessions: dict[str, Session] = {}
        self.deleted_sessions: list[str] = []
        self.fail_delete = False

    async def get_user_by_username(self, session, *, username: str) -> User | None:  # type: ignore[no-untyped-def]
        return next((u for u in self.users.values() if u.username == username), None)

    async def get_user_by_id(self, session, *, user_id: UUID) -> User | None:  # type: ignore[no-untyped-def]
        return self.users.get(user_id)

    async def insert_user(self, session, *, user_id: UUID, username: str, password_hash: str) -> User:  # type: ignore[no-untyped-def]
        user = User(id=user_id, username=username, password_hash=password_hash)
        self.users[user_id] = user
        return user

    async def insert_session(self, session, *, session_id: str, user_id: UUID, expires_at: dt.datetime) -> Session:  # type: ignore[no-untyped-def]
        s = Session(id=session_id, user_id=user_id, expires_at=expires_at)
        self.sessions[session_id] = s
        return s

    async def get_session(self, session, *, session_id: str) -> Session | None:  # type: ignore[no-untyped-def]
        return self.sessions.get(session_id)

    async def delete_session(self, session, *, session_id: str) -> int:  # type: ignore[no-untyped-def]
        if self.fail_delete:
            raise ConnectionError("database unavailable")
        if self.sessions.pop(session_id, None) is None:
            return 0
        self.deleted_sessions.append(session_id)
        return 1


class InMemoryCounterRepository:
    def __init__(self) -> None:
        self.values: dict[UUID, int] = {}

    async def get_or_create(self, session, *, user_id: UUID) -> int:  # type: ignore[no-untyped-def]
        return self.values.setdefault(user_id, 0)

    async def add(self, session, *, user_id: UUID, delta: int) -> int:  # type: ignore[no-untyped-def]
        self.values[user_id] = self.values.get(user_id, 0) + delta
        return self.values[user_id]


class FakeAdminRepository:
    def __init__(self, tables: list[str] | None = None) -> None:
        self.tables = list(tables or [])
        self.fail = False

    async def list_app_tables(self, session) -> list[str]:  # type: ignore[no-untyped-def]
        if self.fail:
            raise ConnectionError("database unavailable")
        return sorted(self.tables)

    async def create_missing_tables(self, session) -> None:  # type: ignore[no-untyped-def]
        if self.fail:
            raise ConnectionError("database unavailable")
        self.tables = ["counters", "sessions", "users"]


# Third-party clients


@dataclass
class FakePosthog:
    """Mimics the posthog client surface used by AnalyticsService."""

    flags: dict[str, bool | None] = field(default_factory=dict)
    fail_flags: bool = False
    events: list[tuple[str, str, dict[str, Any]]] = field(default_factory=list)
    flag_calls: list[tuple[str, str]] = field(default_factory=list)
    shut_down: bool = False

    def capture(self, *, distinct_id: str, event: str, properties: dict[str, Any]) -> None:
        self.events.append((distinct_id, event, properties))

    def feature_enabled(self, key: str, distinct_id: str) -> bool | None:
        self.flag_calls.append((key, distinct_id))
        if self.fail_flags:
            raise ConnectionError("posthog unavailable")
        return self.flags.get(key)

    def shutdown(self) -> None:
        self.shut_down = True

    def event_names(self) -> list[str]:
        return [e[1] for e in self.events]


@dataclass
class FakeRatelimitResponse:
    allowed: bool
    limit: int
    remaining: int
    reset: float


class FakeClock:
    def __init__(self, now: float = 1_000_000.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeRatelimit:
    """Sliding-window limiter with the upstash_ratelimit response shape."""

    def __init__(self, *, max_requests: int, window_s: float, clock: FakeClock) -> None:
        self.max_requests = max_requests
        self.window_s = window_s
        self.clock = clock
        self.fail = False
        self.calls: list[str] = []
        self.hits: dict[str, list[float]] = {}

    async def limit(self, identifier: str) -> FakeRatelimitResponse:
        self.calls.append(identifier)
        if self.fail:
            raise ConnectionError("redis unavailable")
        now = self.clock()
        hits = [t for t in self.hits.get(identifier, []) if t > now - self.window_s]
        allowed = len(hits) < self.max_requests
        if allowed:
            hits.append(now)
        self.hits[identifier] = hits
        return FakeRatelimitResponse(
            allowed=allowed,
            limit=self.max_requests,
            remaining=max(0, self.max_requests - len(hits)),
            reset=hits[0] + self.window_s,
        )


# Fixtures


@pytest.fixture(scope="session")
def anyio_backend() -> str:
    """Default AnyIO backend for async tests."""
    return "asyncio"


@pytest.fixture()
def settings() -> Settings:
    return Settings(
        _env_file=None,  # type: ignore[call-arg]
        ENVIRONMENT="test",
        TRACE_EXPORTER="memory",
        TRACE_SUCCESS_SAMPLE_RATE="1.0",
        AUTH_PASSWORD_ITERATIONS=1_000,
        POSTHOG_API_KEY=None,
        UPSTASH_REDIS_REST_URL=None,
        UPSTASH_REDIS_REST_TOKEN=None,
        SENTRY_DSN=None,
        MIGRATION_SECRET=None,
    )


@pytest.fixture()
def tracing(settings: Settings) -> Iterator[TracingService]:
    svc = TracingService.create(settings)
    svc.init()
    yield svc
    svc.shutdown()


@pytest.fixture()
def posthog() -> FakePosthog:
    return FakePosthog()


@pytest.fixture()
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture()
def services(settings: Settings, tracing: TracingService, posthog: FakePosthog) -> Services:
    analytics = AnalyticsService(client=posthog)
    otlp = OtlpLogEmitter.create(settings, tracing=tracing)
    flags = FeatureFlagService.create(settings, analytics)
    rate_limiter = RateLimitService(limiter=None, flags=flags)
    return Services(
        settings=settings,
        database=FakeDatabaseManager(),  # type: ignore[arg-type]
        tracing=tracing,
        analytics=analytics,
        otlp=otlp,
        flags=flags,
        rate_limiter=rate_limiter,
        auth=AuthService.create(settings, repo=InMemoryAuthRepository()),  # type: ignore[arg-type]
        counter=CounterService(
            repo=InMemoryCounterRepository(),  # type: ignore[arg-type]
            rate_limiter=rate_limiter,
            tracing=tracing,
            otlp=otlp,
            analytics=analytics,
        ),
        admin=AdminService(repo=FakeAdminRepository()),  # type: ignore[arg-type]
    )


@pytest.fixture()
def app(services: Services) -> FastAPI:
    return build_app(services)


@pytest.fixture()
def client(app: FastAPI) -> TestClient:
    """Sync test client (covers most HTTP unit tests)."""
    return TestClient(app)


@pytest.fixture()
def user_id() -> UUID:
    return new_id()
