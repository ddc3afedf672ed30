from __future__ import annotations

import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import TypeVar
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession  # type: ignore[import-not-found]

from tally.counter.exceptions import (
    INVALID_ACTION,
    RATE_LIMITED,
    CounterRateLimitedException,
    CounterServiceException,
)
from tally.counter.repository import CounterRepository
from tally.ratelimit.service import RateLimitService
from tally.telemetry.analytics import AnalyticsService
from tally.telemetry.otlp import OtlpLogEmitter
from tally.telemetry.tracing import TracingService

T = TypeVar("T")

ACTIONS = {"increment": 1, "decrement": -1}


@dataclass
class CounterService:
    repo: CounterRepository
    rate_limiter: RateLimitService
    tracing: TracingService
    otlp: OtlpLogEmitter
    analytics: AnalyticsService

    async def get_value(self, session: AsyncSession, *, user_id: UUID) -> int:
        value = await self._timed(
            "SELECT",
            user_id,
            lambda: self.repo.get_or_create(session, user_id=user_id),
        )
        await session.commit()
        return value

    async def apply(self, session: AsyncSession, *, user_id: UUID, action: str) -> int:
        delta = ACTIONS.get(action)
        if delta is None:
            raise CounterServiceException(INVALID_ACTION, f"Unsupported action: {action!r}")

        limit = await self.rate_limiter.check(user_id)
        if not limit.success:
            raise CounterRateLimitedException(RATE_LIMITED, retry_after=limit.retry_after or 1)

        value = await self._timed(
            "UPDATE",
            user_id,
            lambda: self.repo.add(session, user_id=user_id, delta=delta),
        )
        await session.commit()
        self.analytics.capture(
            str(user_id), "counter_action", {"action": action, "value": value}
        )
        return value

    async def _timed(
        self, query_type: str, user_id: UUID, op: Callable[[], Awaitable[T]]
    ) -> T:
        started = time.perf_counter()
        try:
            with self.tracing.database_span("counters", query_type, user_id=user_id):
                result = await op()
        except Exception as exc:
            await self.otlp.log_database_query(
                query_type,
                "counters",
                (time.perf_counter() - started) * 1000.0,
                success=False,
                user_id=user_id,
                error_message=str(exc),
            )
            raise
        await self.otlp.log_database_query(
            query_type,
            "counters",
            (time.perf_counter() - started) * 1000.0,
            success=True,
            user_id=user_id,
            row_count=1,
        )
        return result
