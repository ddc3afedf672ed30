from __future__ import annotations

import math
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any

from opentelemetry.trace import SpanKind, Status, StatusCode  # type: ignore[import-not-found]
from upstash_ratelimit import SlidingWindow  # type: ignore[import-not-found]
from upstash_ratelimit.asyncio import Ratelimit  # type: ignore[import-not-found]
from upstash_redis.asyncio import Redis  # type: ignore[import-not-found]

from tally.commons.logging import logger
from tally.core.environment import get_environment_name
from tally.core.settings import Settings
from tally.flags.service import FeatureFlags, FeatureFlagService
from tally.telemetry.tracing import TracingService


@dataclass(frozen=True)
class RateLimitResult:
    success: bool
    remaining: int | None = None
    # Seconds until another action is allowed; only set on denial.
    retry_after: int | None = None


class TracedRatelimit:
    """Upstash limiter whose calls show up as `ratelimit.check` client spans."""

    def __init__(self, ratelimit: Any, tracing: TracingService) -> None:
        self.ratelimit = ratelimit
        self.tracing = tracing

    async def limit(self, identifier: str) -> Any:
        attributes = {
            "db.system": "redis",
            # Upstash evaluates the window in a Lua script.
            "db.operation": "EVAL",
            "ratelimit.identifier": identifier,
        }
        with self.tracing.span(
            "ratelimit.check", attributes=attributes, kind=SpanKind.CLIENT
        ) as span:
            started = time.perf_counter()
            result = await self.ratelimit.limit(identifier)
            span.set_attribute("ratelimit.success", bool(result.allowed))
            span.set_attribute("ratelimit.remaining", int(result.remaining))
            span.set_attribute(
                "duration_ms", round((time.perf_counter() - started) * 1000.0, 2)
            )
            span.set_status(Status(StatusCode.OK))
            return result


def create_rate_limiter(
    url: str | None,
    token: str | None,
    *,
    tracing: TracingService,
    environment: str = "development",
    max_requests: int = 3,
    window_s: int = 10,
) -> TracedRatelimit | None:
    """Build the sliding-window limiter, or None when credentials are missing or blank."""
    url = (url or "").strip()
    token = (token or "").strip()
    if not url or not token:
        return None

    ratelimit = Ratelimit(
        redis=Redis(url=url, token=token),
        limiter=SlidingWindow(max_requests=max_requests, window=window_s),
        # Per-environment prefix keeps preview and production windows apart.
        prefix=f"@upstash/ratelimit/{environment}",
    )
    return TracedRatelimit(ratelimit, tracing)


@dataclass
class RateLimitService:
    limiter: TracedRatelimit | None
    flags: FeatureFlagService
    clock: Callable[[], float] = field(default=time.time)

    @classmethod
    def create(
        cls, settings: Settings, *, flags: FeatureFlagService, tracing: TracingService
    ) -> "RateLimitService":
        limiter = create_rate_limiter(
            settings.UPSTASH_REDIS_REST_URL,
            settings.UPSTASH_REDIS_REST_TOKEN,
            tracing=tracing,
            environment=get_environment_name(settings),
            max_requests=settings.RATE_LIMIT_MAX_REQUESTS,
            window_s=settings.RATE_LIMIT_WINDOW_S,
        )
        if limiter is None:
            logger.info("Rate limiting not configured, counter actions are unlimited")
        return cls(limiter=limiter, flags=flags)

    @property
    def configured(self) -> bool:
        return self.limiter is not None

    async def check(self, user_id: object) -> RateLimitResult:
        enabled = await self.flags.is_feature_enabled_global(
            FeatureFlags.RATE_LIMIT_COUNTER, True
        )
        if not enabled or self.limiter is None:
            return RateLimitResult(success=True)

        try:
            result = await self.limiter.limit(f"user_{user_id}")
        except Exception:
            # Fail open: availability over strictness when Upstash is unreachable.
            logger.exception("Rate limiting check failed, allowing request")
            return RateLimitResult(success=True)

        if result.allowed:
            return RateLimitResult(success=True, remaining=int(result.remaining))

        # For a sliding window, `reset` is when the oldest action leaves the window.
        retry_after = max(1, math.ceil(float(result.reset) - self.clock()))
        return RateLimitResult(
            success=False, remaining=int(result.remaining), retry_after=retry_after
        )
