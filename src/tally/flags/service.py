"""
Feature flags backed by PostHog, with a process-local TTL cache.

Only successful evaluations are cached. When PostHog is unconfigured or the
evaluation fails, the caller's default is returned and the next lookup tries
again.
"""

from __future__ import annotations

import time
from collections.abc import Callable
from dataclasses import dataclass, field

from starlette.concurrency import run_in_threadpool  # type: ignore[import-not-found]

from tally.commons.logging import logger
from tally.core.settings import Settings
from tally.telemetry.analytics import AnalyticsService

DEFAULT_CACHE_TTL_MS = 600_000
GLOBAL_DISTINCT_ID = "global"


class FeatureFlags:
    # Rate limiting on counter actions; on unless the flag says otherwise.
    RATE_LIMIT_COUNTER = "rate-limit-counter"


def parse_cache_ttl_ms(raw: str | int | None) -> int:
    try:
        return int(raw) if raw is not None else DEFAULT_CACHE_TTL_MS
    except (TypeError, ValueError):
        return DEFAULT_CACHE_TTL_MS


@dataclass
class CacheEntry:
    value: bool
    expires_at: float


@dataclass
class FeatureFlagService:
    analytics: AnalyticsService
    cache_ttl_ms: int = DEFAULT_CACHE_TTL_MS
    clock: Callable[[], float] = field(default=time.monotonic)
    cache: dict[str, CacheEntry] = field(default_factory=dict)

    @classmethod
    def create(cls, settings: Settings, analytics: AnalyticsService) -> "FeatureFlagService":
        return cls(
            analytics=analytics,
            cache_ttl_ms=parse_cache_ttl_ms(settings.FEATURE_FLAG_CACHE_TTL_MS),
        )

    async def is_feature_enabled(
        self, flag_key: str, distinct_id: str, default: bool
    ) -> bool:
        cache_key = f"{flag_key}:{distinct_id}"
        cached = self._get_cached(cache_key)
        if cached is not None:
            return cached

        if not self.analytics.enabled:
            return default

        try:
            enabled = await run_in_threadpool(
                self.analytics.feature_enabled, flag_key, distinct_id
            )
        except Exception:
            logger.exception("Error checking feature flag %s", flag_key)
            return default

        result = default if enabled is None else bool(enabled)
        self.cache[cache_key] = CacheEntry(
            value=result, expires_at=self.clock() + self.cache_ttl_ms / 1000.0
        )
        return result

    async def is_feature_enabled_global(self, flag_key: str, default: bool) -> bool:
        return await self.is_feature_enabled(flag_key, GLOBAL_DISTINCT_ID, default)

    def clear(self) -> None:
        self.cache.clear()

    def _get_cached(self, cache_key: str) -> bool | None:
        entry = self.cache.get(cache_key)
        if entry is None:
            return None
        if self.clock() > entry.expires_at:
            del self.cache[cache_key]
            return None
        return entry.value
