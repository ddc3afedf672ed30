"""
Service container.

Every client handle the app needs (database engine, PostHog client, tracer
provider, flag cache, rate limiter, OTLP log client) is built here once, at
process start, and closed in `shutdown()`. Routes reach them through
`request.app.state.services`; tests build a container out of fakes.
"""

from __future__ import annotations

from dataclasses import dataclass

from tally.admin.service import AdminService
from tally.auth.service import AuthService
from tally.commons.logging import logger
from tally.core.db import DatabaseManager
from tally.core.settings import Settings
from tally.core.settings import settings as default_settings
from tally.counter.repository import CounterRepository
from tally.counter.service import CounterService
from tally.flags.service import FeatureFlagService
from tally.ratelimit.service import RateLimitService
from tally.telemetry.analytics import AnalyticsService
from tally.telemetry.otlp import OtlpLogEmitter
from tally.telemetry.tracing import TracingService


@dataclass
class Services:
    settings: Settings
    database: DatabaseManager
    tracing: TracingService
    analytics: AnalyticsService
    otlp: OtlpLogEmitter
    flags: FeatureFlagService
    rate_limiter: RateLimitService
    auth: AuthService
    counter: CounterService
    admin: AdminService

    @classmethod
    def create(cls, settings: Settings | None = None) -> "Services":
        settings = settings or default_settings
        tracing = TracingService.create(settings)
        analytics = AnalyticsService.create(settings)
        otlp = OtlpLogEmitter.create(settings, tracing=tracing)
        flags = FeatureFlagService.create(settings, analytics)
        rate_limiter = RateLimitService.create(settings, flags=flags, tracing=tracing)
        return cls(
            settings=settings,
            database=DatabaseManager(settings.DATABASE_URL),
            tracing=tracing,
            analytics=analytics,
            otlp=otlp,
            flags=flags,
            rate_limiter=rate_limiter,
            auth=AuthService.create(settings),
            counter=CounterService(
                repo=CounterRepository(),
                rate_limiter=rate_limiter,
                tracing=tracing,
                otlp=otlp,
                analytics=analytics,
            ),
            admin=AdminService.create(settings),
        )

    async def startup(self) -> None:
        self.tracing.init()
        await self.database.initialize()

    async def shutdown(self) -> None:
        # Spans first: flushing may still touch the network.
        self.tracing.shutdown()
        self.analytics.shutdown()
        await self.otlp.aclose()
        await self.database.shutdown()
        logger.info("Services shut down")
