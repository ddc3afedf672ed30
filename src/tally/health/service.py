from __future__ import annotations

from tally.core.container import Services
from tally.core.environment import get_environment_name
from tally.health import repository


def _optional(configured: bool) -> dict:
    # Optional dependencies degrade silently, so "configured" is all we report.
    return {
        "ok": configured,
        "configured": configured,
        "detail": None if configured else "not_configured",
    }


async def get_health_payload(services: Services) -> dict:
    db_ok, db_detail = await repository.check_db(services.database)

    # Overall status: only DB is mandatory for the API to function.
    status = "ok" if db_ok else "error"

    return {
        "status": status,
        "environment": get_environment_name(services.settings),
        "db": {"ok": db_ok, "configured": True, "detail": db_detail},
        "analytics": _optional(services.analytics.enabled),
        "rate_limit": _optional(services.rate_limiter.configured),
        "tracing": {
            "ok": services.tracing.initialized,
            "configured": True,
            "detail": services.settings.TRACE_EXPORTER,
        },
    }
