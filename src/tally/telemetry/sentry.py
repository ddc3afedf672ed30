from __future__ import annotations

import sentry_sdk  # type: ignore[import-not-found]

from tally.commons.logging import logger
from tally.core.environment import get_environment_name
from tally.core.settings import Settings


def configure_sentry(settings: Settings) -> bool:
    """
    Initialize the Sentry SDK when a DSN is configured.

    The FastAPI and Starlette integrations activate automatically, so unhandled
    exceptions and 5xx HTTPExceptions are reported without extra wiring.
    """
    if not settings.SENTRY_DSN:
        return False
    sentry_sdk.init(
        dsn=settings.SENTRY_DSN,
        environment=get_environment_name(settings),
        release=settings.APP_RELEASE,
        traces_sample_rate=settings.SENTRY_TRACES_SAMPLE_RATE,
        send_default_pii=False,
    )
    logger.info("Sentry initialized")
    return True
