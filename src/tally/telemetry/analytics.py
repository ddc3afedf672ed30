from __future__ import annotations

from typing import Any

from posthog import Posthog  # type: ignore[import-not-found]

from tally.commons.logging import logger
from tally.core.settings import Settings


class AnalyticsService:
    """
    PostHog client handle.

    Built once at startup (or with `client=None` when no API key is set) and
    shut down with the process, which flushes the SDK's event queue. Capturing
    never raises: analytics must not fail a request.
    """

    def __init__(self, client: Any | None = None) -> None:
        self.client = client

    @classmethod
    def create(cls, settings: Settings) -> "AnalyticsService":
        if not settings.POSTHOG_API_KEY:
            return cls(client=None)
        return cls(client=Posthog(settings.POSTHOG_API_KEY, host=settings.POSTHOG_HOST))

    @property
    def enabled(self) -> bool:
        return self.client is not None

    def capture(
        self,
        distinct_id: str,
        event: str,
        properties: dict[str, Any] | None = None,
    ) -> None:
        if self.client is None:
            return
        try:
            self.client.capture(
                distinct_id=distinct_id, event=event, properties=properties or {}
            )
        except Exception:
            logger.exception("PostHog capture failed for event %s", event)

    def feature_enabled(self, flag_key: str, distinct_id: str) -> bool | None:
        """Blocking flag evaluation; errors propagate to the flag service."""
        if self.client is None:
            return None
        return self.client.feature_enabled(flag_key, distinct_id)

    def shutdown(self) -> None:
        if self.client is None:
            return
        try:
            self.client.shutdown()
        except Exception:
            logger.exception("PostHog shutdown failed")
        self.client = None
