"""
Server-side OTLP/JSON log records for PostHog.

PostHog ingests OTLP logs at `<ingestion host>/i/v1/logs`. Records carry the
service name as a resource attribute, plus the user/session/distinct id when
known so logs correlate with analytics events.

Nothing here raises: a failed post is logged and dropped.
"""

from __future__ import annotations

import time
import traceback
from contextlib import nullcontext
from typing import Any, Literal

import httpx  # type: ignore[import-not-found]

from tally.commons.logging import logger
from tally.core.environment import get_otlp_endpoint, get_service_name
from tally.core.settings import Settings
from tally.telemetry.tracing import TracingService, record_error

Level = Literal["debug", "info", "warn", "error"]
AuthEvent = Literal[
    "login", "logout", "register", "login_failure", "session_expired"
]

SEVERITY_NUMBERS: dict[str, int] = {"debug": 5, "info": 9, "warn": 13, "error": 17}


def severity_number(level: str) -> int:
    return SEVERITY_NUMBERS.get(level, SEVERITY_NUMBERS["info"])


def _attributes(values: dict[str, Any]) -> list[dict[str, Any]]:
    return [
        {"key": key, "value": {"stringValue": str(value)}}
        for key, value in values.items()
        if value is not None
    ]


def build_log_record(level: str, body: str, attributes: dict[str, Any]) -> dict[str, Any]:
    return {
        "timeUnixNano": str(time.time_ns()),
        "severityNumber": severity_number(level),
        "severityText": level.upper(),
        "body": {"stringValue": body},
        "attributes": _attributes(attributes),
    }


class OtlpLogEmitter:
    def __init__(
        self,
        *,
        api_key: str | None,
        endpoint: str,
        service_name: str,
        client: httpx.AsyncClient | None = None,
        timeout_s: float = 2.0,
        tracing: TracingService | None = None,
    ) -> None:
        self.api_key = api_key
        self.endpoint = endpoint.rstrip("/")
        self.service_name = service_name
        self.client = client or httpx.AsyncClient(timeout=timeout_s)
        self.tracing = tracing

    @classmethod
    def create(
        cls, settings: Settings, tracing: TracingService | None = None
    ) -> "OtlpLogEmitter":
        return cls(
            api_key=settings.POSTHOG_API_KEY,
            endpoint=get_otlp_endpoint(settings.POSTHOG_HOST, settings.POSTHOG_OTLP_HOST),
            service_name=get_service_name(settings),
            timeout_s=settings.POSTHOG_TIMEOUT_S,
            tracing=tracing,
        )

    @property
    def enabled(self) -> bool:
        return bool(self.api_key)

    @property
    def logs_url(self) -> str:
        return f"{self.endpoint}/i/v1/logs"

    async def aclose(self) -> None:
        await self.client.aclose()

    async def send(
        self,
        records: list[dict[str, Any]],
        *,
        user_id: object | None = None,
        session_id: str | None = None,
        distinct_id: str | None = None,
    ) -> None:
        if not self.api_key or not records:
            return
        resource = {
            "service.name": self.service_name,
            "user.id": user_id,
            "session.id": session_id,
            "posthog.distinct_id": distinct_id,
        }
        payload = {
            "resourceLogs": [
                {
                    "resource": {"attributes": _attributes(resource)},
                    "scopeLogs": [{"scope": {"name": "server"}, "logRecords": records}],
                }
            ]
        }
        traced = self.tracing is not None and self.tracing.initialized
        span_cm = (
            self.tracing.external_call_span(self.logs_url, "POST")  # type: ignore[union-attr]
            if traced
            else nullcontext(None)
        )
        try:
            with span_cm as span:
                resp = await self.client.post(
                    self.logs_url,
                    json=payload,
                    headers={"Authorization": f"Bearer {self.api_key}"},
                )
                if span is not None:
                    span.set_attribute("http.status_code", resp.status_code)
                    if resp.is_error:
                        record_error(span, f"HTTP {resp.status_code}", resp.status_code)
            if resp.is_error:
                logger.error(
                    "Failed to send OTLP logs to %s: HTTP %s", self.logs_url, resp.status_code
                )
        except httpx.HTTPError as exc:
            logger.error("Error sending OTLP logs: %s", exc)

    async def log_message(
        self, level: Level, message: str, properties: dict[str, Any] | None = None
    ) -> None:
        await self.send([build_log_record(level, message, properties or {})])

    async def log_exception(
        self, exc: BaseException, context: dict[str, Any] | None = None
    ) -> None:
        attributes = {
            "exception.type": type(exc).__name__,
            "exception.message": str(exc),
            "exception.stacktrace": "".join(traceback.format_exception(exc)),
            **(context or {}),
        }
        await self.send([build_log_record("error", str(exc), attributes)])

    async def log_auth_event(
        self,
        event_type: AuthEvent,
        *,
        success: bool,
        user_id: object | None = None,
        ip_address: str | None = None,
        user_agent: str | None = None,
        error_message: str | None = None,
        provider: str = "local",
    ) -> None:
        if success:
            level = "info"
        elif event_type == "login_failure":
            level = "warn"
        else:
            level = "error"
        outcome = "succeeded" if success else "failed"
        attributes = {
            "auth.event_type": event_type,
            "auth.provider": provider,
            "ip.address": ip_address,
            "user_agent": user_agent,
            "success": str(success).lower(),
            "error.message": error_message,
        }
        await self.send(
            [build_log_record(level, f"Auth event: {event_type} {outcome}", attributes)],
            user_id=user_id,
        )

    async def log_database_query(
        self,
        query_type: str,
        table: str,
        duration_ms: float,
        *,
        success: bool,
        user_id: object | None = None,
        row_count: int | None = None,
        error_message: str | None = None,
    ) -> None:
        duration = round(duration_ms, 2)
        attributes = {
            "db.system": "PostgreSQL",
            "db.operation": query_type,
            "db.table": table,
            "duration_ms": duration,
            "span.kind": "database",
            "db.row_count": row_count,
            "success": str(success).lower(),
            "error.message": error_message,
        }
        await self.send(
            [
                build_log_record(
                    "info" if success else "error",
                    f"Database {query_type} on {table} took {duration}ms",
                    attributes,
                )
            ],
            user_id=user_id,
        )
