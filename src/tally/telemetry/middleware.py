from __future__ import annotations

from time import perf_counter
from typing import Any, Callable

import sentry_sdk  # type: ignore[import-not-found]
from opentelemetry import trace  # type: ignore[import-not-found]
from starlette.datastructures import MutableHeaders  # type: ignore[import-not-found]

from tally.commons.logging import logger
from tally.telemetry.tracing import (
    TracingService,
    get_trace_id,
    hash_user_id,
    record_error,
    set_user_id,
)

TRACE_ID_HEADER = "X-Trace-Id"


class RequestTelemetryMiddleware:
    """
    Root span per HTTP request, X-Trace-Id response header, Sentry request
    context + breadcrumb, and an access log line.

    The authenticated user id is read back from `scope["state"]["user_id"]`,
    which the session dependency sets once the cookie has been validated.
    """

    def __init__(self, app: Callable[..., Any], tracing: TracingService) -> None:
        self.app = app
        self.tracing = tracing

    async def __call__(
        self, scope: dict[str, Any], receive: Callable[..., Any], send: Callable[..., Any]
    ) -> None:
        if scope.get("type") != "http":
            await self.app(scope, receive, send)
            return

        method = scope.get("method", "GET")
        path = scope.get("path", "")
        headers = {
            k.decode("latin-1").lower(): v.decode("latin-1")
            for k, v in scope.get("headers") or []
        }
        state = scope.setdefault("state", {})
        client = scope.get("client")

        sentry_sdk.set_context(
            "request",
            {
                "url": path,
                "method": method,
                "client_ip": client[0] if client else None,
            },
        )

        span = None
        trace_id = ""
        if self.tracing.initialized:
            span = self.tracing.start_root_span(
                f"HTTP {method} {path}",
                attributes={
                    "http.method": method,
                    "http.target": path,
                    "http.scheme": scope.get("scheme", "http"),
                    "http.user_agent": headers.get("user-agent", ""),
                },
                headers=headers,
            )
            trace_id = get_trace_id(span)
            state["trace_id"] = trace_id

        status_code = 500

        async def send_wrapper(message: dict[str, Any]) -> None:
            nonlocal status_code
            if message.get("type") == "http.response.start":
                status_code = int(message.get("status", 500))
                if trace_id:
                    MutableHeaders(scope=message)[TRACE_ID_HEADER] = trace_id
            await send(message)

        started = perf_counter()
        recorded = False
        try:
            if span is None:
                await self.app(scope, receive, send_wrapper)
            else:
                with trace.use_span(
                    span,
                    end_on_exit=False,
                    record_exception=False,
                    set_status_on_exception=False,
                ):
                    await self.app(scope, receive, send_wrapper)
        except Exception as exc:
            status_code = 500
            if span is not None:
                record_error(span, exc, status_code)
                recorded = True
            raise
        finally:
            elapsed_ms = (perf_counter() - started) * 1000.0
            user_id = state.get("user_id")
            if span is not None:
                span.set_attribute("http.status_code", status_code)
                if status_code >= 500 and not recorded:
                    record_error(span, f"HTTP {status_code}", status_code)
                if user_id is not None:
                    set_user_id(span, user_id)
                span.end()

            sentry_sdk.add_breadcrumb(
                category="http",
                message=f"{method} {path}",
                level="info",
                data={
                    "method": method,
                    "status": status_code,
                    "duration": f"{elapsed_ms:.0f}ms",
                    "trace_id": trace_id or None,
                    "user_id": hash_user_id(user_id) if user_id is not None else None,
                },
            )
            logger.info("%s %s -> %s (%.2fms)", method, path, status_code, elapsed_ms)
