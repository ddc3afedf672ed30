"""
OpenTelemetry tracing.

`TracingService` owns one TracerProvider. It does not install itself as the
global provider: the service container constructs it, the request middleware
and services use it, and shutdown flushes it. Context propagation still goes
through the OpenTelemetry context, so `trace.get_current_span()` sees spans
opened here.

Lifecycle: uninitialized -> initialized on the first `init()`; `init()` while
initialized does nothing; `shutdown()` flushes and returns to uninitialized.

Export policy: spans with ERROR status are always exported, successful spans
are kept for a deterministic fraction of trace ids so a sampled trace keeps
all of its spans.
"""

from __future__ import annotations

import json
from collections.abc import Iterator, Mapping, MutableMapping
from contextlib import contextmanager
from typing import Any

from opentelemetry import context as otel_context  # type: ignore[import-not-found]
from opentelemetry import trace  # type: ignore[import-not-found]
from opentelemetry.exporter.otlp.proto.http.trace_exporter import (  # type: ignore[import-not-found]
    OTLPSpanExporter,
)
from opentelemetry.sdk.resources import (  # type: ignore[import-not-found]
    SERVICE_NAME,
    SERVICE_VERSION,
    Resource,
)
from opentelemetry.sdk.trace import (  # type: ignore[import-not-found]
    ReadableSpan,
    SpanProcessor,
    TracerProvider,
)
from opentelemetry.sdk.trace.export import (  # type: ignore[import-not-found]
    BatchSpanProcessor,
    ConsoleSpanExporter,
    SimpleSpanProcessor,
)
from opentelemetry.sdk.trace.export.in_memory_span_exporter import (  # type: ignore[import-not-found]
    InMemorySpanExporter,
)
from opentelemetry.trace import (  # type: ignore[import-not-found]
    Span,
    SpanKind,
    Status,
    StatusCode,
    format_span_id,
    format_trace_id,
)
from opentelemetry.trace.propagation.tracecontext import (  # type: ignore[import-not-found]
    TraceContextTextMapPropagator,
)

from tally.commons.logging import logger
from tally.core.environment import (
    DEFAULT_SERVICE_NAME,
    get_otlp_trace_endpoint,
    get_sample_rate,
)
from tally.core.settings import Settings

TRACER_NAME = "tally-tracer"
EXPORTERS = ("memory", "console", "otlp")

_TRACE_ID_SPACE = 1 << 64


def hash_user_id(value: object) -> str:
    """
    Non-cryptographic 32-bit string hash, base 36.

    Used so spans and error reports never carry raw user ids. Same arithmetic
    as Java's String.hashCode, then the absolute value in base 36.
    """
    h = 0
    for ch in str(value):
        h = (((h << 5) - h) + ord(ch)) & 0xFFFFFFFF
    if h & 0x80000000:
        h -= 1 << 32
    n = abs(h)
    digits = "0123456789abcdefghijklmnopqrstuvwxyz"
    out = ""
    while True:
        n, r = divmod(n, 36)
        out = digits[r] + out
        if n == 0:
            return out


def parse_otlp_headers(raw: str | None) -> dict[str, str]:
    if not raw:
        return {}
    try:
        parsed = json.loads(raw)
    except ValueError as exc:
        logger.warning("Failed to parse OTLP_HEADERS: %s", exc)
        return {}
    if not isinstance(parsed, dict):
        logger.warning("OTLP_HEADERS must be a JSON object, ignoring")
        return {}
    return {str(k): str(v) for k, v in parsed.items()}


class ErrorBiasedSpanProcessor(SpanProcessor):
    """Forward every ERROR span, and successful spans for a fraction of traces."""

    def __init__(self, delegate: SpanProcessor, success_rate: float) -> None:
        self.delegate = delegate
        self.threshold = int(success_rate * _TRACE_ID_SPACE)

    def on_start(self, span, parent_context=None) -> None:  # type: ignore[no-untyped-def]
        self.delegate.on_start(span, parent_context=parent_context)

    def on_end(self, span: ReadableSpan) -> None:
        if span.status.status_code is StatusCode.ERROR or self._sampled(span):
            self.delegate.on_end(span)

    def _sampled(self, span: ReadableSpan) -> bool:
        trace_id = span.context.trace_id if span.context is not None else 0
        return (trace_id & (_TRACE_ID_SPACE - 1)) < self.threshold

    def shutdown(self) -> None:
        self.delegate.shutdown()

    def force_flush(self, timeout_millis: int = 30000) -> bool:
        return self.delegate.force_flush(timeout_millis)


class TracingService:
    def __init__(
        self,
        *,
        exporter: str = "otlp",
        service_name: str = DEFAULT_SERVICE_NAME,
        service_version: str = "unknown",
        sample_rate: float = 0.1,
        otlp_endpoint: str | None = None,
        api_key: str | None = None,
        otlp_headers: Mapping[str, str] | None = None,
    ) -> None:
        self.exporter = (exporter or "otlp").strip().lower()
        self.service_name = service_name
        self.service_version = service_version
        self.sample_rate = sample_rate
        self.otlp_endpoint = otlp_endpoint
        self.api_key = api_key
        self.otlp_headers = dict(otlp_headers or {})
        self.exporting = False

        self._provider: TracerProvider | None = None
        self._tracer: trace.Tracer | None = None
        self._memory_exporter: InMemorySpanExporter | None = None
        self._propagator = TraceContextTextMapPropagator()

    @classmethod
    def create(cls, settings: Settings) -> "TracingService":
        return cls(
            exporter=settings.TRACE_EXPORTER,
            service_name=settings.SERVICE_NAME or DEFAULT_SERVICE_NAME,
            service_version=settings.APP_RELEASE,
            sample_rate=get_sample_rate(settings.TRACE_SUCCESS_SAMPLE_RATE),
            otlp_endpoint=get_otlp_trace_endpoint(
                settings.POSTHOG_HOST, settings.POSTHOG_OTLP_HOST
            ),
            api_key=settings.POSTHOG_API_KEY,
            otlp_headers=parse_otlp_headers(settings.OTLP_HEADERS),
        )

    @property
    def initialized(self) -> bool:
        return self._provider is not None

    def init(self) -> None:
        if self._provider is not None:
            return

        resource = Resource.create(
            {SERVICE_NAME: self.service_name, SERVICE_VERSION: self.service_version}
        )
        provider = TracerProvider(resource=resource)
        self.exporting = True

        if self.exporter == "memory":
            self._memory_exporter = InMemorySpanExporter()
            provider.add_span_processor(SimpleSpanProcessor(self._memory_exporter))
            logger.info("Tracing initialized with memory exporter")
        elif self.exporter == "console":
            provider.add_span_processor(
                ErrorBiasedSpanProcessor(
                    BatchSpanProcessor(ConsoleSpanExporter()), self.sample_rate
                )
            )
            logger.info("Tracing initialized with console exporter")
        elif self.api_key:
            headers = {"Authorization": f"Bearer {self.api_key}", **self.otlp_headers}
            otlp = OTLPSpanExporter(endpoint=self.otlp_endpoint, headers=headers)
            provider.add_span_processor(
                ErrorBiasedSpanProcessor(BatchSpanProcessor(otlp), self.sample_rate)
            )
            logger.info("Tracing initialized with OTLP exporter to %s", self.otlp_endpoint)
        else:
            self.exporting = False
            logger.warning("No POSTHOG_API_KEY provided, trace export disabled")

        self._provider = provider
        self._tracer = provider.get_tracer(TRACER_NAME)

    def shutdown(self) -> None:
        if self._provider is None:
            return
        self._provider.shutdown()
        self._provider = None
        self._tracer = None
        self._memory_exporter = None
        self.exporting = False

    def force_flush(self) -> None:
        if self._provider is not None:
            self._provider.force_flush()

    @property
    def tracer(self) -> trace.Tracer:
        if self._tracer is None:
            logger.warning("Tracer used before init, initializing with defaults")
            self.init()
        if self._tracer is None:
            raise RuntimeError("Tracer provider failed to initialize")
        return self._tracer

    # Propagation

    def extract_context(self, headers: Mapping[str, str]) -> otel_context.Context:
        return self._propagator.extract(carrier=headers)

    def inject_context(
        self,
        headers: MutableMapping[str, str],
        ctx: otel_context.Context | None = None,
    ) -> None:
        self._propagator.inject(headers, context=ctx)

    # Spans

    def start_root_span(
        self,
        name: str,
        *,
        attributes: Mapping[str, Any] | None = None,
        headers: Mapping[str, str] | None = None,
        kind: SpanKind = SpanKind.SERVER,
    ) -> Span:
        parent = self.extract_context(headers or {})
        return self.tracer.start_span(
            name, context=parent, kind=kind, attributes=dict(attributes or {})
        )

    @contextmanager
    def span(
        self,
        name: str,
        *,
        attributes: Mapping[str, Any] | None = None,
        kind: SpanKind = SpanKind.INTERNAL,
    ) -> Iterator[Span]:
        """Child of the active span. Errors mark it failed and propagate unchanged."""
        with self.tracer.start_as_current_span(
            name,
            kind=kind,
            attributes=dict(attributes or {}),
            record_exception=False,
            set_status_on_exception=False,
        ) as span:
            try:
                yield span
            except Exception as exc:
                record_error(span, exc)
                raise

    @contextmanager
    def database_span(
        self, table: str, query_type: str, *, user_id: object | None = None
    ) -> Iterator[Span]:
        attributes = {
            "db.system": "postgresql",
            "db.operation": query_type,
            "db.table": table,
        }
        with self.span(f"db.query.{table}", attributes=attributes, kind=SpanKind.CLIENT) as span:
            if user_id is not None:
                set_user_id(span, user_id)
            yield span
            span.set_status(Status(StatusCode.OK))

    @contextmanager
    def external_call_span(self, url: str, method: str) -> Iterator[Span]:
        attributes = {"http.method": method, "http.url": url.split("?", 1)[0]}
        with self.span(
            f"http.client.{method}", attributes=attributes, kind=SpanKind.CLIENT
        ) as span:
            yield span

    # Memory exporter access (tests)

    def finished_spans(self) -> list[ReadableSpan]:
        if self._memory_exporter is None:
            return []
        return list(self._memory_exporter.get_finished_spans())

    def clear_finished_spans(self) -> None:
        if self._memory_exporter is not None:
            self._memory_exporter.clear()


def set_user_id(span: Span, user_id: object) -> None:
    span.set_attribute("enduser.id", hash_user_id(user_id))


def record_error(span: Span, error: BaseException | str, status_code: int | None = None) -> None:
    message = error if isinstance(error, str) else str(error)
    span.set_status(Status(StatusCode.ERROR, message))
    if isinstance(error, BaseException):
        span.record_exception(error)
    if status_code:
        span.set_attribute("http.status_code", status_code)


def get_trace_id(span: Span | None = None) -> str:
    ctx = (span or trace.get_current_span()).get_span_context()
    return format_trace_id(ctx.trace_id) if ctx.is_valid else ""


def get_span_id(span: Span | None = None) -> str:
    ctx = (span or trace.get_current_span()).get_span_context()
    return format_span_id(ctx.span_id) if ctx.is_valid else ""
