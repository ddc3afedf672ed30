from __future__ import annotations

from fastapi import FastAPI  # type: ignore[import-not-found]
from fastapi.testclient import TestClient  # type: ignore[import-not-found]
from opentelemetry.trace import SpanKind, StatusCode  # type: ignore[import-not-found]

from tally.telemetry.tracing import TracingService, hash_user_id


def _root(tracing: TracingService, name: str):  # type: ignore[no-untyped-def]
    return next(s for s in tracing.finished_spans() if s.name == name)


def test_root_span_is_server_span(client: TestClient, tracing: TracingService) -> None:
    client.get("/health")
    span = _root(tracing, "HTTP GET /health")
    assert span.kind is SpanKind.SERVER
    assert span.attributes["http.method"] == "GET"
    assert span.attributes["http.target"] == "/health"
    assert span.status.status_code is not StatusCode.ERROR


def test_http_500_marks_span_failed(client: TestClient, tracing: TracingService) -> None:
    r = client.get("/error")
    assert r.status_code == 500
    assert r.json()["error"].startswith("Test error for Sentry")
    assert "x-trace-id" in r.headers

    span = _root(tracing, "HTTP GET /error")
    assert span.status.status_code is StatusCode.ERROR
    assert span.attributes["http.status_code"] == 500


def test_uncaught_exception_is_recorded_and_answered_generically(
    app: FastAPI, tracing: TracingService
) -> None:
    client = TestClient(app, raise_server_exceptions=False)
    r = client.get("/throw")
    assert r.status_code == 500
    assert r.json() == {"error": "Internal server error"}

    span = _root(tracing, "HTTP GET /throw")
    assert r.headers["x-trace-id"] == format(span.context.trace_id, "032x")
    assert span.status.status_code is StatusCode.ERROR
    assert any(e.name == "exception" for e in span.events)


def test_uncaught_exception_keeps_its_message_on_the_span(
    app: FastAPI, tracing: TracingService
) -> None:
    TestClient(app, raise_server_exceptions=False).get("/throw")
    span = _root(tracing, "HTTP GET /throw")
    assert span.status.description == "Uncaught test error for Sentry - this is intentional"
    assert span.attributes["http.status_code"] == 500


def test_authenticated_request_tags_hashed_user(client: TestClient, tracing: TracingService) -> None:
    client.post("/api/auth/register", json={"username": "alice921", "password": "secret1"})
    me = client.get("/api/auth/me").json()
    tracing.clear_finished_spans()

    client.get("/api/counter")
    span = _root(tracing, "HTTP GET /api/counter")
    assert span.attributes["enduser.id"] == hash_user_id(me["id"])
    assert span.attributes["enduser.id"] != me["id"]


def test_no_trace_header_when_tracing_is_down(client: TestClient, tracing: TracingService) -> None:
    tracing.shutdown()
    r = client.get("/health")
    assert r.status_code == 200
    assert "x-trace-id" not in r.headers
