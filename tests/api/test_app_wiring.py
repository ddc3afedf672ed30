from fastapi.testclient import TestClient

from tally.telemetry.tracing import TracingService


def test_build_app_includes_health_route(client: TestClient) -> None:
    resp = client.get("/health")
    assert resp.status_code == 200


def test_every_response_carries_trace_id(client: TestClient, tracing: TracingService) -> None:
    resp = client.get("/health")
    trace_id = resp.headers["x-trace-id"]
    assert len(trace_id) == 32

    roots = [s for s in tracing.finished_spans() if s.name == "HTTP GET /health"]
    assert len(roots) == 1
    assert format(roots[0].context.trace_id, "032x") == trace_id
    assert roots[0].attributes["http.status_code"] == 200


def test_incoming_traceparent_becomes_parent(client: TestClient, tracing: TracingService) -> None:
    trace_id = "4bf92f3577b34da6a3ce929d0e0e4736"
    resp = client.get(
        "/health", headers={"traceparent": f"00-{trace_id}-00f067aa0ba902b7-01"}
    )
    assert resp.headers["x-trace-id"] == trace_id
    root = next(s for s in tracing.finished_spans() if s.name == "HTTP GET /health")
    assert root.parent is not None
    assert format(root.parent.span_id, "016x") == "00f067aa0ba902b7"


def test_cors_allows_local_dev_origin_both_spellings(client: TestClient) -> None:
    for origin in ("http://localhost:5173", "http://127.0.0.1:5173"):
        resp = client.options(
            "/api/counter",
            headers={"origin": origin, "access-control-request-method": "POST"},
        )
        assert resp.headers["access-control-allow-origin"] == origin
        assert resp.headers["access-control-allow-credentials"] == "true"


def test_unknown_route_is_json_404(client: TestClient) -> None:
    resp = client.get("/nope")
    assert resp.status_code == 404
    assert resp.json() == {"error": "Not Found"}
