from __future__ import annotations

import httpx  # type: ignore[import-not-found]
import pytest  # type: ignore[import-not-found]
from fastapi import FastAPI  # type: ignore[import-not-found]
from fastapi.testclient import TestClient  # type: ignore[import-not-found]

from conftest import FakeClock, FakeRatelimit
from tally.core.container import Services
from tally.ratelimit.service import TracedRatelimit


def test_counter_requires_session(client: TestClient) -> None:
    assert client.get("/api/counter").status_code == 401
    assert client.post("/api/counter", json={"action": "increment"}).status_code == 401


def test_register_then_count(client: TestClient) -> None:
    r = client.post("/api/auth/register", json={"username": "alice921", "password": "secret1"})
    assert r.status_code == 200
    assert r.json() == {"success": True}
    assert "session" in client.cookies

    assert client.get("/api/counter").json() == {"value": 0}
    assert client.post("/api/counter", json={"action": "increment"}).json() == {"value": 1}
    assert client.post("/api/counter", json={"action": "decrement"}).json() == {"value": 0}
    assert client.get("/api/counter").json() == {"value": 0}


def test_invalid_action_is_400(client: TestClient) -> None:
    client.post("/api/auth/register", json={"username": "alice921", "password": "secret1"})
    r = client.post("/api/counter", json={"action": "double"})
    assert r.status_code == 400
    assert r.json()["error"] == "Invalid action"


def test_rate_limited_action_is_429(
    client: TestClient, services: Services, clock: FakeClock
) -> None:
    limiter = FakeRatelimit(max_requests=3, window_s=10, clock=clock)
    services.rate_limiter.limiter = TracedRatelimit(limiter, services.tracing)
    services.rate_limiter.clock = clock

    client.post("/api/auth/register", json={"username": "alice921", "password": "secret1"})
    for expected in (1, 2, 3):
        assert client.post("/api/counter", json={"action": "increment"}).json() == {"value": expected}

    r = client.post("/api/counter", json={"action": "increment"})
    assert r.status_code == 429
    body = r.json()
    assert body["error"] == "Rate limit exceeded. Please try again later."
    assert body["retryAfter"] >= 1
    assert int(r.headers["retry-after"]) == body["retryAfter"]
    assert client.get("/api/counter").json() == {"value": 3}


@pytest.mark.anyio
async def test_register_then_count_async(app: FastAPI) -> None:
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as ac:
        r = await ac.post(
            "/api/auth/register", json={"username": "alice921", "password": "secret1"}
        )
        assert r.status_code == 200
        assert (await ac.get("/api/counter")).json() == {"value": 0}
        r = await ac.post("/api/counter", json={"action": "increment"})
        assert r.json() == {"value": 1}
        assert r.headers["x-trace-id"]
