"""HTTP tests for GET /api/sim."""

import asyncio
import json
import time

import httpx
import pytest


def test_ok_echoes_request_id(client):
    resp = client.get("/api/sim", params={"mode": "ok"}, headers={"X-Request-ID": "abc-123"})
    assert resp.status_code == 200
    assert resp.headers["x-request-id"] == "abc-123"
    assert resp.json() == {"ok": True, "id": "abc-123", "mode": "ok"}


def test_ok_generates_request_id(client):
    resp = client.get("/api/sim")
    assert resp.status_code == 200
    request_id = resp.headers["x-request-id"]
    assert request_id
    assert resp.json()["id"] == request_id


def test_unknown_mode_behaves_like_ok(client):
    resp = client.get("/api/sim", params={"mode": "nonsense"})
    assert resp.status_code == 200
    assert resp.json()["mode"] == "ok"


def test_slow_waits_for_delay(client):
    started = time.monotonic()
    resp = client.get("/api/sim", params={"mode": "slow", "delayMs": "500"})
    elapsed = time.monotonic() - started

    assert resp.status_code == 200
    assert elapsed >= 0.5
    assert resp.json()["delayMs"] == 500


def test_timeout_holds_at_least_floor(fast_client, fake_sleep):
    resp = fast_client.get("/api/sim", params={"mode": "timeout", "delayMs": "100"})
    assert resp.status_code == 200
    assert fake_sleep.calls == [12.0]


def test_timeout_hold_is_capped_by_max_delay(fast_client, fake_sleep):
    resp = fast_client.get("/api/sim", params={"mode": "timeout", "delayMs": "200000"})
    assert resp.status_code == 200
    assert fake_sleep.calls == [120.0]


def test_error500_custom_status(client):
    resp = client.get("/api/sim", params={"mode": "error500", "status": "418"})
    assert resp.status_code == 418
    assert resp.text == "Simulated error (418)"
    assert "x-request-id" in resp.headers


def test_error503_ignores_status(client):
    resp = client.get("/api/sim", params={"mode": "error503", "status": "418"})
    assert resp.status_code == 503
    assert resp.text == "Simulated error (503)"


def test_corrupt_json(client):
    resp = client.get("/api/sim", params={"mode": "corruptJson"})
    assert resp.status_code == 200
    assert resp.headers["content-type"] == "application/json"
    with pytest.raises(json.JSONDecodeError):
        json.loads(resp.text)


def test_ratelimit_sequence(client):
    params = {"mode": "ratelimit", "limit": "2", "windowMs": "60000"}
    headers = {"X-Forwarded-For": "203.0.113.7"}

    first = client.get("/api/sim", params=params, headers=headers)
    second = client.get("/api/sim", params=params, headers=headers)
    third = client.get("/api/sim", params=params, headers=headers)

    assert first.status_code == 200
    assert first.headers["x-ratelimit-remaining"] == "1"
    assert second.status_code == 200
    assert second.headers["x-ratelimit-remaining"] == "0"

    assert third.status_code == 429
    retry_after = int(third.headers["retry-after"])
    assert 0 < retry_after <= 60
    assert third.headers["x-ratelimit-limit"] == "2"
    assert int(third.headers["x-ratelimit-reset"]) >= int(time.time())


def test_ratelimit_is_per_app_instance(config):
    """Each app owns its own table."""
    from fastapi.testclient import TestClient

    from faultsim.app.main import create_app

    params = {"mode": "ratelimit", "limit": "1"}
    first_app = TestClient(create_app(config=config))
    second_app = TestClient(create_app(config=config))

    assert first_app.get("/api/sim", params=params).status_code == 200
    assert first_app.get("/api/sim", params=params).status_code == 429
    assert second_app.get("/api/sim", params=params).status_code == 200


def test_reset_is_server_error_without_request_id(client):
    resp = client.get("/api/sim", params={"mode": "reset"}, headers={"X-Request-ID": "crash-1"})
    assert resp.status_code == 500
    assert "x-request-id" not in resp.headers
    assert resp.json()["error"] == "simulated_crash"


def test_service_keeps_serving_after_reset(client):
    client.get("/api/sim", params={"mode": "reset"})
    resp = client.get("/api/sim")
    assert resp.status_code == 200


def test_health(client):
    resp = client.get("/health")
    assert resp.status_code == 200
    data = resp.json()
    assert data["status"] == "ok"
    assert data["components"]["rate_limiter"]["tracked_keys"] == 0


def test_health_counts_tracked_keys(client):
    client.get("/api/sim", params={"mode": "ratelimit"}, headers={"X-Real-IP": "1.2.3.4"})
    data = client.get("/health").json()
    assert data["components"]["rate_limiter"]["tracked_keys"] == 1


def test_status_indicator_polls_ok_mode(client):
    """The UI status dot polls mode=ok with a health-<ms> request id."""
    request_id = "health-1700000000000"
    resp = client.get("/api/sim", params={"mode": "ok"}, headers={"x-request-id": request_id})
    assert resp.status_code == 200
    assert resp.headers["x-request-id"] == request_id
    assert resp.json()["id"] == request_id


def test_ratelimit_limit_header_tracks_query(client):
    resp = client.get("/api/sim", params={"mode": "ratelimit", "limit": "7"})
    assert resp.headers["x-ratelimit-limit"] == "7"
    assert resp.headers["x-ratelimit-remaining"] == "6"


@pytest.mark.asyncio
async def test_concurrent_ratelimit_calls_are_all_counted(app):
    n = 25
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as client:
        responses = await asyncio.gather(*(
            client.get(
                "/api/sim",
                params={"mode": "ratelimit", "limit": str(n)},
                headers={"X-Forwarded-For": "198.51.100.1"},
            )
            for _ in range(n)
        ))

    assert all(r.status_code == 200 for r in responses)
    remaining = sorted(int(r.headers["x-ratelimit-remaining"]) for r in responses)
    assert remaining == list(range(n))


@pytest.mark.asyncio
async def test_slow_requests_overlap(app):
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as client:
        started = time.monotonic()
        responses = await asyncio.gather(*(
            client.get("/api/sim", params={"mode": "slow", "delayMs": "400"})
            for _ in range(5)
        ))
        elapsed = time.monotonic() - started

    assert all(r.status_code == 200 for r in responses)
    # five 400 ms delays run side by side, not one after another
    assert elapsed < 1.5


@pytest.mark.asyncio
async def test_sweeper_drops_expired_entries(limiter, clock):
    from contextlib import suppress

    from faultsim.app.main import _sweep_rate_limits

    await limiter.check("gone::ratelimit", limit=1, window_ms=1000)
    clock.advance(5)

    task = asyncio.create_task(_sweep_rate_limits(limiter, 0.01))
    await asyncio.sleep(0.1)
    task.cancel()
    with suppress(asyncio.CancelledError):
        await task

    assert len(limiter) == 0


def test_lifespan_starts_and_stops_sweeper():
    from fastapi.testclient import TestClient

    from faultsim.app.core.config import Settings
    from faultsim.app.main import create_app

    app = create_app(config=Settings(rate_limit_sweep_interval_seconds=60))
    with TestClient(app) as client:
        assert client.get("/health").status_code == 200
