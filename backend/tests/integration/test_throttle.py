"""Integration tests — brute-force throttling of auth endpoints."""
import pytest

from tests.conftest import ADMIN_EMAIL, ADMIN_PASSWORD

pytestmark = pytest.mark.asyncio

LOGIN = "/api/v1/auth/login"


async def _fail(client, email: str = ADMIN_EMAIL):
    return await client.post(LOGIN, json={"email": email, "password": "wrong-password"})


async def test_sixth_attempt_is_rejected_with_429(client):
    for _ in range(5):
        assert (await _fail(client)).status_code == 401

    resp = await _fail(client)

    assert resp.status_code == 429
    assert resp.json()["error"]["code"] == "GEN_004"
    assert 1 <= int(resp.headers["Retry-After"]) <= 15 * 60
    assert resp.headers["X-RateLimit-Limit"] == "5"
    assert resp.headers["X-RateLimit-Remaining"] == "0"
    assert resp.json()["error"]["detail"]["retry_after"] == int(resp.headers["Retry-After"])


async def test_correct_password_is_also_blocked_once_limited(client):
    for _ in range(5):
        await _fail(client)
    resp = await client.post(LOGIN, json={"email": ADMIN_EMAIL, "password": ADMIN_PASSWORD})
    assert resp.status_code == 429


async def test_rejection_is_audited(client, app):
    for _ in range(6):
        await _fail(client)
    rows, _ = await app.state.services.audit.list_events(action="auth.rate_limited")
    assert len(rows) == 1


async def test_buckets_are_per_identity(client):
    for _ in range(5):
        await _fail(client, "victim@example.com")
    assert (await _fail(client, "victim@example.com")).status_code == 429
    assert (await _fail(client, "other@example.com")).status_code == 401


async def test_buckets_are_per_endpoint(client):
    for _ in range(6):
        await _fail(client)
    resp = await client.post("/api/v1/auth/password/email", json={"email": ADMIN_EMAIL})
    assert resp.status_code == 200


async def test_unthrottled_endpoints_are_not_counted(admin_client):
    for _ in range(10):
        assert (await admin_client.get("/api/v1/auth/me")).status_code == 200
