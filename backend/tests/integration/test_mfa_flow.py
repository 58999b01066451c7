"""Integration tests — TOTP enrolment and two-step login."""
import pyotp
import pytest

from tests.conftest import USER_PASSWORD

pytestmark = pytest.mark.asyncio


async def _enable_mfa(user_client) -> str:
    setup = await user_client.post("/api/v1/auth/mfa/setup")
    assert setup.status_code == 200
    secret = setup.json()["secret"]
    confirm = await user_client.post(
        "/api/v1/auth/mfa/confirm", json={"code": pyotp.TOTP(secret).now()}
    )
    assert confirm.status_code == 200
    assert confirm.json()["mfa_enabled"] is True
    return secret


async def test_setup_returns_provisioning_material(user_client):
    resp = await user_client.post("/api/v1/auth/mfa/setup")
    body = resp.json()
    assert resp.status_code == 200
    assert body["provisioning_uri"].startswith("otpauth://totp/")
    assert "alice" in body["provisioning_uri"]
    assert body["qr_code_url"].startswith("https://")


async def test_confirm_rejects_wrong_code(user_client):
    await user_client.post("/api/v1/auth/mfa/setup")
    resp = await user_client.post("/api/v1/auth/mfa/confirm", json={"code": "000000"})
    assert resp.status_code == 400
    assert resp.json()["error"]["code"] == "MFA_001"


async def test_code_must_be_six_digits(user_client):
    resp = await user_client.post("/api/v1/auth/mfa/confirm", json={"code": "12ab56"})
    assert resp.status_code == 422


async def _password_step(client) -> str:
    resp = await client.post(
        "/api/v1/auth/login", json={"email": "alice@example.com", "password": USER_PASSWORD}
    )
    assert resp.status_code == 200
    body = resp.json()
    assert body["requires_mfa"] is True
    assert "access_token" not in body
    return body["mfa_token"]


async def test_login_requires_second_step_once_enabled(user_client, client):
    secret = await _enable_mfa(user_client)
    pending = await _password_step(client)

    resp = await client.post(
        "/api/v1/auth/mfa/verify", json={"mfa_token": pending, "code": pyotp.TOTP(secret).now()}
    )

    assert resp.status_code == 200
    assert resp.json()["access_token"]


async def test_totp_code_alone_never_yields_tokens(user_client, client):
    secret = await _enable_mfa(user_client)

    resp = await client.post(
        "/api/v1/auth/mfa/verify",
        json={"email": "alice@example.com", "code": pyotp.TOTP(secret).now()},
    )

    assert resp.status_code == 422
    assert "access_token" not in resp.json()


async def test_forged_pending_token_is_rejected(user_client, client):
    secret = await _enable_mfa(user_client)

    resp = await client.post(
        "/api/v1/auth/mfa/verify",
        json={"mfa_token": "not-a-jwt", "code": pyotp.TOTP(secret).now()},
    )

    assert resp.status_code == 401
    assert resp.json()["error"]["code"] == "AUTH_003"


async def test_access_token_cannot_stand_in_for_pending_token(user_client, client):
    secret = await _enable_mfa(user_client)
    access = user_client.headers["Authorization"].removeprefix("Bearer ")

    resp = await client.post(
        "/api/v1/auth/mfa/verify", json={"mfa_token": access, "code": pyotp.TOTP(secret).now()}
    )

    assert resp.status_code == 401


async def test_verify_with_wrong_code_is_counted(user_client, client, app):
    await _enable_mfa(user_client)
    pending = await _password_step(client)

    resp = await client.post(
        "/api/v1/auth/mfa/verify", json={"mfa_token": pending, "code": "000000"}
    )

    assert resp.status_code == 401
    rows, _ = await app.state.services.audit.list_events(action="auth.failed_attempt")
    assert len(rows) == 1


async def test_setup_twice_is_rejected_while_enabled(user_client):
    await _enable_mfa(user_client)
    resp = await user_client.post("/api/v1/auth/mfa/setup")
    assert resp.status_code == 400
    assert resp.json()["error"]["code"] == "MFA_004"


async def test_disable_with_valid_code(user_client, client):
    secret = await _enable_mfa(user_client)

    resp = await user_client.post(
        "/api/v1/auth/mfa/disable", json={"code": pyotp.TOTP(secret).now()}
    )

    assert resp.status_code == 200
    assert resp.json()["mfa_enabled"] is False
    me = await user_client.get("/api/v1/auth/me")
    assert me.json()["mfa_enabled"] is False
    login = await client.post(
        "/api/v1/auth/login", json={"email": "alice@example.com", "password": USER_PASSWORD}
    )
    assert "access_token" in login.json()


async def test_enrolment_is_audited(user_client, app):
    await _enable_mfa(user_client)
    stats = await app.state.services.audit.security_stats(1)
    assert stats["mfa_enabled"] == 1
