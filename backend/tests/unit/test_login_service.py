"""Unit tests for eventguard.services.auth.login."""
from datetime import UTC, datetime, timedelta

import pyotp
import pytest
from jose import jwt

from eventguard.core.errors import AuthError, ErrorCode, MfaStateError
from eventguard.core.security import create_access_token, create_mfa_pending_token, decode_token
from tests.conftest import TEST_SETTINGS, USER_PASSWORD

pytestmark = pytest.mark.asyncio


async def _actions(services) -> list[str]:
    rows, _ = await services.audit.list_events(page_size=200)
    return [r.action for r in reversed(rows)]


async def _enable_mfa(services, users, account) -> str:
    setup = await services.mfa.begin_setup(users, account)
    await services.mfa.confirm_setup(
        users, await users.load(account.id), pyotp.TOTP(setup.secret).now()
    )
    return setup.secret


async def test_login_issues_tokens(services, users, make_user):
    account = await make_user()

    result = await services.login.login(users, "alice@example.com", USER_PASSWORD)

    assert result.requires_mfa is False
    payload = decode_token(result.tokens.access_token, TEST_SETTINGS)
    assert payload["sub"] == str(account.id)
    assert payload["role"] == "user"
    assert "auth.login_success" in await _actions(services)


async def test_wrong_password_is_audited_and_rejected(services, users, make_user):
    await make_user()

    with pytest.raises(AuthError) as info:
        await services.login.login(users, "alice@example.com", "nope")

    assert info.value.code is ErrorCode.AUTH_INVALID_CREDENTIALS
    rows, _ = await services.audit.list_events(action="auth.login_failed")
    assert len(rows) == 1
    assert rows[0].user_id is None


async def test_unknown_email_gets_same_error(services, users):
    with pytest.raises(AuthError) as info:
        await services.login.login(users, "ghost@example.com", "whatever")
    assert info.value.code is ErrorCode.AUTH_INVALID_CREDENTIALS


async def test_inactive_account_is_rejected(services, users, make_user):
    await make_user(is_active=False)
    with pytest.raises(AuthError) as info:
        await services.login.login(users, "alice@example.com", USER_PASSWORD)
    assert info.value.code is ErrorCode.AUTH_USER_INACTIVE


async def test_mfa_account_gets_only_a_pending_token(services, users, make_user):
    account = await make_user()
    await _enable_mfa(services, users, account)

    result = await services.login.login(users, "alice@example.com", USER_PASSWORD)

    assert result.requires_mfa is True
    assert result.tokens is None
    payload = decode_token(result.mfa_token, TEST_SETTINGS)
    assert payload["type"] == "mfa_pending"
    assert payload["sub"] == str(account.id)
    assert "auth.login_mfa_required" in await _actions(services)


async def _pending_token(services, users) -> str:
    result = await services.login.login(users, "alice@example.com", USER_PASSWORD)
    return result.mfa_token


async def test_complete_mfa_login_with_valid_code(services, users, make_user):
    account = await make_user()
    secret = await _enable_mfa(services, users, account)
    pending = await _pending_token(services, users)

    result = await services.login.complete_mfa_login(users, pending, pyotp.TOTP(secret).now())

    assert result.tokens is not None
    assert decode_token(result.tokens.access_token, TEST_SETTINGS)["sub"] == str(account.id)


async def test_complete_mfa_login_with_bad_code(services, users, make_user):
    account = await make_user()
    await _enable_mfa(services, users, account)
    pending = await _pending_token(services, users)

    with pytest.raises(AuthError) as info:
        await services.login.complete_mfa_login(users, pending, "000000")
    assert info.value.code is ErrorCode.MFA_CODE_INVALID


async def test_complete_mfa_login_rejects_access_token(services, users, make_user):
    account = await make_user()
    secret = await _enable_mfa(services, users, account)
    access = create_access_token(str(account.id), "user", settings=TEST_SETTINGS)

    with pytest.raises(AuthError) as info:
        await services.login.complete_mfa_login(users, access, pyotp.TOTP(secret).now())
    assert info.value.code is ErrorCode.AUTH_TOKEN_INVALID


async def test_complete_mfa_login_rejects_expired_pending_token(services, users, make_user):
    account = await make_user()
    secret = await _enable_mfa(services, users, account)
    expired = jwt.encode(
        {
            "sub": str(account.id),
            "type": "mfa_pending",
            "exp": datetime.now(UTC) - timedelta(minutes=1),
        },
        TEST_SETTINGS.jwt_secret_key.get_secret_value(),
        algorithm=TEST_SETTINGS.jwt_algorithm,
    )

    with pytest.raises(AuthError) as info:
        await services.login.complete_mfa_login(users, expired, pyotp.TOTP(secret).now())
    assert info.value.code is ErrorCode.AUTH_TOKEN_EXPIRED


async def test_complete_mfa_login_without_mfa(services, users, make_user):
    account = await make_user()
    pending = create_mfa_pending_token(str(account.id), TEST_SETTINGS)
    with pytest.raises(MfaStateError):
        await services.login.complete_mfa_login(users, pending, "123456")
