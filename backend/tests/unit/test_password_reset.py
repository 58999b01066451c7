"""Unit tests for eventguard.services.auth.password_reset."""
from datetime import timedelta
from urllib.parse import parse_qs, urlparse

import pytest
from sqlalchemy import update

from eventguard.core.errors import BadRequestError, ErrorCode
from eventguard.core.security import verify_password
from eventguard.db.base import utcnow
from eventguard.db.models.user import PasswordResetToken

pytestmark = pytest.mark.asyncio

NEW_PASSWORD = "N3wPassword!!"


def _token(link: str) -> str:
    return parse_qs(urlparse(link).query)["token"][0]


async def test_unknown_email_gets_no_link(services, users, db_session):
    outcome = await services.password_reset.request_reset(db_session, users, "ghost@example.com")
    assert outcome.reset_link is None


async def test_reset_with_valid_token(services, users, db_session, make_user):
    account = await make_user()
    outcome = await services.password_reset.request_reset(db_session, users, "alice@example.com")
    assert outcome.reset_link.startswith(services.settings.frontend_url)

    await services.password_reset.reset_password(
        db_session, users, "alice@example.com", _token(outcome.reset_link), NEW_PASSWORD
    )

    reloaded = await users.load(account.id)
    assert verify_password(NEW_PASSWORD, reloaded.password_hash)
    assert await db_session.get(PasswordResetToken, account.id) is None


async def test_token_is_single_use(services, users, db_session, make_user):
    await make_user()
    outcome = await services.password_reset.request_reset(db_session, users, "alice@example.com")
    token = _token(outcome.reset_link)
    await services.password_reset.reset_password(
        db_session, users, "alice@example.com", token, NEW_PASSWORD
    )

    with pytest.raises(BadRequestError) as info:
        await services.password_reset.reset_password(
            db_session, users, "alice@example.com", token, NEW_PASSWORD
        )
    assert info.value.code is ErrorCode.AUTH_RESET_TOKEN_INVALID


async def test_wrong_token_is_rejected_and_audited(services, users, db_session, make_user):
    await make_user()
    await services.password_reset.request_reset(db_session, users, "alice@example.com")

    with pytest.raises(BadRequestError):
        await services.password_reset.reset_password(
            db_session, users, "alice@example.com", "not-the-token", NEW_PASSWORD
        )
    rows, _ = await services.audit.list_events(action="auth.password_reset_failed")
    assert len(rows) == 1


async def test_expired_token_is_rejected(services, users, db_session, make_user):
    account = await make_user()
    outcome = await services.password_reset.request_reset(db_session, users, "alice@example.com")
    await db_session.flush()
    await db_session.execute(
        update(PasswordResetToken)
        .where(PasswordResetToken.user_id == account.id)
        .values(created_at=utcnow() - timedelta(minutes=61))
    )
    db_session.expire_all()

    with pytest.raises(BadRequestError) as info:
        await services.password_reset.reset_password(
            db_session, users, "alice@example.com", _token(outcome.reset_link), NEW_PASSWORD
        )
    assert info.value.code is ErrorCode.AUTH_RESET_TOKEN_EXPIRED
