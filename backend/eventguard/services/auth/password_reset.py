"""
Password reset by emailed link.

Tokens are random, stored only as SHA-256 digests (one per user), single
use, and expire after ``password_reset_expire_minutes``. Responses never
reveal whether an email address belongs to an account.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import UTC, timedelta
from urllib.parse import urlencode

import structlog
from sqlalchemy import delete
from sqlalchemy.ext.asyncio import AsyncSession

from eventguard.config.settings import Settings
from eventguard.core.errors import BadRequestError, ErrorCode
from eventguard.core.security import (
    generate_reset_token,
    hash_password,
    hash_reset_token,
    safe_str_compare,
)
from eventguard.db.base import utcnow
from eventguard.db.models.user import PasswordResetToken
from eventguard.db.repositories.users import UserRepository
from eventguard.services.audit.trail import AuditTrail

_log = structlog.get_logger(__name__)


@dataclass(frozen=True)
class ResetRequest:
    """Outcome of a reset request. ``reset_link`` is None for unknown emails."""

    reset_link: str | None


class PasswordResetService:
    def __init__(self, settings: Settings, audit: AuditTrail) -> None:
        self._settings = settings
        self._audit = audit

    async def request_reset(
        self, session: AsyncSession, users: UserRepository, email: str
    ) -> ResetRequest:
        user = await users.find_by_email(email)
        if user is None:
            return ResetRequest(reset_link=None)

        token = generate_reset_token()
        await session.merge(
            PasswordResetToken(
                user_id=user.id,
                token_hash=hash_reset_token(token),
                created_at=utcnow(),
            )
        )
        await session.commit()
        await self._audit.log_auth("password_reset_requested", user, {"reset_link_generated": True})

        query = urlencode({"token": token, "email": user.email})
        return ResetRequest(reset_link=f"{self._settings.frontend_url}/password/reset?{query}")

    async def reset_password(
        self,
        session: AsyncSession,
        users: UserRepository,
        email: str,
        token: str,
        new_password: str,
    ) -> None:
        """
        Raises:
            BadRequestError: unknown email, wrong token, or expired token.
        """
        user = await users.find_by_email(email)
        if user is None:
            raise BadRequestError(
                ErrorCode.AUTH_RESET_TOKEN_INVALID, "Invalid reset token or email."
            )

        record = await session.get(PasswordResetToken, user.id)
        if record is None or not safe_str_compare(record.token_hash, hash_reset_token(token)):
            await self._audit.log_auth(
                "password_reset_failed", user, {"reason": "Invalid or expired token"}
            )
            raise BadRequestError(
                ErrorCode.AUTH_RESET_TOKEN_INVALID, "Invalid or expired reset token."
            )

        created_at = record.created_at
        if created_at.tzinfo is None:
            created_at = created_at.replace(tzinfo=UTC)
        if utcnow() - created_at > timedelta(minutes=self._settings.password_reset_expire_minutes):
            await session.execute(
                delete(PasswordResetToken).where(PasswordResetToken.user_id == user.id)
            )
            await session.commit()
            await self._audit.log_auth("password_reset_failed", user, {"reason": "Token expired"})
            raise BadRequestError(
                ErrorCode.AUTH_RESET_TOKEN_EXPIRED,
                "Reset token has expired. Please request a new one.",
            )

        # single use: the token goes in the same commit as the new hash
        await session.execute(
            delete(PasswordResetToken).where(PasswordResetToken.user_id == user.id)
        )
        await users.update(user.id, password_hash=hash_password(new_password))
        await self._audit.log_auth("password_reset_completed", user)
        _log.info("password_reset_completed", user_id=user.id)
