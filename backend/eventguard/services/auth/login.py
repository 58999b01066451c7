"""
Password login with TOTP step-up.

A correct password is necessary but not sufficient when MFA is enabled:
``login`` then returns only a short-lived pending token, and only
``complete_mfa_login`` with that token and a valid code issues tokens.
"""

from __future__ import annotations

from dataclasses import dataclass

import structlog

from eventguard.config.settings import Settings
from eventguard.core.errors import AuthError, ErrorCode, MfaStateError
from eventguard.core.security import (
    create_access_token,
    create_mfa_pending_token,
    create_refresh_token,
    decode_token,
    verify_password,
)
from eventguard.db.repositories.users import UserAccount, UserRepository
from eventguard.services.audit.trail import AuditTrail
from eventguard.services.mfa.authenticator import MfaAuthenticator, MfaState, mfa_state

_log = structlog.get_logger(__name__)


@dataclass(frozen=True)
class TokenPair:
    access_token: str
    refresh_token: str
    expires_in: int


@dataclass(frozen=True)
class LoginResult:
    user: UserAccount
    tokens: TokenPair | None = None
    mfa_token: str | None = None

    @property
    def requires_mfa(self) -> bool:
        return self.tokens is None


class LoginService:
    def __init__(self, settings: Settings, audit: AuditTrail, mfa: MfaAuthenticator) -> None:
        self._settings = settings
        self._audit = audit
        self._mfa = mfa

    def issue_tokens(self, user: UserAccount) -> TokenPair:
        subject = str(user.id)
        settings = self._settings
        return TokenPair(
            access_token=create_access_token(subject=subject, role=user.role, settings=settings),
            refresh_token=create_refresh_token(subject=subject, settings=settings),
            expires_in=self._settings.jwt_access_token_expire_minutes * 60,
        )

    async def login(self, users: UserRepository, email: str, password: str) -> LoginResult:
        """
        Verify email and password.

        Raises:
            AuthError: unknown email, wrong password, or inactive account.
        """
        user = await users.find_by_email(email)
        if user is None or not verify_password(password, user.password_hash):
            await self._audit.log_auth("login_failed", None, {"email": email})
            _log.warning("login_failed")
            raise AuthError(ErrorCode.AUTH_INVALID_CREDENTIALS, "Invalid credentials")

        if not user.is_active:
            await self._audit.log_auth("login_inactive", user)
            raise AuthError(ErrorCode.AUTH_USER_INACTIVE, "Account is deactivated")

        if mfa_state(user) is MfaState.ENABLED:
            await self._audit.log_auth("login_mfa_required", user)
            return LoginResult(
                user=user, mfa_token=create_mfa_pending_token(str(user.id), self._settings)
            )

        await self._audit.log_auth("login_success", user, {"token_created": True})
        _log.info("login_success", user_id=user.id, role=user.role)
        return LoginResult(user=user, tokens=self.issue_tokens(user))

    async def complete_mfa_login(
        self, users: UserRepository, mfa_token: str, code: str
    ) -> LoginResult:
        """
        Second step of an MFA login.

        ``mfa_token`` is the pending token from :meth:`login`; without it a
        TOTP code alone never yields tokens.

        Raises:
            AuthError: missing, expired or foreign token, unknown or inactive
                account, or wrong code.
            MfaStateError: MFA is not enabled on the account.
        """
        payload = decode_token(mfa_token, self._settings)
        if payload.get("type") != "mfa_pending":
            await self._audit.log_auth("mfa_verification_failed", None, {"reason": "token_type"})
            raise AuthError(ErrorCode.AUTH_TOKEN_INVALID, "Not an MFA pending token")

        subject = str(payload.get("sub", ""))
        user = await users.load(int(subject)) if subject.isdigit() else None
        if user is None or not user.is_active:
            raise AuthError(ErrorCode.AUTH_TOKEN_INVALID, "Invalid MFA session")

        if mfa_state(user) is not MfaState.ENABLED:
            raise MfaStateError(ErrorCode.MFA_NOT_ENABLED, "MFA is not enabled for this user")

        if not await self._mfa.verify_login(user, code):
            raise AuthError(ErrorCode.MFA_CODE_INVALID, "Invalid MFA code")

        await self._audit.log_auth("login_success", user, {"token_created": True, "mfa": True})
        return LoginResult(user=user, tokens=self.issue_tokens(user))
