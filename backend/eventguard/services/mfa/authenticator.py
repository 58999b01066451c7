"""
TOTP multi-factor authentication.

Per-account state machine:

    NO_MFA ──begin_setup──▶ SETUP_PENDING ──confirm_setup(code)──▶ ENABLED
       ▲                          │                                   │
       └──────────── disable(code) ◀──────────────────────────────────┘

The secret is generated once and survives repeated ``begin_setup`` calls
until it is confirmed or cleared. It is stored encrypted through the user
repository. Codes follow RFC 6238 (30 s step, 6 digits) and are accepted
within ``valid_window`` steps on either side of the current time.
"""

from __future__ import annotations

import time
from collections.abc import Callable
from dataclasses import dataclass
from enum import StrEnum
from urllib.parse import quote

import pyotp
import structlog

from eventguard.config.settings import Settings
from eventguard.core.errors import ErrorCode, MfaStateError, MfaVerificationFailed
from eventguard.db.repositories.users import UserAccount, UserRepository
from eventguard.services.audit.trail import AuditTrail

_log = structlog.get_logger(__name__)

TOTP_INTERVAL = 30
TOTP_DIGITS = 6


class MfaState(StrEnum):
    NO_MFA = "no_mfa"
    SETUP_PENDING = "setup_pending"
    ENABLED = "enabled"


def mfa_state(account: UserAccount) -> MfaState:
    if account.mfa_enabled and account.mfa_secret:
        return MfaState.ENABLED
    if account.mfa_secret:
        return MfaState.SETUP_PENDING
    return MfaState.NO_MFA


def verify_totp(
    secret: str | None,
    code: str | None,
    *,
    valid_window: int = 2,
    for_time: float | None = None,
) -> bool:
    """Check ``code`` against ``secret`` at ``for_time`` (default: now)."""
    if not secret or not code:
        return False
    code = code.strip().replace(" ", "")
    if len(code) != TOTP_DIGITS or not code.isdigit():
        return False
    totp = pyotp.TOTP(secret, digits=TOTP_DIGITS, interval=TOTP_INTERVAL)
    return totp.verify(
        code,
        for_time=int(for_time if for_time is not None else time.time()),
        valid_window=valid_window,
    )


@dataclass(frozen=True)
class MfaSetup:
    """What the client needs to enrol an authenticator app."""

    secret: str
    provisioning_uri: str
    qr_code_url: str


class MfaAuthenticator:
    def __init__(
        self,
        audit: AuditTrail,
        *,
        issuer: str,
        qr_endpoint: str,
        valid_window: int = 2,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._audit = audit
        self._issuer = issuer
        self._qr_endpoint = qr_endpoint
        self._valid_window = valid_window
        self._clock = clock

    @classmethod
    def from_settings(cls, settings: Settings, audit: AuditTrail) -> MfaAuthenticator:
        return cls(
            audit,
            issuer=settings.totp_issuer,
            qr_endpoint=settings.mfa_qr_endpoint,
            valid_window=settings.mfa_valid_window,
        )

    def _verify(self, secret: str | None, code: str) -> bool:
        return verify_totp(secret, code, valid_window=self._valid_window, for_time=self._clock())

    def provisioning(self, account: UserAccount, secret: str) -> MfaSetup:
        uri = pyotp.TOTP(secret, digits=TOTP_DIGITS, interval=TOTP_INTERVAL).provisioning_uri(
            name=account.email,
            issuer_name=self._issuer,
        )
        return MfaSetup(
            secret=secret,
            provisioning_uri=uri,
            qr_code_url=self._qr_endpoint + quote(uri, safe=""),
        )

    async def begin_setup(self, users: UserRepository, account: UserAccount) -> MfaSetup:
        """
        Start (or resume) enrolment.

        Raises:
            MfaStateError: MFA is already enabled on the account.
        """
        state = mfa_state(account)
        if state is MfaState.ENABLED:
            raise MfaStateError(
                ErrorCode.MFA_ALREADY_ENABLED,
                "MFA is already enabled. Disable it before setting it up again.",
            )

        secret = account.mfa_secret
        if not secret:
            secret = pyotp.random_base32()
            await users.update(account.id, mfa_secret=secret, mfa_enabled=False)
            await self._audit.log_auth("mfa_setup_started", account)
            _log.info("mfa_setup_started", user_id=account.id)

        return self.provisioning(account, secret)

    async def confirm_setup(
        self, users: UserRepository, account: UserAccount, code: str
    ) -> UserAccount:
        """
        Move SETUP_PENDING to ENABLED after a valid code.

        Raises:
            MfaStateError: no pending secret, or MFA already enabled.
            MfaVerificationFailed: the code does not match.
        """
        state = mfa_state(account)
        if state is MfaState.NO_MFA:
            raise MfaStateError(
                ErrorCode.MFA_NOT_SET_UP, "MFA secret not found. Please set up MFA first."
            )
        if state is MfaState.ENABLED:
            raise MfaStateError(ErrorCode.MFA_ALREADY_ENABLED, "MFA is already enabled.")

        if not self._verify(account.mfa_secret, code):
            await self._audit.log_auth("mfa_confirmation_failed", account)
            raise MfaVerificationFailed()

        await users.update(account.id, mfa_enabled=True)
        await self._audit.log_auth("mfa_enabled", account)
        return await users.load(account.id) or account

    async def disable(self, users: UserRepository, account: UserAccount, code: str) -> UserAccount:
        """
        Clear the secret and disable MFA after a valid code.

        Also cancels a pending setup.
        """
        if mfa_state(account) is MfaState.NO_MFA:
            raise MfaStateError(ErrorCode.MFA_NOT_SET_UP, "MFA is not set up for this account.")

        if not self._verify(account.mfa_secret, code):
            await self._audit.log_auth("mfa_disable_failed", account)
            raise MfaVerificationFailed()

        await users.update(account.id, mfa_enabled=False, mfa_secret=None)
        await self._audit.log_auth("mfa_disabled", account)
        return await users.load(account.id) or account

    async def verify_login(self, account: UserAccount, code: str) -> bool:
        """Second-factor check at login. Never changes the credential."""
        if mfa_state(account) is not MfaState.ENABLED:
            return False
        if self._verify(account.mfa_secret, code):
            await self._audit.log_auth("mfa_verification_success", account)
            return True
        await self._audit.log_auth("mfa_verification_failed", account)
        return False
