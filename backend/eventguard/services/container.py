"""
Process-wide security services.

Built once at application startup (or by the operator command) and shared
by every request; per-request objects such as repositories are created
from it by the API dependencies.
"""

from __future__ import annotations

from dataclasses import dataclass

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from eventguard.config.settings import Settings
from eventguard.services.audit.trail import AuditTrail
from eventguard.services.auth.login import LoginService
from eventguard.services.auth.password_reset import PasswordResetService
from eventguard.services.encryption.cipher import FieldCipher
from eventguard.services.encryption.codec import TransparentFieldCodec
from eventguard.services.events.policy import EventPolicy
from eventguard.services.mfa.authenticator import MfaAuthenticator
from eventguard.services.monitoring.threat_detector import ThreatDetector
from eventguard.services.ratelimit.limiter import RateLimiter


@dataclass(frozen=True)
class SecurityServices:
    settings: Settings
    session_factory: async_sessionmaker[AsyncSession]
    codec: TransparentFieldCodec
    audit: AuditTrail
    rate_limiter: RateLimiter
    detector: ThreatDetector
    mfa: MfaAuthenticator
    login: LoginService
    password_reset: PasswordResetService
    event_policy: EventPolicy

    @classmethod
    def build(
        cls,
        settings: Settings,
        session_factory: async_sessionmaker[AsyncSession],
        rate_limiter: RateLimiter | None = None,
    ) -> SecurityServices:
        codec = TransparentFieldCodec(
            FieldCipher.from_settings(settings), strict=settings.field_decrypt_strict
        )
        audit = AuditTrail(session_factory)
        mfa = MfaAuthenticator.from_settings(settings, audit)
        return cls(
            settings=settings,
            session_factory=session_factory,
            codec=codec,
            audit=audit,
            rate_limiter=rate_limiter or RateLimiter.from_settings(settings),
            detector=ThreatDetector(audit),
            mfa=mfa,
            login=LoginService(settings, audit, mfa),
            password_reset=PasswordResetService(settings, audit),
            event_policy=EventPolicy(audit),
        )
