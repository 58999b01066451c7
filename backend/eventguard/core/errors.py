"""
Structured error taxonomy for EventGuard.

Every application error has:
  - A stable error code (prefixed by domain)
  - An HTTP status code
  - A human-readable message template
  - An optional detail dict for machine consumers

No internal state (stack traces, DB internals) is ever surfaced to clients.

Faults raised inside the security substrate (``ConfigurationError``,
``DecryptionError``, ``StorageUnavailable``) are not HTTP errors. Callers
decide how to degrade; none of them is allowed to abort the process.
"""

from __future__ import annotations

from enum import StrEnum
from typing import Any


class ErrorCode(StrEnum):
    """Stable, versioned error codes. Never reuse a retired code."""

    # Auth
    AUTH_INVALID_CREDENTIALS = "AUTH_001"
    AUTH_TOKEN_EXPIRED = "AUTH_002"
    AUTH_TOKEN_INVALID = "AUTH_003"
    AUTH_INSUFFICIENT_PERMISSIONS = "AUTH_004"
    AUTH_USER_INACTIVE = "AUTH_005"
    AUTH_RESET_TOKEN_INVALID = "AUTH_006"
    AUTH_RESET_TOKEN_EXPIRED = "AUTH_007"

    # MFA
    MFA_CODE_INVALID = "MFA_001"
    MFA_NOT_SET_UP = "MFA_002"
    MFA_NOT_ENABLED = "MFA_003"
    MFA_ALREADY_ENABLED = "MFA_004"

    # Security substrate
    SEC_ENCRYPTION_UNCONFIGURED = "SEC_001"
    SEC_DECRYPTION_FAILED = "SEC_002"
    SEC_AUDIT_STORAGE_UNAVAILABLE = "SEC_003"
    SEC_TLS_REQUIRED = "SEC_004"

    # Generic
    VALIDATION_ERROR = "GEN_001"
    INTERNAL_ERROR = "GEN_002"
    NOT_FOUND = "GEN_003"
    RATE_LIMITED = "GEN_004"


class AppError(Exception):
    """Base class for all application errors."""

    def __init__(
        self,
        code: ErrorCode,
        message: str,
        http_status: int = 500,
        detail: dict[str, Any] | None = None,
        headers: dict[str, str] | None = None,
    ) -> None:
        super().__init__(message)
        self.code = code
        self.message = message
        self.http_status = http_status
        self.detail = detail or {}
        self.headers = headers or {}

    def to_dict(self) -> dict[str, Any]:
        return {
            "error": {
                "code": self.code.value,
                "message": self.message,
                "detail": self.detail,
            }
        }


# ── Typed convenience subclasses ──────────────────────────────────────── #


class NotFoundError(AppError):
    def __init__(
        self, entity: str, entity_id: str | None = None, code: ErrorCode = ErrorCode.NOT_FOUND
    ) -> None:
        detail = {"entity": entity}
        if entity_id:
            detail["id"] = entity_id
        super().__init__(
            code=code,
            message=f"{entity} not found",
            http_status=404,
            detail=detail,
        )


class AuthError(AppError):
    def __init__(self, code: ErrorCode, message: str) -> None:
        super().__init__(code=code, message=message, http_status=401)


class ForbiddenError(AppError):
    def __init__(self, message: str = "Insufficient permissions") -> None:
        super().__init__(
            code=ErrorCode.AUTH_INSUFFICIENT_PERMISSIONS,
            message=message,
            http_status=403,
        )


class BadRequestError(AppError):
    def __init__(self, code: ErrorCode, message: str) -> None:
        super().__init__(code=code, message=message, http_status=400)


class ServiceUnavailableError(AppError):
    def __init__(self, code: ErrorCode, message: str) -> None:
        super().__init__(code=code, message=message, http_status=503)


class RateLimitedError(AppError):
    """Rendered form of a rejected rate-limit gate decision."""

    def __init__(self, retry_after: int, limit: int) -> None:
        minutes = max(1, -(-retry_after // 60))
        super().__init__(
            code=ErrorCode.RATE_LIMITED,
            message=f"Too many attempts. Please try again in {minutes} minutes.",
            http_status=429,
            detail={"retry_after": retry_after},
            headers={
                "Retry-After": str(retry_after),
                "X-RateLimit-Limit": str(limit),
                "X-RateLimit-Remaining": "0",
            },
        )
        self.retry_after = retry_after


# ── MFA ───────────────────────────────────────────────────────────────── #


class MfaVerificationFailed(BadRequestError):
    """Submitted one-time code did not match the stored secret."""

    def __init__(self, message: str = "Invalid code. Please try again.") -> None:
        super().__init__(ErrorCode.MFA_CODE_INVALID, message)


class MfaStateError(BadRequestError):
    """Requested MFA transition is not valid from the account's current state."""


# ── Security substrate faults (never rendered directly) ───────────────── #


class SecurityFault(Exception):
    """Base class for internal faults of the security substrate."""

    code: ErrorCode = ErrorCode.INTERNAL_ERROR


class ConfigurationError(SecurityFault):
    """No key material is configured for field encryption."""

    code = ErrorCode.SEC_ENCRYPTION_UNCONFIGURED


class DecryptionError(SecurityFault):
    """Envelope is malformed or its MAC does not verify."""

    code = ErrorCode.SEC_DECRYPTION_FAILED


class FieldDecodeError(DecryptionError):
    """A single encrypted attribute could not be decoded on read."""

    def __init__(self, entity_type: str, field: str, reason: str) -> None:
        super().__init__(f"{entity_type}.{field}: {reason}")
        self.entity_type = entity_type
        self.field = field


class StorageUnavailable(SecurityFault):
    """Durable audit sink could not accept a write."""

    code = ErrorCode.SEC_AUDIT_STORAGE_UNAVAILABLE
