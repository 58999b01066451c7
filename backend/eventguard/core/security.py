"""
Security utilities: password hashing, JWT creation and verification.

Secrets are never logged. All operations are timing-safe.
"""

from __future__ import annotations

import hashlib
import secrets
from datetime import UTC, datetime, timedelta

import bcrypt
from jose import ExpiredSignatureError, JWTError, jwt

from eventguard.config.settings import Settings, get_settings
from eventguard.core.errors import AuthError, ErrorCode


# ── Password ──────────────────────────────────────────────────────────── #


def hash_password(plain: str) -> str:
    """Return a bcrypt hash of the given plaintext password."""
    normalized = hashlib.sha256(plain.encode("utf-8")).hexdigest().encode("utf-8")
    return bcrypt.hashpw(normalized, bcrypt.gensalt()).decode("utf-8")


def verify_password(plain: str, hashed: str) -> bool:
    """
    Verify a plaintext password against a stored hash.

    Returns False (never raises) on a malformed hash.
    """
    try:
        normalized = hashlib.sha256(plain.encode("utf-8")).hexdigest().encode("utf-8")
        return bcrypt.checkpw(normalized, hashed.encode("utf-8"))
    except ValueError:
        return False


# ── JWT ───────────────────────────────────────────────────────────────── #


def _now_utc() -> datetime:
    return datetime.now(UTC)


def create_access_token(
    subject: str,
    role: str,
    extra_claims: dict[str, object] | None = None,
    expires_delta: timedelta | None = None,
    settings: Settings | None = None,
) -> str:
    """
    Create a signed JWT access token.

    Args:
        subject: The user ID (``sub`` claim).
        role: The user role name.
        extra_claims: Optional additional claims merged into the payload.
        expires_delta: Override of the configured access token lifetime.

    Returns:
        Signed compact JWT string.
    """
    settings = settings or get_settings()
    lifetime = expires_delta or timedelta(minutes=settings.jwt_access_token_expire_minutes)
    payload: dict[str, object] = {
        "sub": subject,
        "role": role,
        "iat": _now_utc(),
        "exp": _now_utc() + lifetime,
        "type": "access",
        "jti": secrets.token_hex(16),
    }
    if extra_claims:
        payload.update(extra_claims)

    return jwt.encode(
        payload,
        settings.jwt_secret_key.get_secret_value(),
        algorithm=settings.jwt_algorithm,
    )


def create_refresh_token(subject: str, settings: Settings | None = None) -> str:
    """Create a signed JWT refresh token (no role claim)."""
    settings = settings or get_settings()
    expire = _now_utc() + timedelta(days=settings.jwt_refresh_token_expire_days)
    payload: dict[str, object] = {
        "sub": subject,
        "iat": _now_utc(),
        "exp": expire,
        "type": "refresh",
        "jti": secrets.token_hex(16),
    }
    return jwt.encode(
        payload,
        settings.jwt_secret_key.get_secret_value(),
        algorithm=settings.jwt_algorithm,
    )


def create_mfa_pending_token(subject: str, settings: Settings | None = None) -> str:
    """
    Short-lived proof that ``subject`` passed the password check.

    Only ``/auth/mfa/verify`` accepts it; it grants no API access.
    """
    settings = settings or get_settings()
    payload: dict[str, object] = {
        "sub": subject,
        "iat": _now_utc(),
        "exp": _now_utc() + timedelta(minutes=settings.mfa_pending_token_expire_minutes),
        "type": "mfa_pending",
        "jti": secrets.token_hex(16),
    }
    return jwt.encode(
        payload,
        settings.jwt_secret_key.get_secret_value(),
        algorithm=settings.jwt_algorithm,
    )


def decode_token(token: str, settings: Settings | None = None) -> dict[str, object]:
    """
    Decode and validate a JWT.

    Raises:
        AuthError: If the token is invalid, expired, or tampered with.
    """
    settings = settings or get_settings()
    try:
        return jwt.decode(  # type: ignore[return-value]
            token,
            settings.jwt_secret_key.get_secret_value(),
            algorithms=[settings.jwt_algorithm],
        )
    except ExpiredSignatureError as exc:
        raise AuthError(ErrorCode.AUTH_TOKEN_EXPIRED, "Token expired") from exc
    except JWTError as exc:
        raise AuthError(ErrorCode.AUTH_TOKEN_INVALID, "Token invalid") from exc


def generate_reset_token() -> str:
    """Generate a single-use password reset token."""
    return secrets.token_urlsafe(48)


def hash_reset_token(token: str) -> str:
    """Reset tokens are stored as SHA-256 digests, never in clear."""
    return hashlib.sha256(token.encode("utf-8")).hexdigest()


def safe_str_compare(a: str, b: str) -> bool:
    """Constant-time string comparison to prevent timing attacks."""
    return secrets.compare_digest(a.encode(), b.encode())


# ── Re-export for downstream ──────────────────────────────────────────── #

__all__ = [
    "create_access_token",
    "create_mfa_pending_token",
    "create_refresh_token",
    "decode_token",
    "generate_reset_token",
    "hash_password",
    "hash_reset_token",
    "safe_str_compare",
    "verify_password",
]
