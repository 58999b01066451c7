"""
Application configuration via Pydantic Settings.

All values are sourced from environment variables or an .env file.
No defaults expose insecure behaviour in production.
"""

from __future__ import annotations

from enum import StrEnum
from functools import lru_cache
from typing import Annotated

from pydantic import (
    BeforeValidator,
    Field,
    SecretStr,
    field_validator,
    model_validator,
)
from pydantic_settings import BaseSettings, SettingsConfigDict


class Environment(StrEnum):
    """Deployment environment identifiers."""

    DEVELOPMENT = "development"
    TESTING = "testing"
    PRODUCTION = "production"


class LogLevel(StrEnum):
    """Structured log level options."""

    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"


def _parse_cors_origins(value: str | list[str]) -> list[str]:
    """Accept comma-separated string or list for CORS origins."""
    if isinstance(value, list):
        return value
    return [origin.strip() for origin in value.split(",") if origin.strip()]


class Settings(BaseSettings):
    """
    Centralised, type-validated application configuration.

    Reads from environment variables with an optional .env file.
    All secrets are Pydantic SecretStr to prevent accidental logging.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="forbid",
    )

    # ── Application ────────────────────────────────────────────────────── #
    app_name: str = Field(default="Event Manager", description="Human-readable application name")
    app_version: str = Field(default="1.0.0", description="Semantic version string")
    environment: Environment = Field(
        default=Environment.DEVELOPMENT,
        description="Deployment environment (development|testing|production)",
    )
    debug: bool = Field(
        default=False,
        description="Enable debug mode. Must be False in production.",
    )
    frontend_url: str = Field(
        default="http://localhost:5173",
        description="Base URL of the SPA, used to build password reset links",
    )

    # ── Server ─────────────────────────────────────────────────────────── #
    host: str = Field(default="127.0.0.1", description="Bind host. Default local-only.")
    port: int = Field(default=8000, ge=1024, le=65535, description="Bind port")
    workers: int = Field(default=1, ge=1, le=16, description="Uvicorn worker processes")
    reload: bool = Field(default=False, description="Auto-reload on code change (dev only)")

    # ── CORS ───────────────────────────────────────────────────────────── #
    cors_origins: Annotated[list[str], BeforeValidator(_parse_cors_origins)] = Field(
        default=["http://localhost:5173"],
        description="Comma-separated list of allowed CORS origins",
    )

    # ── Database ───────────────────────────────────────────────────────── #
    database_url: str = Field(
        default="sqlite+aiosqlite:///./eventguard.db",
        description=(
            "Async SQLAlchemy connection string. "
            "Use sqlite+aiosqlite:// for local or postgresql+asyncpg:// for production."
        ),
    )
    db_pool_size: int = Field(default=5, ge=1, le=50, description="Connection pool size")
    db_max_overflow: int = Field(default=10, ge=0, le=100, description="Pool max overflow")
    db_echo: bool = Field(default=False, description="Log all SQL statements (debug only)")
    run_migrations_on_startup: bool = Field(
        default=True,
        description="Apply alembic migrations when the application starts",
    )

    # ── Auth / JWT ─────────────────────────────────────────────────────── #
    jwt_secret_key: SecretStr = Field(
        ...,
        description="HS256 signing secret. Minimum 32 characters. Required.",
    )
    jwt_algorithm: str = Field(default="HS256", description="JWT signing algorithm")
    jwt_access_token_expire_minutes: int = Field(
        default=60,
        ge=5,
        le=1440,
        description="Access token TTL in minutes",
    )
    jwt_refresh_token_expire_days: int = Field(
        default=7,
        ge=1,
        le=30,
        description="Refresh token TTL in days",
    )
    password_reset_expire_minutes: int = Field(
        default=60,
        ge=5,
        le=1440,
        description="Lifetime of a password reset token",
    )

    # ── Field Encryption ───────────────────────────────────────────────── #
    field_encryption_key: SecretStr | None = Field(
        default=None,
        description=(
            "Key for at-rest field encryption. Keys that are not exactly 32 bytes "
            "are hashed down to 32 bytes. A 'base64:' prefix is decoded first."
        ),
    )
    app_key: SecretStr | None = Field(
        default=None,
        description="Fallback key material when field_encryption_key is unset",
    )
    field_decrypt_strict: bool = Field(
        default=False,
        description=(
            "Raise on undecryptable encrypted fields instead of returning the "
            "stored value unchanged"
        ),
    )

    # ── Rate Limiting ──────────────────────────────────────────────────── #
    rate_limit_default: str = Field(
        default="100/minute",
        description="Default rate limit string (slowapi format)",
    )
    rate_limit_storage_uri: str = Field(
        default="memory://",
        description="limits storage URI for auth throttling (memory:// or redis://host:port)",
    )
    auth_max_attempts: int = Field(
        default=5,
        ge=1,
        le=100,
        description="Attempts allowed per auth endpoint, client and identity",
    )
    auth_decay_minutes: int = Field(
        default=15,
        ge=1,
        le=1440,
        description="Window after which auth attempt counters reset",
    )

    # ── MFA ────────────────────────────────────────────────────────────── #
    mfa_issuer: str | None = Field(
        default=None,
        description="Issuer shown in authenticator apps. Defaults to app_name.",
    )
    mfa_valid_window: int = Field(
        default=2,
        ge=0,
        le=10,
        description="Accepted TOTP drift in 30-second steps on each side of now",
    )
    mfa_pending_token_expire_minutes: int = Field(
        default=5,
        ge=1,
        le=30,
        description="Lifetime of the token that links a password check to the MFA step",
    )
    mfa_qr_endpoint: str = Field(
        default="https://api.qrserver.com/v1/create-qr-code/?size=200x200&data=",
        description="External QR rendering endpoint; the provisioning URI is appended",
    )

    # ── Threat Detection ───────────────────────────────────────────────── #
    security_stats_hours: int = Field(
        default=24,
        ge=1,
        le=24 * 90,
        description="Default reporting window for security statistics",
    )

    # ── Logging ────────────────────────────────────────────────────────── #
    log_level: LogLevel = Field(default=LogLevel.INFO, description="Minimum log level")
    log_json: bool = Field(default=True, description="Emit logs as JSON (False for dev console)")

    # ── Admin Bootstrap ────────────────────────────────────────────────── #
    admin_email: str = Field(
        default="admin@example.com",
        description="Bootstrap admin email (used only on first startup)",
    )
    admin_password: SecretStr = Field(
        ...,
        description="Bootstrap admin password. Required. Min 12 chars.",
    )

    # ── Validators ─────────────────────────────────────────────────────── #

    @field_validator("jwt_secret_key")
    @classmethod
    def jwt_secret_must_be_strong(cls, v: SecretStr) -> SecretStr:
        if len(v.get_secret_value()) < 32:
            raise ValueError("jwt_secret_key must be at least 32 characters")
        return v

    @field_validator("admin_password")
    @classmethod
    def admin_password_must_be_strong(cls, v: SecretStr) -> SecretStr:
        if len(v.get_secret_value()) < 12:
            raise ValueError("admin_password must be at least 12 characters")
        return v

    @model_validator(mode="after")
    def production_safety_checks(self) -> Settings:
        if self.environment == Environment.PRODUCTION:
            if self.debug:
                raise ValueError("debug must be False in production")
            if self.reload:
                raise ValueError("reload must be False in production")
            if self.db_echo:
                raise ValueError("db_echo must be False in production")
            if self.field_encryption_key is None and self.app_key is None:
                raise ValueError("field_encryption_key or app_key is required in production")
        return self

    @property
    def encryption_key_material(self) -> str | None:
        """Configured field key, falling back to app_key."""
        for secret in (self.field_encryption_key, self.app_key):
            if secret is not None and secret.get_secret_value():
                return secret.get_secret_value()
        return None

    @property
    def totp_issuer(self) -> str:
        return self.mfa_issuer or self.app_name


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """
    Return the cached Settings singleton.

    Use dependency injection in FastAPI routes:
        settings: Settings = Depends(get_settings)
    """
    return Settings()
