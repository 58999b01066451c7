"""
Database models for user accounts.

``email`` and ``mfa_secret`` hold field-cipher envelopes, never plaintext;
read and write them only through ``UserRepository``. Because envelopes are
randomised, ``email`` carries no unique index.
"""

from __future__ import annotations

from datetime import datetime
from enum import StrEnum

from sqlalchemy import Boolean, DateTime, ForeignKey, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from eventguard.db.base import Base, IntegerPrimaryKeyMixin, TimestampMixin, utcnow


class RoleEnum(StrEnum):
    """Application-level role definitions."""

    ADMIN = "admin"
    HELPDESK_AGENT = "helpdesk_agent"
    USER = "user"


class User(Base, IntegerPrimaryKeyMixin, TimestampMixin):
    """User account with hashed password and MFA credential."""

    __tablename__ = "users"

    name: Mapped[str] = mapped_column(String(255), nullable=False)
    email: Mapped[str] = mapped_column(Text, nullable=False)
    password_hash: Mapped[str] = mapped_column(String(255), nullable=False)
    role: Mapped[str] = mapped_column(
        String(50), nullable=False, default=RoleEnum.USER.value, index=True
    )
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    mfa_enabled: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    mfa_secret: Mapped[str | None] = mapped_column(Text, nullable=True)

    def __repr__(self) -> str:
        return f"<User {self.id} [{self.role}]>"


class PasswordResetToken(Base):
    """Outstanding password reset token; at most one per user."""

    __tablename__ = "password_reset_tokens"

    user_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("users.id", ondelete="CASCADE"),
        primary_key=True,
    )
    token_hash: Mapped[str] = mapped_column(String(64), nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        nullable=False,
    )
