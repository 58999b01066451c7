"""Database model registry. Import all models here so Alembic can discover them."""

from eventguard.db.models.audit import AuditLog
from eventguard.db.models.event import Event
from eventguard.db.models.user import PasswordResetToken, RoleEnum, User

__all__ = [
    "AuditLog",
    "Event",
    "PasswordResetToken",
    "RoleEnum",
    "User",
]
