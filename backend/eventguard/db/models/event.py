"""Event model. ``description`` is stored encrypted."""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import DateTime, ForeignKey, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from eventguard.db.base import Base, IntegerPrimaryKeyMixin, TimestampMixin


class Event(Base, IntegerPrimaryKeyMixin, TimestampMixin):
    """A calendar event owned by a single user."""

    __tablename__ = "events"

    user_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    location: Mapped[str | None] = mapped_column(String(255), nullable=True)
    occurs_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    def __repr__(self) -> str:
        return f"<Event {self.id} owner={self.user_id}>"
