"""Ownership checks for events. Every denial is recorded as ``access_denied``."""

from __future__ import annotations

from eventguard.core.errors import ForbiddenError
from eventguard.db.repositories.events import EventRecord
from eventguard.services.audit.trail import Actor, AuditTrail


class EventPolicy:
    def __init__(self, audit: AuditTrail) -> None:
        self._audit = audit

    async def allows(self, user: Actor, event: EventRecord) -> bool:
        if user.id == event.user_id:
            return True
        await self._audit.log_access_denied(
            user, "events", event.id, "User does not own this event"
        )
        return False

    async def authorize(self, user: Actor, event: EventRecord) -> None:
        """Raise ``ForbiddenError`` unless ``user`` owns ``event``."""
        if not await self.allows(user, event):
            raise ForbiddenError("You do not have access to this event")
