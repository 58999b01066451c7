"""
Event persistence: encrypted ``description`` and an audit record for every
create, update and delete.

Audit metadata lists which attributes changed, never their values, so
encrypted content does not leak into the log stream.

Each write is committed before its audit record is written: the trail uses
its own connection, and SQLite admits one writer at a time.
"""

from __future__ import annotations

from dataclasses import dataclass, fields
from datetime import datetime
from typing import Any

from sqlalchemy import delete, insert, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from eventguard.core.errors import NotFoundError
from eventguard.db.models.event import Event
from eventguard.services.audit.trail import Actor, AuditTrail
from eventguard.services.encryption.codec import TransparentFieldCodec

_TABLE = Event.__table__


@dataclass
class EventRecord:
    id: int
    user_id: int
    title: str
    description: str | None
    location: str | None
    occurs_at: datetime
    created_at: datetime
    updated_at: datetime


_COLUMNS = tuple(f.name for f in fields(EventRecord))
_EDITABLE = ("title", "description", "location", "occurs_at")


class EventRepository:
    def __init__(
        self, session: AsyncSession, codec: TransparentFieldCodec, audit: AuditTrail
    ) -> None:
        self._session = session
        self._codec = codec
        self._audit = audit

    def _to_record(self, row: Any) -> EventRecord:
        decoded = self._codec.decode_for_read(_TABLE.name, row)
        return EventRecord(**{name: decoded[name] for name in _COLUMNS})

    async def load(self, event_id: int) -> EventRecord | None:
        result = await self._session.execute(select(_TABLE).where(_TABLE.c.id == event_id))
        row = result.mappings().first()
        return self._to_record(row) if row is not None else None

    async def list_for_owner(self, user_id: int) -> list[EventRecord]:
        result = await self._session.execute(
            select(_TABLE).where(_TABLE.c.user_id == user_id).order_by(_TABLE.c.occurs_at)
        )
        return [self._to_record(row) for row in result.mappings()]

    async def create(
        self,
        owner: Actor,
        *,
        title: str,
        occurs_at: datetime,
        description: str | None = None,
        location: str | None = None,
    ) -> EventRecord:
        values = self._codec.encode_for_write(
            _TABLE.name,
            {
                "user_id": owner.id,
                "title": title,
                "description": description,
                "location": location,
                "occurs_at": occurs_at,
            },
        )
        result = await self._session.execute(insert(_TABLE).values(**values))
        event_id = result.inserted_primary_key[0]
        await self._session.commit()
        await self._audit.log_create(owner, _TABLE.name, event_id, {"fields": sorted(values)})
        return await self._require(event_id)

    async def save(self, actor: Actor, record: EventRecord) -> EventRecord:
        current = await self._require(record.id)
        changes = {
            name: getattr(record, name)
            for name in _EDITABLE
            if getattr(record, name) != getattr(current, name)
        }
        if not changes:
            return current

        await self._session.execute(
            update(_TABLE)
            .where(_TABLE.c.id == record.id)
            .values(**self._codec.encode_for_write(_TABLE.name, changes))
        )
        await self._session.commit()
        await self._audit.log_update(actor, _TABLE.name, record.id, {"changed": sorted(changes)})
        return await self._require(record.id)

    async def delete(self, actor: Actor, record: EventRecord) -> None:
        await self._session.execute(delete(_TABLE).where(_TABLE.c.id == record.id))
        await self._session.commit()
        await self._audit.log_delete(actor, _TABLE.name, record.id, {"owner_id": record.user_id})

    async def _require(self, event_id: int) -> EventRecord:
        record = await self.load(event_id)
        if record is None:
            raise NotFoundError("Event", str(event_id))
        return record
