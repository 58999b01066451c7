"""Event API endpoints. Users only see and change their own events."""

from __future__ import annotations

from dataclasses import replace

from fastapi import APIRouter

from eventguard.api.deps import CurrentUser, Events, Services
from eventguard.core.errors import NotFoundError
from eventguard.db.repositories.events import EventRecord, EventRepository
from eventguard.schemas.event import EventCreate, EventOut, EventUpdate
from eventguard.services.audit.trail import Actor
from eventguard.services.container import SecurityServices

router = APIRouter(prefix="/events", tags=["events"])


async def _owned_event(
    event_id: int, user: Actor, events: EventRepository, services: SecurityServices
) -> EventRecord:
    event = await events.load(event_id)
    if event is None:
        raise NotFoundError("Event", str(event_id))
    await services.event_policy.authorize(user, event)
    return event


@router.get("", response_model=list[EventOut], summary="List own events")
async def list_events(current_user: CurrentUser, events: Events) -> list[EventOut]:
    return [EventOut.model_validate(e) for e in await events.list_for_owner(current_user.id)]


@router.post("", response_model=EventOut, status_code=201, summary="Create an event")
async def create_event(body: EventCreate, current_user: CurrentUser, events: Events) -> EventOut:
    record = await events.create(current_user, **body.model_dump())
    return EventOut.model_validate(record)


@router.get("/{event_id}", response_model=EventOut, summary="Get an event")
async def get_event(
    event_id: int, current_user: CurrentUser, events: Events, services: Services
) -> EventOut:
    return EventOut.model_validate(await _owned_event(event_id, current_user, events, services))


@router.patch("/{event_id}", response_model=EventOut, summary="Update an event")
async def update_event(
    event_id: int,
    body: EventUpdate,
    current_user: CurrentUser,
    events: Events,
    services: Services,
) -> EventOut:
    event = await _owned_event(event_id, current_user, events, services)
    updated = await events.save(current_user, replace(event, **body.model_dump(exclude_unset=True)))
    return EventOut.model_validate(updated)


@router.delete("/{event_id}", status_code=204, summary="Delete an event")
async def delete_event(
    event_id: int, current_user: CurrentUser, events: Events, services: Services
) -> None:
    event = await _owned_event(event_id, current_user, events, services)
    await events.delete(current_user, event)
