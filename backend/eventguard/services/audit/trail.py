"""
Append-only audit trail.

Every security-relevant action goes to two sinks:

  1. the structured ``security`` log channel (always), and
  2. the ``audit_logs`` table (best effort, in its own session).

A failed durable write is logged and counted but never reaches the caller:
the request that triggered the event must not fail because the audit store
is slow or down. Rows are never updated or deleted; corrections are new
events.
"""

from __future__ import annotations

import json
from collections.abc import Callable, Mapping, Sequence
from dataclasses import asdict, dataclass, field, replace
from datetime import datetime, timedelta
from typing import Any, Protocol

import structlog
from sqlalchemy import distinct, func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from eventguard.config.logging_config import get_security_logger
from eventguard.core.context import current_context
from eventguard.core.errors import StorageUnavailable
from eventguard.core.metrics import AUDIT_EVENTS, AUDIT_WRITE_FAILURES
from eventguard.db.base import utcnow
from eventguard.db.models.audit import AuditLog

_log = structlog.get_logger(__name__)
_security_log = get_security_logger()

_TABLE = AuditLog.__table__

# Actions counted on the security dashboard.
DASHBOARD_ACTIONS: Mapping[str, str] = {
    "failed_logins": "auth.login_failed",
    "successful_logins": "auth.login_success",
    "access_denied": "access_denied",
    "password_resets": "auth.password_reset_completed",
    "mfa_enabled": "auth.mfa_enabled",
}


class Actor(Protocol):
    id: int
    email: str


@dataclass(frozen=True)
class AuditEvent:
    """One security-relevant action. Context fields are filled on record."""

    action: str
    actor_id: int | None = None
    actor_email: str | None = None
    resource_type: str | None = None
    resource_id: int | None = None
    metadata: Mapping[str, Any] = field(default_factory=dict)
    ip: str | None = None
    user_agent: str | None = None
    timestamp: datetime | None = None


class AuditTrail:
    """
    Service for recording and querying audit events.

    Usage:
        trail = AuditTrail(session_factory)
        await trail.log_auth("login_failed", None, {"email": body.email})
        await trail.query(since=..., group_by=["ip_address"], action="auth.login_failed")
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._session_factory = session_factory
        self._clock = clock

    # ── Write side ────────────────────────────────────────────────────── #

    async def record(self, event: AuditEvent) -> AuditEvent:
        """Fill request context, log, and persist. Never raises on storage failure."""
        ctx = current_context()
        event = replace(
            event,
            ip=event.ip or ctx.ip,
            user_agent=event.user_agent if event.user_agent is not None else ctx.user_agent,
            timestamp=event.timestamp or self._clock(),
        )

        _security_log.info(
            f"Audit: {event.action}",
            audit=True,
            **{k: v for k, v in asdict(event).items() if k != "timestamp"},
            timestamp=event.timestamp.isoformat(),
        )
        AUDIT_EVENTS.labels(action=event.action).inc()

        try:
            await self._persist(event)
        except StorageUnavailable as exc:
            AUDIT_WRITE_FAILURES.inc()
            _log.warning("audit_persist_failed", action=event.action, error=str(exc))
        return event

    async def _persist(self, event: AuditEvent) -> None:
        row = AuditLog(
            action=event.action,
            user_id=event.actor_id,
            user_email=event.actor_email,
            resource_type=event.resource_type,
            resource_id=event.resource_id,
            ip_address=event.ip,
            user_agent=event.user_agent,
            metadata_json=json.dumps(dict(event.metadata), sort_keys=True, default=str),
            created_at=event.timestamp,
        )
        try:
            async with self._session_factory() as session:
                session.add(row)
                await session.commit()
        except (SQLAlchemyError, OSError) as exc:
            raise StorageUnavailable(str(exc)) from exc

    async def log(
        self,
        action: str,
        user: Actor | None = None,
        resource_type: str | None = None,
        resource_id: int | None = None,
        metadata: Mapping[str, Any] | None = None,
    ) -> AuditEvent:
        return await self.record(
            AuditEvent(
                action=action,
                actor_id=user.id if user is not None else None,
                actor_email=user.email if user is not None else None,
                resource_type=resource_type,
                resource_id=resource_id,
                metadata=metadata or {},
            )
        )

    async def log_auth(
        self, event: str, user: Actor | None, metadata: Mapping[str, Any] | None = None
    ) -> AuditEvent:
        return await self.log(
            f"auth.{event}",
            user,
            "user",
            user.id if user is not None else None,
            metadata,
        )

    async def log_create(
        self,
        user: Actor | None,
        resource_type: str,
        resource_id: int,
        metadata: Mapping[str, Any] | None = None,
    ) -> AuditEvent:
        return await self.log("create", user, resource_type, resource_id, metadata)

    async def log_update(
        self,
        user: Actor | None,
        resource_type: str,
        resource_id: int,
        metadata: Mapping[str, Any] | None = None,
    ) -> AuditEvent:
        return await self.log("update", user, resource_type, resource_id, metadata)

    async def log_delete(
        self,
        user: Actor | None,
        resource_type: str,
        resource_id: int,
        metadata: Mapping[str, Any] | None = None,
    ) -> AuditEvent:
        return await self.log("delete", user, resource_type, resource_id, metadata)

    async def log_access_denied(
        self,
        user: Actor | None,
        resource_type: str,
        resource_id: int | None,
        reason: str | None = None,
    ) -> AuditEvent:
        return await self.log("access_denied", user, resource_type, resource_id, {"reason": reason})

    def log_security_violation(
        self,
        violation: str,
        user: Actor | None = None,
        metadata: Mapping[str, Any] | None = None,
    ) -> None:
        """Log-only: violations go to the security channel, not the table."""
        ctx = current_context()
        _security_log.warning(
            f"Security Violation: {violation}",
            violation=violation,
            user_id=user.id if user is not None else None,
            ip_address=ctx.ip,
            user_agent=ctx.user_agent,
            timestamp=self._clock().isoformat(),
            metadata=dict(metadata or {}),
        )

    # ── Read side ─────────────────────────────────────────────────────── #

    def since(self, hours: float) -> datetime:
        return self._clock() - timedelta(hours=hours)

    async def query(
        self,
        *,
        since: datetime,
        group_by: Sequence[str],
        action: str | None = None,
        count_distinct: str | None = None,
        having_min: int = 1,
        require_not_null: Sequence[str] = (),
    ) -> list[dict[str, Any]]:
        """
        Grouped counts of audit rows created at or after ``since``.

        Each returned dict holds the ``group_by`` columns plus ``count``
        (row count, or the number of distinct ``count_distinct`` values).

        Raises:
            StorageUnavailable: the audit table cannot be read.
        """
        dimensions = [_TABLE.c[name] for name in group_by]
        measure = (
            func.count(distinct(_TABLE.c[count_distinct]))
            if count_distinct
            else func.count()
        )
        stmt = select(*dimensions, measure.label("count")).where(_TABLE.c.created_at >= since)
        if action is not None:
            stmt = stmt.where(_TABLE.c.action == action)
        for name in require_not_null:
            stmt = stmt.where(_TABLE.c[name].is_not(None))
        stmt = stmt.group_by(*dimensions).having(measure >= having_min).order_by(measure.desc())
        return await self._fetch(stmt)

    async def stats(self, window_hours: float = 24) -> dict[str, int]:
        """Count of events per action over the window."""
        rows = await self.query(since=self.since(window_hours), group_by=["action"])
        return {row["action"]: row["count"] for row in rows}

    async def security_stats(self, window_hours: float = 24) -> dict[str, int]:
        """Fixed dashboard view over :meth:`stats`."""
        counts = await self.stats(window_hours)
        return {name: counts.get(action, 0) for name, action in DASHBOARD_ACTIONS.items()}

    async def list_events(
        self,
        *,
        page: int = 1,
        page_size: int = 50,
        action: str | None = None,
        user_id: int | None = None,
        resource_type: str | None = None,
    ) -> tuple[list[AuditLog], int]:
        """Paginated raw events, newest first."""
        stmt = select(AuditLog)
        if action:
            stmt = stmt.where(AuditLog.action == action)
        if user_id is not None:
            stmt = stmt.where(AuditLog.user_id == user_id)
        if resource_type:
            stmt = stmt.where(AuditLog.resource_type == resource_type)

        try:
            async with self._session_factory() as session:
                total = await session.execute(select(func.count()).select_from(stmt.subquery()))
                result = await session.execute(
                    stmt.order_by(AuditLog.created_at.desc(), AuditLog.id.desc())
                    .offset((page - 1) * page_size)
                    .limit(page_size)
                )
                return list(result.scalars().all()), total.scalar_one()
        except SQLAlchemyError as exc:
            raise StorageUnavailable(str(exc)) from exc

    async def _fetch(self, stmt: Any) -> list[dict[str, Any]]:
        try:
            async with self._session_factory() as session:
                result = await session.execute(stmt)
                return [dict(row) for row in result.mappings()]
        except SQLAlchemyError as exc:
            raise StorageUnavailable(str(exc)) from exc
