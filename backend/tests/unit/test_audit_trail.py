"""Unit tests for eventguard.services.audit.trail."""
import json
from dataclasses import dataclass
from datetime import timedelta

import pytest
from sqlalchemy import select
from structlog.testing import capture_logs

from eventguard.core.context import RequestContext, reset_context, set_context
from eventguard.core.errors import StorageUnavailable
from eventguard.db.base import utcnow
from eventguard.db.models.audit import AuditLog
from eventguard.services.audit.trail import AuditEvent, AuditTrail

pytestmark = pytest.mark.asyncio


@dataclass
class FakeUser:
    id: int
    email: str


@pytest.fixture
def trail(session_factory) -> AuditTrail:
    return AuditTrail(session_factory)


@pytest.fixture
def request_context():
    token = set_context(RequestContext(ip="10.0.0.7", user_agent="pytest-agent", path="/x"))
    yield
    reset_context(token)


async def _rows(session_factory) -> list[AuditLog]:
    async with session_factory() as session:
        result = await session.execute(select(AuditLog).order_by(AuditLog.id))
        return list(result.scalars().all())


# ─── Recording ────────────────────────────────────────────────────────────────

async def test_log_auth_persists_row_with_context(trail, session_factory, request_context):
    await trail.log_auth("login_success", FakeUser(7, "bob@example.com"), {"token_created": True})

    (row,) = await _rows(session_factory)
    assert row.action == "auth.login_success"
    assert row.user_id == 7
    assert row.user_email == "bob@example.com"
    assert row.resource_type == "user"
    assert row.resource_id == 7
    assert row.ip_address == "10.0.0.7"
    assert row.user_agent == "pytest-agent"
    assert json.loads(row.metadata_json) == {"token_created": True}


async def test_anonymous_events_have_no_actor(trail, session_factory):
    await trail.log_auth("login_failed", None, {"email": "ghost@example.com"})
    (row,) = await _rows(session_factory)
    assert row.user_id is None
    assert row.resource_id is None
    assert row.ip_address == "0.0.0.0"


async def test_explicit_ip_wins_over_context(trail, session_factory, request_context):
    await trail.record(AuditEvent(action="x", ip="1.2.3.4"))
    (row,) = await _rows(session_factory)
    assert row.ip_address == "1.2.3.4"


async def test_record_logs_to_security_channel(trail):
    with capture_logs() as logs:
        await trail.log_access_denied(FakeUser(1, "a@example.com"), "events", 5, "not owner")
    entry = next(e for e in logs if e["event"] == "Audit: access_denied")
    assert entry["audit"] is True
    assert entry["resource_type"] == "events"
    assert entry["metadata"] == {"reason": "not owner"}


async def test_crud_helpers_use_generic_actions(trail, session_factory):
    user = FakeUser(3, "c@example.com")
    await trail.log_create(user, "events", 1, {"fields": ["title"]})
    await trail.log_update(user, "events", 1, {"changed": ["title"]})
    await trail.log_delete(user, "events", 1)
    assert [r.action for r in await _rows(session_factory)] == ["create", "update", "delete"]


async def test_storage_failure_is_logged_not_raised(broken_session_factory):
    trail = AuditTrail(broken_session_factory)
    with capture_logs() as logs:
        event = await trail.log_auth("login_failed", None, {"email": "x@example.com"})
    assert event.action == "auth.login_failed"
    events = [e["event"] for e in logs]
    assert "Audit: auth.login_failed" in events
    assert "audit_persist_failed" in events


async def test_security_violation_is_log_only(trail, session_factory):
    with capture_logs() as logs:
        trail.log_security_violation("mac_tamper", FakeUser(1, "a@example.com"))
    assert logs[0]["event"] == "Security Violation: mac_tamper"
    assert logs[0]["log_level"] == "warning"
    assert await _rows(session_factory) == []


# ─── Queries ──────────────────────────────────────────────────────────────────

async def test_query_groups_and_filters_by_threshold(trail):
    for ip in ["1.1.1.1"] * 3 + ["2.2.2.2"]:
        await trail.record(AuditEvent(action="auth.login_failed", ip=ip))

    rows = await trail.query(
        since=trail.since(1), group_by=["ip_address"], action="auth.login_failed", having_min=2
    )
    assert rows == [{"ip_address": "1.1.1.1", "count": 3}]


async def test_query_excludes_events_outside_window(trail):
    old = utcnow() - timedelta(hours=2)
    await trail.record(AuditEvent(action="auth.login_failed", ip="1.1.1.1", timestamp=old))
    rows = await trail.query(since=trail.since(1), group_by=["ip_address"])
    assert rows == []


async def test_security_stats_has_fixed_keys(trail):
    user = FakeUser(1, "a@example.com")
    await trail.log_auth("login_failed", None)
    await trail.log_auth("login_failed", None)
    await trail.log_auth("login_success", user)
    await trail.log_auth("mfa_enabled", user)

    stats = await trail.security_stats(24)
    assert stats == {
        "failed_logins": 2,
        "successful_logins": 1,
        "access_denied": 0,
        "password_resets": 0,
        "mfa_enabled": 1,
    }


async def test_list_events_paginates_newest_first(trail):
    for n in range(5):
        await trail.log("custom.event", metadata={"n": n})

    rows, total = await trail.list_events(page=1, page_size=2, action="custom.event")
    assert total == 5
    assert [json.loads(r.metadata_json)["n"] for r in rows] == [4, 3]


async def test_query_raises_storage_unavailable_when_table_unreadable(broken_session_factory):
    trail = AuditTrail(broken_session_factory)
    with pytest.raises(StorageUnavailable):
        await trail.stats(24)
