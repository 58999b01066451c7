"""Security dashboard endpoints (admin only): stats, alerts and the audit log."""

from __future__ import annotations

from fastapi import APIRouter, Query

from eventguard.api.deps import AdminUser, Services
from eventguard.core.errors import ErrorCode, ServiceUnavailableError, StorageUnavailable
from eventguard.schemas.audit import (
    AuditEventOut,
    AuditListResponse,
    SecurityAlertOut,
    SecurityAlertsResponse,
    SecurityStatsResponse,
)

router = APIRouter(prefix="/security", tags=["security"], dependencies=[AdminUser])


def _unavailable() -> ServiceUnavailableError:
    return ServiceUnavailableError(
        ErrorCode.SEC_AUDIT_STORAGE_UNAVAILABLE, "Audit storage is unavailable"
    )


@router.get("/stats", response_model=SecurityStatsResponse, summary="Security event counts")
async def security_stats(
    services: Services,
    hours: int | None = Query(default=None, ge=1, le=24 * 90),
) -> SecurityStatsResponse:
    window = hours or services.settings.security_stats_hours
    try:
        stats = await services.audit.security_stats(window)
    except StorageUnavailable as exc:
        raise _unavailable() from exc
    return SecurityStatsResponse(window_hours=window, **stats)


@router.get("/alerts", response_model=SecurityAlertsResponse, summary="Run alert rules")
async def security_alerts(
    services: Services,
    send: bool = Query(default=False, description="Also dispatch alerts to the security log"),
) -> SecurityAlertsResponse:
    alerts = await services.detector.check_security_alerts()
    sent = services.detector.send_alerts(alerts) if send else 0
    return SecurityAlertsResponse(
        alerts=[SecurityAlertOut(**a.to_dict()) for a in alerts],
        sent=sent,
    )


@router.get("/audit", response_model=AuditListResponse, summary="List audit events")
async def list_audit_events(
    services: Services,
    page: int = Query(default=1, ge=1),
    page_size: int = Query(default=50, ge=1, le=200),
    action: str | None = Query(default=None),
    user_id: int | None = Query(default=None),
    resource_type: str | None = Query(default=None),
) -> AuditListResponse:
    """Paginated audit events, newest first, with optional filters."""
    try:
        rows, total = await services.audit.list_events(
            page=page,
            page_size=page_size,
            action=action,
            user_id=user_id,
            resource_type=resource_type,
        )
    except StorageUnavailable as exc:
        raise _unavailable() from exc
    return AuditListResponse(
        items=[AuditEventOut.model_validate(r) for r in rows],
        total=total,
        page=page,
        page_size=page_size,
    )
