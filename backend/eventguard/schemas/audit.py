"""Audit and security-dashboard schemas."""

from __future__ import annotations

import json
from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field, field_validator


class AuditEventOut(BaseModel):
    id: int
    action: str
    user_id: int | None
    user_email: str | None
    resource_type: str | None
    resource_id: int | None
    ip_address: str | None
    user_agent: str | None
    metadata: dict[str, Any] = Field(default_factory=dict, validation_alias="metadata_json")
    created_at: datetime

    model_config = {"from_attributes": True}

    @field_validator("metadata", mode="before")
    @classmethod
    def parse_metadata(cls, v: Any) -> dict[str, Any]:
        if v is None or v == "":
            return {}
        if isinstance(v, str):
            return json.loads(v)
        return v


class AuditListResponse(BaseModel):
    items: list[AuditEventOut]
    total: int
    page: int
    page_size: int


class SecurityStatsResponse(BaseModel):
    window_hours: int
    failed_logins: int
    successful_logins: int
    access_denied: int
    password_resets: int
    mfa_enabled: int


class SecurityAlertOut(BaseModel):
    type: str
    severity: str
    message: str
    evidence: list[dict[str, Any]]


class SecurityAlertsResponse(BaseModel):
    alerts: list[SecurityAlertOut]
    sent: int = Field(default=0, description="Alerts dispatched to the security log channel")
