"""
Rule-based threat detection over the audit trail.

Rules are plain data. A single evaluator turns each rule into a grouped
``AuditTrail.query`` and raises one alert per rule that has at least one
group at or over its threshold. Adding a detection means adding an
``AlertRule``, not a code path.

The detector is read-only and tolerates eventual consistency: an event
committed while a scan is running may be picked up by the next run only.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass, field
from enum import StrEnum
from types import MappingProxyType
from typing import Any

import structlog

from eventguard.config.logging_config import get_security_logger
from eventguard.core.errors import StorageUnavailable
from eventguard.core.metrics import SECURITY_ALERTS
from eventguard.services.audit.trail import AuditTrail

_log = structlog.get_logger(__name__)
_security_log = get_security_logger()


class Severity(StrEnum):
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


@dataclass(frozen=True)
class AlertChannel:
    """How alerts of a given severity are dispatched."""

    log_level: int
    page_on_call: bool


SEVERITY_CHANNELS: Mapping[Severity, AlertChannel] = MappingProxyType(
    {
        Severity.HIGH: AlertChannel(log_level=logging.CRITICAL, page_on_call=True),
        Severity.MEDIUM: AlertChannel(log_level=logging.WARNING, page_on_call=False),
        Severity.LOW: AlertChannel(log_level=logging.WARNING, page_on_call=False),
    }
)


@dataclass(frozen=True)
class AlertRule:
    """
    A grouped-threshold detection.

    Matches audit rows in the last ``window_hours`` (optionally filtered by
    ``action``), groups them by ``group_by`` and flags every group whose
    count (or number of distinct ``count_distinct`` values) is at least
    ``threshold``.
    """

    alert_type: str
    message: str
    group_by: tuple[str, ...]
    threshold: int
    severity: Severity
    window_hours: float = 1
    action: str | None = None
    count_distinct: str | None = None
    require_not_null: tuple[str, ...] = ()


@dataclass(frozen=True)
class SecurityAlert:
    type: str
    severity: Severity
    message: str
    evidence: list[dict[str, Any]] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": self.type,
            "severity": self.severity.value,
            "message": self.message,
            "evidence": self.evidence,
        }


DEFAULT_RULES: tuple[AlertRule, ...] = (
    AlertRule(
        alert_type="multiple_failed_logins",
        message="Multiple failed login attempts detected",
        group_by=("ip_address",),
        action="auth.login_failed",
        threshold=5,
        severity=Severity.HIGH,
    ),
    AlertRule(
        alert_type="unusual_access",
        message="Unusual access patterns detected",
        group_by=("user_id", "user_email"),
        count_distinct="ip_address",
        require_not_null=("user_id",),
        threshold=3,
        severity=Severity.MEDIUM,
    ),
    AlertRule(
        alert_type="access_denied_patterns",
        message="Multiple access denied attempts detected",
        group_by=("user_id", "ip_address"),
        action="access_denied",
        threshold=3,
        severity=Severity.MEDIUM,
    ),
)


class ThreatDetector:
    """Evaluates alert rules against an :class:`AuditTrail`."""

    def __init__(self, trail: AuditTrail, rules: Sequence[AlertRule] = DEFAULT_RULES) -> None:
        self._trail = trail
        self._rules = tuple(rules)

    @property
    def rules(self) -> tuple[AlertRule, ...]:
        return self._rules

    async def evaluate(self, rule: AlertRule) -> SecurityAlert | None:
        rows = await self._trail.query(
            since=self._trail.since(rule.window_hours),
            group_by=rule.group_by,
            action=rule.action,
            count_distinct=rule.count_distinct,
            having_min=rule.threshold,
            require_not_null=rule.require_not_null,
        )
        if not rows:
            return None
        return SecurityAlert(
            type=rule.alert_type,
            severity=rule.severity,
            message=rule.message,
            evidence=rows,
        )

    async def check_security_alerts(self) -> list[SecurityAlert]:
        """Run every rule once. A rule whose query fails is skipped."""
        alerts: list[SecurityAlert] = []
        for rule in self._rules:
            try:
                alert = await self.evaluate(rule)
            except StorageUnavailable as exc:
                _log.warning("alert_rule_failed", rule=rule.alert_type, error=str(exc))
                continue
            if alert is not None:
                alerts.append(alert)
        return alerts

    def send_alerts(self, alerts: Iterable[SecurityAlert]) -> int:
        """Dispatch alerts to the security log channel. Returns the number sent."""
        sent = 0
        for alert in alerts:
            channel = SEVERITY_CHANNELS[alert.severity]
            _security_log.log(
                channel.log_level,
                f"SECURITY ALERT: {alert.message}",
                alert_type=alert.type,
                severity=alert.severity.value,
                page_on_call=channel.page_on_call,
                evidence=alert.evidence,
            )
            SECURITY_ALERTS.labels(type=alert.type, severity=alert.severity.value).inc()
            sent += 1
        return sent
