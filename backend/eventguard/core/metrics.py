"""Prometheus metrics for the security substrate."""

from __future__ import annotations

from prometheus_client import Counter

AUDIT_EVENTS = Counter(
    "audit_events_total",
    "Audit events recorded, by action",
    ["action"],
)

AUDIT_WRITE_FAILURES = Counter(
    "audit_write_failures_total",
    "Audit events that could not be persisted and were only logged",
)

RATE_LIMIT_REJECTIONS = Counter(
    "rate_limit_rejections_total",
    "Requests rejected by the auth throttle, by endpoint",
    ["endpoint"],
)

SECURITY_ALERTS = Counter(
    "security_alerts_total",
    "Security alerts dispatched, by type and severity",
    ["type", "severity"],
)

FIELD_DECRYPT_FAILURES = Counter(
    "field_decrypt_failures_total",
    "Encrypted attributes that failed to decrypt on read",
    ["entity_type", "field"],
)
