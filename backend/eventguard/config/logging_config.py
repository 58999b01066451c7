"""
structlog setup for EventGuard.

Application events and the security channel share one stdout handler.
Credentials never reach a log line: ``redact_credentials`` masks them
before rendering, wherever they were bound.
"""

from __future__ import annotations

import logging
import sys
from collections.abc import Mapping, MutableMapping
from typing import Any

import structlog

# Logger name for the security event stream (audit records, alerts, throttling).
SECURITY_CHANNEL = "eventguard.security"

REDACTED = "[redacted]"

CREDENTIAL_KEYS = frozenset(
    {
        "password",
        "password_confirmation",
        "new_password",
        "token",
        "access_token",
        "refresh_token",
        "mfa_token",
        "mfa_secret",
        "secret",
        "code",
        "authorization",
    }
)

_QUIET_LOGGERS = ("uvicorn.access", "sqlalchemy.engine", "httpx", "httpcore", "aiosqlite")


def _redact(value: Any) -> Any:
    if isinstance(value, Mapping):
        return {
            k: REDACTED if str(k).lower() in CREDENTIAL_KEYS else _redact(v)
            for k, v in value.items()
        }
    return value


def redact_credentials(
    _logger: Any, _method: str, event_dict: MutableMapping[str, Any]
) -> MutableMapping[str, Any]:
    """Mask credential-looking keys, including inside nested ``metadata`` dicts."""
    for key in list(event_dict):
        if key.lower() in CREDENTIAL_KEYS:
            event_dict[key] = REDACTED
        else:
            event_dict[key] = _redact(event_dict[key])
    return event_dict


def configure_logging(log_level: str = "INFO", json_logs: bool = True) -> None:
    """
    Configure structlog over stdlib logging. Called once, at startup.

    The security channel stays at INFO even when the app runs quieter, so
    audit echoes and alerts are never filtered out.
    """
    shared_processors: list[Any] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        redact_credentials,
    ]

    renderer: Any = (
        structlog.processors.JSONRenderer()
        if json_logs
        else structlog.dev.ConsoleRenderer(colors=sys.stdout.isatty())
    )

    structlog.configure(
        processors=[
            *shared_processors,
            structlog.processors.format_exc_info,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            foreign_pre_chain=shared_processors,
            processors=[structlog.stdlib.ProcessorFormatter.remove_processors_meta, renderer],
        )
    )

    root = logging.getLogger()
    root.handlers = [handler]
    root.setLevel(getattr(logging, log_level.upper(), logging.INFO))

    logging.getLogger(SECURITY_CHANNEL).setLevel(logging.INFO)
    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def get_security_logger() -> structlog.stdlib.BoundLogger:
    """Return the logger bound to the security event channel."""
    return structlog.get_logger(SECURITY_CHANNEL)
