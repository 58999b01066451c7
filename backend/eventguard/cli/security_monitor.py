"""Monitor security events and generate alerts."""

from __future__ import annotations

import argparse
import asyncio
import sys
from collections.abc import Sequence
from typing import TextIO

import structlog

from eventguard.config.logging_config import configure_logging
from eventguard.config.settings import get_settings
from eventguard.core.errors import StorageUnavailable
from eventguard.db.session import dispose_engine, get_session_factory
from eventguard.services.container import SecurityServices
from eventguard.services.monitoring.threat_detector import SecurityAlert, Severity

_log = structlog.get_logger(__name__)

STAT_LABELS = (
    ("failed_logins", "Failed Logins"),
    ("successful_logins", "Successful Logins"),
    ("access_denied", "Access Denied"),
    ("password_resets", "Password Resets"),
    ("mfa_enabled", "MFA Enabled"),
)


def _parse_args(argv: Sequence[str] | None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(prog="eventguard-security-monitor", description=__doc__)
    parser.add_argument("--stats", action="store_true", help="Show security statistics")
    parser.add_argument("--alerts", action="store_true", help="Check for security alerts")
    parser.add_argument(
        "--hours", type=int, default=None, help="Statistics window (default: settings)"
    )
    return parser.parse_args(argv)


def _table(out: TextIO, header: Sequence[str], rows: Sequence[Sequence[object]]) -> None:
    cells = [[str(c) for c in header], *[[str(c) for c in row] for row in rows]]
    widths = [max(len(row[i]) for row in cells) for i in range(len(header))]
    rule = "+" + "+".join("-" * (w + 2) for w in widths) + "+"
    out.write(rule + "\n")
    for n, row in enumerate(cells):
        out.write("| " + " | ".join(c.ljust(w) for c, w in zip(row, widths)) + " |\n")
        if n == 0:
            out.write(rule + "\n")
    out.write(rule + "\n")


async def show_stats(services: SecurityServices, hours: int, out: TextIO) -> int:
    out.write(f"Security Statistics (Last {hours} Hours):\n\n")
    try:
        stats = await services.audit.security_stats(hours)
    except StorageUnavailable as exc:
        out.write(f"Audit storage unavailable: {exc}\n")
        return 1
    _table(out, ("Metric", "Count"), [(label, stats[key]) for key, label in STAT_LABELS])
    return 0


def _print_alert(alert: SecurityAlert, out: TextIO) -> None:
    marker = "!!" if alert.severity is Severity.HIGH else "--"
    out.write(f"{marker} [{alert.severity.value}] {alert.message}\n")
    if alert.evidence:
        header = list(alert.evidence[0])
        _table(out, header, [[row.get(h) for h in header] for row in alert.evidence])


async def check_alerts(services: SecurityServices, out: TextIO) -> int:
    out.write("Checking for Security Alerts...\n\n")
    alerts = await services.detector.check_security_alerts()
    if not alerts:
        out.write("No security alerts detected.\n")
        return 0

    for alert in alerts:
        _print_alert(alert, out)
    services.detector.send_alerts(alerts)
    return 0


async def run(args: argparse.Namespace, services: SecurityServices, out: TextIO) -> int:
    hours = args.hours or services.settings.security_stats_hours
    if args.stats:
        return await show_stats(services, hours, out)
    if args.alerts:
        return await check_alerts(services, out)

    status = await show_stats(services, hours, out)
    out.write("\n")
    return max(status, await check_alerts(services, out))


async def _main(args: argparse.Namespace) -> int:
    settings = get_settings()
    configure_logging(log_level=settings.log_level.value, json_logs=settings.log_json)
    services = SecurityServices.build(settings, get_session_factory(settings))
    try:
        return await run(args, services, sys.stdout)
    finally:
        await dispose_engine()


def main(argv: Sequence[str] | None = None) -> None:
    sys.exit(asyncio.run(_main(_parse_args(argv))))


if __name__ == "__main__":
    main()
