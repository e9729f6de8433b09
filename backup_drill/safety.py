"""Startup guard keeping restore drills off the production server.

The restore drill creates and drops databases on the verification server and
streams a full dump into it. If that server is the production server, a
misconfiguration destroys live data, so the guard runs before any credential
is used and a BLOCKED verdict terminates the process.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum

from backup_drill.connection import ConnectionTarget
from backup_drill.errors import UnsafeTargetError

logger = logging.getLogger(__name__)


class SafetyVerdict(str, Enum):
    OK = "ok"
    WARN = "warn"
    BLOCKED = "blocked"


@dataclass(frozen=True)
class SafetyReport:
    verdict: SafetyVerdict
    reason: str

    @property
    def blocked(self) -> bool:
        return self.verdict is SafetyVerdict.BLOCKED


def _same_server(a: ConnectionTarget, b: ConnectionTarget) -> bool:
    return a.host.lower() == b.host.lower() and a.port == b.port


def check_targets(production: ConnectionTarget | None, verification: ConnectionTarget | None) -> SafetyReport:
    """Compare the production and verification targets.

    BLOCKED: identical URLs, or the same host, port and database.
    WARN:    same host and port, different database.
    OK:      anything else, including a missing target.
    """
    if production is None or verification is None:
        return SafetyReport(SafetyVerdict.OK, "Production target not configured; safety comparison skipped")

    if production.url and production.url == verification.url:
        return SafetyReport(SafetyVerdict.BLOCKED, "VERIFY_DATABASE_URL equals DATABASE_URL")

    if _same_server(production, verification):
        if production.database == verification.database:
            return SafetyReport(
                SafetyVerdict.BLOCKED,
                f"VERIFY_DATABASE_URL targets the production database "
                f"{production.address}/{production.database}",
            )
        return SafetyReport(
            SafetyVerdict.WARN,
            f"Verification and production share host {production.address} "
            f"(production: {production.database}, verify: {verification.database}); "
            f"restore drills will consume resources on the production server",
        )

    return SafetyReport(
        SafetyVerdict.OK,
        f"Verification target {verification.address}/{verification.database} is separate from "
        f"production {production.address}/{production.database}",
    )


def enforce(production: ConnectionTarget | None, verification: ConnectionTarget | None) -> SafetyReport:
    """Run the check, log the outcome, and raise UnsafeTargetError when blocked."""
    report = check_targets(production, verification)

    if report.verdict is SafetyVerdict.BLOCKED:
        logger.critical(f"CRITICAL SAFETY CHECK FAILED: {report.reason}. Refusing to start.")
        raise UnsafeTargetError(report.reason)
    if report.verdict is SafetyVerdict.WARN:
        logger.warning(f"Safety check: {report.reason}. Use a separate PostgreSQL instance for verification.")
    else:
        logger.info(f"Safety check passed: {report.reason}")
    return report
