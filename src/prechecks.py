"""
Upgrade pre-checks.

Each check runs independently: a check that fails, or whose query raises,
is reported as FAILED without stopping the remaining checks.
"""

import logging
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

logger = logging.getLogger(__name__)


class CheckStatus(Enum):
    """Status codes for pre-check validations."""

    PASSED = "passed"
    WARNING = "warning"
    FAILED = "failed"


class PreCheckResult:
    """Result of a single pre-check validation."""

    def __init__(
        self,
        check_name: str,
        status: CheckStatus,
        message: str,
        details: Optional[Dict] = None,
        required: bool = True,
    ):
        self.check_name = check_name
        self.status = status
        self.message = message
        self.details = details or {}
        self.required = required
        self.timestamp = datetime.now()

    @property
    def passed(self) -> bool:
        return self.status != CheckStatus.FAILED

    def to_dict(self) -> Dict:
        """Convert to dictionary for logging/reporting."""
        return {
            "required": self.required,
            "passed": self.passed,
            "status": self.status.value,
            "message": self.message,
            "errors": self.details if not self.passed else {},
            "details": self.details,
            "timestamp": self.timestamp.isoformat(),
        }


class PrecheckReport:
    """Aggregated pre-check results."""

    def __init__(self, checks: List[PreCheckResult]):
        self.checks = checks

    @property
    def passed(self) -> bool:
        """True when no required check failed; warnings do not block."""
        return all(c.passed for c in self.checks if c.required)

    def failed_checks(self) -> List[str]:
        return [c.check_name for c in self.checks if c.required and not c.passed]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "passed": self.passed,
            "checks": {c.check_name: c.to_dict() for c in self.checks},
        }


def check_maintenance_updates(health) -> PreCheckResult:
    """Pre-check: no node has pending maintenance updates."""
    try:
        pending = health.maintenance_updates_status()
    except Exception as e:
        return PreCheckResult(
            "maintenance_updates_installed",
            CheckStatus.FAILED,
            f"Cannot read maintenance update status: {e}",
            details={"error": str(e), "reason": "check_error"},
        )

    if pending:
        return PreCheckResult(
            "maintenance_updates_installed",
            CheckStatus.FAILED,
            f"Maintenance updates pending on {len(pending)} node(s)",
            details={"pending": pending, "reason": "updates_pending"},
        )
    return PreCheckResult(
        "maintenance_updates_installed",
        CheckStatus.PASSED,
        "All maintenance updates installed",
    )


def _list_check(name: str, query, label: str) -> PreCheckResult:
    try:
        errors = query()
    except Exception as e:
        return PreCheckResult(
            name,
            CheckStatus.FAILED,
            f"Cannot run {label}: {e}",
            details={"error": str(e), "reason": "check_error"},
        )

    if errors:
        return PreCheckResult(
            name,
            CheckStatus.FAILED,
            f"{label.capitalize()} reported {len(errors)} problem(s)",
            details={"data": list(errors)},
        )
    return PreCheckResult(name, CheckStatus.PASSED, f"{label.capitalize()} passed")


def check_sanity(health) -> PreCheckResult:
    """Pre-check: admin server sanity checks report no problems."""
    return _list_check("sanity_checks", health.sanity_checks, "sanity checks")


def check_network(health) -> PreCheckResult:
    """Pre-check: cluster network checks report no problems."""
    return _list_check("network_checks", health.network_checks, "network checks")


def check_ha_presence(health) -> PreCheckResult:
    """Pre-check: the HA addon covers every controller that needs it."""
    try:
        problems = health.ha_presence_check()
    except Exception as e:
        return PreCheckResult(
            "ha_configured",
            CheckStatus.FAILED,
            f"Cannot run HA presence check: {e}",
            details={"error": str(e), "reason": "check_error"},
        )

    if problems:
        return PreCheckResult(
            "ha_configured",
            CheckStatus.FAILED,
            "HA is not configured on every controller",
            details=dict(problems),
        )
    return PreCheckResult("ha_configured", CheckStatus.PASSED, "HA is configured")


def run_prechecks(health, addons: List[str]) -> PrecheckReport:
    """
    Run every applicable pre-check.

    Args:
        health: Object exposing sanity_checks, network_checks,
            ha_presence_check and maintenance_updates_status
        addons: Deployed addon feature names

    Returns:
        PrecheckReport with one result per check
    """
    checks = [
        check_maintenance_updates(health),
        check_sanity(health),
        check_network(health),
    ]
    if "ha" in addons:
        checks.append(check_ha_presence(health))

    for check in checks:
        logger.info(f"  Pre-check {check.check_name}: {check.status.value} - {check.message}")

    return PrecheckReport(checks)
