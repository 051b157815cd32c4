"""
Prophet: pre-build diagnostic scan.

Runs a fixed set of independent checks before the build is attempted, applies
safe auto-fixes, and reports whether the build is blocked.

Key rules:
- Fault isolation: a check that raises is recorded (``error``), counted as
  unfixed, and never stops the remaining checks
- ``blocked`` is true iff some check still carries an unfixed critical issue
- Prophet itself never raises; internal failures degrade to warnings

Usage:
    result = run_prophet(Path("/srv/app"), settings)
    if result.blocked:
        print(f"{result.total_issues} issues, build blocked")
"""

import logging
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional, Sequence

from healpack.config import Settings
from healpack.exceptions import ScanError
from healpack.prophet_checks import (
    Check,
    Issue,
    ProphetContext,
    Severity,
    default_checks,
)
from healpack.remediation import build_installer

logger = logging.getLogger(__name__)


@dataclass
class CheckResult:
    """Per-check summary recorded in the Prophet result."""

    name: str
    description: str
    issues: int = 0
    fixed: int = 0
    unfixed: int = 0
    details: List[Issue] = field(default_factory=list)
    blocking: bool = False  # Carries an unfixed critical issue
    error: Optional[str] = None

    def to_dict(self) -> Dict:
        data = {
            "name": self.name,
            "description": self.description,
            "issues": self.issues,
            "fixed": self.fixed,
            "unfixed": self.unfixed,
            "details": [d.to_dict() for d in self.details],
            "blocking": self.blocking,
        }
        if self.error is not None:
            data["error"] = self.error
        return data


@dataclass
class ProphetResult:
    """Aggregate result of one Prophet scan."""

    checks: List[CheckResult] = field(default_factory=list)
    duration_ms: int = 0
    warnings: List[str] = field(default_factory=list)

    @property
    def total_issues(self) -> int:
        return sum(c.issues for c in self.checks)

    @property
    def auto_fixed(self) -> int:
        return sum(c.fixed for c in self.checks)

    @property
    def blocked(self) -> bool:
        return any(c.blocking for c in self.checks)

    def to_dict(self) -> Dict:
        return {
            "checks": [c.to_dict() for c in self.checks],
            "total_issues": self.total_issues,
            "auto_fixed": self.auto_fixed,
            "blocked": self.blocked,
            "duration_ms": self.duration_ms,
            "warnings": list(self.warnings),
        }


class Prophet:
    """Runs the pre-build checks with per-check fault isolation."""

    def __init__(self, checks: Optional[Sequence[Check]] = None):
        self.checks = list(checks) if checks is not None else default_checks()

    def _run_check(self, check: Check, context: ProphetContext) -> CheckResult:
        try:
            outcome = check.run(context)
        except Exception as e:
            error = ScanError(check.name, str(e) or type(e).__name__)
            logger.warning(f"[Prophet] {error}")
            return CheckResult(
                name=check.name,
                description=check.description,
                unfixed=1,
                error=str(error),
            )

        blocking = any(
            i.severity == Severity.CRITICAL and not i.fixed for i in outcome.issues
        )
        for issue in outcome.details:
            level = logging.ERROR if issue.severity == Severity.CRITICAL else logging.INFO
            location = f" ({issue.file})" if issue.file else ""
            logger.log(level, f"[Prophet] {check.name}: [{issue.severity.value}] {issue.message}{location}")

        return CheckResult(
            name=check.name,
            description=check.description,
            issues=len(outcome.issues),
            fixed=outcome.fixed,
            unfixed=outcome.unfixed,
            details=list(outcome.details),
            blocking=blocking,
            error=outcome.error,
        )

    def run(self, context: ProphetContext) -> ProphetResult:
        """Run every check. Never raises."""
        start = time.monotonic()
        result = ProphetResult()

        try:
            for check in self.checks:
                result.checks.append(self._run_check(check, context))
        except Exception as e:
            # Callers treat Prophet errors as non-fatal
            logger.warning(f"[Prophet] Scan aborted by internal error: {e}", exc_info=True)
            result.warnings.append(f"Prophet internal error: {e}")

        result.duration_ms = int((time.monotonic() - start) * 1000)

        logger.info(
            f"[Prophet] Scan complete: issues={result.total_issues}, "
            f"auto_fixed={result.auto_fixed}, blocked={result.blocked}, "
            f"duration={result.duration_ms}ms"
        )
        return result


def run_prophet(
    project_root: Path,
    settings: Settings,
    checks: Optional[Sequence[Check]] = None,
) -> ProphetResult:
    """Build the phase context from settings and run a scan. Never raises."""
    try:
        installer = build_installer(settings, Path(project_root))
    except Exception as e:
        logger.warning(f"[Prophet] Installer unavailable, dependency fixes disabled: {e}")
        installer = None

    context = ProphetContext(
        project_root=Path(project_root).resolve(),
        settings=settings,
        installer=installer,
    )
    return Prophet(checks).run(context)
