"""
Surgeon: mid-build failure analysis.

Scans a failed build's captured output through the error matcher, consults and
updates Repair Memory, and tells the caller whether to retry the build.

Per matched signature (de-duplicated by normalized key within one analysis):
1. Known key: an already-resolved case. The remembered fix is re-applied,
   the entry's use_count is bumped, and the case counts as fixed.
2. New key: fixes ranked by confidence, the top one applied and written to
   Repair Memory.
3. Deprecated key (the remembered fix kept failing): the next-ranked fix
   other than the deprecated one replaces it, as for a new key.

Contract: ``fix_applied`` True => retry the build; False => escalate.
"""

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional

from healpack.error_matcher import MatchResult, match_error_pattern
from healpack.pattern_catalog import DEFAULT_CATALOG, Fix, PatternCatalog
from healpack.prophet_checks import Issue, Severity
from healpack.remediation import RemediationRegistry
from healpack.repair_memory import RepairMemoryStore, signature_key

logger = logging.getLogger(__name__)


@dataclass
class RepairDecision:
    """How one matched signature was resolved."""

    key: str
    pattern_key: str
    category: str
    fix_name: str
    description: str
    source: str  # "memory" | "catalog"
    line: str

    def to_dict(self) -> Dict:
        return dict(self.__dict__)


@dataclass
class SurgeonResult:
    """Result of analyzing one build output."""

    fix_applied: bool = False
    matched_errors: List[Issue] = field(default_factory=list)
    decisions: List[RepairDecision] = field(default_factory=list)

    def to_dict(self) -> Dict:
        return {
            "fix_applied": self.fix_applied,
            "matched_errors": [i.to_dict() for i in self.matched_errors],
            "decisions": [d.to_dict() for d in self.decisions],
        }


class Surgeon:
    """Classifies build failures and learns fixes into Repair Memory."""

    def __init__(
        self,
        memory: RepairMemoryStore,
        catalog: PatternCatalog = DEFAULT_CATALOG,
        remediations: Optional[RemediationRegistry] = None,
        project_root: Optional[Path] = None,
    ):
        self.memory = memory
        self.catalog = catalog
        self.remediations = remediations or RemediationRegistry()
        self.project_root = Path(project_root) if project_root is not None else Path.cwd()

    def _apply(self, fix: Fix, match: MatchResult) -> bool:
        """Run the fix's remediation capability, if one is registered.

        A fix without a registered capability is recorded as the chosen
        remediation only; that is not a failure.
        """
        remediation = self.remediations.get(fix.apply)
        if remediation is None:
            return True
        try:
            ok = bool(remediation(self.project_root, match.captured_groups))
        except Exception as e:
            logger.warning(f"[Surgeon] Remediation '{fix.apply}' raised for {match.key}: {e}")
            return False
        if not ok:
            logger.warning(f"[Surgeon] Remediation '{fix.apply}' did not complete for {match.key}")
        return ok

    def _resolve_known(self, key: str, match: MatchResult) -> Optional[RepairDecision]:
        entry = self.memory.lookup(key)
        fix = next((f for f in match.fixes if f.name == entry.fix_name), None)
        logger.info(f"[Surgeon] Known failure {key}: reusing fix '{entry.fix_name}' from repair memory")

        if fix is not None and not self._apply(fix, match):
            return None

        # Upsert on the remembered fix; the stored entry keeps its original fields
        remembered = fix or Fix(name=entry.fix_name, confidence=entry.confidence, template=entry.description)
        self.memory.record(
            key,
            remembered,
            pattern_key=match.key,
            category=match.category,
            description=entry.description,
            signature=match.matched_text,
        )
        return RepairDecision(
            key=key,
            pattern_key=match.key,
            category=match.category,
            fix_name=entry.fix_name,
            description=entry.description,
            source="memory",
            line=match.line,
        )

    def _resolve_new(
        self, key: str, match: MatchResult, skip_fix: Optional[str] = None
    ) -> Optional[RepairDecision]:
        ranked = [f for f in match.ranked_fixes() if f.name != skip_fix]
        if not ranked:
            if skip_fix is not None:
                logger.warning(
                    f"[Surgeon] {key}: remembered fix '{skip_fix}' is deprecated and no alternative exists"
                )
            else:
                logger.warning(
                    f"[Surgeon] {match.key} ({match.category}) has no automated fix: {match.line}"
                )
            return None

        fix = ranked[0]
        description = fix.describe(match.captured_groups)
        if not self._apply(fix, match):
            return None

        self.memory.record(
            key,
            fix,
            pattern_key=match.key,
            category=match.category,
            description=description,
            signature=match.matched_text,
        )
        logger.info(
            f"[Surgeon] New fix for {match.key}: {fix.name} "
            f"(confidence={fix.confidence:.2f}) - {description}"
        )
        return RepairDecision(
            key=key,
            pattern_key=match.key,
            category=match.category,
            fix_name=fix.name,
            description=description,
            source="catalog",
            line=match.line,
        )

    def analyze(self, build_output: str) -> SurgeonResult:
        """Analyze captured build output.

        Args:
            build_output: Combined stdout/stderr of the failed build

        Returns:
            SurgeonResult; fix_applied is True iff at least one matched
            signature was resolved from memory or from the catalog.
        """
        result = SurgeonResult()
        seen_keys = set()

        lines = [line for line in (build_output or "").splitlines() if line.strip()]
        for line in lines:
            match = match_error_pattern(line, self.catalog)
            if match is None:
                continue

            key = signature_key(match.key, match.matched_text)
            if key in seen_keys:
                continue
            seen_keys.add(key)

            result.matched_errors.append(
                Issue(
                    severity=Severity.CRITICAL,
                    message=match.line,
                    auto_fixable=bool(match.fixes),
                )
            )

            entry = self.memory.lookup(key)
            if entry is None:
                decision = self._resolve_new(key, match)
            elif entry.deprecated:
                decision = self._resolve_new(key, match, skip_fix=entry.fix_name)
            else:
                decision = self._resolve_known(key, match)

            if decision is not None:
                result.decisions.append(decision)
                result.fix_applied = True

        if not result.matched_errors:
            logger.warning(
                f"[Surgeon] No known error pattern in {len(lines)} lines of build output"
            )
        elif not result.fix_applied:
            logger.warning(
                f"[Surgeon] {len(result.matched_errors)} recognized error(s), none with an automated fix"
            )
        else:
            logger.info(
                f"[Surgeon] {len(result.decisions)} fix(es) applied for "
                f"{len(result.matched_errors)} recognized error(s); build should be retried"
            )

        return result
