"""
Pre-build checks run by Prophet.

Each check is an independent, fault-isolated unit of diagnosis: it inspects
the project, reports issues, and may auto-fix an issue only when the fix is
idempotent and non-destructive. Anything irreversible or ambiguous is
reported as unfixed.

Built-in checks:
- syntax_scan: brace balance of the configured entry files
- import_integrity: relative JS/TS imports resolve to real files
- env_completeness: environment references have a value or a fallback
- dependency_health: dependency directory present and populated
- compose_config: compose file parses and host ports are unique
- disk_space: enough free space for a build
"""

import json
import logging
import os
import re
import shutil
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Dict, Iterator, List, Optional, Set

import yaml

from healpack.config import Settings
from healpack.remediation import Remediation

logger = logging.getLogger(__name__)

MAX_DETAILS = 5
MAX_DEPENDENCY_SPOT_CHECKS = 20


class Severity(str, Enum):
    INFO = "info"
    WARNING = "warning"
    CRITICAL = "critical"


@dataclass
class Issue:
    """A single finding reported by a check."""

    severity: Severity
    message: str
    auto_fixable: bool = False
    file: Optional[str] = None
    fixed: bool = False

    def to_dict(self) -> Dict:
        return {
            "severity": self.severity.value,
            "message": self.message,
            "auto_fixable": self.auto_fixable,
            "file": self.file,
            "fixed": self.fixed,
        }


@dataclass
class CheckOutcome:
    """What a check's run() returns."""

    issues: List[Issue] = field(default_factory=list)
    fixed: int = 0
    unfixed: int = 0
    details: List[Issue] = field(default_factory=list)  # Unfixed issues, capped
    error: Optional[str] = None


@dataclass
class ProphetContext:
    """Explicit per-run context handed to every check."""

    project_root: Path
    settings: Settings
    installer: Optional[Remediation] = None

    def relative(self, path: Path) -> str:
        try:
            return str(path.relative_to(self.project_root))
        except ValueError:
            return str(path)


class Check:
    """Base class for Prophet checks.

    Subclasses implement ``inspect`` and, when they can safely repair an
    auto-fixable issue, ``fix``.
    """

    name = "check"
    description = ""

    def inspect(self, context: ProphetContext) -> List[Issue]:
        raise NotImplementedError

    def fix(self, issue: Issue, context: ProphetContext) -> bool:
        """Attempt an idempotent repair. Returns True only if provably fixed."""
        return False

    def run(self, context: ProphetContext) -> CheckOutcome:
        issues = self.inspect(context)
        fixed = 0

        for issue in issues:
            if not issue.auto_fixable:
                continue
            try:
                issue.fixed = bool(self.fix(issue, context))
            except Exception as e:
                logger.warning(f"[Prophet] {self.name}: auto-fix failed for '{issue.message}': {e}")
                issue.fixed = False
            if issue.fixed:
                fixed += 1
                logger.info(f"[Prophet] {self.name}: auto-fixed '{issue.message}'")

        unfixed = [i for i in issues if not i.fixed]
        return CheckOutcome(
            issues=issues,
            fixed=fixed,
            unfixed=len(unfixed),
            details=unfixed[:MAX_DETAILS],
        )


# ============================================================================
# Helpers
# ============================================================================

SOURCE_SUFFIXES = (".js", ".mjs", ".cjs", ".jsx", ".ts", ".tsx")
SKIP_DIRS = {".git", "node_modules", "dist", "build", ".next", ".healpack"}


def iter_source_files(context: ProphetContext) -> Iterator[Path]:
    """Yield JS/TS sources under the configured source dirs."""
    skip = SKIP_DIRS | {context.settings.dependency_dir}
    for rel_dir in context.settings.source_dirs:
        root = context.project_root / rel_dir
        if not root.is_dir():
            continue
        for dirpath, dirnames, filenames in os.walk(root):
            dirnames[:] = sorted(d for d in dirnames if d not in skip)
            for filename in sorted(filenames):
                if filename.endswith(SOURCE_SUFFIXES):
                    yield Path(dirpath) / filename


def existing_entry_files(context: ProphetContext) -> List[Path]:
    paths = [context.project_root / rel for rel in context.settings.entry_files]
    return [p for p in paths if p.is_file()]


# ============================================================================
# Built-in checks
# ============================================================================


class SyntaxScanCheck(Check):
    """Quick brace-balance scan of entry files."""

    name = "syntax_scan"
    description = "Quick scan of entry files for unbalanced braces"

    MAX_IMBALANCE = 2

    def inspect(self, context: ProphetContext) -> List[Issue]:
        issues = []
        for path in existing_entry_files(context):
            content = path.read_text(encoding="utf-8", errors="replace")
            opens = content.count("{")
            closes = content.count("}")
            if abs(opens - closes) > self.MAX_IMBALANCE:
                issues.append(
                    Issue(
                        severity=Severity.WARNING,
                        message=f"Brace imbalance: {opens} open vs {closes} close",
                        file=context.relative(path),
                    )
                )
        return issues


class ImportIntegrityCheck(Check):
    """Relative imports must resolve to files that exist."""

    name = "import_integrity"
    description = "Verify relative imports resolve to real files"

    IMPORT_PATTERNS = (
        re.compile(r"""(?:import|export)\s[^'"]*?\sfrom\s+['"](\.{1,2}/[^'"]+)['"]"""),
        re.compile(r"""import\s+['"](\.{1,2}/[^'"]+)['"]"""),
        re.compile(r"""require\(\s*['"](\.{1,2}/[^'"]+)['"]\s*\)"""),
    )
    RESOLVE_SUFFIXES = ("",) + SOURCE_SUFFIXES + (".json",)

    def _resolves(self, base_dir: Path, specifier: str) -> bool:
        target = (base_dir / specifier).resolve()
        for suffix in self.RESOLVE_SUFFIXES:
            candidate = target.with_name(target.name + suffix)
            if candidate.is_file():
                return True
        # TypeScript ESM sources import "./x.js" that compiles from x.ts
        if target.suffix == ".js":
            if any(target.with_suffix(s).is_file() for s in (".ts", ".tsx")):
                return True
        if target.is_dir():
            return any((target / f"index{suffix}").is_file() for suffix in SOURCE_SUFFIXES)
        return False

    def inspect(self, context: ProphetContext) -> List[Issue]:
        issues = []
        for path in iter_source_files(context):
            content = path.read_text(encoding="utf-8", errors="replace")
            seen: Set[str] = set()
            for pattern in self.IMPORT_PATTERNS:
                for match in pattern.finditer(content):
                    specifier = match.group(1)
                    if specifier in seen:
                        continue
                    seen.add(specifier)
                    if not self._resolves(path.parent, specifier):
                        issues.append(
                            Issue(
                                severity=Severity.CRITICAL,
                                message=f"Import '{specifier}' does not resolve to a file",
                                file=context.relative(path),
                            )
                        )
        return issues


class EnvCompletenessCheck(Check):
    """Environment variables referenced without a fallback must be defined."""

    name = "env_completeness"
    description = "Check environment references have values"

    DOTENV_LINE = re.compile(r"^\s*(?:export\s+)?([A-Za-z_][A-Za-z0-9_]*)\s*=")
    NODE_REF = re.compile(r"process\.env\.([A-Z_][A-Z0-9_]*)")
    PYTHON_REF = re.compile(r"""os\.environ\[\s*['"]([A-Z_][A-Z0-9_]*)['"]\s*\]""")
    FALLBACK_MARKERS = ("||", "??")

    def _dotenv_keys(self, project_root: Path) -> Set[str]:
        env_path = project_root / ".env"
        if not env_path.is_file():
            return set()
        keys = set()
        for line in env_path.read_text(encoding="utf-8", errors="replace").splitlines():
            match = self.DOTENV_LINE.match(line)
            if match:
                keys.add(match.group(1))
        return keys

    def inspect(self, context: ProphetContext) -> List[Issue]:
        defined = self._dotenv_keys(context.project_root) | set(os.environ)
        issues = []
        reported: Set[str] = set()

        for path in existing_entry_files(context):
            for line in path.read_text(encoding="utf-8", errors="replace").splitlines():
                has_fallback = any(marker in line for marker in self.FALLBACK_MARKERS)
                refs = [(m.group(1), has_fallback) for m in self.NODE_REF.finditer(line)]
                refs += [(m.group(1), False) for m in self.PYTHON_REF.finditer(line)]
                for var_name, fallback in refs:
                    if fallback or var_name in defined or var_name in reported:
                        continue
                    reported.add(var_name)
                    issues.append(
                        Issue(
                            severity=Severity.WARNING,
                            message=f"{var_name} referenced without fallback and not defined in .env",
                            file=context.relative(path),
                        )
                    )
        return issues


class DependencyHealthCheck(Check):
    """Declared dependencies must be installed.

    A missing dependency directory is the one issue Prophet repairs on its
    own, by running the configured (idempotent) install command.
    """

    name = "dependency_health"
    description = "Verify declared dependencies are installed"

    MISSING_DIR_MESSAGE = "{dir} directory missing - dependency install required"

    def inspect(self, context: ProphetContext) -> List[Issue]:
        settings = context.settings
        manifest_path = context.project_root / settings.dependency_manifest
        if not manifest_path.is_file():
            return []

        try:
            manifest = json.loads(manifest_path.read_text(encoding="utf-8"))
        except json.JSONDecodeError as e:
            return [
                Issue(
                    severity=Severity.CRITICAL,
                    message=f"{settings.dependency_manifest} is not valid JSON: {e}",
                    file=settings.dependency_manifest,
                )
            ]

        dep_dir = context.project_root / settings.dependency_dir
        if not dep_dir.is_dir():
            return [
                Issue(
                    severity=Severity.CRITICAL,
                    message=self.MISSING_DIR_MESSAGE.format(dir=settings.dependency_dir),
                    auto_fixable=context.installer is not None,
                    file=settings.dependency_manifest,
                )
            ]

        declared = list(manifest.get("dependencies") or {}) + list(
            manifest.get("devDependencies") or {}
        )
        issues = []
        for dep in declared[:MAX_DEPENDENCY_SPOT_CHECKS]:
            if not (dep_dir / dep).exists():
                issues.append(
                    Issue(
                        severity=Severity.WARNING,
                        message=f"Dependency {dep} listed but not in {settings.dependency_dir}",
                        file=settings.dependency_manifest,
                    )
                )
        return issues

    def fix(self, issue: Issue, context: ProphetContext) -> bool:
        if context.installer is None:
            return False
        if not context.installer(context.project_root, ()):
            return False
        # Only count it as fixed if the directory now provably exists
        return (context.project_root / context.settings.dependency_dir).is_dir()


class ComposeConfigCheck(Check):
    """Compose file must parse and must not map a host port twice."""

    name = "compose_config"
    description = "Verify compose file parses and host ports are unique"

    COMPOSE_FILES = ("docker-compose.yml", "docker-compose.yaml", "compose.yml", "compose.yaml")

    @staticmethod
    def _host_port(mapping) -> Optional[str]:
        """Host port of one ports entry, None when only a container port is given."""
        if isinstance(mapping, dict):
            published = mapping.get("published")
            return str(published) if published is not None else None
        if isinstance(mapping, int):
            return None
        parts = str(mapping).split("/")[0].split(":")
        if len(parts) < 2:
            return None
        # "host:container" or "ip:host:container"
        return parts[-2] or None

    def inspect(self, context: ProphetContext) -> List[Issue]:
        compose_path = next(
            (context.project_root / name for name in self.COMPOSE_FILES
             if (context.project_root / name).is_file()),
            None,
        )
        if compose_path is None:
            return []

        rel = context.relative(compose_path)
        try:
            data = yaml.safe_load(compose_path.read_text(encoding="utf-8"))
        except yaml.YAMLError as e:
            return [Issue(severity=Severity.CRITICAL, message=f"Failed to parse {rel}: {e}", file=rel)]

        services = (data or {}).get("services") or {}
        if not isinstance(services, dict):
            return [Issue(severity=Severity.CRITICAL, message=f"{rel}: 'services' must be a mapping", file=rel)]

        owners: Dict[str, List[str]] = {}
        for service_name, service in services.items():
            for mapping in (service or {}).get("ports") or []:
                port = self._host_port(mapping)
                if port is not None:
                    owners.setdefault(port, []).append(str(service_name))

        return [
            Issue(
                severity=Severity.CRITICAL,
                message=f"Port {port} mapped multiple times in {rel}: {', '.join(names)}",
                file=rel,
            )
            for port, names in sorted(owners.items())
            if len(names) > 1
        ]


class DiskSpaceCheck(Check):
    """Warn when the project volume is low on space."""

    name = "disk_space"
    description = "Check free disk space on the project volume"

    def inspect(self, context: ProphetContext) -> List[Issue]:
        usage = shutil.disk_usage(context.project_root)
        minimum = context.settings.min_free_disk_bytes
        if usage.free >= minimum:
            return []
        return [
            Issue(
                severity=Severity.WARNING,
                message=(
                    f"Low disk space: {usage.free:,} bytes free, "
                    f"{minimum:,} bytes recommended"
                ),
            )
        ]


def default_checks() -> List[Check]:
    """The fixed set of checks Prophet runs, in order."""
    return [
        SyntaxScanCheck(),
        ImportIntegrityCheck(),
        EnvCompletenessCheck(),
        DependencyHealthCheck(),
        ComposeConfigCheck(),
        DiskSpaceCheck(),
    ]
