"""Pluggable remediation capabilities ("apply a fix").

A fix in the pattern catalog may name a remediation via ``Fix.apply``. The
remediation itself is a plain callable registered here by name. Every
registered remediation must be idempotent and safe to re-run; anything
irreversible or ambiguous does not belong in this registry and is escalated
instead.

Remediation signature: ``(project_root: Path, groups: tuple[str, ...]) -> bool``
(True when the remediation completed).
"""

import logging
import shlex
from pathlib import Path
from typing import Callable, Dict, List, Optional, Tuple

from healpack.config import Settings
from healpack.exceptions import ConfigurationError
from healpack.subprocess_streaming import run_with_streaming

logger = logging.getLogger(__name__)

Remediation = Callable[[Path, Tuple[str, ...]], bool]


def split_command(command: str) -> List[str]:
    """Split a configured command string into argv."""
    try:
        argv = shlex.split(command)
    except ValueError as e:
        raise ConfigurationError(f"Cannot parse command {command!r}: {e}") from e
    if not argv:
        raise ConfigurationError("Command is empty")
    return argv


class RemediationRegistry:
    """Name -> remediation callable."""

    def __init__(self):
        self._remediations: Dict[str, Remediation] = {}

    def register(self, name: str, remediation: Remediation) -> None:
        self._remediations[name] = remediation
        logger.debug(f"[Remediation] Registered: {name}")

    def get(self, name: Optional[str]) -> Optional[Remediation]:
        if name is None:
            return None
        return self._remediations.get(name)

    def names(self) -> List[str]:
        return sorted(self._remediations)

    def __contains__(self, name: str) -> bool:
        return name in self._remediations


class DependencyInstaller:
    """Runs the configured install command (e.g. ``npm install``).

    Installing from a manifest is idempotent: running it twice leaves the
    project in the same state. Output is streamed to the state directory.
    """

    def __init__(self, command: str, log_path: Path):
        self.argv = split_command(command)
        self.log_path = Path(log_path)

    def __call__(self, project_root: Path, groups: Tuple[str, ...] = ()) -> bool:
        logger.info(f"[Remediation] Installing dependencies: {' '.join(self.argv)}")
        result = run_with_streaming(
            command=self.argv,
            log_path=self.log_path,
            cwd=Path(project_root),
        )
        if result.returncode != 0:
            logger.warning(
                f"[Remediation] Install command exited {result.returncode}; see {result.log_path}"
            )
            return False
        return True


def build_default_registry(settings: Settings, project_root: Path) -> RemediationRegistry:
    """Registry of the built-in remediations enabled by ``settings``."""
    registry = RemediationRegistry()
    installer = build_installer(settings, project_root)
    if installer is not None:
        registry.register("install_dependencies", installer)
    return registry


def build_installer(settings: Settings, project_root: Path) -> Optional[DependencyInstaller]:
    if not settings.install_command:
        return None
    log_path = settings.state_path(project_root) / "install.log"
    return DependencyInstaller(settings.install_command, log_path)
