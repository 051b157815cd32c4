"""Configuration module for Healpack settings.

Every phase runs in its own process, so settings are read from the environment
(prefix ``HEALPACK_``) and an optional ``.env`` file in the project root each
time a phase starts. Parent and child phases therefore see the same ``.env``
whatever directory they were started from.
Relative paths are resolved against the project root being healed, never
against the current working directory.
"""

from __future__ import annotations

from pathlib import Path
from typing import List, Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Pipeline settings."""

    model_config = SettingsConfigDict(
        env_prefix="HEALPACK_", env_file=".env", env_file_encoding="utf-8", extra="ignore"
    )

    # State lives inside the project so independent phase processes share it
    state_dir: str = ".healpack"
    repair_memory_file: str = "repair_memory.json"
    audit_log_file: str = "healpack.log"

    # Pipeline
    max_retries: int = Field(default=3, ge=1)
    build_command: Optional[str] = None
    deploy_command: Optional[str] = None
    # Idempotent installer used for provably-missing dependencies (e.g. "npm install").
    # Unset means dependency problems are reported, never fixed.
    install_command: Optional[str] = None

    # Post-deploy probe
    health_url: Optional[str] = None
    health_probe_delay_seconds: float = 5.0
    health_probe_timeout_seconds: float = 10.0

    # Prophet checks
    entry_files: List[str] = ["server/server.js", "server.js", "index.js"]
    source_dirs: List[str] = ["src", "server"]
    dependency_manifest: str = "package.json"
    dependency_dir: str = "node_modules"
    min_free_disk_bytes: int = 1024 * 1024 * 1024  # 1GB

    # Logging
    log_level: str = "INFO"
    log_format: str = "text"  # "text" | "json"

    def state_path(self, project_root: Path) -> Path:
        """Directory holding repair memory, audit log and build logs."""
        state_dir = Path(self.state_dir)
        if state_dir.is_absolute():
            return state_dir
        return Path(project_root) / state_dir

    def repair_memory_path(self, project_root: Path) -> Path:
        return self.state_path(project_root) / self.repair_memory_file

    def audit_log_path(self, project_root: Path) -> Path:
        return self.state_path(project_root) / self.audit_log_file

    def build_log_path(self, project_root: Path, attempt: int) -> Path:
        return self.state_path(project_root) / "builds" / f"attempt-{attempt}.log"


def load_settings(project_root: Optional[Path] = None, **overrides) -> Settings:
    """Build settings, letting explicit (non-None) overrides win over env/.env.

    With a project root, ``.env`` is read from that directory instead of the
    current working directory.
    """
    values = {key: value for key, value in overrides.items() if value is not None}
    if project_root is not None:
        return Settings(_env_file=Path(project_root) / ".env", **values)
    return Settings(**values)
