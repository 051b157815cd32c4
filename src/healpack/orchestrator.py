"""
Pipeline Orchestrator

Drives Prophet -> build attempt -> (on failure) Surgeon -> retry loop ->
deploy -> one-shot health probe, as a small explicit state machine:

    INIT -> PROPHET_SCAN            (INIT -> BUILD_ATTEMPT when Prophet is skipped)
    PROPHET_SCAN -> BLOCKED         [prophet blocked]
    PROPHET_SCAN -> BUILD_ATTEMPT
    BUILD_ATTEMPT -> DEPLOY         [build exit 0]
    BUILD_ATTEMPT -> SURGEON_ANALYZE
    SURGEON_ANALYZE -> BUILD_ATTEMPT     [fix applied, attempts < max]
    SURGEON_ANALYZE -> RETRY_EXHAUSTED   [fix applied, attempts == max]
    SURGEON_ANALYZE -> NO_FIX            [no fix applied]
    DEPLOY -> DEPLOY_FAILED         [deploy exit != 0]
    DEPLOY -> GUARDIAN_CHECK -> DONE

Every phase runs in its own OS process (see SubprocessPhaseRunner); the only
state carried between phases is Repair Memory on disk. The build that follows a
fix is recorded in Repair Memory as that fix's success or failure. Terminal
failures exit non-zero with an explicit escalation message. DONE exits zero
even when the health probe fails; degraded health is reported, never retried.
"""

import json
import logging
import subprocess
import sys
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Dict, List, Optional

from healpack.config import Settings
from healpack.exceptions import (
    BlockedError,
    ConfigurationError,
    DeployFailed,
    PipelineTerminalError,
    RepairMemoryError,
    RetryExhausted,
    UnrecognizedFailure,
)
from healpack.guardian import HealthProbe, HealthProbeResult
from healpack.remediation import split_command
from healpack.repair_memory import RepairMemoryStore
from healpack.subprocess_streaming import run_with_streaming

logger = logging.getLogger(__name__)


class PipelineState(str, Enum):
    INIT = "INIT"
    PROPHET_SCAN = "PROPHET_SCAN"
    BUILD_ATTEMPT = "BUILD_ATTEMPT"
    SURGEON_ANALYZE = "SURGEON_ANALYZE"
    DEPLOY = "DEPLOY"
    GUARDIAN_CHECK = "GUARDIAN_CHECK"
    DONE = "DONE"
    BLOCKED = "BLOCKED"
    RETRY_EXHAUSTED = "RETRY_EXHAUSTED"
    NO_FIX = "NO_FIX"
    DEPLOY_FAILED = "DEPLOY_FAILED"


TERMINAL_FAILURE_STATES = frozenset(
    {
        PipelineState.BLOCKED,
        PipelineState.RETRY_EXHAUSTED,
        PipelineState.NO_FIX,
        PipelineState.DEPLOY_FAILED,
    }
)


@dataclass
class BuildAttempt:
    """One invocation of the wrapped build command."""

    attempt: int
    returncode: int
    output_path: Path


@dataclass
class SurgeonRun:
    """Verdict of one Surgeon phase and the repair-memory keys whose fixes it applied."""

    returncode: int
    repair_keys: List[str] = field(default_factory=list)


@dataclass
class PipelineOutcome:
    """Final result of a pipeline run."""

    state: PipelineState
    exit_code: int
    message: str
    attempts: int = 0
    transitions: List[PipelineState] = field(default_factory=list)
    prophet_exit_code: Optional[int] = None
    health: Optional[HealthProbeResult] = None

    @property
    def succeeded(self) -> bool:
        return self.state == PipelineState.DONE

    def to_dict(self) -> Dict:
        return {
            "state": self.state.value,
            "exit_code": self.exit_code,
            "message": self.message,
            "attempts": self.attempts,
            "transitions": [s.value for s in self.transitions],
            "prophet_exit_code": self.prophet_exit_code,
            "health": self.health.to_dict() if self.health else None,
        }


class PhaseRunner:
    """Executes the individual phases. Each call blocks until the phase ends."""

    def run_prophet(self) -> int:
        """Run the pre-build scan. Returns its exit code (0 clear, 1 blocked)."""
        raise NotImplementedError

    def run_build(self, attempt: int) -> BuildAttempt:
        raise NotImplementedError

    def run_surgeon(self, build_output: Path) -> SurgeonRun:
        """Analyze a failed build. returncode 0 means fix recorded, retry; 1 means escalate."""
        raise NotImplementedError

    def run_deploy(self) -> Optional[int]:
        """Run the deploy step. Returns None when no deploy step is configured."""
        raise NotImplementedError


def _repair_keys(surgeon_stdout: str) -> List[str]:
    """Repair-memory keys from a `surgeon-analyze --json` report; empty when absent."""
    if not surgeon_stdout or not surgeon_stdout.strip():
        return []
    try:
        report = json.loads(surgeon_stdout)
    except ValueError:
        logger.warning("[Orchestrator] Surgeon report is not JSON; fix outcomes will not be recorded")
        return []
    if not isinstance(report, dict):
        return []
    return [d["key"] for d in report.get("decisions", []) if isinstance(d, dict) and d.get("key")]


class SubprocessPhaseRunner(PhaseRunner):
    """Runs every phase as a separate OS process.

    Prophet and Surgeon are re-invoked through ``python -m healpack`` so each
    is an independently invocable, crash-safe unit. Build and deploy output is
    captured verbatim into the state directory.
    """

    def __init__(self, project_root: Path, settings: Settings, python: str = sys.executable):
        if not settings.build_command:
            raise ConfigurationError("No build command configured (HEALPACK_BUILD_COMMAND or --build-command)")
        self.project_root = Path(project_root).resolve()
        self.settings = settings
        self.python = python
        self.build_argv = split_command(settings.build_command)
        self.deploy_argv = split_command(settings.deploy_command) if settings.deploy_command else None

    def _phase(self, *args: str) -> int:
        command = [self.python, "-m", "healpack", *args]
        logger.debug(f"[Orchestrator] Spawning phase: {' '.join(command)}")
        return subprocess.run(command, cwd=self.project_root).returncode

    def run_prophet(self) -> int:
        return self._phase("prophet-scan", str(self.project_root))

    def run_build(self, attempt: int) -> BuildAttempt:
        log_path = self.settings.build_log_path(self.project_root, attempt)
        result = run_with_streaming(command=self.build_argv, log_path=log_path, cwd=self.project_root)
        return BuildAttempt(attempt=attempt, returncode=result.returncode, output_path=result.log_path)

    def run_surgeon(self, build_output: Path) -> SurgeonRun:
        command = [
            self.python,
            "-m",
            "healpack",
            "surgeon-analyze",
            str(self.project_root),
            str(build_output),
            "--json",
        ]
        logger.debug(f"[Orchestrator] Spawning phase: {' '.join(command)}")
        completed = subprocess.run(command, cwd=self.project_root, stdout=subprocess.PIPE, text=True)
        return SurgeonRun(returncode=completed.returncode, repair_keys=_repair_keys(completed.stdout))

    def run_deploy(self) -> Optional[int]:
        if self.deploy_argv is None:
            return None
        log_path = self.settings.state_path(self.project_root) / "deploy.log"
        result = run_with_streaming(command=self.deploy_argv, log_path=log_path, cwd=self.project_root)
        if result.returncode != 0:
            logger.error(f"[Orchestrator] Deploy output tail:\n{result.tail}")
        return result.returncode


class Orchestrator:
    """Phase state machine with a bounded build-retry loop."""

    def __init__(
        self,
        runner: PhaseRunner,
        max_retries: int = 3,
        skip_prophet: bool = False,
        health_probe: Optional[HealthProbe] = None,
        memory: Optional[RepairMemoryStore] = None,
    ):
        if max_retries < 1:
            raise ConfigurationError(f"max_retries must be >= 1, got {max_retries}")
        self.runner = runner
        self.max_retries = max_retries
        self.skip_prophet = skip_prophet
        self.health_probe = health_probe
        self.memory = memory
        self.state = PipelineState.INIT
        self.transitions: List[PipelineState] = [PipelineState.INIT]
        self.attempts = 0
        self.prophet_exit_code: Optional[int] = None

    def _enter(self, state: PipelineState) -> None:
        logger.info(f"[Orchestrator] {self.state.value} -> {state.value}")
        self.state = state
        self.transitions.append(state)

    def _prophet_scan(self) -> None:
        self._enter(PipelineState.PROPHET_SCAN)
        code = self.runner.run_prophet()
        self.prophet_exit_code = code
        if code == 1:
            raise BlockedError("Prophet found unfixed critical issues; the build was not attempted")
        if code != 0:
            # Anything but 1 is a Prophet crash, not a verdict
            logger.warning(f"[Orchestrator] Prophet exited {code}; continuing to build")

    def _record_outcome(self, keys: List[str], success: bool) -> None:
        if self.memory is None or not keys:
            return
        try:
            self.memory.record_outcome(keys, success=success)
        except RepairMemoryError as e:
            # The build verdict stands; only the learning is lost
            logger.error(f"[Orchestrator] Could not record fix outcome for {keys}: {e}")

    def _build_until_green(self) -> BuildAttempt:
        pending_keys: List[str] = []
        while True:
            self._enter(PipelineState.BUILD_ATTEMPT)
            self.attempts += 1
            build = self.runner.run_build(self.attempts)
            self._record_outcome(pending_keys, success=build.returncode == 0)
            pending_keys = []
            if build.returncode == 0:
                logger.info(f"[Orchestrator] Build attempt {self.attempts} succeeded")
                return build

            logger.warning(
                f"[Orchestrator] Build attempt {self.attempts}/{self.max_retries} failed "
                f"(exit {build.returncode}); output: {build.output_path}"
            )
            self._enter(PipelineState.SURGEON_ANALYZE)
            surgeon = self.runner.run_surgeon(build.output_path)
            if surgeon.returncode != 0:
                raise UnrecognizedFailure(
                    f"Build attempt {self.attempts} failed with no recognized, fixable error "
                    f"pattern (output: {build.output_path})"
                )
            pending_keys = surgeon.repair_keys
            if self.attempts >= self.max_retries:
                raise RetryExhausted(
                    f"Build still failing after {self.attempts} attempts "
                    f"(max-retries={self.max_retries}); last output: {build.output_path}",
                    attempts=self.attempts,
                )

    def _deploy(self) -> None:
        self._enter(PipelineState.DEPLOY)
        code = self.runner.run_deploy()
        if code is None:
            logger.info("[Orchestrator] No deploy command configured; skipping deploy")
        elif code != 0:
            raise DeployFailed(f"Deploy command exited {code}", returncode=code)

    def _guardian_check(self) -> Optional[HealthProbeResult]:
        self._enter(PipelineState.GUARDIAN_CHECK)
        if self.health_probe is None:
            logger.info("[Orchestrator] No health URL configured; skipping post-deploy probe")
            return None
        return self.health_probe.probe()

    def run(self) -> PipelineOutcome:
        """Run the pipeline to a terminal state."""
        try:
            if self.skip_prophet:
                logger.info("[Orchestrator] Prophet scan skipped")
            else:
                self._prophet_scan()
            self._build_until_green()
            self._deploy()
            health = self._guardian_check()
        except PipelineTerminalError as e:
            self._enter(PipelineState(e.state))
            message = f"ESCALATION: {type(e).__name__}: {e}. Sovereign intervention required."
            logger.error(f"[Orchestrator] {message}")
            return PipelineOutcome(
                state=self.state,
                exit_code=e.exit_code,
                message=message,
                attempts=self.attempts,
                transitions=list(self.transitions),
                prophet_exit_code=self.prophet_exit_code,
            )

        self._enter(PipelineState.DONE)
        message = f"Pipeline succeeded after {self.attempts} build attempt(s)"
        if health is not None and not health.healthy:
            message += f" (warning: post-deploy health probe failed: {health.error})"
            logger.warning(f"[Orchestrator] {message}")
        else:
            logger.info(f"[Orchestrator] {message}")

        return PipelineOutcome(
            state=self.state,
            exit_code=0,
            message=message,
            attempts=self.attempts,
            transitions=list(self.transitions),
            prophet_exit_code=self.prophet_exit_code,
            health=health,
        )


def build_orchestrator(
    project_root: Path,
    settings: Settings,
    skip_prophet: bool = False,
) -> Orchestrator:
    """Wire the default subprocess runner, health probe and repair memory from settings.

    Raises RepairMemoryError when the repair memory document is unreadable.
    """
    runner = SubprocessPhaseRunner(project_root, settings)
    memory = RepairMemoryStore(settings.repair_memory_path(runner.project_root))
    probe = None
    if settings.health_url:
        probe = HealthProbe(
            settings.health_url,
            delay_seconds=settings.health_probe_delay_seconds,
            timeout_seconds=settings.health_probe_timeout_seconds,
        )
    return Orchestrator(
        runner,
        max_retries=settings.max_retries,
        skip_prophet=skip_prophet,
        health_probe=probe,
        memory=memory,
    )
