"""Subprocess output streaming for build, deploy and install commands.

The wrapped build tool is opaque: all we keep is its exit code and its combined
stdout/stderr, captured verbatim to a log file that Surgeon later analyzes.
Output goes straight to disk instead of being buffered in memory.

Usage:
    result = run_with_streaming(
        command=["npm", "run", "build"],
        log_path=Path(".healpack/builds/attempt-1.log"),
        cwd=project_root,
    )

    if result.returncode != 0:
        print(f"Build failed, output in {result.log_path}")
        print(f"Last lines:\n{result.tail}")
"""

import logging
import subprocess
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional

logger = logging.getLogger(__name__)


@dataclass
class StreamedProcessResult:
    """Result from subprocess execution with streamed output."""

    returncode: int
    log_path: Path
    tail: str  # Last N lines for quick inspection
    command: List[str]


def read_last_n_lines(file_path: Path, n: int = 50, encoding: str = "utf-8") -> str:
    """Read last N lines from a file.

    Args:
        file_path: Path to file
        n: Number of lines to read from end
        encoding: File encoding

    Returns:
        Last N lines as string
    """
    try:
        with open(file_path, "r", encoding=encoding, errors="replace") as f:
            lines = f.readlines()
            tail_lines = lines[-n:] if len(lines) > n else lines
            return "".join(tail_lines)
    except OSError as e:
        logger.warning(f"Failed to read tail from {file_path}: {e}")
        return f"(Failed to read tail: {e})"


def run_with_streaming(
    command: List[str],
    log_path: Path,
    cwd: Optional[Path] = None,
    env: Optional[dict] = None,
    tail_lines: int = 50,
    encoding: str = "utf-8",
) -> StreamedProcessResult:
    """Run subprocess with stdout/stderr merged and streamed to a log file.

    No timeout is applied: the pipeline's only bound is its retry counter.

    Args:
        command: Command to execute as list
        log_path: Path where stdout+stderr will be written (truncated first)
        cwd: Working directory for subprocess
        env: Environment variables (None = inherit)
        tail_lines: Number of lines to return in tail (default: 50)
        encoding: Output encoding (default: utf-8)

    Returns:
        StreamedProcessResult with returncode, log_path, and tail.
        A command that cannot be started yields returncode 127 and the
        launch error is written to the log.
    """
    log_path = Path(log_path)
    log_path.parent.mkdir(parents=True, exist_ok=True)

    logger.debug(f"[StreamingSubprocess] Running command: {' '.join(command)} (log: {log_path})")

    with open(log_path, "w", encoding=encoding, errors="replace") as log_file:
        try:
            process = subprocess.run(
                command,
                stdout=log_file,
                stderr=subprocess.STDOUT,  # Merge stderr into stdout
                cwd=cwd,
                env=env,
            )
            returncode = process.returncode
        except OSError as e:
            logger.error(f"[StreamingSubprocess] Command could not be started: {e}")
            log_file.write(f"[ERROR] Process execution failed: {e}\n")
            returncode = 127

    tail = read_last_n_lines(log_path, n=tail_lines, encoding=encoding)

    logger.debug(
        f"[StreamingSubprocess] Command completed: returncode={returncode}, log={log_path}"
    )

    return StreamedProcessResult(
        returncode=returncode,
        log_path=log_path,
        tail=tail,
        command=command,
    )
