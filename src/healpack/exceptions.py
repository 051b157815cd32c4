"""Custom exceptions for the Healpack pipeline."""

from typing import Optional


class HealpackError(Exception):
    """Base exception for all Healpack errors."""

    pass


class ConfigurationError(HealpackError):
    """Exception raised for invalid configuration or command-line values."""

    pass


class ScanError(HealpackError):
    """A single Prophet check failed.

    Contained per check: recorded on the check result, never propagated.
    """

    def __init__(self, check_name: str, message: str):
        """
        Initialize scan error.

        Args:
            check_name: Name of the check that failed
            message: Error message
        """
        super().__init__(f"Check '{check_name}' failed: {message}")
        self.check_name = check_name


class RepairMemoryError(HealpackError):
    """Exception raised when the repair memory document cannot be read or written."""

    pass


class PipelineTerminalError(HealpackError):
    """Base for terminal pipeline failures that require sovereign intervention.

    Subclasses set ``state`` to the name of the terminal pipeline state they
    represent. Every terminal failure exits the process non-zero.
    """

    state = "FAILED"
    exit_code = 1


class BlockedError(PipelineTerminalError):
    """Prophet reported an unfixed critical issue."""

    state = "BLOCKED"


class UnrecognizedFailure(PipelineTerminalError):
    """Surgeon found no actionable pattern in the build output."""

    state = "NO_FIX"


class RetryExhausted(PipelineTerminalError):
    """The build kept failing after the maximum number of attempts."""

    state = "RETRY_EXHAUSTED"

    def __init__(self, message: str, attempts: int):
        super().__init__(message)
        self.attempts = attempts


class DeployFailed(PipelineTerminalError):
    """The deploy command exited non-zero."""

    state = "DEPLOY_FAILED"

    def __init__(self, message: str, returncode: Optional[int] = None):
        super().__init__(message)
        self.returncode = returncode
