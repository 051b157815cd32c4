"""Tests for the terminal error taxonomy."""

from healpack.exceptions import DeployFailed, HealpackError, PipelineTerminalError, RetryExhausted
from healpack.orchestrator import TERMINAL_FAILURE_STATES, PipelineState


class TestTerminalErrors:
    """Test the pipeline state and exit code carried by terminal errors."""

    def test_deploy_failed_without_returncode(self):
        error = DeployFailed("deploy step vanished")
        assert error.returncode is None
        assert error.state == "DEPLOY_FAILED"
        assert error.exit_code == 1

    def test_deploy_failed_with_returncode(self):
        assert DeployFailed("Deploy command exited 3", returncode=3).returncode == 3

    def test_retry_exhausted_carries_attempts(self):
        error = RetryExhausted("still failing", attempts=3)
        assert error.attempts == 3
        assert isinstance(error, PipelineTerminalError)
        assert isinstance(error, HealpackError)

    def test_states_are_terminal_failures(self):
        for error in (DeployFailed("x"), RetryExhausted("x", attempts=1)):
            assert PipelineState(error.state) in TERMINAL_FAILURE_STATES
