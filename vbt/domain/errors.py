"""Error taxonomy for the transcoding pipeline.

Only launch and permission errors are fatal to a batch. Execution failures
are recorded per item and probe failures degrade to "unknown" values.
Low disk space and user cancellation are control flow, not exceptions.
"""

from pathlib import Path
from typing import Optional


class TranscodeError(Exception):
    """Base class for all pipeline errors."""


class LaunchError(TranscodeError):
    """The external executable is missing or the OS refused to spawn it."""

    def __init__(self, executable: str, reason: str = ""):
        self.executable = executable
        self.reason = reason
        message = f"Cannot launch {executable}"
        if reason:
            message = f"{message}: {reason}"
        super().__init__(message)


class ExecutablePermissionError(LaunchError):
    """The platform denies execute rights on the external binary."""

    def __init__(self, executable: str, remediation: str):
        self.remediation = remediation
        super().__init__(executable, "permission denied")

    def __str__(self) -> str:
        return self.remediation


class ExecutionFailure(TranscodeError):
    """The subprocess exited with a nonzero code that was not an intentional kill."""

    def __init__(self, exit_code: int, executable: Optional[str] = None):
        self.exit_code = exit_code
        self.executable = executable
        name = Path(executable).name if executable else "process"
        super().__init__(f"{name} failed with exit code {exit_code}")


class ProbeFailure(TranscodeError):
    """A duration or width query could not be answered."""
