"""
Error Types
===========
Exception hierarchy shared by the runner components.

Components raise these errors where a failure is detected. Failure policy
(continue, skip a pipeline, stop the process) is decided by the driver in
tinyci.scheduler and by the CLI, never by the component that failed.
"""

from __future__ import annotations

from typing import Optional


class TinyCIError(Exception):
    """Base class for all runner errors."""


class MissingToolError(TinyCIError):
    """A required external tool (for example git) is not available."""

    def __init__(self, tool: str):
        self.tool = tool
        super().__init__(f"Sorry, this runner requires {tool}")


class ConfigError(TinyCIError):
    """The pipeline configuration could not be read or is malformed."""


class HistoryError(TinyCIError):
    """The persisted run history could not be read or written."""


class VcsError(TinyCIError):
    """A version-control operation failed."""

    def __init__(self, message: str, *, stderr: str = "", returncode: Optional[int] = None):
        self.stderr = stderr
        self.returncode = returncode
        super().__init__(message)


class PipelineError(TinyCIError):
    """A pipeline run could not complete."""

    def __init__(self, message: str, *, identity: str = ""):
        self.identity = identity
        super().__init__(message)


class CloneError(PipelineError):
    """Cloning the pipeline's source repository failed."""


class CheckoutError(PipelineError):
    """Checking out the declared branch failed."""


class TaskFailedError(PipelineError):
    """A task failed while the strict (abort) task policy was active."""

    def __init__(self, message: str, *, identity: str = "", command: str = "", exit_code: int = -1):
        self.command = command
        self.exit_code = exit_code
        super().__init__(message, identity=identity)


class RunNotPersistedError(PipelineError):
    """A finished run could not be appended to the history."""


class FatalRunError(TinyCIError):
    """Raised by the poll loop when a pipeline failure must stop the process."""

    def __init__(self, cause: PipelineError):
        self.cause = cause
        super().__init__(str(cause))
