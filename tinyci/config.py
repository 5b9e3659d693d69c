"""
Centralized Configuration
=========================
Configuration values and constants for the tinyci runner.

This module provides:
- Timeout configuration for external operations
- Tracing configuration
- RunnerSettings, the immutable settings value threaded through every component

Environment variables (all optional):
    TINYCI_WORKDIR            Base directory for pipelines/ and history.json
    TINYCI_CONFIG             Path to the pipeline config file
    TINYCI_POLL_INTERVAL      Seconds to sleep between poll cycles
    TINYCI_TASK_FAILURE       'continue' (lenient) or 'abort' (strict)
    TINYCI_RUN_FAILURE        'abort' or 'skip'
    TINYCI_TASK_TIMEOUT       Default per-task timeout in seconds (unset = none)
    TINYCI_CLONE_ATTEMPTS     Clone attempts before giving up
    TINYCI_SANITIZE_ENV       'true' to run tasks with a minimal environment
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field, replace
from enum import Enum
from pathlib import Path
from typing import Any, Optional


@dataclass(frozen=True)
class TimeoutConfig:
    """Centralized timeout configuration in seconds."""

    # Version control
    GIT_CLONE: int = int(os.getenv("TINYCI_GIT_CLONE_TIMEOUT", "600"))
    GIT_COMMAND: int = int(os.getenv("TINYCI_GIT_COMMAND_TIMEOUT", "120"))

    # File operations
    FILE_LOCK: int = 30  # History lock acquisition


@dataclass(frozen=True)
class TracingConfig:
    """Tracing configuration."""

    SERVICE_NAME: str = "tinyci"
    OTLP_ENDPOINT: str = os.getenv("OTLP_ENDPOINT", "http://localhost:4318/v1/traces")
    ENABLED: bool = os.getenv("TINYCI_ENABLE_TRACING", "false").lower() == "true"


# Global singleton instances
TIMEOUTS = TimeoutConfig()
TRACING = TracingConfig()


class TaskFailurePolicy(str, Enum):
    """What happens after a task exits non-zero."""

    CONTINUE = "continue"  # lenient: mark failed, keep going
    ABORT = "abort"  # strict: stop the pipeline, persist nothing


class RunFailurePolicy(str, Enum):
    """What the poll loop does when a pipeline run ends with an error.

    Covers clone and checkout failures, strict task aborts and runs that could
    not be saved to the history.
    """

    ABORT = "abort"  # stop the whole process with a non-zero exit
    SKIP = "skip"  # log, skip the pipeline, continue with the next one


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


def _env_optional_int(name: str) -> Optional[int]:
    raw = os.getenv(name, "").strip()
    if not raw:
        return None
    return int(raw)


@dataclass(frozen=True)
class RunnerSettings:
    """Immutable runner settings.

    One instance is created at startup and passed explicitly to every
    component; nothing reads process-wide mutable state.
    """

    workdir: Path = field(default_factory=Path.cwd)
    config_path: Path = Path("config.json")
    poll_interval_seconds: float = 60.0
    task_failure: TaskFailurePolicy = TaskFailurePolicy.CONTINUE
    run_failure: RunFailurePolicy = RunFailurePolicy.ABORT
    task_timeout_seconds: Optional[int] = None
    clone_attempts: int = 3
    sanitize_env: bool = False
    history_filename: str = "history.json"
    lock_timeout_seconds: int = TIMEOUTS.FILE_LOCK

    def __post_init__(self) -> None:
        object.__setattr__(self, "workdir", Path(self.workdir).expanduser().resolve())
        object.__setattr__(self, "config_path", Path(self.config_path).expanduser())
        object.__setattr__(self, "task_failure", TaskFailurePolicy(self.task_failure))
        object.__setattr__(self, "run_failure", RunFailurePolicy(self.run_failure))
        if self.poll_interval_seconds < 0:
            raise ValueError("poll_interval_seconds must be >= 0")
        if self.clone_attempts < 1:
            raise ValueError("clone_attempts must be >= 1")
        if self.task_timeout_seconds is not None and self.task_timeout_seconds <= 0:
            raise ValueError("task_timeout_seconds must be > 0 when set")

    @property
    def pipelines_dir(self) -> Path:
        return self.workdir / "pipelines"

    @property
    def history_path(self) -> Path:
        return self.workdir / self.history_filename

    @property
    def strict(self) -> bool:
        return self.task_failure is TaskFailurePolicy.ABORT

    def with_overrides(self, **overrides: Any) -> "RunnerSettings":
        """Return a copy with non-None overrides applied."""
        applied = {k: v for k, v in overrides.items() if v is not None}
        if not applied:
            return self
        return replace(self, **applied)

    @classmethod
    def from_env(cls, **overrides: Any) -> "RunnerSettings":
        """Build settings from TINYCI_* environment variables, then apply overrides."""
        workdir = Path(os.getenv("TINYCI_WORKDIR", "") or Path.cwd())
        config_path = Path(os.getenv("TINYCI_CONFIG", "") or (workdir / "config.json"))

        settings = cls(
            workdir=workdir,
            config_path=config_path,
            poll_interval_seconds=float(os.getenv("TINYCI_POLL_INTERVAL", "60")),
            task_failure=TaskFailurePolicy(os.getenv("TINYCI_TASK_FAILURE", "continue")),
            run_failure=RunFailurePolicy(os.getenv("TINYCI_RUN_FAILURE", "abort")),
            task_timeout_seconds=_env_optional_int("TINYCI_TASK_TIMEOUT"),
            clone_attempts=int(os.getenv("TINYCI_CLONE_ATTEMPTS", "3")),
            sanitize_env=_env_bool("TINYCI_SANITIZE_ENV", False),
        )
        return settings.with_overrides(**overrides)
