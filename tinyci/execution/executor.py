"""
Command Executor
================
Run a task's command line through the shell and capture its outcome.

The executor blocks until the command exits. There is no timeout unless one
is passed; a timed-out command is reported with exit code -1 rather than
raised, so the caller records it like any other failure.
"""

from __future__ import annotations

import subprocess
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Protocol

from tinyci.utils.subprocess_env import build_subprocess_env
from tinyci.utils.subprocess_text import to_text


@dataclass(frozen=True)
class CommandResult:
    """Outcome of one command."""

    exit_code: int
    stdout: str
    stderr: str
    timed_out: bool = False

    @property
    def success(self) -> bool:
        return self.exit_code == 0


class CommandExecutor(Protocol):
    def run(self, command: str, cwd: Path, timeout_seconds: Optional[int] = None) -> CommandResult:
        ...


class ShellCommandExecutor:
    """Executes command lines with the system shell."""

    def __init__(self, *, sanitize_env: bool = False):
        self.sanitize_env = sanitize_env

    def run(self, command: str, cwd: Path, timeout_seconds: Optional[int] = None) -> CommandResult:
        env = build_subprocess_env(sanitize_env=self.sanitize_env)

        try:
            result = subprocess.run(
                command,
                shell=True,
                capture_output=True,
                text=True,
                encoding="utf-8",
                errors="replace",
                timeout=timeout_seconds,
                cwd=str(cwd),
                env=env,
                stdin=subprocess.DEVNULL,
            )
        except subprocess.TimeoutExpired as e:
            stderr = to_text(e.stderr)
            if stderr:
                stderr = stderr.rstrip("\n") + "\n"
            stderr += f"Execution timed out after {timeout_seconds} seconds"
            return CommandResult(exit_code=-1, stdout=to_text(e.stdout), stderr=stderr, timed_out=True)
        except OSError as e:
            return CommandResult(exit_code=-1, stdout="", stderr=f"Execution failed: {type(e).__name__}: {e}")

        return CommandResult(
            exit_code=int(result.returncode),
            stdout=result.stdout or "",
            stderr=result.stderr or "",
        )
