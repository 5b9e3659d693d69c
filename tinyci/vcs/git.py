"""
Git Client
==========
The version-control operations the runner needs, implemented with the git CLI.

Every call blocks until git exits. Failures raise VcsError carrying git's
stderr; callers decide whether that is fatal. Cloning is retried with
exponential backoff because it is the only network-bound step of a run.
"""

from __future__ import annotations

import shutil
import subprocess
from pathlib import Path
from typing import List, Optional, Protocol

from loguru import logger
from tenacity import (
    Retrying,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from tinyci.config import TIMEOUTS
from tinyci.errors import MissingToolError, VcsError
from tinyci.utils.subprocess_env import build_git_env
from tinyci.utils.subprocess_text import tail, to_text


class VersionControl(Protocol):
    def clone(self, repo_url: str, target_dir: Path) -> None:
        ...

    def checkout(self, repo_dir: Path, ref: str) -> None:
        ...

    def head_commit(self, repo_dir: Path) -> str:
        ...

    def sync(self, repo_dir: Path, ref: Optional[str]) -> None:
        ...


def ensure_git_available(executable: str = "git") -> str:
    """Return the resolved git executable path.

    Raises:
        MissingToolError: When git is not on PATH.
    """
    resolved = shutil.which(executable)
    if not resolved:
        raise MissingToolError(executable)
    return resolved


class GitClient:
    """Thin wrapper around the git command line.

    Usage:
        git = GitClient(clone_attempts=3)
        git.clone("https://example.com/repo.git", Path("pipelines/pkg/src"))
        git.checkout(Path("pipelines/pkg/src"), "main")
        commit = git.head_commit(Path("pipelines/pkg/src"))
    """

    def __init__(
        self,
        *,
        executable: str = "git",
        clone_attempts: int = 3,
        clone_timeout_seconds: int = TIMEOUTS.GIT_CLONE,
        command_timeout_seconds: int = TIMEOUTS.GIT_COMMAND,
        retry_wait_max_seconds: float = 10.0,
        sanitize_env: bool = False,
    ):
        self.executable = executable
        self.clone_attempts = max(1, int(clone_attempts))
        self.clone_timeout_seconds = clone_timeout_seconds
        self.command_timeout_seconds = command_timeout_seconds
        self.retry_wait_max_seconds = retry_wait_max_seconds
        self.sanitize_env = sanitize_env

    def _run(self, args: List[str], *, cwd: Optional[Path] = None, timeout: Optional[int] = None) -> str:
        cmd = [self.executable, *args]
        try:
            result = subprocess.run(
                cmd,
                capture_output=True,
                text=True,
                encoding="utf-8",
                errors="replace",
                timeout=timeout or self.command_timeout_seconds,
                cwd=str(cwd) if cwd is not None else None,
                env=build_git_env(sanitize_env=self.sanitize_env),
                stdin=subprocess.DEVNULL,
            )
        except subprocess.TimeoutExpired as e:
            raise VcsError(f"git {args[0]} timed out", stderr=to_text(e.stderr)) from e
        except OSError as e:
            raise VcsError(f"git {args[0]} could not be started: {e}") from e

        if result.returncode != 0:
            stderr = result.stderr or ""
            raise VcsError(
                f"git {args[0]} failed with exit code {result.returncode}: {tail(stderr, 5)}",
                stderr=stderr,
                returncode=result.returncode,
            )
        return result.stdout or ""

    def _clone_once(self, repo_url: str, target_dir: Path) -> None:
        if target_dir.exists():
            # Leftovers from a failed attempt would make git refuse the clone.
            shutil.rmtree(target_dir)
        self._run(["clone", repo_url, str(target_dir)], timeout=self.clone_timeout_seconds)

    def clone(self, repo_url: str, target_dir: Path) -> None:
        """Clone repo_url into target_dir, retrying transient failures."""
        target_dir = Path(target_dir)
        target_dir.parent.mkdir(parents=True, exist_ok=True)

        retryer = Retrying(
            stop=stop_after_attempt(self.clone_attempts),
            wait=wait_exponential(multiplier=1, min=1, max=self.retry_wait_max_seconds),
            retry=retry_if_exception_type(VcsError),
            before_sleep=lambda state: logger.warning(
                f"git clone of {repo_url} failed (attempt {state.attempt_number}/{self.clone_attempts}), retrying"
            ),
            reraise=True,
        )
        retryer(self._clone_once, repo_url, target_dir)

    def checkout(self, repo_dir: Path, ref: str) -> None:
        self._run(["checkout", ref], cwd=repo_dir)

    def head_commit(self, repo_dir: Path) -> str:
        commit = self._run(["rev-parse", "HEAD"], cwd=repo_dir).strip()
        if not commit:
            raise VcsError("git rev-parse returned an empty commit id")
        return commit

    def sync(self, repo_dir: Path, ref: Optional[str]) -> None:
        """Fast-forward the current branch from origin."""
        args = ["pull", "--ff-only", "origin"]
        if ref:
            args.append(ref)
        self._run(args, cwd=repo_dir, timeout=self.clone_timeout_seconds)
