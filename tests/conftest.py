"""Shared fixtures for the tinyci test suite."""

from __future__ import annotations

import shutil
import subprocess
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Optional, Tuple

import pytest
from loguru import logger

import tinyci.logging_setup as logging_setup
from tinyci.config import RunnerSettings
from tinyci.errors import VcsError
from tinyci.execution.executor import CommandResult
from tinyci.history.store import HistoryStore


@pytest.fixture
def workdir(tmp_path: Path) -> Path:
    wd = tmp_path / "ci"
    wd.mkdir()
    return wd


@pytest.fixture
def settings(workdir: Path) -> RunnerSettings:
    return RunnerSettings(workdir=workdir, config_path=workdir / "config.json", poll_interval_seconds=0)


@pytest.fixture
def history_store(settings: RunnerSettings) -> HistoryStore:
    return HistoryStore(settings.history_path, lock_timeout_seconds=1)


@pytest.fixture
def log_lines():
    """Collect loguru messages emitted during the test."""
    lines: List[str] = []
    handler_id = logger.add(lambda msg: lines.append(msg.record["message"]), level="DEBUG")
    yield lines
    logger.remove(handler_id)


@pytest.fixture(autouse=True)
def _reset_log_sinks():
    """Drop sinks installed by configure_logging so they never outlive a test."""
    yield
    for handler_id in list(logging_setup._HANDLER_IDS):
        logger.remove(handler_id)
    logging_setup._HANDLER_IDS.clear()


class FakeVcs:
    """In-memory stand-in for GitClient.

    clone() creates the target directory and writes `files` into it; the head
    commit is whatever `head` currently holds.
    """

    def __init__(self, head: str = "c0ffee1", files: Optional[Dict[str, str]] = None):
        self.head = head
        self.files = dict(files or {})
        self.fail_clone = False
        self.fail_checkout = False
        self.fail_sync = False
        self.fail_head = False
        self.calls: List[Tuple[str, ...]] = []

    def clone(self, repo_url: str, target_dir: Path) -> None:
        self.calls.append(("clone", repo_url, str(target_dir)))
        if self.fail_clone:
            raise VcsError("git clone failed with exit code 128: repository not found")
        target_dir.mkdir(parents=True)
        for rel, content in self.files.items():
            path = target_dir / rel
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_text(content, encoding="utf-8")

    def checkout(self, repo_dir: Path, ref: str) -> None:
        self.calls.append(("checkout", str(repo_dir), ref))
        if self.fail_checkout:
            raise VcsError(f"git checkout failed: pathspec '{ref}' did not match")

    def head_commit(self, repo_dir: Path) -> str:
        self.calls.append(("head_commit", str(repo_dir)))
        if self.fail_head:
            raise VcsError("git rev-parse HEAD failed: not a git repository")
        return self.head

    def sync(self, repo_dir: Path, ref: Optional[str]) -> None:
        self.calls.append(("sync", str(repo_dir), ref or ""))
        if self.fail_sync:
            raise VcsError("git pull failed: could not read from remote repository")

    def call_names(self) -> List[str]:
        return [c[0] for c in self.calls]


@dataclass
class ExecutedCommand:
    command: str
    cwd: Path
    timeout_seconds: Optional[int]


class FakeExecutor:
    """Command executor returning scripted exit codes (default 0)."""

    def __init__(self, exit_codes: Optional[Dict[str, int]] = None):
        self.exit_codes = dict(exit_codes or {})
        self.executed: List[ExecutedCommand] = []

    def run(self, command: str, cwd: Path, timeout_seconds: Optional[int] = None) -> CommandResult:
        self.executed.append(ExecutedCommand(command, Path(cwd), timeout_seconds))
        code = self.exit_codes.get(command, 0)
        return CommandResult(exit_code=code, stdout=f"ran {command}\n", stderr="" if code == 0 else "boom\n")

    @property
    def commands(self) -> List[str]:
        return [e.command for e in self.executed]


@pytest.fixture
def fake_vcs() -> FakeVcs:
    return FakeVcs()


@pytest.fixture
def fake_executor() -> FakeExecutor:
    return FakeExecutor()


requires_git = pytest.mark.skipif(shutil.which("git") is None, reason="git is not installed")


def git(repo: Path, *args: str) -> str:
    result = subprocess.run(
        ["git", "-c", "user.name=tinyci", "-c", "user.email=tinyci@example.com", *args],
        cwd=str(repo),
        capture_output=True,
        text=True,
        check=True,
    )
    return result.stdout.strip()


def commit_file(repo: Path, rel: str, content: str, message: str = "update") -> str:
    path = repo / rel
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(content, encoding="utf-8")
    git(repo, "add", rel)
    git(repo, "commit", "-q", "-m", message)
    return git(repo, "rev-parse", "HEAD")


@pytest.fixture
def upstream_repo(tmp_path: Path) -> Path:
    """A local git repository on branch 'main' with one commit."""
    repo = tmp_path / "upstream"
    repo.mkdir()
    git(repo, "init", "-q")
    git(repo, "symbolic-ref", "HEAD", "refs/heads/main")
    commit_file(repo, "README.md", "hello\n", message="initial")
    return repo
