"""
Tests for the Git Client
========================
Uses real git against a local upstream repository.
"""

from __future__ import annotations

from pathlib import Path

import pytest

import tinyci.vcs.git as git_module
from tinyci.errors import MissingToolError, VcsError
from tinyci.vcs import GitClient, ensure_git_available

from conftest import commit_file, git, requires_git


@pytest.fixture
def client() -> GitClient:
    return GitClient(clone_attempts=1, retry_wait_max_seconds=0)


@pytest.mark.unit
def test_ensure_git_available_raises_when_missing(monkeypatch) -> None:
    monkeypatch.setattr(git_module.shutil, "which", lambda name: None)

    with pytest.raises(MissingToolError, match="Sorry, this runner requires git"):
        ensure_git_available()


@pytest.mark.unit
def test_ensure_git_available_returns_resolved_path(monkeypatch) -> None:
    monkeypatch.setattr(git_module.shutil, "which", lambda name: f"/usr/bin/{name}")

    assert ensure_git_available() == "/usr/bin/git"


@pytest.mark.integration
@requires_git
def test_clone_and_head_commit(client, upstream_repo: Path, tmp_path: Path) -> None:
    expected = git(upstream_repo, "rev-parse", "HEAD")
    target = tmp_path / "work" / "src"

    client.clone(str(upstream_repo), target)

    assert (target / "README.md").read_text(encoding="utf-8") == "hello\n"
    assert client.head_commit(target) == expected


@pytest.mark.integration
@requires_git
def test_checkout_branch(client, upstream_repo: Path, tmp_path: Path) -> None:
    git(upstream_repo, "checkout", "-q", "-b", "feature")
    feature_head = commit_file(upstream_repo, "feature.txt", "f\n", message="feature")
    git(upstream_repo, "checkout", "-q", "main")
    target = tmp_path / "src"

    client.clone(str(upstream_repo), target)
    client.checkout(target, "feature")

    assert client.head_commit(target) == feature_head
    assert (target / "feature.txt").exists()


@pytest.mark.integration
@requires_git
def test_checkout_unknown_branch_raises(client, upstream_repo: Path, tmp_path: Path) -> None:
    target = tmp_path / "src"
    client.clone(str(upstream_repo), target)

    with pytest.raises(VcsError, match="git checkout failed"):
        client.checkout(target, "does-not-exist")


@pytest.mark.integration
@requires_git
def test_sync_picks_up_new_upstream_commit(client, upstream_repo: Path, tmp_path: Path) -> None:
    target = tmp_path / "src"
    client.clone(str(upstream_repo), target)
    client.checkout(target, "main")
    before = client.head_commit(target)

    after = commit_file(upstream_repo, "CHANGES.md", "v2\n", message="second")
    client.sync(target, "main")

    assert before != after
    assert client.head_commit(target) == after


@pytest.mark.integration
@requires_git
def test_clone_replaces_leftover_directory(client, upstream_repo: Path, tmp_path: Path) -> None:
    target = tmp_path / "src"
    target.mkdir()
    (target / "stale.txt").write_text("x", encoding="utf-8")

    client.clone(str(upstream_repo), target)

    assert not (target / "stale.txt").exists()
    assert (target / "README.md").exists()


@pytest.mark.integration
@requires_git
def test_clone_failure_raises_vcs_error(client, tmp_path: Path) -> None:
    with pytest.raises(VcsError) as excinfo:
        client.clone(str(tmp_path / "no-such-repo"), tmp_path / "src")

    assert excinfo.value.returncode not in (None, 0)
    assert excinfo.value.stderr


@pytest.mark.unit
def test_clone_retries_before_giving_up(monkeypatch, tmp_path: Path) -> None:
    client = GitClient(clone_attempts=3, retry_wait_max_seconds=0)
    attempts = []

    def failing_run(args, *, cwd=None, timeout=None):
        attempts.append(args[0])
        raise VcsError("git clone failed with exit code 128: unreachable")

    monkeypatch.setattr(client, "_run", failing_run)
    monkeypatch.setattr("tenacity.nap.time.sleep", lambda seconds: None)

    with pytest.raises(VcsError, match="unreachable"):
        client.clone("https://example.invalid/repo.git", tmp_path / "src")

    assert attempts == ["clone", "clone", "clone"]


@pytest.mark.unit
def test_clone_succeeds_after_transient_failure(monkeypatch, tmp_path: Path) -> None:
    client = GitClient(clone_attempts=3, retry_wait_max_seconds=0)
    attempts = []

    def flaky_run(args, *, cwd=None, timeout=None):
        attempts.append(args[0])
        if len(attempts) == 1:
            raise VcsError("git clone failed with exit code 128: timeout")
        return ""

    monkeypatch.setattr(client, "_run", flaky_run)
    monkeypatch.setattr("tenacity.nap.time.sleep", lambda seconds: None)

    client.clone("https://example.com/repo.git", tmp_path / "src")

    assert attempts == ["clone", "clone"]
