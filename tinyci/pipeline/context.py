"""Pipeline run context.

This module defines the mutable state object handed down the execution
hierarchy for one pipeline run, plus the canonical working-copy layout:

    <workdir>/pipelines/<identity>/src          cloned working copy
    <workdir>/pipelines/<identity>/artifacts    exported files
"""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional
from uuid import uuid4

from tinyci.config import RunnerSettings
from tinyci.utils.validation import is_within, validate_identity


@dataclass(frozen=True)
class PipelinePaths:
    """Resolved on-disk paths for one pipeline identity."""

    pipeline_dir: Path
    src_dir: Path
    artifacts_dir: Path


def pipeline_paths(pipelines_dir: Path, identity: str) -> PipelinePaths:
    """Return the working-copy layout for a pipeline identity.

    Raises:
        ValueError: When the identity would resolve outside pipelines_dir.
    """
    identity = validate_identity(identity)
    pipeline_dir = Path(pipelines_dir) / identity
    if not is_within(pipeline_dir, pipelines_dir):
        raise ValueError(f"Pipeline directory escapes {pipelines_dir}: {identity}")

    return PipelinePaths(
        pipeline_dir=pipeline_dir,
        src_dir=pipeline_dir / "src",
        artifacts_dir=pipeline_dir / "artifacts",
    )


@dataclass
class RunContext:
    """State shared by the runners while one pipeline executes.

    The settings are immutable; the context itself only gains the commit hash
    once checkout has happened.
    """

    settings: RunnerSettings
    identity: str
    paths: PipelinePaths
    run_id: str = field(default_factory=lambda: uuid4().hex)
    commit_hash: Optional[str] = None

    @classmethod
    def for_pipeline(cls, settings: RunnerSettings, identity: str) -> "RunContext":
        return cls(
            settings=settings,
            identity=identity,
            paths=pipeline_paths(settings.pipelines_dir, identity),
        )

    @property
    def cwd(self) -> Path:
        """Directory tasks run in."""
        return self.paths.src_dir

    def record_commit(self, commit_hash: str) -> None:
        if self.commit_hash is not None:
            raise RuntimeError(f"commit_hash already recorded for run {self.run_id}")
        self.commit_hash = commit_hash
