"""
Change Detector
===============
Decide whether a pipeline needs to run by comparing the last built commit
with the current head of its branch.

The working copy left behind by the previous run is reused for the lookup:
the branch is checked out once, fast-forwarded from origin, and its head
commit compared (as an opaque string) with the last RunLog's commit_hash.
The history is only read, never modified.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from loguru import logger

from tinyci.config import RunnerSettings
from tinyci.errors import VcsError
from tinyci.pipeline.context import pipeline_paths
from tinyci.pipeline.definitions import PipelineDef
from tinyci.pipeline.logs import RunHistory
from tinyci.vcs.git import VersionControl


@dataclass(frozen=True)
class ChangeDecision:
    """Outcome of a change check.

    reason is one of: first_run, no_working_copy, inspect_failed, new_commit,
    up_to_date.
    """

    changed: bool
    reason: str
    current_commit: Optional[str] = None
    last_commit: Optional[str] = None


class ChangeDetector:
    def __init__(self, vcs: VersionControl, settings: RunnerSettings):
        self.vcs = vcs
        self.settings = settings

    def detect(self, pipeline: PipelineDef, history: RunHistory) -> ChangeDecision:
        runs = history.get(pipeline.identity)
        if not runs:
            return ChangeDecision(changed=True, reason="first_run")

        last_commit = runs[-1].commit_hash
        src_dir = pipeline_paths(self.settings.pipelines_dir, pipeline.identity).src_dir
        if not src_dir.is_dir():
            return ChangeDecision(changed=True, reason="no_working_copy", last_commit=last_commit)

        try:
            if pipeline.branch:
                self.vcs.checkout(src_dir, pipeline.branch)
            self.vcs.sync(src_dir, pipeline.branch)
            current_commit = self.vcs.head_commit(src_dir)
        except VcsError as e:
            logger.warning(f"Could not inspect working copy of '{pipeline.identity}', rebuilding: {e}")
            return ChangeDecision(changed=True, reason="inspect_failed", last_commit=last_commit)

        if current_commit != last_commit:
            return ChangeDecision(
                changed=True, reason="new_commit", current_commit=current_commit, last_commit=last_commit
            )
        return ChangeDecision(
            changed=False, reason="up_to_date", current_commit=current_commit, last_commit=last_commit
        )

    def has_changed(self, pipeline: PipelineDef, history: RunHistory) -> bool:
        return self.detect(pipeline, history).changed
