"""
Poll Loop
=========
Top-level driver: load the pipeline set, check each pipeline for changes,
run the changed ones, sleep, repeat.

Everything runs on one thread, one pipeline at a time. This is the only
place where failure policy is applied:
- a config error abandons the current cycle and is retried next interval;
- a failed pipeline run either stops the loop with FatalRunError
  (run_failure=abort) or is logged and skipped (run_failure=skip);
- a history or filesystem error while handling one pipeline is turned into
  a pipeline failure and goes through the same policy.
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from typing import Callable, List, Optional, Protocol

from loguru import logger

from tinyci.config import RunFailurePolicy, RunnerSettings
from tinyci.errors import ConfigError, FatalRunError, HistoryError, PipelineError
from tinyci.execution.executor import CommandExecutor, ShellCommandExecutor
from tinyci.history.store import HistoryStore
from tinyci.pipeline.change_detector import ChangeDetector
from tinyci.pipeline.definitions import PipelineDef, PipelineSet
from tinyci.pipeline.runner import PipelineResult, PipelineRunner
from tinyci.vcs.git import GitClient, VersionControl


class ConfigSource(Protocol):
    def load(self) -> PipelineSet:
        ...


@dataclass
class CycleReport:
    """What happened during one poll cycle."""

    cycle: int
    config_error: Optional[str] = None
    skipped: List[str] = field(default_factory=list)
    results: List[PipelineResult] = field(default_factory=list)
    errored: List[str] = field(default_factory=list)

    @property
    def ran(self) -> List[str]:
        return [r.identity for r in self.results]

    @property
    def failed(self) -> List[str]:
        return [r.identity for r in self.results if not r.success]


class PollLoop:
    def __init__(
        self,
        settings: RunnerSettings,
        config_source: ConfigSource,
        detector: ChangeDetector,
        runner: PipelineRunner,
        history: HistoryStore,
        *,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.settings = settings
        self.config_source = config_source
        self.detector = detector
        self.runner = runner
        self.history = history
        self.sleep = sleep
        self.cycles_completed = 0

    def run_cycle(self) -> CycleReport:
        """Process every configured pipeline once.

        Raises:
            FatalRunError: When a pipeline fails and the failure policy is abort.
        """
        report = CycleReport(cycle=self.cycles_completed + 1)

        try:
            pipelines = self.config_source.load()
        except ConfigError as e:
            logger.error(f"Config error, skipping this cycle: {e}")
            report.config_error = str(e)
            self.cycles_completed += 1
            return report

        for pipeline in pipelines:
            try:
                result = self._process(pipeline, report)
            except (HistoryError, OSError) as e:
                error = PipelineError(
                    f"Run of '{pipeline.name}' stopped unexpectedly: {e}", identity=pipeline.identity
                )
                error.__cause__ = e
                logger.error(f"Error: {error}")
                report.errored.append(pipeline.identity)
                self._apply_failure_policy(pipeline, error)
                continue

            if result is not None and result.error is not None:
                self._apply_failure_policy(pipeline, result.error)

        self.cycles_completed += 1
        return report

    def _process(self, pipeline: PipelineDef, report: CycleReport) -> Optional[PipelineResult]:
        decision = self.detector.detect(pipeline, self.history.load())
        if not decision.changed:
            logger.info(f"No changes for '{pipeline.name}' at {decision.current_commit}, skipping")
            report.skipped.append(pipeline.identity)
            return None

        logger.debug(f"Running '{pipeline.name}' ({decision.reason})")
        result = self.runner.run(pipeline)
        report.results.append(result)
        return result

    def _apply_failure_policy(self, pipeline: PipelineDef, error: PipelineError) -> None:
        if self.settings.run_failure is RunFailurePolicy.ABORT:
            raise FatalRunError(error)
        logger.warning(f"Skipping '{pipeline.name}' after failure: {error}")

    def run_once(self) -> CycleReport:
        return self.run_cycle()

    def run_forever(self, max_cycles: Optional[int] = None) -> int:
        """Cycle until the process is stopped, or until max_cycles cycles have run.

        Returns the number of cycles run.
        """
        cycles = 0
        while True:
            self.run_cycle()
            cycles += 1
            if max_cycles is not None and cycles >= max_cycles:
                return cycles
            logger.debug(f"Sleeping {self.settings.poll_interval_seconds}s until next cycle")
            self.sleep(self.settings.poll_interval_seconds)


def build_poll_loop(
    settings: RunnerSettings,
    config_source: ConfigSource,
    *,
    vcs: Optional[VersionControl] = None,
    executor: Optional[CommandExecutor] = None,
    sleep: Callable[[float], None] = time.sleep,
) -> PollLoop:
    """Wire the default components for the given settings."""
    vcs = vcs or GitClient(clone_attempts=settings.clone_attempts, sanitize_env=settings.sanitize_env)
    executor = executor or ShellCommandExecutor(sanitize_env=settings.sanitize_env)
    history = HistoryStore(settings.history_path, lock_timeout_seconds=settings.lock_timeout_seconds)

    return PollLoop(
        settings,
        config_source,
        ChangeDetector(vcs, settings),
        PipelineRunner(settings, vcs, executor, history),
        history,
        sleep=sleep,
    )
