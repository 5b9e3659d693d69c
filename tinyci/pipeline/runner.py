"""Pipeline runner.

Runs one pipeline end to end: reset the working directory, clone, checkout,
record the commit, run every stage in order, export artifacts and append the
finished RunLog to the history.

Failures are returned, not raised: run() always produces a PipelineResult.
A successful result has been persisted. A failed result (clone or checkout
failure, or a task failure under the strict policy) carries the partial
RunLog with its error set, and nothing is written to the history. A finished
run whose history append fails is returned with RunNotPersistedError and
persisted=False. Whether a failure stops the process is decided by the caller.
"""

from __future__ import annotations

import shutil
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, List, Optional

from loguru import logger

from tinyci.artifacts.exporter import ArtifactExporter
from tinyci.config import RunnerSettings
from tinyci.errors import (
    CheckoutError,
    CloneError,
    HistoryError,
    PipelineError,
    RunNotPersistedError,
    TaskFailedError,
    VcsError,
)
from tinyci.execution.executor import CommandExecutor
from tinyci.history.store import HistoryStore
from tinyci.pipeline.context import RunContext
from tinyci.pipeline.definitions import PipelineDef
from tinyci.pipeline.hierarchy import JobRunner, StageRunner, TaskRunner
from tinyci.pipeline.logs import RunLog, StageLog, finish, utc_now
from tinyci.tracing import get_tracer, run_span, safe_set_span_attributes
from tinyci.vcs.git import VersionControl

_tracer = get_tracer("tinyci.pipeline")


@dataclass(frozen=True)
class PipelineResult:
    """Outcome of one PipelineRunner.run call."""

    identity: str
    run_log: RunLog
    error: Optional[PipelineError] = None
    persisted: bool = False

    @property
    def success(self) -> bool:
        return self.error is None


class PipelineRunner:
    def __init__(
        self,
        settings: RunnerSettings,
        vcs: VersionControl,
        executor: CommandExecutor,
        history: HistoryStore,
        *,
        exporter: Optional[ArtifactExporter] = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.settings = settings
        self.vcs = vcs
        self.history = history
        self.exporter = exporter or ArtifactExporter()
        self.clock = clock
        self.stage_runner = StageRunner(
            JobRunner(TaskRunner(executor, clock=clock), clock=clock),
            clock=clock,
        )

    def _reset_working_dir(self, ctx: RunContext) -> None:
        pipeline_dir = ctx.paths.pipeline_dir
        if pipeline_dir.exists():
            shutil.rmtree(pipeline_dir)
        pipeline_dir.mkdir(parents=True)

    def _prepare_source(self, pipeline: PipelineDef, ctx: RunContext) -> None:
        try:
            self.vcs.clone(pipeline.src, ctx.paths.src_dir)
        except VcsError as e:
            raise CloneError("Git clone failed", identity=pipeline.identity) from e

        ref = pipeline.branch or "HEAD"
        if pipeline.branch:
            try:
                self.vcs.checkout(ctx.paths.src_dir, pipeline.branch)
            except VcsError as e:
                raise CheckoutError(f"Git checkout of '{ref}' failed", identity=pipeline.identity) from e

        try:
            ctx.record_commit(self.vcs.head_commit(ctx.paths.src_dir))
        except VcsError as e:
            raise CheckoutError(
                f"Could not read the commit checked out for '{ref}'", identity=pipeline.identity
            ) from e

    def _failed(
        self, pipeline: PipelineDef, ctx: RunContext, start: datetime, stages: List[StageLog], error: PipelineError
    ) -> PipelineResult:
        end, elapsed = finish(start, self.clock)
        cause = f": {error.__cause__}" if error.__cause__ else ""
        logger.error(f"Error: {error}{cause}")
        logger.info(f"END PIPELINE (failed) - {elapsed}ms : {pipeline.name}")
        run_log = RunLog(
            start_time=start,
            end_time=end,
            elapsed_ms=elapsed,
            commit_hash=ctx.commit_hash,
            stages=tuple(stages),
            error={"message": str(error)},
        )
        return PipelineResult(identity=pipeline.identity, run_log=run_log, error=error)

    def run(self, pipeline: PipelineDef) -> PipelineResult:
        logger.info(f"PIPELINE: {pipeline.name}")
        ctx = RunContext.for_pipeline(self.settings, pipeline.identity)
        stages: List[StageLog] = []

        with run_span(_tracer, "pipeline", {"pipeline": pipeline.identity, "run_id": ctx.run_id}) as span:
            start = self.clock()

            self._reset_working_dir(ctx)
            try:
                self._prepare_source(pipeline, ctx)
                for stage in pipeline.stages:
                    stages.append(self.stage_runner.run(stage, ctx))
            except (CloneError, CheckoutError, TaskFailedError) as e:
                safe_set_span_attributes(span, {"error": str(e)})
                return self._failed(pipeline, ctx, start, stages, e)

            safe_set_span_attributes(span, {"commit": ctx.commit_hash})

            if pipeline.artifacts:
                self.exporter.export(pipeline, ctx.paths.pipeline_dir)

            end, elapsed = finish(start, self.clock)

        run_log = RunLog(
            start_time=start,
            end_time=end,
            elapsed_ms=elapsed,
            commit_hash=ctx.commit_hash,
            stages=tuple(stages),
        )
        logger.info(f"END PIPELINE - {elapsed}ms : {pipeline.name}")

        try:
            self.history.append(pipeline.identity, run_log)
        except (HistoryError, TimeoutError) as e:
            error = RunNotPersistedError(
                f"Run of '{pipeline.name}' could not be saved to the history", identity=pipeline.identity
            )
            error.__cause__ = e
            logger.error(f"Error: {error}: {e}")
            return PipelineResult(identity=pipeline.identity, run_log=run_log, error=error)

        failed = run_log.failed_tasks()
        if failed:
            logger.warning(f"Pipeline '{pipeline.name}' finished with {len(failed)} failed task(s)")
        return PipelineResult(identity=pipeline.identity, run_log=run_log, persisted=True)
