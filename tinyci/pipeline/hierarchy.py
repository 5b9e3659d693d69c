"""
Stage, Job and Task Runners
===========================
The three inner levels of the execution hierarchy.

Stage and job runners are the same fold over their children: run each child
in definition order, collect its log, and stamp start/end/elapsed around the
whole sequence. The task runner is the leaf that calls the command executor.
"""

from __future__ import annotations

from datetime import datetime
from typing import Callable, List, Sequence, Tuple, TypeVar

from loguru import logger

from tinyci.errors import TaskFailedError
from tinyci.execution.executor import CommandExecutor
from tinyci.pipeline.context import RunContext
from tinyci.pipeline.definitions import JobDef, StageDef, TaskDef
from tinyci.pipeline.logs import JobLog, StageLog, TaskLog, TaskStatus, finish, utc_now
from tinyci.tracing import get_tracer, run_span, safe_set_span_attributes
from tinyci.utils.subprocess_text import tail

_tracer = get_tracer("tinyci.pipeline")

Clock = Callable[[], datetime]
D = TypeVar("D")
L = TypeVar("L")


def _fold(
    children: Sequence[D],
    run_child: Callable[[D], L],
    clock: Clock,
) -> Tuple[datetime, datetime, int, Tuple[L, ...]]:
    start = clock()
    logs: List[L] = []
    for child in children:
        logs.append(run_child(child))
    end, elapsed = finish(start, clock)
    return start, end, elapsed, tuple(logs)


class TaskRunner:
    """Runs one command in the working copy and records its outcome."""

    def __init__(self, executor: CommandExecutor, *, clock: Clock = utc_now):
        self.executor = executor
        self.clock = clock

    def run(self, task: TaskDef, ctx: RunContext) -> TaskLog:
        logger.info(f"TASK: {task.cmd}")
        timeout = task.timeout_seconds or ctx.settings.task_timeout_seconds

        with run_span(_tracer, "task", {"pipeline": ctx.identity, "command": task.cmd}) as span:
            start = self.clock()
            result = self.executor.run(task.cmd, ctx.cwd, timeout)
            end, elapsed = finish(start, self.clock)

            status = TaskStatus.SUCCESS if result.exit_code == 0 else TaskStatus.FAILED
            safe_set_span_attributes(span, {
                "exit_code": result.exit_code,
                "status": status.value,
                "timed_out": result.timed_out,
            })

        if result.stdout:
            logger.debug(f"stdout of '{task.cmd}':\n{tail(result.stdout)}")
        if result.stderr:
            logger.debug(f"stderr of '{task.cmd}':\n{tail(result.stderr)}")

        task_log = TaskLog(
            command=task.cmd,
            start_time=start,
            end_time=end,
            elapsed_ms=elapsed,
            status=status,
            exit_code=result.exit_code,
        )

        if status is TaskStatus.FAILED:
            logger.error(f"Error: Executing the command '{task.cmd}' failed (exit code {result.exit_code}).")
            if ctx.settings.strict:
                raise TaskFailedError(
                    f"Task '{task.cmd}' failed with exit code {result.exit_code}",
                    identity=ctx.identity,
                    command=task.cmd,
                    exit_code=result.exit_code,
                )

        logger.info(f"END TASK - {elapsed}ms : {task.cmd}")
        return task_log


class JobRunner:
    """Runs a job's tasks in order."""

    def __init__(self, task_runner: TaskRunner, *, clock: Clock = utc_now):
        self.task_runner = task_runner
        self.clock = clock

    def run(self, job: JobDef, ctx: RunContext) -> JobLog:
        logger.info(f"JOB: {job.name}")
        with run_span(_tracer, "job", {"pipeline": ctx.identity, "job": job.name}):
            start, end, elapsed, tasks = _fold(
                job.tasks, lambda task: self.task_runner.run(task, ctx), self.clock
            )
        logger.info(f"END JOB - {elapsed}ms : {job.name}")
        return JobLog(name=job.name, start_time=start, end_time=end, elapsed_ms=elapsed, tasks=tasks)


class StageRunner:
    """Runs a stage's jobs in order."""

    def __init__(self, job_runner: JobRunner, *, clock: Clock = utc_now):
        self.job_runner = job_runner
        self.clock = clock

    def run(self, stage: StageDef, ctx: RunContext) -> StageLog:
        logger.info(f"STAGE: {stage.name}")
        with run_span(_tracer, "stage", {"pipeline": ctx.identity, "stage": stage.name}):
            start, end, elapsed, jobs = _fold(
                stage.jobs, lambda job: self.job_runner.run(job, ctx), self.clock
            )
        logger.info(f"END STAGE - {elapsed}ms : {stage.name}")
        return StageLog(name=stage.name, start_time=start, end_time=end, elapsed_ms=elapsed, jobs=jobs)
