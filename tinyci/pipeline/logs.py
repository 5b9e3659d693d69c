"""
Run Logs
========
Typed, immutable records describing one pipeline execution.

Logs are built bottom-up: each runner returns its own record holding the
records of its children, in definition order. A RunLog never changes after it
has been appended to the history.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Tuple


def truncate_ms(ts: datetime) -> datetime:
    """Drop sub-millisecond precision; run logs are kept in whole milliseconds."""
    return ts.replace(microsecond=ts.microsecond // 1000 * 1000)


def utc_now() -> datetime:
    return truncate_ms(datetime.now(timezone.utc))


def elapsed_ms(start: datetime, end: datetime) -> int:
    """Whole milliseconds between start and end, never negative."""
    return max(0, (end - start) // timedelta(milliseconds=1))


def finish(start: datetime, clock: Callable[[], datetime] = utc_now) -> Tuple[datetime, int]:
    """Read the end time for a record started at `start`.

    The end time is start + elapsed_ms, so end - start is always exactly the
    reported number of milliseconds: a clock that stepped backwards gives 0
    and a sub-millisecond remainder is dropped.
    """
    elapsed = elapsed_ms(start, clock())
    return start + timedelta(milliseconds=elapsed), elapsed


def _iso(ts: datetime) -> str:
    return ts.astimezone(timezone.utc).isoformat(timespec="microseconds").replace("+00:00", "Z")


def _parse_ts(raw: Any) -> datetime:
    if not isinstance(raw, str) or not raw:
        raise ValueError(f"Invalid timestamp: {raw!r}")
    ts = datetime.fromisoformat(raw.replace("Z", "+00:00"))
    if ts.tzinfo is None:
        ts = ts.replace(tzinfo=timezone.utc)
    return ts


class TaskStatus(str, Enum):
    SUCCESS = "success"
    FAILED = "failed"


@dataclass(frozen=True)
class TaskLog:
    command: str
    start_time: datetime
    end_time: datetime
    elapsed_ms: int
    status: TaskStatus
    exit_code: Optional[int] = None

    @property
    def succeeded(self) -> bool:
        return self.status is TaskStatus.SUCCESS

    def to_dict(self) -> Dict[str, Any]:
        return {
            "command": self.command,
            "start_time": _iso(self.start_time),
            "end_time": _iso(self.end_time),
            "elapsed_ms": self.elapsed_ms,
            "status": self.status.value,
            "exit_code": self.exit_code,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "TaskLog":
        return cls(
            command=str(data["command"]),
            start_time=_parse_ts(data["start_time"]),
            end_time=_parse_ts(data["end_time"]),
            elapsed_ms=int(data["elapsed_ms"]),
            status=TaskStatus(data["status"]),
            exit_code=data.get("exit_code"),
        )


@dataclass(frozen=True)
class JobLog:
    name: str
    start_time: datetime
    end_time: datetime
    elapsed_ms: int
    tasks: Tuple[TaskLog, ...] = ()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "start_time": _iso(self.start_time),
            "end_time": _iso(self.end_time),
            "elapsed_ms": self.elapsed_ms,
            "tasks": [t.to_dict() for t in self.tasks],
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "JobLog":
        return cls(
            name=str(data["name"]),
            start_time=_parse_ts(data["start_time"]),
            end_time=_parse_ts(data["end_time"]),
            elapsed_ms=int(data["elapsed_ms"]),
            tasks=tuple(TaskLog.from_dict(t) for t in data.get("tasks", [])),
        )


@dataclass(frozen=True)
class StageLog:
    name: str
    start_time: datetime
    end_time: datetime
    elapsed_ms: int
    jobs: Tuple[JobLog, ...] = ()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "start_time": _iso(self.start_time),
            "end_time": _iso(self.end_time),
            "elapsed_ms": self.elapsed_ms,
            "jobs": [j.to_dict() for j in self.jobs],
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "StageLog":
        return cls(
            name=str(data["name"]),
            start_time=_parse_ts(data["start_time"]),
            end_time=_parse_ts(data["end_time"]),
            elapsed_ms=int(data["elapsed_ms"]),
            jobs=tuple(JobLog.from_dict(j) for j in data.get("jobs", [])),
        )


@dataclass(frozen=True)
class RunLog:
    """One pipeline execution.

    `commit_hash` is the revision that was built. It is None only on a log
    that never reached checkout (a failed clone), and such logs are never
    persisted.
    """

    start_time: datetime
    end_time: datetime
    elapsed_ms: int
    commit_hash: Optional[str]
    stages: Tuple[StageLog, ...] = ()
    error: Optional[Dict[str, str]] = None

    def iter_tasks(self):
        for stage in self.stages:
            for job in stage.jobs:
                yield from job.tasks

    def failed_tasks(self) -> List[TaskLog]:
        return [t for t in self.iter_tasks() if not t.succeeded]

    @property
    def succeeded(self) -> bool:
        return self.error is None and not self.failed_tasks()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "start_time": _iso(self.start_time),
            "end_time": _iso(self.end_time),
            "elapsed_ms": self.elapsed_ms,
            "commit_hash": self.commit_hash,
            "stages": [s.to_dict() for s in self.stages],
            "error": dict(self.error) if self.error else None,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "RunLog":
        error = data.get("error")
        return cls(
            start_time=_parse_ts(data["start_time"]),
            end_time=_parse_ts(data["end_time"]),
            elapsed_ms=int(data["elapsed_ms"]),
            commit_hash=data.get("commit_hash"),
            stages=tuple(StageLog.from_dict(s) for s in data.get("stages", [])),
            error={str(k): str(v) for k, v in error.items()} if isinstance(error, dict) else None,
        )


RunHistory = Dict[str, List[RunLog]]


def history_to_payload(history: RunHistory) -> Dict[str, List[Dict[str, Any]]]:
    return {identity: [log.to_dict() for log in logs] for identity, logs in history.items()}


def history_from_payload(payload: Dict[str, Any]) -> RunHistory:
    return {
        str(identity): [RunLog.from_dict(entry) for entry in entries]
        for identity, entries in payload.items()
    }
