"""
History Store
=============
Persisted run history: a single JSON document mapping each pipeline identity
to its append-only list of run logs, oldest first.

Design goals:
- Simple, transparent on-disk format (<workdir>/history.json)
- File locking around read-modify-write so two writers cannot interleave
- Whole-document replacement through a temp file, never a partial write
- Schema validation on read and before every write
"""

from __future__ import annotations

import json
import os
import tempfile
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List, Optional

from filelock import FileLock, Timeout
from loguru import logger

from tinyci.config import TIMEOUTS
from tinyci.errors import HistoryError
from tinyci.pipeline.logs import RunHistory, RunLog, history_from_payload, history_to_payload
from tinyci.utils.schema_validation import validate_run_history


@dataclass(frozen=True)
class HistoryStorePaths:
    """Resolved paths for a history store."""

    history_path: Path
    lock_path: Path


class HistoryStore:
    """Append-only run history keyed by pipeline identity.

    Usage:
        store = HistoryStore(Path("/var/lib/tinyci/history.json"))
        history = store.load()
        store.append("my-package", run_log)
    """

    def __init__(self, history_path: str | Path, lock_timeout_seconds: int = TIMEOUTS.FILE_LOCK):
        self.history_path = Path(history_path)
        self.lock_timeout_seconds = lock_timeout_seconds

    def paths(self) -> HistoryStorePaths:
        lock_path = self.history_path.with_suffix(self.history_path.suffix + ".lock")
        return HistoryStorePaths(history_path=self.history_path, lock_path=lock_path)

    def _read_payload(self) -> Dict[str, Any]:
        p = self.paths()
        if not p.history_path.exists():
            return {}

        try:
            payload = json.loads(p.history_path.read_text(encoding="utf-8"))
        except json.JSONDecodeError as e:
            raise HistoryError(f"Invalid JSON in history file {p.history_path}: {e}") from e
        except (OSError, UnicodeDecodeError) as e:
            raise HistoryError(f"Failed to read history file {p.history_path}: {e}") from e

        if not isinstance(payload, dict):
            raise HistoryError(f"History file {p.history_path} must contain a JSON object")

        try:
            validate_run_history(payload)
        except ValueError as e:
            raise HistoryError(f"Invalid run history in {p.history_path}: {e}") from e

        return payload

    def _write_payload(self, payload: Dict[str, Any]) -> None:
        p = self.paths()
        try:
            validate_run_history(payload)
        except ValueError as e:
            raise HistoryError(f"Refusing to write invalid run history: {e}") from e

        p.history_path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(
            prefix=p.history_path.name + ".", suffix=".tmp", dir=str(p.history_path.parent)
        )
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(json.dumps(payload, indent=2, ensure_ascii=False) + "\n")
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp_name, p.history_path)
        except OSError as e:
            if os.path.exists(tmp_name):
                os.unlink(tmp_name)
            raise HistoryError(f"Failed to write history file {p.history_path}: {e}") from e

    def load(self) -> RunHistory:
        """Load the whole history. A missing file is an empty history."""
        payload = self._read_payload()
        try:
            return history_from_payload(payload)
        except (KeyError, ValueError, TypeError) as e:
            raise HistoryError(f"Malformed run log in {self.history_path}: {e}") from e

    def runs(self, identity: str) -> List[RunLog]:
        """All runs recorded for one pipeline, oldest first."""
        return list(self.load().get(identity, []))

    def latest(self, identity: str) -> Optional[RunLog]:
        runs = self.runs(identity)
        return runs[-1] if runs else None

    def append(self, identity: str, run_log: RunLog) -> None:
        """Append a completed run log under the pipeline's identity.

        Read-modify-write of the whole document under the store's file lock.

        Raises:
            TimeoutError: When the lock cannot be acquired in time.
            HistoryError: When the existing history is unreadable or the write fails.
        """
        p = self.paths()
        p.history_path.parent.mkdir(parents=True, exist_ok=True)

        try:
            with FileLock(p.lock_path, timeout=self.lock_timeout_seconds):
                payload = self._read_payload()
                entries = payload.setdefault(identity, [])
                entries.append(run_log.to_dict())
                self._write_payload(payload)
        except Timeout as e:
            raise TimeoutError(
                f"Timed out acquiring history lock {p.lock_path} after {self.lock_timeout_seconds}s"
            ) from e

        logger.debug(f"Recorded run #{len(entries)} for '{identity}' in {p.history_path}")
