"""Helpers for normalizing subprocess output."""

from __future__ import annotations

from typing import Any


def to_text(value: Any) -> str:
    """Return subprocess output as str, whatever type it arrived as."""
    if value is None:
        return ""
    if isinstance(value, bytes):
        return value.decode("utf-8", errors="replace")
    return str(value)


def tail(text: str, max_lines: int = 20) -> str:
    """Last max_lines lines of text, for log messages."""
    lines = (text or "").rstrip("\n").splitlines()
    return "\n".join(lines[-max_lines:])
