"""Persisted run history."""

from .store import HistoryStore

__all__ = ["HistoryStore"]
