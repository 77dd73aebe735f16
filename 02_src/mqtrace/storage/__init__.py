"""Capture store module."""

from .history_store import HistoryStore, IHistoryStore
from .trace_store import ITraceStore, TraceStore

__all__ = [
    "HistoryStore",
    "IHistoryStore",
    "ITraceStore",
    "TraceStore",
]
