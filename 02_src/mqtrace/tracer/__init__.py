"""Trace session module."""

from .runner import TraceLauncher, TraceRunner, run_trace
from .tracer import Tracer, TracerState

__all__ = [
    "Tracer",
    "TracerState",
    "TraceLauncher",
    "TraceRunner",
    "run_trace",
]
