"""Core data models for mqtrace."""

from .messages import Message, MessageKind
from .tracing import TracerConfig, format_rfc3339, parse_rfc3339, split_topics

__all__ = [
    # Messages
    "Message",
    "MessageKind",
    # Tracing
    "TracerConfig",
    "parse_rfc3339",
    "format_rfc3339",
    "split_topics",
]
