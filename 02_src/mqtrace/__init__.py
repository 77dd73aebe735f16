"""mqtrace: MQTT capture, trace and history engine."""

from .app import Application, IApplication
from .errors import (
    AlreadyRunningError,
    DataExistsError,
    MqtraceError,
    StoreClosedError,
    TraceConfigError,
    TraceDeadlineExceeded,
)
from .history import HistoryQuery, format_detail_payload, fuzzy_match_topic
from .models import Message, MessageKind, TracerConfig
from .pubsub import IPubSubClient, PahoClient
from .relay import Relay
from .storage import HistoryStore, IHistoryStore, ITraceStore, TraceStore
from .tracer import TraceLauncher, Tracer, TracerState, run_trace

__all__ = [
    # Application
    "Application",
    "IApplication",
    # Models
    "Message",
    "MessageKind",
    "TracerConfig",
    # Errors
    "MqtraceError",
    "TraceConfigError",
    "DataExistsError",
    "AlreadyRunningError",
    "StoreClosedError",
    "TraceDeadlineExceeded",
    # Components
    "Relay",
    "IPubSubClient",
    "PahoClient",
    "IHistoryStore",
    "HistoryStore",
    "ITraceStore",
    "TraceStore",
    "Tracer",
    "TracerState",
    "TraceLauncher",
    "run_trace",
    # History search
    "HistoryQuery",
    "fuzzy_match_topic",
    "format_detail_payload",
]
