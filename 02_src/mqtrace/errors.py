"""Error taxonomy for the capture engine."""


class MqtraceError(Exception):
    """Base class for all capture engine errors."""


class TraceConfigError(MqtraceError, ValueError):
    """Invalid trace configuration, detected before any I/O."""


class DataExistsError(MqtraceError):
    """Stored data already exists for a (profile, key) partition."""

    def __init__(self, profile: str, key: str):
        super().__init__(f"trace key already exists: {profile}/{key}")
        self.profile = profile
        self.key = key


class AlreadyRunningError(MqtraceError):
    """The tracer is already running."""


class StoreClosedError(MqtraceError, RuntimeError):
    """The store was used after close()."""


class TraceDeadlineExceeded(MqtraceError, TimeoutError):
    """A deadline-bound trace run was cancelled by its deadline."""
