"""Trace session data models."""

from dataclasses import dataclass, field
from datetime import datetime, timezone

from ..config import DEFAULT_PROFILE
from ..errors import TraceConfigError


def parse_rfc3339(value: str | None) -> datetime | None:
    """Parse an RFC3339 timestamp. Empty input means unbounded (None)."""
    if value is None or not value.strip():
        return None

    text = value.strip()
    if text.endswith(("Z", "z")):
        text = text[:-1] + "+00:00"
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError as e:
        raise TraceConfigError(f"invalid timestamp {value!r}: {e}") from e

    if parsed.tzinfo is None:
        raise TraceConfigError(f"invalid timestamp {value!r}: missing UTC offset")
    return parsed


def format_rfc3339(value: datetime | None) -> str:
    """Format a timestamp as RFC3339 (seconds precision). None becomes ""."""
    if value is None:
        return ""
    return value.astimezone(timezone.utc).isoformat(timespec="seconds").replace(
        "+00:00", "Z"
    )


def split_topics(value: str | None) -> list[str]:
    """Split a comma-separated topic list, dropping blanks."""
    if not value:
        return []
    return [t.strip() for t in value.split(",") if t.strip()]


@dataclass
class TracerConfig:
    """The durable definition of one capture session."""

    key: str
    profile: str = DEFAULT_PROFILE
    topics: list[str] = field(default_factory=list)  # empty = everything
    start: datetime | None = None
    end: datetime | None = None

    def validate(self, now: datetime | None = None) -> None:
        """Reject configurations that can never record anything."""
        if not self.key:
            raise TraceConfigError("trace key is required")
        now = now or datetime.now(timezone.utc)
        if self.end is not None and self.end < now:
            raise TraceConfigError("trace end time already passed")
        if self.start is not None and self.end is not None and self.start > self.end:
            raise TraceConfigError("End must be after start")

    def to_dict(self) -> dict:
        return {
            "key": self.key,
            "profile": self.profile,
            "topics": list(self.topics),
            "start": format_rfc3339(self.start),
            "end": format_rfc3339(self.end),
        }

    @classmethod
    def from_dict(cls, data: dict) -> "TracerConfig":
        return cls(
            key=data["key"],
            profile=data.get("profile") or DEFAULT_PROFILE,
            topics=list(data.get("topics") or []),
            start=parse_rfc3339(data.get("start")),
            end=parse_rfc3339(data.get("end")),
        )
