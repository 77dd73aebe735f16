"""History filtering: fuzzy topic matching and the filter query string."""

import shlex
from dataclasses import dataclass, field
from datetime import datetime

from ..errors import TraceConfigError
from ..models import format_rfc3339, parse_rfc3339


def _is_subsequence(pattern: str, topic: str) -> bool:
    """True when the characters of pattern appear in topic in order."""
    it = iter(topic)
    return all(ch in it for ch in pattern)


def fuzzy_match_topic(topic: str, patterns: list[str] | None) -> bool:
    """
    Match a topic against fuzzy patterns.

    Patterns are OR-ed. Each non-empty pattern matches when its characters
    occur as a case-sensitive subsequence of the topic, so "hlrt" matches
    "home/living-room/temperature". No patterns, or only blank ones, match
    every topic.
    """
    active = [p.strip() for p in patterns or [] if p.strip()]
    if not active:
        return True
    return any(_is_subsequence(p, topic) for p in active)


@dataclass
class HistoryQuery:
    """Filter values of a history search.

    Rendered as ``topic=<t> payload=<p> start=<rfc3339> end=<rfc3339>``.
    Values holding spaces are quoted shell style: ``payload="hello world"``.
    """

    topics: list[str] = field(default_factory=list)
    payload: str = ""
    start: datetime | None = None
    end: datetime | None = None
    archived: bool = False

    @classmethod
    def parse(cls, text: str, archived: bool = False) -> "HistoryQuery":
        """Parse a query string. Unknown words are treated as topic patterns."""
        try:
            words = shlex.split(text)
        except ValueError as e:
            raise TraceConfigError(f"Invalid query {text!r}: {e}") from e

        query = cls(archived=archived)
        for part in words:
            name, sep, value = part.partition("=")
            if not sep:
                query.topics.append(part)
            elif name == "topic":
                query.topics.extend(t for t in value.split(",") if t)
            elif name == "payload":
                query.payload = value
            elif name == "start":
                query.start = parse_rfc3339(value)
            elif name == "end":
                query.end = parse_rfc3339(value)
            else:
                query.topics.append(part)
        query.validate()
        return query

    def validate(self) -> None:
        if self.start is not None and self.end is not None and self.start > self.end:
            raise TraceConfigError("End must be after start")

    def to_search_args(self) -> dict:
        """Keyword arguments for IHistoryStore.search()."""
        return {
            "archived": self.archived,
            "topics": list(self.topics),
            "start": self.start,
            "end": self.end,
            "payload": self.payload,
        }

    def __str__(self) -> str:
        parts = []
        if self.topics:
            parts.append("topic=" + ",".join(self.topics))
        if self.payload:
            parts.append("payload=" + self.payload)
        if self.start is not None:
            parts.append("start=" + format_rfc3339(self.start))
        if self.end is not None:
            parts.append("end=" + format_rfc3339(self.end))
        return " ".join(shlex.quote(p) for p in parts)
