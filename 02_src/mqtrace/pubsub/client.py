"""Minimal publish/subscribe client capability used by the tracer."""

from typing import Callable, Protocol

# (topic, payload, retained); may be invoked from a client network thread.
MessageHandler = Callable[[str, bytes, bool], None]

MATCH_ALL = "#"


class IPubSubClient(Protocol):
    """Connect/publish/subscribe/disconnect, nothing more."""

    async def connect(self) -> None:
        """Open the session with the broker."""
        ...

    async def publish(
        self, topic: str, qos: int, retained: bool, payload: bytes | str
    ) -> None:
        """Publish one message."""
        ...

    async def subscribe(self, patterns: list[str], on_message: MessageHandler) -> None:
        """Subscribe to topic filters; an empty list subscribes to everything."""
        ...

    async def unsubscribe(self, patterns: list[str]) -> None:
        """Drop topic filters."""
        ...

    async def disconnect(self) -> None:
        """Close the session."""
        ...


def subscription_filters(patterns: list[str] | None) -> list[str]:
    """Non-blank filters, or the match-all filter when there are none."""
    filters = [p.strip() for p in patterns or [] if p.strip()]
    return filters or [MATCH_ALL]
