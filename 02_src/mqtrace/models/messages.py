"""Captured message data models."""

import uuid
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum


class MessageKind(str, Enum):
    """Event classification of a captured message."""

    PUBLISH = "pub"
    SUBSCRIBE_ACK = "sub"
    LOG = "log"


@dataclass(frozen=True)
class Message:
    """One captured event.

    Frozen: only the store flips ``archived``, by writing a new row state.
    """

    timestamp: datetime  # capture/receipt time
    topic: str
    payload: bytes = b""
    kind: MessageKind = MessageKind.PUBLISH
    retained: bool = False
    archived: bool = False
    id: str = field(default_factory=lambda: str(uuid.uuid4()))

    @property
    def text(self) -> str:
        """Payload decoded as UTF-8."""
        return self.payload.decode("utf-8", errors="replace")
