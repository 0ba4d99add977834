"""Data model shared by the watcher and the send path."""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum


class ConnectionState(str, Enum):
    """Lifecycle states of a MailboxWatcher."""
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    WATCHING = "watching"
    RECONNECTING = "reconnecting"
    CLOSED = "closed"


@dataclass
class MailboxMessage:
    """A server-side message seen during a scan.

    The body is not part of this record; it is downloaded on demand by UID.
    """
    uid: int
    subject: str
    sender: str
    to: list[str] = field(default_factory=list)
    cc: list[str] = field(default_factory=list)
    date: datetime | None = None
    seen: bool = False

    @property
    def recipients(self) -> list[str]:
        """Primary recipients followed by carbon-copy recipients."""
        return [*self.to, *self.cc]


@dataclass(frozen=True)
class ForwardableEmail:
    """Normalized record handed to the send path, once per matched message."""
    subject: str
    recipient: str  # The configured target address that matched
    date: datetime
    content: str
