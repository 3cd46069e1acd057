"""Room session data models."""

from dataclasses import dataclass
from datetime import datetime
from enum import Enum


class ConnectionState(str, Enum):
    """Lifecycle of one RoomSession."""

    IDLE = "idle"
    LOADING = "loading"
    SUBSCRIBING = "subscribing"
    LIVE = "live"
    RECONNECTING = "reconnecting"
    CLOSED = "closed"
    FAILED = "failed"


@dataclass
class ReadMarker:
    """Per-user, per-room last-read timestamp."""

    room_id: str
    user_id: str
    last_read_at: datetime


@dataclass
class AssistantIdentity:
    """Sender used for kind=assistant messages."""

    sender_id: str
    display_name: str = "Assistant"
