"""Room session module."""

from .activity import RoomActivityWatcher
from .backoff import BackoffPolicy, ResumeJitter
from .controller import RoomSession
from .visibility import VisibilityGate

__all__ = [
    "RoomSession",
    "RoomActivityWatcher",
    "BackoffPolicy",
    "ResumeJitter",
    "VisibilityGate",
]
