"""Change-feed data models."""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum

from .messages import utcnow


class ChangeType(str, Enum):
    """Kinds of committed row changes delivered by a subscription."""

    INSERT = "INSERT"
    UPDATE = "UPDATE"
    DELETE = "DELETE"


@dataclass
class ChangeEvent:
    """A committed change to one row."""

    table: str
    type: ChangeType
    new: dict | None = None
    old: dict | None = None
    received_at: datetime = field(default_factory=utcnow)

    @property
    def row(self) -> dict:
        """The row the event is about (new for inserts/updates, old for deletes)."""
        return self.new if self.new is not None else (self.old or {})
