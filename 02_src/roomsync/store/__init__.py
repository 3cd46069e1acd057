"""Message store module."""

from .grouping import DEFAULT_GROUP_GAP, DisplayHints, continues_run, display_hints
from .message_store import MessageStore, merge_attachments

__all__ = [
    "MessageStore",
    "merge_attachments",
    "DisplayHints",
    "display_hints",
    "continues_run",
    "DEFAULT_GROUP_GAP",
]
