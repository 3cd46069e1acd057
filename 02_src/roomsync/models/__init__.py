"""Core data models for roomsync."""

from .changes import ChangeEvent, ChangeType
from .messages import (
    LOCAL_ID_PREFIX,
    Attachment,
    Message,
    MessageDraft,
    MessageKind,
    format_timestamp,
    is_local_id,
    new_local_id,
    parse_timestamp,
    utcnow,
)
from .session import AssistantIdentity, ConnectionState, ReadMarker
from .uploads import AttachmentUpload, UploadFailure, UploadStatus

__all__ = [
    # Messages
    "Attachment",
    "Message",
    "MessageDraft",
    "MessageKind",
    "LOCAL_ID_PREFIX",
    "new_local_id",
    "is_local_id",
    "utcnow",
    "format_timestamp",
    "parse_timestamp",
    # Sessions
    "ConnectionState",
    "ReadMarker",
    "AssistantIdentity",
    # Uploads
    "AttachmentUpload",
    "UploadFailure",
    "UploadStatus",
    # Change feed
    "ChangeEvent",
    "ChangeType",
]
