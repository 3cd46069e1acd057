"""Message-related data models."""

import uuid
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from enum import Enum

LOCAL_ID_PREFIX = "temp_"


class MessageKind(str, Enum):
    """How a message is rendered and who may have sent it."""

    USER = "user"
    ASSISTANT = "assistant"
    SYSTEM = "system"
    MEETING_SHARE = "meeting-share"


def new_local_id() -> str:
    """Generate a temporary id for an optimistic entry."""
    return f"{LOCAL_ID_PREFIX}{uuid.uuid4().hex}"


def is_local_id(value: str | None) -> bool:
    """True for ids produced by new_local_id()."""
    return bool(value) and value.startswith(LOCAL_ID_PREFIX)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def format_timestamp(value: datetime) -> str:
    """Serialize a timestamp so that string order equals time order."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat(timespec="microseconds")


def parse_timestamp(value: str | datetime) -> datetime:
    """Parse a backend timestamp into an aware UTC datetime."""
    if isinstance(value, datetime):
        ts = value
    else:
        ts = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if ts.tzinfo is None:
        ts = ts.replace(tzinfo=timezone.utc)
    return ts.astimezone(timezone.utc)


@dataclass
class Attachment:
    """Metadata of an uploaded file referenced by a message."""

    name: str
    size: int
    media_type: str
    url: str | None = None
    id: str | None = None
    path: str | None = None

    @property
    def key(self) -> str:
        """Identity used when merging attachment lists."""
        return self.id or self.url or self.path or self.name

    def to_row(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "size": self.size,
            "type": self.media_type,
            "url": self.url,
            "path": self.path,
        }

    @classmethod
    def from_row(cls, row: dict) -> "Attachment":
        return cls(
            name=row.get("name") or row.get("file_name") or "",
            size=int(row.get("size") or row.get("file_size") or 0),
            media_type=row.get("type") or row.get("file_type") or "",
            url=row.get("url") or row.get("storage_url"),
            id=row.get("id"),
            path=row.get("path") or row.get("file_path"),
        )


@dataclass
class MessageDraft:
    """What the user typed, before it becomes an entry in the store."""

    room_id: str
    sender_id: str
    sender_name: str
    body: str | None
    kind: MessageKind = MessageKind.USER
    attachments: list[Attachment] = field(default_factory=list)


@dataclass
class Message:
    """A single chat message, optimistic or confirmed."""

    id: str
    room_id: str
    sender_id: str
    sender_name: str
    body: str | None
    kind: MessageKind
    created_at: datetime
    attachments: list[Attachment] = field(default_factory=list)
    is_optimistic: bool = False
    correlation_id: str | None = None

    @classmethod
    def from_draft(
        cls, draft: MessageDraft, created_at: datetime | None = None
    ) -> "Message":
        """Materialize a draft as an optimistic entry with a fresh local id."""
        local_id = new_local_id()
        return cls(
            id=local_id,
            room_id=draft.room_id,
            sender_id=draft.sender_id,
            sender_name=draft.sender_name,
            body=draft.body,
            kind=MessageKind(draft.kind),
            created_at=created_at or utcnow(),
            attachments=list(draft.attachments),
            is_optimistic=True,
            correlation_id=local_id,
        )

    def same_content(self, other: "Message") -> bool:
        """Sender, body and kind equality used for reconciliation."""
        return (
            self.sender_id == other.sender_id
            and (self.body or "") == (other.body or "")
            and self.kind == other.kind
        )

    def confirmed(self) -> "Message":
        return replace(self, is_optimistic=False)

    def to_row(self) -> dict:
        """Insert payload for the messages table. The server assigns id and created_at."""
        return {
            "room_id": self.room_id,
            "sender_id": self.sender_id,
            "sender_name": self.sender_name,
            "body": self.body,
            "kind": self.kind.value,
            "has_files": bool(self.attachments),
            "attachments": [a.to_row() for a in self.attachments],
            "metadata": {"temp_id": self.correlation_id} if self.correlation_id else {},
        }

    @classmethod
    def from_row(cls, row: dict) -> "Message":
        metadata = row.get("metadata") or {}
        return cls(
            id=str(row["id"]),
            room_id=row["room_id"],
            sender_id=row["sender_id"],
            sender_name=row.get("sender_name") or "",
            body=row.get("body"),
            kind=MessageKind(row.get("kind") or MessageKind.USER.value),
            created_at=parse_timestamp(row["created_at"]),
            attachments=[Attachment.from_row(a) for a in row.get("attachments") or []],
            is_optimistic=False,
            correlation_id=metadata.get("temp_id"),
        )
