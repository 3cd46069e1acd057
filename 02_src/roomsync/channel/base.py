"""Remote Data Channel contract."""

import uuid
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Protocol

from ..models import ChangeEvent
from .filters import Filters, Order

MESSAGES_TABLE = "messages"
READ_STATUS_TABLE = "read_status"
MEMBERS_TABLE = "room_members"
FILES_TABLE = "chat_files"
FILES_BUCKET = "chat-files"

ChangeHandler = Callable[[ChangeEvent], Awaitable[None]]
ErrorHandler = Callable[[Exception], Awaitable[None]]


@dataclass(frozen=True)
class Subscription:
    """Opaque handle returned by subscribe()."""

    table: str
    filters: tuple = ()
    id: str = field(default_factory=lambda: uuid.uuid4().hex)


class IRemoteDataChannel(Protocol):
    """Backend contract consumed by sessions, pipelines and uploaders."""

    async def init(self) -> None:
        """Open connections."""
        ...

    async def close(self) -> None:
        """Release connections and stop all subscriptions."""
        ...

    async def query(
        self,
        table: str,
        filters: Filters | None = None,
        order: Order | None = None,
        limit: int | None = None,
    ) -> list[dict]:
        """Point-in-time read."""
        ...

    async def insert(self, table: str, record: dict) -> dict:
        """Durable write. Returns the confirmed row with server id and timestamp."""
        ...

    async def upsert(
        self, table: str, record: dict, conflict_keys: tuple[str, ...]
    ) -> None:
        """Idempotent write keyed by a uniqueness constraint."""
        ...

    async def update(self, table: str, filters: Filters, changes: dict) -> list[dict]:
        """Modify matching rows. Returns the updated rows."""
        ...

    async def delete(self, table: str, filters: Filters) -> list[dict]:
        """Delete matching rows. Returns the deleted rows."""
        ...

    async def subscribe(
        self,
        table: str,
        filters: Filters | None,
        handler: ChangeHandler,
        on_error: ErrorHandler | None = None,
    ) -> Subscription:
        """Live feed of committed changes matching filters (at-least-once)."""
        ...

    async def unsubscribe(self, subscription: Subscription) -> None:
        """Stop a feed. Unknown or already released handles are ignored."""
        ...

    async def upload_blob(
        self, bucket: str, path: str, data: bytes, content_type: str | None = None
    ) -> str:
        """Store an object and return its public URL."""
        ...

    async def remove_blob(self, bucket: str, path: str) -> None:
        """Delete a stored object."""
        ...
