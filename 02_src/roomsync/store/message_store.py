"""MessageStore: the ordered, deduplicated list a chat view renders."""

import bisect
from dataclasses import replace
from datetime import datetime
from typing import Iterator

from ..logging_config import get_logger
from ..models import Attachment, Message, MessageDraft, is_local_id

logger = get_logger(__name__)


def merge_attachments(
    current: list[Attachment], incoming: list[Attachment]
) -> list[Attachment]:
    """Merge two attachment lists by key, keeping order and preferring incoming data."""
    merged = {a.key: a for a in current}
    for attachment in incoming:
        merged[attachment.key] = attachment
    return list(merged.values())


class MessageStore:
    """
    Merges historical, optimistic and confirmed messages for one room session.

    Entries are unique by id and ordered by created_at ascending. Optimistic
    entries use the local clock, so they may briefly sit out of true order
    until their confirmed counterpart replaces them in place.
    """

    def __init__(self):
        self._messages: list[Message] = []
        self._pending_attachments: dict[str, list[Attachment]] = {}

    def __len__(self) -> int:
        return len(self._messages)

    def __iter__(self) -> Iterator[Message]:
        return iter(list(self._messages))

    @property
    def messages(self) -> list[Message]:
        """Snapshot of the current entries."""
        return self._messages.copy()

    def get(self, message_id: str) -> Message | None:
        """Look up an entry by id."""
        index = self._index_of(message_id)
        return self._messages[index] if index is not None else None

    def optimistic(self) -> list[Message]:
        """Entries still waiting for server confirmation, oldest first."""
        return [m for m in self._messages if m.is_optimistic]

    @property
    def oldest_created_at(self) -> datetime | None:
        confirmed = [m.created_at for m in self._messages if not m.is_optimistic]
        return min(confirmed) if confirmed else None

    @property
    def latest_created_at(self) -> datetime | None:
        """Newest confirmed timestamp (the catch-up cursor)."""
        confirmed = [m.created_at for m in self._messages if not m.is_optimistic]
        return max(confirmed) if confirmed else None

    def clear(self) -> None:
        """Forget every entry, e.g. when the session moves to another room."""
        self._messages.clear()
        self._pending_attachments.clear()

    # History
    def load_history(self, messages: list[Message]) -> None:
        """Replace the store wholesale with confirmed history."""
        self._pending_attachments.clear()
        self._messages = self._dedupe(sorted(messages, key=lambda m: m.created_at))

    def prepend_history(self, messages: list[Message]) -> list[Message]:
        """Add an older page in front of the current entries. Returns what was added."""
        known = {m.id for m in self._messages}
        older = [
            m for m in self._dedupe(sorted(messages, key=lambda m: m.created_at))
            if m.id not in known
        ]
        self._messages = older + self._messages
        return older

    # Optimistic entries
    def append_optimistic(
        self, draft: MessageDraft, created_at: datetime | None = None
    ) -> Message:
        """Show a draft immediately under a fresh local id."""
        entry = Message.from_draft(draft, created_at)
        self._messages.append(entry)
        return entry

    def remove_optimistic(self, local_id: str) -> bool:
        """Drop an optimistic entry whose write failed. Confirmed entries are never removed."""
        if not is_local_id(local_id):
            return False
        index = self._index_of(local_id)
        if index is None or not self._messages[index].is_optimistic:
            return False
        del self._messages[index]
        return True

    # Reconciliation
    def reconcile_incoming(self, server_message: Message) -> Message | None:
        """
        Merge a confirmed row delivered by the change feed.

        A duplicate delivery of a known id is a no-op. Otherwise the row
        replaces, in place, the optimistic entry it confirms: the one carrying
        the same correlation token, or, for rows without a token, the oldest
        optimistic entry with the same sender, body and kind. Unmatched rows
        are inserted in created_at order.

        Returns:
            The entry now in the store, or None for a duplicate.
        """
        if self._index_of(server_message.id) is not None:
            logger.debug("Duplicate delivery of %s ignored", server_message.id)
            return None

        confirmed = server_message.confirmed()
        pending = self._pending_attachments.pop(confirmed.id, None)
        if pending:
            confirmed = replace(
                confirmed, attachments=merge_attachments(confirmed.attachments, pending)
            )

        index = self._match_optimistic(confirmed)
        if index is not None:
            placeholder = self._messages[index]
            if not confirmed.attachments and placeholder.attachments:
                confirmed = replace(confirmed, attachments=list(placeholder.attachments))
            self._messages[index] = confirmed
            return confirmed

        self._insert_ordered(confirmed)
        return confirmed

    def _match_optimistic(self, incoming: Message) -> int | None:
        if incoming.correlation_id:
            for i, entry in enumerate(self._messages):
                if entry.is_optimistic and entry.correlation_id == incoming.correlation_id:
                    return i
            # Token present but not ours: another client sent identical content
            return None

        for i, entry in enumerate(self._messages):
            if entry.is_optimistic and entry.same_content(incoming):
                return i
        return None

    # Updates
    def apply_update(self, message: Message) -> bool:
        """Replace a confirmed entry's fields with an edited row."""
        index = self._index_of(message.id)
        if index is None:
            return False
        current = self._messages[index]
        attachments = message.attachments or current.attachments
        self._messages[index] = replace(
            message.confirmed(), attachments=list(attachments)
        )
        return True

    def apply_delete(self, message_id: str) -> bool:
        """Remove an entry deleted on the server."""
        index = self._index_of(message_id)
        if index is None:
            return False
        del self._messages[index]
        return True

    def upsert_attachments_for(
        self, server_id: str, attachments: list[Attachment]
    ) -> bool:
        """
        Attach file metadata to a confirmed message.

        If the row has not arrived yet the attachments are kept and applied
        when it does. Returns True when an entry was updated now.
        """
        if not attachments:
            return False

        index = self._index_of(server_id)
        if index is None:
            self._pending_attachments[server_id] = merge_attachments(
                self._pending_attachments.get(server_id, []), attachments
            )
            return False

        current = self._messages[index]
        self._messages[index] = replace(
            current, attachments=merge_attachments(current.attachments, attachments)
        )
        return True

    # Helpers
    def _index_of(self, message_id: str) -> int | None:
        for i, entry in enumerate(self._messages):
            if entry.id == message_id:
                return i
        return None

    def _insert_ordered(self, message: Message) -> None:
        keys = [m.created_at for m in self._messages]
        self._messages.insert(bisect.bisect_right(keys, message.created_at), message)

    @staticmethod
    def _dedupe(messages: list[Message]) -> list[Message]:
        seen: set[str] = set()
        unique = []
        for message in messages:
            if message.id not in seen:
                seen.add(message.id)
                unique.append(message)
        return unique
