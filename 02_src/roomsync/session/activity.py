"""RoomActivityWatcher: unread counts across a user's rooms."""

import asyncio
import random
from functools import partial
from typing import Awaitable, Callable

from ..channel import (
    MESSAGES_TABLE,
    READ_STATUS_TABLE,
    IRemoteDataChannel,
    Order,
    Subscription,
)
from ..errors import ChannelError
from ..logging_config import get_logger
from ..models import (
    ChangeEvent,
    ChangeType,
    ConnectionState,
    ReadMarker,
    format_timestamp,
    parse_timestamp,
    utcnow,
)
from .backoff import ResumeJitter
from .visibility import VisibilityGate

logger = get_logger(__name__)


class RoomActivityWatcher:
    """
    Tracks unread counts for the sidebar.

    Runs on its own subscription, separate from any RoomSession feed, and is
    released while the view is hidden just like a room feed.
    """

    def __init__(
        self,
        channel: IRemoteDataChannel,
        user_id: str,
        room_ids: list[str],
        unread_cap: int = 99,
        hide_debounce: float = 3.0,
        resume_jitter: ResumeJitter | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        rng: random.Random | None = None,
    ):
        self._channel = channel
        self._user_id = user_id
        self._room_ids = list(room_ids)
        self._unread_cap = unread_cap
        self._subscription: Subscription | None = None
        self._generation = 0
        self._state = ConnectionState.IDLE
        self._visibility = VisibilityGate(
            on_hide=self._release,
            on_resume=self.start,
            hide_debounce=hide_debounce,
            jitter=resume_jitter,
            sleep=sleep,
            rng=rng,
        )

        self.unread_counts: dict[str, int] = {room_id: 0 for room_id in self._room_ids}
        self.active_room_id: str | None = None
        self.error: str | None = None

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def visibility(self) -> VisibilityGate:
        return self._visibility

    async def start(self) -> None:
        """Compute counts from read markers, then follow new messages."""
        if self._state == ConnectionState.LIVE:
            return
        self._generation += 1
        generation = self._generation
        self._state = ConnectionState.LOADING
        self.error = None

        try:
            await self.refresh()
            subscription = await self._channel.subscribe(
                MESSAGES_TABLE,
                {"room_id": ("in", self._room_ids)},
                partial(self._on_change, generation),
            )
        except ChannelError as e:
            if generation == self._generation:
                self.error = f"Failed to load room activity: {e}"
                self._state = ConnectionState.FAILED
            logger.warning("Room activity start failed: %s", e)
            return

        if generation != self._generation:
            await self._channel.unsubscribe(subscription)
            return
        self._subscription = subscription
        self._state = ConnectionState.LIVE

    async def stop(self) -> None:
        """Release the subscription. Safe to call repeatedly."""
        await self._visibility.cancel()
        await self._release()

    async def set_visible(self, visible: bool) -> None:
        await self._visibility.set_visible(visible)

    async def refresh(self) -> None:
        """Recount unread messages for every room from the read markers."""
        rows = await self._channel.query(
            READ_STATUS_TABLE,
            {"user_id": self._user_id, "room_id": ("in", self._room_ids)},
        )
        markers = {
            row["room_id"]: ReadMarker(
                room_id=row["room_id"],
                user_id=row["user_id"],
                last_read_at=parse_timestamp(row["last_read_at"]),
            )
            for row in rows
        }

        for room_id in self._room_ids:
            filters: dict = {"room_id": room_id, "sender_id": ("neq", self._user_id)}
            marker = markers.get(room_id)
            if marker is not None:
                filters["created_at"] = ("gt", marker.last_read_at)
            unread = await self._channel.query(
                MESSAGES_TABLE,
                filters,
                Order("created_at", ascending=False),
                limit=self._unread_cap,
            )
            self.unread_counts[room_id] = (
                0 if room_id == self.active_room_id else len(unread)
            )

    def set_active_room(self, room_id: str | None) -> None:
        """The room currently open in the chat view never accumulates unread."""
        self.active_room_id = room_id
        if room_id is not None:
            self.unread_counts[room_id] = 0

    async def mark_read(self, room_id: str) -> None:
        """Reset a room's count and persist the read marker."""
        self.unread_counts[room_id] = 0
        try:
            await self._channel.upsert(
                READ_STATUS_TABLE,
                {
                    "room_id": room_id,
                    "user_id": self._user_id,
                    "last_read_at": format_timestamp(utcnow()),
                },
                conflict_keys=("room_id", "user_id"),
            )
        except ChannelError as e:
            logger.warning("Failed to persist read marker for %s: %s", room_id, e)

    async def _on_change(self, generation: int, event: ChangeEvent) -> None:
        if generation != self._generation or event.type != ChangeType.INSERT:
            return
        row = event.new or {}
        room_id = row.get("room_id")
        if room_id not in self.unread_counts or room_id == self.active_room_id:
            return
        if row.get("sender_id") == self._user_id:
            return
        self.unread_counts[room_id] = min(
            self.unread_counts[room_id] + 1, self._unread_cap
        )

    async def _release(self) -> None:
        self._generation += 1
        subscription, self._subscription = self._subscription, None
        if subscription is not None:
            try:
                await self._channel.unsubscribe(subscription)
            except Exception as e:
                logger.warning("Failed to release activity subscription: %s", e)
        if self._state != ConnectionState.IDLE:
            self._state = ConnectionState.CLOSED
