"""RoomSession: keeps one room's message list live for one user."""

import asyncio
import random
from functools import partial
from typing import Awaitable, Callable

from ..channel import (
    MEMBERS_TABLE,
    MESSAGES_TABLE,
    READ_STATUS_TABLE,
    IRemoteDataChannel,
    Order,
    Subscription,
)
from ..errors import ChannelError, TransientChannelError
from ..logging_config import get_logger
from ..models import (
    ChangeEvent,
    ChangeType,
    ConnectionState,
    Message,
    format_timestamp,
    parse_timestamp,
    utcnow,
)
from ..store import MessageStore
from .backoff import BackoffPolicy, ResumeJitter
from .visibility import VisibilityGate

logger = get_logger(__name__)

_ACTIVE_STATES = (
    ConnectionState.LOADING,
    ConnectionState.SUBSCRIBING,
    ConnectionState.LIVE,
    ConnectionState.RECONNECTING,
)


class RoomSession:
    """
    Lifecycle of "user U is looking at room R".

    idle -> loading -> subscribing -> live; live -> reconnecting -> live | failed;
    any active state -> closed on close(), room switch or a hidden view.
    failed is terminal: the owning view creates a new RoomSession to retry.

    Every open bumps a generation counter. Work that completes under an older
    generation (a late history page, a change event for a released feed) is
    discarded instead of mutating the store.
    """

    def __init__(
        self,
        channel: IRemoteDataChannel,
        page_size: int = 50,
        backoff: BackoffPolicy | None = None,
        hide_debounce: float = 3.0,
        resume_jitter: ResumeJitter | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        rng: random.Random | None = None,
    ):
        self._channel = channel
        self._page_size = page_size
        self._backoff = backoff or BackoffPolicy()
        self._sleep = sleep
        self._store = MessageStore()
        self._state = ConnectionState.IDLE
        self._generation = 0
        self._subscription: Subscription | None = None
        self._reconnect_task: asyncio.Task | None = None
        self._resume_target: tuple[str, str, str | None] | None = None
        self._visibility = VisibilityGate(
            on_hide=self._suspend,
            on_resume=self._resume,
            hide_debounce=hide_debounce,
            jitter=resume_jitter,
            sleep=sleep,
            rng=rng,
        )

        self.room_id: str | None = None
        self.user_id: str | None = None
        self.display_name: str | None = None
        self.error: str | None = None
        self.has_more = False
        self.loading_more = False

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def store(self) -> MessageStore:
        return self._store

    @property
    def messages(self) -> list[Message]:
        return self._store.messages

    @property
    def generation(self) -> int:
        return self._generation

    @property
    def visibility(self) -> VisibilityGate:
        return self._visibility

    def is_current(self, generation: int) -> bool:
        """True while work started under generation may still touch the store."""
        return generation == self._generation and self._state in _ACTIVE_STATES

    async def open(
        self, room_id: str, user_id: str, display_name: str | None = None
    ) -> list[Message]:
        """
        Load history, register presence, mark read and subscribe.

        Returns the initial ordered message list. Failures are reported via
        self.error and self.state, never raised.

        Raises:
            ValueError: room_id or user_id missing.
            RuntimeError: the session already failed.
        """
        if not room_id or not user_id:
            raise ValueError("room_id and user_id are required")
        if self._state == ConnectionState.FAILED:
            raise RuntimeError("RoomSession failed; create a new session to retry")

        if self._state in _ACTIVE_STATES:
            if (room_id, user_id) == (self.room_id, self.user_id):
                return self._store.messages
            await self._release(ConnectionState.CLOSED)

        # Reopening the same room after a hide keeps the old view until history lands
        if (room_id, user_id) != (self.room_id, self.user_id):
            self._store.clear()
            self.has_more = False

        self.room_id = room_id
        self.user_id = user_id
        self.display_name = display_name or self.display_name
        self.error = None
        self._generation += 1
        generation = self._generation
        self._set_state(ConnectionState.LOADING)

        await self._ensure_membership()
        if not self.is_current(generation):
            return []

        try:
            history, has_more = await self._fetch_page(before=None)
        except ChannelError as e:
            if self.is_current(generation):
                self._fail(f"Failed to load messages: {e}")
            return []
        if not self.is_current(generation):
            return []

        self._store.load_history(history)
        self.has_more = has_more

        await self.mark_read()
        if not self.is_current(generation):
            return []

        self._set_state(ConnectionState.SUBSCRIBING)
        try:
            await self._subscribe(generation)
        except TransientChannelError as e:
            logger.warning("Subscription to room %s failed: %s", room_id, e)
            self._start_reconnect(generation)
        except ChannelError as e:
            self._fail(f"Subscription rejected: {e}")

        return self._store.messages

    async def close(self) -> None:
        """Release the subscription. Safe to call repeatedly or before open()."""
        try:
            await self._visibility.cancel()
            self._resume_target = None
            await self._release(ConnectionState.CLOSED)
        except Exception as e:
            logger.error("Error while closing room session: %s", e, exc_info=True)

    async def set_visible(self, visible: bool) -> None:
        """Forward a page visibility change to the visibility gate."""
        await self._visibility.set_visible(visible)

    async def load_more(self) -> list[Message]:
        """Prepend the previous page of history. Returns the added messages."""
        if not self.has_more or self.loading_more or self._state not in _ACTIVE_STATES:
            return []
        before = self._store.oldest_created_at
        if before is None:
            return []

        generation = self._generation
        self.loading_more = True
        try:
            page, has_more = await self._fetch_page(before=before)
        except ChannelError as e:
            if self.is_current(generation):
                self.error = f"Failed to load older messages: {e}"
            return []
        finally:
            self.loading_more = False

        if not self.is_current(generation):
            return []
        self.has_more = has_more
        return self._store.prepend_history(page)

    async def mark_read(self) -> None:
        """Move the read marker to now. Failures are logged only."""
        if not self.room_id or not self.user_id:
            return
        try:
            await self._channel.upsert(
                READ_STATUS_TABLE,
                {
                    "room_id": self.room_id,
                    "user_id": self.user_id,
                    "last_read_at": format_timestamp(utcnow()),
                },
                conflict_keys=("room_id", "user_id"),
            )
        except ChannelError as e:
            logger.warning("Failed to mark room %s as read: %s", self.room_id, e)

    # Internals
    async def _ensure_membership(self) -> None:
        try:
            await self._channel.upsert(
                MEMBERS_TABLE,
                {
                    "room_id": self.room_id,
                    "user_id": self.user_id,
                    "is_online": True,
                    "last_seen_at": format_timestamp(utcnow()),
                },
                conflict_keys=("room_id", "user_id"),
            )
        except ChannelError as e:
            logger.warning("Failed to ensure membership in %s: %s", self.room_id, e)

    async def _fetch_page(self, before) -> tuple[list[Message], bool]:
        filters: dict = {"room_id": self.room_id}
        if before is not None:
            filters["created_at"] = ("lt", before)
        rows = await self._channel.query(
            MESSAGES_TABLE,
            filters,
            Order("created_at", ascending=False),
            limit=self._page_size + 1,
        )
        has_more = len(rows) > self._page_size
        rows = rows[: self._page_size]
        return [Message.from_row(row) for row in reversed(rows)], has_more

    async def _subscribe(self, generation: int, catch_up: bool = False) -> bool:
        subscription = await self._channel.subscribe(
            MESSAGES_TABLE,
            {"room_id": self.room_id},
            partial(self._on_change, generation),
            partial(self._on_feed_error, generation),
        )
        if not self.is_current(generation):
            await self._channel.unsubscribe(subscription)
            return False

        self._subscription = subscription
        self._set_state(ConnectionState.LIVE)
        if catch_up:
            await self._catch_up(generation)
        return True

    async def _catch_up(self, generation: int) -> None:
        """
        Reconcile rows committed while the feed was down.

        Pages forward from the newest confirmed entry until a short page comes
        back. Each page starts at the previous page's last timestamp, so rows
        sharing that timestamp are fetched again and absorbed by the id dedupe.
        A page made entirely of one timestamp cannot advance the cursor; the
        limit is doubled until it does.
        """
        cursor = self._store.latest_created_at
        limit = self._page_size
        recovered = 0
        while True:
            filters: dict = {"room_id": self.room_id}
            if cursor is not None:
                filters["created_at"] = ("gte", cursor)
            try:
                rows = await self._channel.query(
                    MESSAGES_TABLE, filters, Order("created_at"), limit=limit
                )
            except ChannelError as e:
                logger.warning("Catch-up query for %s failed: %s", self.room_id, e)
                return
            if not self.is_current(generation):
                return

            for row in rows:
                if self._store.reconcile_incoming(Message.from_row(row)) is not None:
                    recovered += 1
            if len(rows) < limit:
                break

            last = parse_timestamp(rows[-1]["created_at"])
            if cursor is not None and last <= cursor:
                limit *= 2
            else:
                cursor, limit = last, self._page_size

        if recovered:
            logger.info(
                "Recovered %s messages after reconnect",
                recovered,
                extra={"context": {"room_id": self.room_id}},
            )

    def _start_reconnect(self, generation: int) -> None:
        self._set_state(ConnectionState.RECONNECTING)
        self._reconnect_task = asyncio.create_task(self._reconnect(generation))

    async def _reconnect(self, generation: int) -> None:
        try:
            for attempt in range(1, self._backoff.max_attempts + 1):
                delay = self._backoff.delay_for(attempt)
                logger.info(
                    "Reconnecting to room %s in %.1fs (attempt %s/%s)",
                    self.room_id,
                    delay,
                    attempt,
                    self._backoff.max_attempts,
                )
                await self._sleep(delay)
                if not self.is_current(generation):
                    return
                try:
                    if await self._subscribe(generation, catch_up=True):
                        self.error = None
                    return
                except TransientChannelError as e:
                    logger.warning("Reconnect attempt %s failed: %s", attempt, e)
                except ChannelError as e:
                    self._fail(f"Subscription rejected: {e}")
                    return

            if self.is_current(generation):
                self._fail(
                    f"Unable to connect to room after {self._backoff.max_attempts} attempts"
                )
        finally:
            if self._reconnect_task is asyncio.current_task():
                self._reconnect_task = None

    async def _on_change(self, generation: int, event: ChangeEvent) -> None:
        if not self.is_current(generation):
            return
        if event.type == ChangeType.INSERT and event.new:
            self._store.reconcile_incoming(Message.from_row(event.new))
        elif event.type == ChangeType.UPDATE and event.new:
            self._store.apply_update(Message.from_row(event.new))
        elif event.type == ChangeType.DELETE and event.old:
            self._store.apply_delete(str(event.old["id"]))

    async def _on_feed_error(self, generation: int, error: Exception) -> None:
        if not self.is_current(generation) or self._state != ConnectionState.LIVE:
            return
        logger.warning("Feed for room %s dropped: %s", self.room_id, error)
        subscription, self._subscription = self._subscription, None
        if subscription is not None:
            await self._unsubscribe_quietly(subscription)
        self._start_reconnect(generation)

    async def _suspend(self) -> None:
        if self._state not in _ACTIVE_STATES:
            return
        self._resume_target = (self.room_id, self.user_id, self.display_name)
        await self._release(ConnectionState.CLOSED)

    async def _resume(self) -> None:
        target, self._resume_target = self._resume_target, None
        if target is None or self._state != ConnectionState.CLOSED:
            return
        await self.open(*target)

    async def _release(self, next_state: ConnectionState) -> None:
        self._generation += 1

        task, self._reconnect_task = self._reconnect_task, None
        if task is not None and task is not asyncio.current_task():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass

        subscription, self._subscription = self._subscription, None
        if subscription is not None:
            await self._unsubscribe_quietly(subscription)

        if self._state in _ACTIVE_STATES:
            self._set_state(next_state)

    async def _unsubscribe_quietly(self, subscription: Subscription) -> None:
        try:
            await self._channel.unsubscribe(subscription)
        except Exception as e:
            logger.warning("Failed to release subscription %s: %s", subscription.id, e)

    def _fail(self, message: str) -> None:
        self.error = message
        logger.error(message, extra={"context": {"room_id": self.room_id}})
        self._set_state(ConnectionState.FAILED)

    def _set_state(self, state: ConnectionState) -> None:
        if state == self._state:
            return
        logger.info(
            "Room session %s -> %s",
            self._state.value,
            state.value,
            extra={
                "context": {
                    "room_id": self.room_id,
                    "user_id": self.user_id,
                    "generation": self._generation,
                }
            },
        )
        self._state = state
