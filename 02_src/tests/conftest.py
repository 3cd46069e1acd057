"""Pytest configuration and fixtures."""

import asyncio
import random
import sys
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest
import pytest_asyncio

# Add parent directory to path
sys.path.insert(0, str(Path(__file__).parent.parent))


class InstantSleep:
    """Stand-in for asyncio.sleep that records delays and only yields once."""

    def __init__(self):
        self.delays: list[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)
        await asyncio.sleep(0)


class FlakyChannel:
    """
    Wraps a channel to inject failures and control feed delivery.

    fail(method, *errors) makes the next calls of that method raise, one
    error per call. While paused, change events are buffered until flush().
    """

    def __init__(self, inner):
        self.inner = inner
        self.calls: list[tuple[str, str]] = []
        self.paused = False
        self._failures: dict[str, list[Exception]] = {}
        self._buffered: list = []
        self._error_handlers: dict[str, object] = {}

    @property
    def active_subscriptions(self) -> int:
        return self.inner.feed.active_count

    def fail(self, method: str, *errors: Exception) -> None:
        self._failures.setdefault(method, []).extend(errors)

    def count(self, method: str, table: str | None = None) -> int:
        return sum(1 for m, t in self.calls if m == method and (table is None or t == table))

    def _record(self, method: str, table: str) -> None:
        self.calls.append((method, table))
        pending = self._failures.get(method)
        if pending:
            raise pending.pop(0)

    async def init(self):
        await self.inner.init()

    async def close(self):
        await self.inner.close()

    async def query(self, table, filters=None, order=None, limit=None):
        self._record("query", table)
        return await self.inner.query(table, filters, order, limit)

    async def insert(self, table, record):
        self._record("insert", table)
        return await self.inner.insert(table, record)

    async def upsert(self, table, record, conflict_keys):
        self._record("upsert", table)
        return await self.inner.upsert(table, record, conflict_keys)

    async def update(self, table, filters, changes):
        self._record("update", table)
        return await self.inner.update(table, filters, changes)

    async def delete(self, table, filters):
        self._record("delete", table)
        return await self.inner.delete(table, filters)

    async def subscribe(self, table, filters, handler, on_error=None):
        self._record("subscribe", table)

        async def deliver(event):
            if self.paused:
                self._buffered.append((handler, event))
                return
            await handler(event)

        subscription = await self.inner.subscribe(table, filters, deliver, on_error)
        if on_error is not None:
            self._error_handlers[subscription.id] = on_error
        return subscription

    async def unsubscribe(self, subscription):
        self.calls.append(("unsubscribe", subscription.table))
        self._error_handlers.pop(subscription.id, None)
        await self.inner.unsubscribe(subscription)

    async def upload_blob(self, bucket, path, data, content_type=None):
        self._record("upload_blob", bucket)
        return await self.inner.upload_blob(bucket, path, data, content_type)

    async def remove_blob(self, bucket, path):
        self._record("remove_blob", bucket)
        return await self.inner.remove_blob(bucket, path)

    def pause(self) -> None:
        self.paused = True

    async def flush(self) -> None:
        """Deliver buffered events in order and resume live delivery."""
        self.paused = False
        buffered, self._buffered = self._buffered, []
        for handler, event in buffered:
            await handler(event)

    async def drop_feeds(self, error: Exception) -> None:
        """Signal a transport failure to every subscriber that registered on_error."""
        for on_error in list(self._error_handlers.values()):
            await on_error(error)


class FakeLLM:
    """Router stand-in that streams a canned reply in chunks."""

    def __init__(self, chunks=("Hello", " there", "!"), error: Exception | None = None):
        self.chunks = list(chunks)
        self.error = error
        self.calls: list[dict] = []

    async def stream(self, messages, model, on_chunk=None, system=None, max_tokens=4096):
        self.calls.append({"messages": messages, "model": model})
        text = ""
        for chunk in self.chunks:
            await asyncio.sleep(0)
            text += chunk
            if on_chunk:
                on_chunk(text)
        if self.error is not None:
            raise self.error
        return text


@pytest_asyncio.fixture
async def channel():
    """Create in-memory SQLite channel for testing."""
    from roomsync.channel import SQLiteChannel

    ch = SQLiteChannel(":memory:")
    await ch.init()
    yield ch
    await ch.close()


@pytest.fixture
def flaky(channel):
    """Failure-injecting wrapper around the in-memory channel."""
    return FlakyChannel(channel)


@pytest.fixture
def instant_sleep():
    """Sleep replacement recording requested delays."""
    return InstantSleep()


@pytest_asyncio.fixture
async def session(flaky, instant_sleep):
    """Create RoomSession on the flaky channel with instant timers."""
    from roomsync.session import RoomSession

    rs = RoomSession(flaky, sleep=instant_sleep, rng=random.Random(7))
    yield rs
    await rs.close()


@pytest.fixture
def fake_llm():
    """Create fake streaming LLM router."""
    return FakeLLM()


@pytest.fixture
def seed_messages(channel):
    """Insert messages for a room directly, one second apart."""
    from roomsync.channel import MESSAGES_TABLE
    from roomsync.models import format_timestamp

    async def seed(room_id: str, count: int, sender_id: str = "bob", start: datetime | None = None):
        start = start or datetime(2025, 1, 1, 12, 0, tzinfo=timezone.utc)
        rows = []
        for i in range(count):
            rows.append(
                await channel.insert(
                    MESSAGES_TABLE,
                    {
                        "room_id": room_id,
                        "sender_id": sender_id,
                        "sender_name": sender_id.title(),
                        "body": f"message {i}",
                        "kind": "user",
                        "created_at": format_timestamp(start + timedelta(seconds=i)),
                    },
                )
            )
        return rows

    return seed
