"""Tests for RoomActivityWatcher."""

import random
from datetime import datetime, timedelta, timezone

import pytest
import pytest_asyncio

from roomsync.channel import MESSAGES_TABLE, READ_STATUS_TABLE
from roomsync.errors import TransientChannelError
from roomsync.models import ConnectionState, format_timestamp
from roomsync.session import RoomActivityWatcher

T0 = datetime(2025, 1, 1, 12, 0, tzinfo=timezone.utc)


@pytest_asyncio.fixture
async def watcher(flaky, instant_sleep):
    w = RoomActivityWatcher(
        flaky, "alice", ["r1", "r2"], sleep=instant_sleep, rng=random.Random(5)
    )
    yield w
    await w.stop()


async def _post(channel, room_id, sender_id, seconds):
    return await channel.insert(
        MESSAGES_TABLE,
        {
            "room_id": room_id,
            "sender_id": sender_id,
            "body": "x",
            "created_at": format_timestamp(T0 + timedelta(seconds=seconds)),
        },
    )


class TestActivityCounts:
    """Tests for unread counting."""

    @pytest.mark.asyncio
    async def test_counts_from_read_markers(self, watcher, channel):
        """Test only foreign messages after the read marker count."""
        await channel.upsert(
            READ_STATUS_TABLE,
            {"room_id": "r1", "user_id": "alice", "last_read_at": format_timestamp(T0 + timedelta(seconds=10))},
            ("room_id", "user_id"),
        )
        await _post(channel, "r1", "bob", 5)     # before marker
        await _post(channel, "r1", "bob", 15)    # unread
        await _post(channel, "r1", "alice", 16)  # own message
        await _post(channel, "r2", "bob", 1)     # no marker: everything unread

        await watcher.start()

        assert watcher.state == ConnectionState.LIVE
        assert watcher.unread_counts == {"r1": 1, "r2": 1}

    @pytest.mark.asyncio
    async def test_live_increments(self, watcher, channel):
        """Test foreign inserts into inactive rooms increment counts."""
        await watcher.start()
        watcher.set_active_room("r1")

        await _post(channel, "r1", "bob", 1)
        await _post(channel, "r2", "bob", 2)
        await _post(channel, "r2", "alice", 3)
        await _post(channel, "r3", "bob", 4)

        assert watcher.unread_counts == {"r1": 0, "r2": 1}

    @pytest.mark.asyncio
    async def test_cap(self, flaky, channel, instant_sleep):
        """Test counts are capped."""
        w = RoomActivityWatcher(flaky, "alice", ["r1"], unread_cap=2, sleep=instant_sleep)
        await w.start()
        for i in range(5):
            await _post(channel, "r1", "bob", i)
        assert w.unread_counts["r1"] == 2
        await w.stop()

    @pytest.mark.asyncio
    async def test_mark_read(self, watcher, channel):
        """Test mark_read resets the count and persists the marker."""
        await _post(channel, "r2", "bob", 1)
        await watcher.start()
        assert watcher.unread_counts["r2"] == 1

        await watcher.mark_read("r2")

        assert watcher.unread_counts["r2"] == 0
        markers = await channel.query(READ_STATUS_TABLE, {"room_id": "r2", "user_id": "alice"})
        assert len(markers) == 1
        await watcher.refresh()
        assert watcher.unread_counts["r2"] == 0


class TestActivityLifecycle:
    """Tests for start/stop and visibility."""

    @pytest.mark.asyncio
    async def test_start_failure(self, watcher, flaky):
        """Test a failed initial load surfaces an error."""
        flaky.fail("query", TransientChannelError("down"))
        await watcher.start()
        assert watcher.state == ConnectionState.FAILED
        assert "down" in watcher.error
        assert flaky.active_subscriptions == 0

    @pytest.mark.asyncio
    async def test_separate_subscription(self, watcher, session, flaky):
        """Test the watcher and a room session hold separate subscriptions."""
        await session.open("r1", "alice")
        await watcher.start()
        assert flaky.active_subscriptions == 2

        await watcher.stop()
        assert flaky.active_subscriptions == 1
        assert session.state == ConnectionState.LIVE

    @pytest.mark.asyncio
    async def test_stop_idempotent(self, watcher, flaky):
        """Test stopping twice or before start is harmless."""
        await watcher.stop()
        await watcher.start()
        await watcher.stop()
        await watcher.stop()
        assert watcher.state == ConnectionState.CLOSED
        assert flaky.active_subscriptions == 0

    @pytest.mark.asyncio
    async def test_hidden_releases_and_resumes(self, watcher, flaky, channel):
        """Test the watcher follows the visibility teardown policy."""
        await watcher.start()

        await watcher.set_visible(False)
        await watcher.visibility.wait()
        assert flaky.active_subscriptions == 0
        assert watcher.state == ConnectionState.CLOSED

        await _post(channel, "r2", "bob", 1)
        await watcher.set_visible(True)
        await watcher.visibility.wait()
        assert watcher.state == ConnectionState.LIVE
        assert watcher.unread_counts["r2"] == 1
