"""Tests for ChangeFeed and filter evaluation."""

from datetime import datetime, timezone

import pytest

from roomsync.channel import ChangeFeed, row_matches
from roomsync.channel.filters import normalize_filters
from roomsync.models import ChangeEvent, ChangeType, MessageKind


def _insert(row, table="messages"):
    return ChangeEvent(table=table, type=ChangeType.INSERT, new=row)


class TestRowMatches:
    """Tests for row_matches()."""

    def test_equality_shorthand(self):
        """Test a bare value means equality."""
        assert row_matches({"room_id": "r1"}, {"room_id": "r1"})
        assert not row_matches({"room_id": "r2"}, {"room_id": "r1"})

    def test_operators(self):
        """Test comparison operators."""
        row = {"n": 5}
        assert row_matches(row, {"n": ("gt", 4)})
        assert row_matches(row, {"n": ("gte", 5)})
        assert row_matches(row, {"n": ("lt", 6)})
        assert row_matches(row, {"n": ("lte", 5)})
        assert row_matches(row, {"n": ("neq", 4)})
        assert row_matches(row, {"n": ("in", [1, 5])})
        assert not row_matches(row, {"n": ("in", [1, 2])})

    def test_missing_column_never_orders(self):
        """Test ordering comparisons against missing values are false."""
        assert not row_matches({}, {"n": ("gt", 1)})

    def test_values_are_normalized(self):
        """Test datetimes and enums compare by wire representation."""
        ts = datetime(2025, 1, 1, tzinfo=timezone.utc)
        row = {"created_at": "2025-01-01T00:00:00.000000+00:00", "kind": "user"}
        assert row_matches(row, {"created_at": ts, "kind": MessageKind.USER})

    def test_rejects_unknown_operator(self):
        """Test unknown operators fail loudly."""
        with pytest.raises(ValueError):
            normalize_filters({"n": ("like", "x")})

    def test_in_needs_collection(self):
        """Test 'in' requires a collection."""
        with pytest.raises(ValueError):
            normalize_filters({"n": ("in", 5)})


class TestChangeFeed:
    """Tests for ChangeFeed subscription and delivery."""

    @pytest.mark.asyncio
    async def test_publish_to_matching_subscribers(self):
        """Test only subscribers whose table and filters match receive events."""
        feed = ChangeFeed()
        r1, r2 = [], []

        async def h1(event):
            r1.append(event)

        async def h2(event):
            r2.append(event)

        feed.subscribe("messages", {"room_id": "r1"}, h1)
        feed.subscribe("messages", {"room_id": "r2"}, h2)

        await feed.publish(_insert({"id": "1", "room_id": "r1"}))
        await feed.publish(_insert({"id": "2", "room_id": "r1"}, table="read_status"))

        assert [e.new["id"] for e in r1] == ["1"]
        assert r2 == []

    @pytest.mark.asyncio
    async def test_handler_error_isolated(self):
        """Test one failing handler does not stop the others."""
        feed = ChangeFeed()
        received = []

        async def broken(event):
            raise RuntimeError("boom")

        async def ok(event):
            received.append(event)

        feed.subscribe("messages", None, broken)
        feed.subscribe("messages", None, ok)

        await feed.publish(_insert({"id": "1"}))
        assert len(received) == 1

    @pytest.mark.asyncio
    async def test_unsubscribe_idempotent(self):
        """Test releasing a handle twice is harmless."""
        feed = ChangeFeed()

        async def handler(event):
            pass

        sub = feed.subscribe("messages", None, handler)
        assert feed.active_count == 1
        feed.unsubscribe(sub)
        feed.unsubscribe(sub)
        assert feed.active_count == 0

    @pytest.mark.asyncio
    async def test_delete_events_match_old_row(self):
        """Test DELETE events are filtered by the old row."""
        feed = ChangeFeed()
        received = []

        async def handler(event):
            received.append(event)

        feed.subscribe("messages", {"room_id": "r1"}, handler)
        await feed.publish(
            ChangeEvent(table="messages", type=ChangeType.DELETE, old={"id": "1", "room_id": "r1"})
        )
        assert len(received) == 1
