"""Tests for VectorStoreIndexer."""

import asyncio
from unittest.mock import AsyncMock, Mock

import pytest

from roomsync.llm import VectorStoreIndexer


def _client(*statuses):
    """OpenAI client stand-in whose vector store file reports statuses in turn."""
    client = Mock()
    client.files.create = AsyncMock(return_value=Mock(id="file-1"))
    client.vector_stores.files.create = AsyncMock(return_value=Mock(status=statuses[0]))
    client.vector_stores.files.retrieve = AsyncMock(
        side_effect=[Mock(status=s) for s in statuses[1:]]
    )
    return client


class TestVectorStoreIndexer:
    """Tests for indexing chat attachments."""

    def test_requires_api_key(self, monkeypatch):
        """Test a missing key without a client raises."""
        monkeypatch.delenv("OPENAI_API_KEY", raising=False)
        with pytest.raises(ValueError):
            VectorStoreIndexer("vs_1")

    @pytest.mark.asyncio
    async def test_index_polls_until_completed(self, instant_sleep):
        """Test the file is uploaded, attached and polled to completion."""
        client = _client("in_progress", "in_progress", "completed")
        indexer = VectorStoreIndexer("vs_1", client=client, sleep=instant_sleep)

        status = await indexer.index("notes.txt", b"hello")

        assert status == "completed"
        client.files.create.assert_awaited_once_with(
            file=("notes.txt", b"hello"), purpose="assistants"
        )
        client.vector_stores.files.create.assert_awaited_once_with(
            vector_store_id="vs_1", file_id="file-1"
        )
        assert client.vector_stores.files.retrieve.await_count == 2
        assert instant_sleep.delays == [1.0, 1.0]

    @pytest.mark.asyncio
    async def test_index_already_terminal(self, instant_sleep):
        """Test no polling happens when the attach call already finished."""
        client = _client("failed")
        indexer = VectorStoreIndexer("vs_1", client=client, sleep=instant_sleep)

        assert await indexer.index("a.pdf", b"%PDF") == "failed"
        assert client.vector_stores.files.retrieve.await_count == 0

    @pytest.mark.asyncio
    async def test_index_times_out(self, instant_sleep):
        """Test polling is bounded."""
        client = _client("in_progress", "in_progress", "in_progress", "in_progress")
        indexer = VectorStoreIndexer("vs_1", client=client, max_attempts=3, sleep=instant_sleep)

        assert await indexer.index("a.pdf", b"%PDF") == "timeout"
        assert client.vector_stores.files.retrieve.await_count == 3

    @pytest.mark.asyncio
    async def test_schedule_logs_errors(self, instant_sleep):
        """Test background indexing failures do not raise."""
        client = Mock()
        client.files.create = AsyncMock(side_effect=RuntimeError("quota"))
        indexer = VectorStoreIndexer("vs_1", client=client, sleep=instant_sleep)

        task = indexer.schedule("a.pdf", b"%PDF")
        assert await task is None
        assert indexer.pending == 0

    @pytest.mark.asyncio
    async def test_aclose_cancels_pending(self):
        """Test aclose() cancels indexing still in flight."""
        client = _client("in_progress", *["in_progress"] * 30)

        async def never(delay):
            await asyncio.Event().wait()

        indexer = VectorStoreIndexer("vs_1", client=client, sleep=never)
        task = indexer.schedule("a.pdf", b"%PDF")
        for _ in range(3):
            await asyncio.sleep(0)

        await indexer.aclose()

        assert task.cancelled()
        assert indexer.pending == 0

