"""Background indexing of chat attachments into an OpenAI vector store."""

import asyncio
import os
from typing import Awaitable, Callable

import openai

from ..logging_config import get_logger

logger = get_logger(__name__)

TERMINAL_STATUSES = ("completed", "failed", "cancelled")


class VectorStoreIndexer:
    """
    Submits uploaded files to a vector store so assistant replies can search them.

    Indexing is fire-and-forget: `schedule` never blocks a send, and the
    status poll is bounded.
    """

    def __init__(
        self,
        vector_store_id: str,
        api_key: str | None = None,
        client: openai.AsyncOpenAI | None = None,
        poll_interval: float = 1.0,
        max_attempts: int = 30,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        if client is None:
            api_key = api_key or os.getenv("OPENAI_API_KEY")
            if not api_key:
                raise ValueError("OPENAI_API_KEY environment variable not set")
            client = openai.AsyncOpenAI(api_key=api_key)

        self._vector_store_id = vector_store_id
        self._client = client
        self._poll_interval = poll_interval
        self._max_attempts = max_attempts
        self._sleep = sleep
        self._tasks: set[asyncio.Task] = set()

    @property
    def pending(self) -> int:
        return len(self._tasks)

    async def index(self, name: str, data: bytes) -> str:
        """
        Upload one file and wait for the vector store to process it.

        Returns:
            Final status: "completed", "failed", "cancelled" or "timeout".
        """
        uploaded = await self._client.files.create(file=(name, data), purpose="assistants")
        store_file = await self._client.vector_stores.files.create(
            vector_store_id=self._vector_store_id, file_id=uploaded.id
        )

        status = store_file.status
        attempts = 0
        while status not in TERMINAL_STATUSES and attempts < self._max_attempts:
            await self._sleep(self._poll_interval)
            attempts += 1
            current = await self._client.vector_stores.files.retrieve(
                file_id=uploaded.id, vector_store_id=self._vector_store_id
            )
            status = current.status

        if status not in TERMINAL_STATUSES:
            status = "timeout"

        logger.info(
            "Vector store indexing finished",
            extra={"context": {"file": name, "file_id": uploaded.id, "status": status}},
        )
        return status

    def schedule(self, name: str, data: bytes) -> asyncio.Task:
        """Index in the background. Errors are logged, never raised to the sender."""
        task = asyncio.create_task(self._index_logged(name, data))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def _index_logged(self, name: str, data: bytes) -> str | None:
        try:
            return await self.index(name, data)
        except Exception as e:
            logger.error("Vector store indexing failed for %s: %s", name, e)
            return None

    async def aclose(self) -> None:
        """Cancel indexing still in flight."""
        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        self._tasks.clear()
