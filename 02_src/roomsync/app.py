"""Application bootstrap and lifecycle management."""

from typing import Protocol

from .attachments import AttachmentUploader
from .channel import IRemoteDataChannel, RestChannel, SQLiteChannel
from .config import Settings
from .llm import LLMRouter, VectorStoreIndexer
from .logging_config import get_logger, setup_logging
from .models import AssistantIdentity
from .send import SendPipeline
from .session import RoomActivityWatcher, RoomSession

logger = get_logger(__name__)


class IApplication(Protocol):
    """Bootstrap and lifecycle."""

    async def start(self) -> None:
        """Initialize components in dependency order."""
        ...

    async def stop(self) -> None:
        """Shutdown in reverse order."""
        ...


class Application:
    """
    Composition root.

    Builds the channel and the assistant providers from Settings and hands
    out room sessions, send pipelines and activity watchers bound to them.
    """

    def __init__(
        self,
        settings: Settings | None = None,
        channel: IRemoteDataChannel | None = None,
        configure_logging: bool = False,
    ):
        self._settings = settings or Settings.from_env()
        self._configure_logging = configure_logging

        # Components (will be initialized in start())
        self._channel: IRemoteDataChannel | None = channel
        self._owns_channel = channel is None
        self._llm: LLMRouter | None = None
        self._indexer: VectorStoreIndexer | None = None
        self._uploader: AttachmentUploader | None = None
        self._sessions: list[RoomSession] = []
        self._watchers: list[RoomActivityWatcher] = []
        self._started = False

    async def start(self) -> None:
        """Initialize components in dependency order."""
        if self._started:
            return
        if self._configure_logging:
            setup_logging(self._settings.log_level)
        logger.info("Starting application")

        # 1. Channel (no dependencies)
        if self._channel is None:
            if self._settings.uses_remote_backend:
                self._channel = RestChannel(
                    self._settings.backend_url, self._settings.backend_key
                )
            else:
                self._channel = SQLiteChannel(self._settings.db_path)
        await self._channel.init()
        logger.info("Channel initialized: %s", type(self._channel).__name__)

        # 2. Assistant providers (no internal dependencies)
        self._llm = LLMRouter.from_keys(
            anthropic_api_key=self._settings.anthropic_api_key,
            openai_api_key=self._settings.openai_api_key,
            vector_store_id=self._settings.vector_store_id,
        )
        if not self._llm.configured:
            logger.warning("No assistant provider configured; replies will fall back")

        if self._settings.vector_store_id and self._settings.openai_api_key:
            self._indexer = VectorStoreIndexer(
                self._settings.vector_store_id, api_key=self._settings.openai_api_key
            )

        # 3. Uploader (depends on Channel)
        self._uploader = AttachmentUploader(self._channel)

        self._started = True
        logger.info("All components initialized successfully")

    async def stop(self) -> None:
        """Shutdown in reverse order."""
        for watcher in self._watchers:
            await watcher.stop()
        for session in self._sessions:
            await session.close()
        self._watchers.clear()
        self._sessions.clear()

        if self._indexer:
            if self._indexer.pending:
                logger.info("Cancelling %s pending indexing tasks", self._indexer.pending)
            await self._indexer.aclose()
            self._indexer = None
        if self._channel and self._owns_channel:
            await self._channel.close()
            logger.info("Channel closed")
            self._channel = None
        self._started = False

    @property
    def settings(self) -> Settings:
        return self._settings

    @property
    def channel(self) -> IRemoteDataChannel:
        """Get channel instance."""
        if not self._started or self._channel is None:
            raise RuntimeError("Application not started")
        return self._channel

    @property
    def llm(self) -> LLMRouter:
        """Get assistant provider router."""
        if not self._started or self._llm is None:
            raise RuntimeError("Application not started")
        return self._llm

    @property
    def assistant(self) -> AssistantIdentity:
        return AssistantIdentity(
            sender_id=self._settings.assistant_sender_id or "assistant",
            display_name=self._settings.assistant_display_name,
        )

    def create_session(self, **kwargs) -> RoomSession:
        """New RoomSession on the shared channel. kwargs tune timing."""
        session = RoomSession(self.channel, **kwargs)
        self._sessions.append(session)
        return session

    def create_pipeline(self, session: RoomSession) -> SendPipeline:
        return SendPipeline(
            session,
            self.channel,
            uploader=self._uploader,
            llm=self.llm,
            assistant=self.assistant,
            indexer=self._indexer,
            default_model=self._settings.default_model,
        )

    def create_activity_watcher(
        self, user_id: str, room_ids: list[str], **kwargs
    ) -> RoomActivityWatcher:
        watcher = RoomActivityWatcher(self.channel, user_id, room_ids, **kwargs)
        self._watchers.append(watcher)
        return watcher
