"""Realtime room chat synchronization core."""

from .app import Application, IApplication
from .attachments import AttachmentUploader
from .channel import IRemoteDataChannel, RestChannel, SQLiteChannel
from .config import Settings
from .errors import (
    ChannelError,
    LLMError,
    RejectedWriteError,
    RoomSyncError,
    TransientChannelError,
    UploadError,
)
from .llm import ClaudeProvider, ILLMProvider, LLMRouter, OpenAIProvider, VectorStoreIndexer
from .models import (
    AssistantIdentity,
    Attachment,
    AttachmentUpload,
    ConnectionState,
    Message,
    MessageDraft,
    MessageKind,
)
from .send import ReplyResult, SendPipeline, SendResult
from .session import RoomActivityWatcher, RoomSession
from .store import MessageStore

__all__ = [
    # Application
    "Application",
    "IApplication",
    "Settings",
    # Models
    "Message",
    "MessageDraft",
    "MessageKind",
    "Attachment",
    "AttachmentUpload",
    "AssistantIdentity",
    "ConnectionState",
    # Components
    "IRemoteDataChannel",
    "SQLiteChannel",
    "RestChannel",
    "MessageStore",
    "RoomSession",
    "RoomActivityWatcher",
    "SendPipeline",
    "SendResult",
    "ReplyResult",
    "AttachmentUploader",
    "ILLMProvider",
    "ClaudeProvider",
    "OpenAIProvider",
    "LLMRouter",
    "VectorStoreIndexer",
    # Errors
    "RoomSyncError",
    "ChannelError",
    "TransientChannelError",
    "RejectedWriteError",
    "UploadError",
    "LLMError",
]
