"""Attachment upload tracking models."""

import uuid
from dataclasses import dataclass, field
from enum import Enum

from .messages import Attachment


class UploadStatus(str, Enum):
    """Progress of one file from selection to storage."""

    PENDING = "pending"
    UPLOADING = "uploading"
    UPLOADED = "uploaded"
    FAILED = "failed"


@dataclass
class AttachmentUpload:
    """One selected file, tracked until its send completes or it is removed."""

    name: str
    media_type: str
    data: bytes
    id: str = field(default_factory=lambda: uuid.uuid4().hex)
    status: UploadStatus = UploadStatus.PENDING
    progress: int = 0
    error: str | None = None
    ai_analyzable: bool = False
    encoded: str | None = None  # base64, only for the assistant-reply path
    attachment: Attachment | None = None

    @property
    def size(self) -> int:
        return len(self.data)


@dataclass
class UploadFailure:
    """A per-file error shown next to the composer."""

    file_name: str
    error: str
