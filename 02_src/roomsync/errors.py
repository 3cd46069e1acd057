"""Error taxonomy shared by channels, sessions and the send pipeline."""


class RoomSyncError(Exception):
    """Base class for all roomsync errors."""


class ChannelError(RoomSyncError):
    """A Remote Data Channel operation failed."""


class TransientChannelError(ChannelError):
    """Network-level failure (timeout, dropped connection, overload). Safe to retry."""


class RejectedWriteError(ChannelError):
    """The backend refused the request (constraint, permission, bad input). Not retried."""


class UploadError(RoomSyncError):
    """A single attachment could not be stored."""

    def __init__(self, file_name: str, reason: str):
        super().__init__(f"{file_name}: {reason}")
        self.file_name = file_name
        self.reason = reason


class LLMError(RoomSyncError):
    """Assistant reply generation failed or no provider is configured."""
