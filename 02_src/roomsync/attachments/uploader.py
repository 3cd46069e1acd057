"""AttachmentUploader: selection, concurrent upload and linking of files."""

import asyncio

from ..channel import FILES_BUCKET, FILES_TABLE, IRemoteDataChannel
from ..errors import ChannelError, UploadError
from ..logging_config import get_logger
from ..models import Attachment, AttachmentUpload, UploadFailure, UploadStatus
from .files import (
    AI_PAYLOAD_LIMIT,
    check_ai_payload_limit,
    encode_base64,
    generate_file_path,
    is_ai_analyzable,
    validate_file,
)

logger = get_logger(__name__)


class AttachmentUploader:
    """Stores attachment bytes and metadata rows through a Remote Data Channel."""

    def __init__(
        self,
        channel: IRemoteDataChannel,
        bucket: str = FILES_BUCKET,
        files_table: str = FILES_TABLE,
        ai_payload_limit: int = AI_PAYLOAD_LIMIT,
    ):
        self._channel = channel
        self._bucket = bucket
        self._files_table = files_table
        self._ai_payload_limit = ai_payload_limit

    def prepare(
        self, files: list[tuple[str, str, bytes]]
    ) -> tuple[list[AttachmentUpload], list[UploadFailure]]:
        """
        Validate selected files and build upload descriptors.

        Args:
            files: (name, media_type, data) per selected file.

        Returns:
            Accepted descriptors (AI-analyzable ones already base64-encoded)
            and one failure per rejected file.
        """
        accepted: list[AttachmentUpload] = []
        failures: list[UploadFailure] = []

        for name, media_type, data in files:
            error = validate_file(name, media_type, len(data))
            if error:
                failures.append(UploadFailure(file_name=name, error=error))
                continue

            upload = AttachmentUpload(
                name=name,
                media_type=media_type,
                data=data,
                ai_analyzable=is_ai_analyzable(media_type),
            )
            if upload.ai_analyzable:
                upload.encoded = encode_base64(data)
            accepted.append(upload)

        limit_error = check_ai_payload_limit(
            [u.size for u in accepted if u.ai_analyzable], self._ai_payload_limit
        )
        if limit_error:
            failures.append(UploadFailure(file_name="AI request limit", error=limit_error))

        return accepted, failures

    async def upload(
        self, upload: AttachmentUpload, scope: str, uploaded_by: str
    ) -> Attachment:
        """
        Upload one file and record its metadata row.

        The stored object is removed again if the metadata row cannot be written.

        Raises:
            UploadError: the file could not be stored.
        """
        upload.status = UploadStatus.UPLOADING
        upload.progress = 0
        upload.error = None
        path = generate_file_path(scope, upload.name)

        try:
            url = await self._channel.upload_blob(
                self._bucket, path, upload.data, upload.media_type
            )
            try:
                row = await self._channel.insert(
                    self._files_table,
                    {
                        "message_id": None,
                        "file_name": upload.name,
                        "file_type": upload.media_type,
                        "file_size": upload.size,
                        "file_path": path,
                        "storage_url": url,
                        "uploaded_by": uploaded_by,
                    },
                )
            except ChannelError:
                await self._remove_quietly(path)
                raise
        except ChannelError as e:
            upload.status = UploadStatus.FAILED
            upload.error = str(e)
            raise UploadError(upload.name, str(e)) from e

        attachment = Attachment(
            name=upload.name,
            size=upload.size,
            media_type=upload.media_type,
            url=url,
            id=str(row["id"]),
            path=path,
        )
        upload.status = UploadStatus.UPLOADED
        upload.progress = 100
        upload.attachment = attachment
        return attachment

    async def upload_all(
        self, uploads: list[AttachmentUpload], scope: str, uploaded_by: str
    ) -> tuple[list[Attachment], list[UploadFailure]]:
        """Upload files concurrently. One file failing never blocks the others."""
        if not uploads:
            return [], []

        results = await asyncio.gather(
            *[self.upload(u, scope, uploaded_by) for u in uploads],
            return_exceptions=True,
        )

        attachments: list[Attachment] = []
        failures: list[UploadFailure] = []
        for upload, result in zip(uploads, results):
            if isinstance(result, UploadError):
                logger.warning("Upload of %s failed: %s", upload.name, result.reason)
                failures.append(UploadFailure(file_name=upload.name, error=result.reason))
            elif isinstance(result, Exception):
                logger.error("Unexpected upload error for %s", upload.name, exc_info=result)
                upload.status = UploadStatus.FAILED
                upload.error = str(result)
                failures.append(UploadFailure(file_name=upload.name, error=str(result)))
            else:
                attachments.append(result)

        return attachments, failures

    async def link_to_message(self, attachments: list[Attachment], message_id: str) -> None:
        """Point uploaded file rows at their confirmed message. Failures are logged."""
        file_ids = [a.id for a in attachments if a.id]
        if not file_ids:
            return
        try:
            await self._channel.update(
                self._files_table, {"id": ("in", file_ids)}, {"message_id": message_id}
            )
        except ChannelError as e:
            logger.warning("Failed to link files to message %s: %s", message_id, e)

    async def _remove_quietly(self, path: str) -> None:
        try:
            await self._channel.remove_blob(self._bucket, path)
        except ChannelError as e:
            logger.warning("Failed to remove orphaned object %s: %s", path, e)
