"""Tests for AttachmentUploader."""

import pytest

from roomsync.attachments import AttachmentUploader
from roomsync.attachments.files import MB
from roomsync.channel import FILES_BUCKET, FILES_TABLE
from roomsync.errors import RejectedWriteError, TransientChannelError, UploadError
from roomsync.models import AttachmentUpload, UploadStatus


@pytest.fixture
def uploader(flaky):
    return AttachmentUploader(flaky)


class TestPrepare:
    """Tests for AttachmentUploader.prepare()."""

    def test_accepts_and_encodes(self, uploader):
        """Test valid files are accepted and analyzable ones encoded."""
        uploads, failures = uploader.prepare(
            [("notes.txt", "text/plain", b"hi"), ("a.zip", "application/zip", b"PK")]
        )
        assert failures == []
        assert [u.name for u in uploads] == ["notes.txt", "a.zip"]
        assert uploads[0].ai_analyzable and uploads[0].encoded == "aGk="
        assert not uploads[1].ai_analyzable and uploads[1].encoded is None

    def test_rejects_invalid_files(self, uploader):
        """Test unsupported or oversized files are reported per file."""
        uploads, failures = uploader.prepare(
            [
                ("run.exe", "application/x-msdownload", b"MZ"),
                ("big.png", "image/png", b"0" * (10 * MB + 1)),
                ("ok.png", "image/png", b"0"),
            ]
        )
        assert [u.name for u in uploads] == ["ok.png"]
        assert [f.file_name for f in failures] == ["run.exe", "big.png"]

    def test_ai_limit(self):
        """Test the combined AI payload limit is reported once for the selection."""
        uploader = AttachmentUploader(channel=None, ai_payload_limit=100)
        uploads, failures = uploader.prepare(
            [("a.txt", "text/plain", b"x" * 60), ("b.txt", "text/plain", b"x" * 60)]
        )
        assert len(uploads) == 2
        assert len(failures) == 1
        assert "AI request limit" in failures[0].error


class TestUpload:
    """Tests for single and concurrent uploads."""

    @pytest.mark.asyncio
    async def test_upload_records_metadata(self, uploader, channel):
        """Test a successful upload stores the blob and a chat_files row."""
        upload = AttachmentUpload(name="a.png", media_type="image/png", data=b"png")

        attachment = await uploader.upload(upload, scope="r1", uploaded_by="alice")

        assert upload.status == UploadStatus.UPLOADED
        assert upload.progress == 100
        assert upload.attachment is attachment
        assert attachment.url.startswith("local://storage/chat-files/r1/")
        rows = await channel.query(FILES_TABLE)
        assert rows[0]["id"] == attachment.id
        assert rows[0]["file_name"] == "a.png"
        assert rows[0]["uploaded_by"] == "alice"
        assert rows[0]["message_id"] is None
        assert await channel.download_blob(FILES_BUCKET, attachment.path) == b"png"

    @pytest.mark.asyncio
    async def test_metadata_failure_removes_blob(self, uploader, flaky, channel):
        """Test the stored object is rolled back when the metadata row fails."""
        flaky.fail("insert", RejectedWriteError("rls"))
        upload = AttachmentUpload(name="a.png", media_type="image/png", data=b"png")

        with pytest.raises(UploadError) as exc_info:
            await uploader.upload(upload, scope="r1", uploaded_by="alice")

        assert exc_info.value.file_name == "a.png"
        assert upload.status == UploadStatus.FAILED
        assert flaky.count("remove_blob") == 1
        assert await channel.query(FILES_TABLE) == []

    @pytest.mark.asyncio
    async def test_upload_all_isolates_failures(self, uploader, flaky):
        """Test one failed file does not block the others."""
        flaky.fail("upload_blob", TransientChannelError("timeout"))
        uploads = [
            AttachmentUpload(name=f"f{i}.txt", media_type="text/plain", data=b"x")
            for i in range(3)
        ]

        attachments, failures = await uploader.upload_all(uploads, scope="r1", uploaded_by="alice")

        assert len(attachments) == 2
        assert len(failures) == 1
        assert "timeout" in failures[0].error
        assert sum(u.status == UploadStatus.FAILED for u in uploads) == 1

    @pytest.mark.asyncio
    async def test_upload_all_empty(self, uploader):
        """Test nothing to upload returns empty lists."""
        assert await uploader.upload_all([], scope="r1", uploaded_by="alice") == ([], [])

    @pytest.mark.asyncio
    async def test_link_to_message(self, uploader, channel):
        """Test file rows are pointed at the confirmed message."""
        uploads = [
            AttachmentUpload(name="a.txt", media_type="text/plain", data=b"a"),
            AttachmentUpload(name="b.txt", media_type="text/plain", data=b"b"),
        ]
        attachments, _ = await uploader.upload_all(uploads, scope="r1", uploaded_by="alice")

        await uploader.link_to_message(attachments, "m1")

        rows = await channel.query(FILES_TABLE, {"message_id": "m1"})
        assert len(rows) == 2

    @pytest.mark.asyncio
    async def test_link_failure_is_logged(self, uploader, flaky):
        """Test a failed link does not raise."""
        upload = AttachmentUpload(name="a.txt", media_type="text/plain", data=b"a")
        attachment = await uploader.upload(upload, scope="r1", uploaded_by="alice")
        flaky.fail("update", TransientChannelError("down"))

        await uploader.link_to_message([attachment], "m1")
