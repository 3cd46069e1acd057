"""SendPipeline: optimistic sends, attachment coordination and assistant replies."""

import asyncio
from dataclasses import dataclass, field
from typing import Callable

from ..attachments import AttachmentUploader, content_block
from ..attachments.files import is_image
from ..channel import MESSAGES_TABLE, IRemoteDataChannel
from ..config import DEFAULT_MODEL
from ..errors import ChannelError, LLMError
from ..llm import LLMRouter, VectorStoreIndexer, provider_name_for
from ..llm.prompts import DEFAULT_FILE_PROMPT, DEFAULT_GREETING
from ..logging_config import get_logger
from ..models import (
    AssistantIdentity,
    Attachment,
    AttachmentUpload,
    Message,
    MessageDraft,
    MessageKind,
    UploadFailure,
)
from ..session import RoomSession

logger = get_logger(__name__)

APOLOGY = "Sorry, an error occurred while generating the AI response."


@dataclass
class SendResult:
    """Outcome of one send() call."""

    local_id: str | None = None
    message: Message | None = None  # confirmed row returned by the insert
    upload_failures: list[UploadFailure] = field(default_factory=list)
    error: str | None = None
    skipped: bool = False

    @property
    def sent(self) -> bool:
        return self.message is not None


@dataclass
class ReplyResult:
    """Outcome of send_with_assistant_reply()."""

    user: SendResult
    assistant: SendResult | None = None
    generated: bool = False  # False when the apology was sent instead


@dataclass(frozen=True)
class _Target:
    """Room and author a send was started for."""

    room_id: str
    user_id: str
    display_name: str
    generation: int


class SendPipeline:
    """
    Turns a user action into Message Store mutations and remote writes.

    The optimistic entry appears before the insert is issued. On success the
    change feed echo replaces it in place; on failure it is removed again so
    the view never shows a message that was not persisted.
    """

    def __init__(
        self,
        session: RoomSession,
        channel: IRemoteDataChannel,
        uploader: AttachmentUploader | None = None,
        llm: LLMRouter | None = None,
        assistant: AssistantIdentity | None = None,
        indexer: VectorStoreIndexer | None = None,
        default_model: str = DEFAULT_MODEL,
    ):
        self._session = session
        self._channel = channel
        self._uploader = uploader
        self._llm = llm
        self._assistant = assistant or AssistantIdentity(sender_id="assistant")
        self._indexer = indexer
        self._default_model = default_model
        self._reply_lock = asyncio.Lock()

    @property
    def assistant(self) -> AssistantIdentity:
        return self._assistant

    async def send(
        self,
        body: str | None,
        kind: MessageKind = MessageKind.USER,
        attachments: list[AttachmentUpload] | tuple = (),
    ) -> SendResult:
        """
        Send one message.

        Attachments are uploaded first, concurrently; failed files are
        reported in the result and do not block the rest. Messages of
        kind=assistant are attributed to the assistant identity.

        Raises:
            RuntimeError: the session is not open.
        """
        text = (body or "").strip()
        attachments = list(attachments)
        if not text and not attachments:
            return SendResult(skipped=True)
        return await self._dispatch(self._target(), text, kind, attachments)

    async def send_with_assistant_reply(
        self,
        body: str | None,
        attachments: list[AttachmentUpload] | tuple = (),
        model: str | None = None,
        on_partial: Callable[[str], None] | None = None,
    ) -> ReplyResult:
        """
        Send the user's message, then stream and send an assistant reply.

        on_partial receives the accumulated reply text, growing with every
        call. A failed generation sends the apology instead; the user's
        message is never rolled back. No reply is requested when the user's
        message itself was not sent.
        """
        text = (body or "").strip()
        attachments = list(attachments)
        if not text and not attachments:
            return ReplyResult(user=SendResult(skipped=True))

        target = self._target()
        user = await self._dispatch(target, text, MessageKind.USER, attachments)
        if not user.sent:
            return ReplyResult(user=user)

        model = model or self._default_model
        async with self._reply_lock:
            try:
                if self._llm is None:
                    raise LLMError("No assistant provider configured")
                content = self._build_content(text, attachments, provider_name_for(model))
                reply = await self._llm.stream(
                    [{"role": "user", "content": content}], model, on_chunk=on_partial
                )
                if not reply.strip():
                    raise LLMError("Assistant returned an empty reply")
                generated = True
            except Exception as e:
                logger.error(
                    "Assistant reply failed: %s",
                    e,
                    extra={"context": {"room_id": target.room_id, "model": model}},
                )
                reply = APOLOGY
                generated = False

            # Written to the room the question was asked in, even if the view moved on
            assistant = await self._dispatch(target, reply, MessageKind.ASSISTANT, [])

        return ReplyResult(user=user, assistant=assistant, generated=generated)

    def _target(self) -> _Target:
        session = self._session
        generation = session.generation
        if not session.is_current(generation):
            raise RuntimeError("RoomSession is not open")
        return _Target(
            room_id=session.room_id,
            user_id=session.user_id,
            display_name=session.display_name or session.user_id,
            generation=generation,
        )

    async def _dispatch(
        self,
        target: _Target,
        text: str,
        kind: MessageKind,
        attachments: list[AttachmentUpload],
    ) -> SendResult:
        session = self._session

        uploaded: list[Attachment] = []
        failures: list[UploadFailure] = []
        if attachments:
            if self._uploader is None:
                raise RuntimeError("SendPipeline has no attachment uploader")
            uploaded, failures = await self._uploader.upload_all(
                attachments, scope=target.room_id, uploaded_by=target.user_id
            )
            if not uploaded and not text:
                return SendResult(
                    upload_failures=failures,
                    error="None of the attached files could be uploaded",
                )

        if kind == MessageKind.ASSISTANT:
            sender_id, sender_name = self._assistant.sender_id, self._assistant.display_name
        else:
            sender_id, sender_name = target.user_id, target.display_name

        draft = MessageDraft(
            room_id=target.room_id,
            sender_id=sender_id,
            sender_name=sender_name,
            body=text or None,
            kind=kind,
            attachments=uploaded,
        )
        if session.is_current(target.generation):
            entry = session.store.append_optimistic(draft)
        else:
            entry = Message.from_draft(draft)

        try:
            row = await self._channel.insert(MESSAGES_TABLE, entry.to_row())
        except ChannelError as e:
            if session.is_current(target.generation):
                session.store.remove_optimistic(entry.id)
            logger.error(
                "Failed to send message: %s",
                e,
                extra={"context": {"room_id": target.room_id, "local_id": entry.id}},
            )
            return SendResult(
                local_id=entry.id,
                upload_failures=failures,
                error=f"Failed to send message: {e}",
            )

        confirmed = Message.from_row(row)
        if uploaded:
            if session.is_current(target.generation):
                session.store.upsert_attachments_for(confirmed.id, uploaded)
            await self._uploader.link_to_message(uploaded, confirmed.id)
            self._schedule_indexing(attachments)

        return SendResult(local_id=entry.id, message=confirmed, upload_failures=failures)

    @staticmethod
    def _build_content(
        body: str | None, attachments: list[AttachmentUpload], provider: str
    ) -> str | list[dict]:
        """User turn for the provider: file blocks first, then the text."""
        files = [
            content_block(provider, u.name, u.media_type, u.encoded)
            for u in attachments
            if u.ai_analyzable and u.encoded and u.attachment is not None
        ]
        text = (body or "").strip() or (DEFAULT_FILE_PROMPT if files else DEFAULT_GREETING)
        if not files:
            return text
        text_type = "text" if provider == "claude" else "input_text"
        return files + [{"type": text_type, "text": text}]

    def _schedule_indexing(self, uploads: list[AttachmentUpload]) -> None:
        if self._indexer is None:
            return
        for upload in uploads:
            if upload.attachment is not None and not is_image(upload.media_type):
                self._indexer.schedule(upload.name, upload.data)
