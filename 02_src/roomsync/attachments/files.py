"""File type policy, storage paths and AI payload helpers."""

import base64
import math
import re
import secrets
import string
from dataclasses import dataclass
from datetime import datetime, timezone

MB = 1024 * 1024
AI_PAYLOAD_LIMIT = 20 * MB


@dataclass(frozen=True)
class FileCategory:
    name: str
    types: tuple[str, ...]
    max_size: int


FILE_CATEGORIES = (
    FileCategory(
        "images",
        ("image/jpeg", "image/jpg", "image/png", "image/gif", "image/webp"),
        10 * MB,
    ),
    FileCategory(
        "documents",
        (
            "application/pdf",
            "application/msword",
            "application/vnd.openxmlformats-officedocument.wordprocessingml.document",
            "text/plain",
            "text/markdown",
        ),
        50 * MB,
    ),
    FileCategory(
        "videos",
        ("video/mp4", "video/mov", "video/avi", "video/quicktime"),
        100 * MB,
    ),
    FileCategory(
        "archives",
        ("application/zip", "application/x-rar-compressed", "application/x-7z-compressed"),
        100 * MB,
    ),
)

AI_ANALYZABLE_TYPES = frozenset(
    FILE_CATEGORIES[0].types + ("application/pdf", "text/plain", "text/markdown")
)


def get_file_category(media_type: str) -> FileCategory | None:
    for category in FILE_CATEGORIES:
        if media_type in category.types:
            return category
    return None


def format_file_size(size: int) -> str:
    """Human readable size, e.g. 1536 -> '1.5 KB'."""
    if size <= 0:
        return "0 Bytes"
    units = ["Bytes", "KB", "MB", "GB"]
    value = float(size)
    exponent = 0
    while value >= 1024 and exponent < len(units) - 1:
        value /= 1024
        exponent += 1
    return f"{round(value, 2):g} {units[exponent]}"


def validate_file(name: str, media_type: str, size: int) -> str | None:
    """Return an error message, or None when the file may be attached."""
    category = get_file_category(media_type)
    if category is None:
        return f"Unsupported file type: {media_type or 'unknown'}"
    if size > category.max_size:
        return (
            f"File is too large. Up to {format_file_size(category.max_size)} "
            f"is supported for {category.name}."
        )
    return None


def get_file_extension(filename: str) -> str:
    stem, dot, extension = filename.rpartition(".")
    return extension if dot and stem else ""


def sanitize_file_name(filename: str) -> str:
    cleaned = re.sub(r"[^a-zA-Z0-9._-]", "_", filename)
    return re.sub(r"_{2,}", "_", cleaned).lower()


def generate_file_path(
    scope: str, filename: str, now: datetime | None = None, token: str | None = None
) -> str:
    """<scope>/<YYYY>/<MM>/<DD>/<epoch-ms>_<token>_<safe-stem>.<ext>"""
    now = now or datetime.now(timezone.utc)
    token = token or "".join(
        secrets.choice(string.ascii_lowercase + string.digits) for _ in range(6)
    )
    extension = get_file_extension(filename)
    stem = filename[: -(len(extension) + 1)] if extension else filename
    name = sanitize_file_name(stem)
    if extension:
        name = f"{name}.{extension}"
    millis = int(now.timestamp() * 1000)
    return f"{scope}/{now:%Y}/{now:%m}/{now:%d}/{millis}_{token}_{name}"


def is_image(media_type: str) -> bool:
    return media_type in FILE_CATEGORIES[0].types


def is_pdf(media_type: str) -> bool:
    return media_type == "application/pdf"


def is_ai_analyzable(media_type: str) -> bool:
    return media_type in AI_ANALYZABLE_TYPES


def encode_base64(data: bytes) -> str:
    return base64.b64encode(data).decode("ascii")


def base64_size(size: int) -> int:
    return math.ceil(size * 1.33)


def check_ai_payload_limit(sizes: list[int], limit: int = AI_PAYLOAD_LIMIT) -> str | None:
    """Return an error when the encoded files would exceed the provider request limit."""
    total = sum(base64_size(size) for size in sizes)
    if total > limit:
        return (
            f"Attached files exceed the AI request limit of {format_file_size(limit)} "
            f"(current: {format_file_size(total)})"
        )
    return None


def claude_content_block(name: str, media_type: str, encoded: str) -> dict:
    """Anthropic messages content block for an attached file."""
    if is_image(media_type):
        return {
            "type": "image",
            "source": {"type": "base64", "media_type": media_type, "data": encoded},
        }
    if is_pdf(media_type):
        return {
            "type": "document",
            "source": {"type": "base64", "media_type": "application/pdf", "data": encoded},
        }
    if media_type.startswith("text/"):
        text = base64.b64decode(encoded).decode("utf-8", errors="replace")
        return {"type": "text", "text": f"[File: {name}]\n{text}"}
    return {"type": "text", "text": f"[File: {name}]"}


def openai_content_block(name: str, media_type: str, encoded: str) -> dict:
    """OpenAI Responses API input block for an attached file."""
    if is_image(media_type):
        return {"type": "input_image", "image_url": f"data:{media_type};base64,{encoded}"}
    if is_pdf(media_type):
        return {
            "type": "input_file",
            "filename": name,
            "file_data": f"data:application/pdf;base64,{encoded}",
        }
    if media_type.startswith("text/"):
        text = base64.b64decode(encoded).decode("utf-8", errors="replace")
        return {"type": "input_text", "text": f"[File: {name}]\n{text}"}
    return {"type": "input_text", "text": f"[File: {name}]"}


def content_block(provider: str, name: str, media_type: str, encoded: str) -> dict:
    if provider == "claude":
        return claude_content_block(name, media_type, encoded)
    return openai_content_block(name, media_type, encoded)
