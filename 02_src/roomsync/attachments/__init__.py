"""Attachment handling module."""

from .files import (
    AI_PAYLOAD_LIMIT,
    FILE_CATEGORIES,
    check_ai_payload_limit,
    content_block,
    format_file_size,
    generate_file_path,
    get_file_category,
    is_ai_analyzable,
    sanitize_file_name,
    validate_file,
)
from .uploader import AttachmentUploader

__all__ = [
    "AttachmentUploader",
    "AI_PAYLOAD_LIMIT",
    "FILE_CATEGORIES",
    "check_ai_payload_limit",
    "content_block",
    "format_file_size",
    "generate_file_path",
    "get_file_category",
    "is_ai_analyzable",
    "sanitize_file_name",
    "validate_file",
]
