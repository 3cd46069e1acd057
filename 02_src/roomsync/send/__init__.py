"""Send pipeline module."""

from .pipeline import APOLOGY, ReplyResult, SendPipeline, SendResult

__all__ = ["SendPipeline", "SendResult", "ReplyResult", "APOLOGY"]
