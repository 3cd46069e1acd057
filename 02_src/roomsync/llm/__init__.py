"""LLM module."""

from .llm_provider import (
    ClaudeProvider,
    ILLMProvider,
    LLMRouter,
    OpenAIProvider,
    provider_name_for,
)
from .prompts import SYSTEM_PROMPT
from .vector_store import VectorStoreIndexer

__all__ = [
    "ILLMProvider",
    "ClaudeProvider",
    "OpenAIProvider",
    "LLMRouter",
    "provider_name_for",
    "SYSTEM_PROMPT",
    "VectorStoreIndexer",
]
