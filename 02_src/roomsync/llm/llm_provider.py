"""Assistant reply providers: Anthropic Claude and OpenAI, routed by model name."""

import os
from typing import Callable, Protocol

import anthropic
import openai

from ..errors import LLMError
from ..logging_config import get_logger
from .prompts import SYSTEM_PROMPT

logger = get_logger(__name__)

CLAUDE_PREFIX = "claude-"

ChunkHandler = Callable[[str], None]


class ILLMProvider(Protocol):
    """Abstraction for assistant reply generation."""

    async def complete(
        self,
        messages: list[dict],  # [{"role": "user", "content": "..." | [blocks]}]
        model: str,
        system: str | None = None,
        max_tokens: int = 4096,
    ) -> str:
        """Generate a full reply."""
        ...

    async def stream(
        self,
        messages: list[dict],
        model: str,
        on_chunk: ChunkHandler | None = None,
        system: str | None = None,
        max_tokens: int = 4096,
    ) -> str:
        """Generate a reply, reporting the accumulated text after every delta."""
        ...


class ClaudeProvider:
    """Anthropic Claude API provider."""

    name = "claude"

    def __init__(self, api_key: str | None = None):
        self._api_key = api_key or os.getenv("ANTHROPIC_API_KEY")
        if not self._api_key:
            raise ValueError("ANTHROPIC_API_KEY environment variable not set")

        self._client = anthropic.AsyncAnthropic(api_key=self._api_key)

    async def complete(
        self,
        messages: list[dict],
        model: str,
        system: str | None = None,
        max_tokens: int = 4096,
    ) -> str:
        """Generate a reply using the Messages API."""
        try:
            response = await self._client.messages.create(
                model=model,
                system=system or SYSTEM_PROMPT,
                messages=messages,
                max_tokens=max_tokens,
            )
        except Exception as e:
            raise LLMError(f"Claude API error: {e}") from e

        texts = [block.text for block in response.content if block.type == "text"]
        return "\n\n".join(texts)

    async def stream(
        self,
        messages: list[dict],
        model: str,
        on_chunk: ChunkHandler | None = None,
        system: str | None = None,
        max_tokens: int = 4096,
    ) -> str:
        """Stream a reply using the Messages API."""
        full_text = ""
        try:
            async with self._client.messages.stream(
                model=model,
                system=system or SYSTEM_PROMPT,
                messages=messages,
                max_tokens=max_tokens,
            ) as stream:
                async for text in stream.text_stream:
                    if not text:
                        continue
                    full_text += text
                    if on_chunk:
                        on_chunk(full_text)
        except Exception as e:
            raise LLMError(f"Claude API error: {e}") from e

        logger.debug("Claude stream finished: %d chars", len(full_text))
        return full_text


class OpenAIProvider:
    """
    OpenAI Responses API provider.

    When a vector store id is configured, replies can search the files
    indexed from chat attachments.
    """

    name = "openai"

    def __init__(self, api_key: str | None = None, vector_store_id: str | None = None):
        self._api_key = api_key or os.getenv("OPENAI_API_KEY")
        if not self._api_key:
            raise ValueError("OPENAI_API_KEY environment variable not set")

        self._vector_store_id = vector_store_id
        self._client = openai.AsyncOpenAI(api_key=self._api_key)

    def _tools(self) -> list[dict]:
        if not self._vector_store_id:
            return []
        return [{"type": "file_search", "vector_store_ids": [self._vector_store_id]}]

    def _request(
        self, messages: list[dict], model: str, system: str | None, max_tokens: int
    ) -> dict:
        request = {
            "model": model,
            "input": messages,
            "instructions": system or SYSTEM_PROMPT,
            "max_output_tokens": max_tokens,
        }
        tools = self._tools()
        if tools:
            request["tools"] = tools
        return request

    async def complete(
        self,
        messages: list[dict],
        model: str,
        system: str | None = None,
        max_tokens: int = 4096,
    ) -> str:
        try:
            response = await self._client.responses.create(
                **self._request(messages, model, system, max_tokens)
            )
        except Exception as e:
            raise LLMError(f"OpenAI API error: {e}") from e
        return response.output_text

    async def stream(
        self,
        messages: list[dict],
        model: str,
        on_chunk: ChunkHandler | None = None,
        system: str | None = None,
        max_tokens: int = 4096,
    ) -> str:
        full_text = ""
        try:
            stream = await self._client.responses.create(
                **self._request(messages, model, system, max_tokens), stream=True
            )
            async for event in stream:
                if event.type != "response.output_text.delta" or not event.delta:
                    continue
                full_text += event.delta
                if on_chunk:
                    on_chunk(full_text)
        except Exception as e:
            raise LLMError(f"OpenAI API error: {e}") from e

        logger.debug("OpenAI stream finished: %d chars", len(full_text))
        return full_text


def provider_name_for(model: str) -> str:
    """'claude' for claude-* models, 'openai' for everything else."""
    return "claude" if model.startswith(CLAUDE_PREFIX) else "openai"


class LLMRouter:
    """Selects a provider from the model-name prefix."""

    def __init__(
        self,
        claude: ILLMProvider | None = None,
        openai_provider: ILLMProvider | None = None,
    ):
        self._providers = {"claude": claude, "openai": openai_provider}

    @classmethod
    def from_keys(
        cls,
        anthropic_api_key: str | None = None,
        openai_api_key: str | None = None,
        vector_store_id: str | None = None,
    ) -> "LLMRouter":
        """Build a router with a provider for every key that is present."""
        claude = ClaudeProvider(api_key=anthropic_api_key) if anthropic_api_key else None
        gpt = (
            OpenAIProvider(api_key=openai_api_key, vector_store_id=vector_store_id)
            if openai_api_key
            else None
        )
        return cls(claude=claude, openai_provider=gpt)

    @property
    def configured(self) -> list[str]:
        return [name for name, provider in self._providers.items() if provider is not None]

    def for_model(self, model: str) -> ILLMProvider:
        """
        Resolve the provider for a model.

        Raises:
            LLMError: the provider for this model family has no API key.
        """
        name = provider_name_for(model)
        provider = self._providers[name]
        if provider is None:
            raise LLMError(f"No {name} provider configured for model {model}")
        return provider

    async def stream(
        self,
        messages: list[dict],
        model: str,
        on_chunk: ChunkHandler | None = None,
        system: str | None = None,
        max_tokens: int = 4096,
    ) -> str:
        provider = self.for_model(model)
        return await provider.stream(
            messages, model, on_chunk=on_chunk, system=system, max_tokens=max_tokens
        )
