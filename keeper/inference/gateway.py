"""
Inference Gateway
=================

The boundary between the keeper and a chat-completion provider.

Three operations are used by the rest of the system:

    generate_text(system_prompt, conversation)             -> str
    generate_with_tools(system_prompt, conversation, tools) -> TextResult | ToolCallsResult
    embed(texts)                                           -> list of vectors

Every failure surfaces as InferenceError (or its subclass EmbeddingError), so
callers handle one exception type regardless of what went wrong on the wire.

OpenAIGateway talks to any OpenAI-compatible endpoint (OpenAI, Ollama, vLLM,
OpenRouter, ...) through the official async client.
"""

import json
from abc import ABC, abstractmethod
from typing import Any, Sequence

from openai import AsyncOpenAI, OpenAIError

from keeper.errors import InferenceError
from keeper.inference.embeddings import EmbeddingGenerator
from keeper.inference.types import (
    ChatMessage,
    InferenceResult,
    TextResult,
    ToolCall,
    ToolCallsResult,
    ToolDefinition,
)
from keeper.utils.config import InferenceConfig
from keeper.utils.logger import Logger

logger = Logger("Inference")


class InferenceGateway(ABC):
    """Abstract chat-completion provider."""

    @abstractmethod
    async def generate_text(
        self,
        system_prompt: str,
        conversation: Sequence[ChatMessage]
    ) -> str:
        """Generate a plain text reply."""

    @abstractmethod
    async def generate_with_tools(
        self,
        system_prompt: str,
        conversation: Sequence[ChatMessage],
        tools: Sequence[ToolDefinition]
    ) -> InferenceResult:
        """Generate a reply that is either text or a list of tool calls."""

    @abstractmethod
    async def embed(self, texts: Sequence[str]) -> list[list[float]]:
        """Embed texts; must return exactly one vector per input."""


class OpenAIGateway(InferenceGateway):
    """
    Gateway over the OpenAI Chat Completions and Embeddings APIs.

    Example:
        gateway = OpenAIGateway(get_config().inference)

        result = await gateway.generate_with_tools(
            "You are a careful engineer.",
            [ChatMessage.text("user", "What is 6 * 7? Use code_eval.")],
            tool_definitions(),
        )
        if isinstance(result, ToolCallsResult):
            ...
    """

    def __init__(self, config: InferenceConfig, client: AsyncOpenAI | None = None):
        """
        Initialize the gateway.

        Args:
            config: Endpoint, model and sampling settings
            client: Optional pre-built client (tests inject a fake here)
        """
        self.config = config
        self.client = client or AsyncOpenAI(
            # Local endpoints accept any key; the client refuses an empty one
            api_key=config.api_key or "EMPTY",
            base_url=config.base_url,
        )
        self.embeddings = EmbeddingGenerator(self.client, config.embedding_model)

        logger.debug(f"Gateway ready: {config.base_url} ({config.model})")

    def _build_messages(
        self,
        system_prompt: str,
        conversation: Sequence[ChatMessage]
    ) -> list[dict]:
        messages = [ChatMessage.text("system", system_prompt)]
        messages.extend(conversation)
        return [message.to_openai_message() for message in messages]

    async def _complete(
        self,
        system_prompt: str,
        conversation: Sequence[ChatMessage],
        tools: Sequence[ToolDefinition] | None = None
    ) -> Any:
        request: dict[str, Any] = {
            "model": self.config.model,
            "messages": self._build_messages(system_prompt, conversation),
            "max_tokens": self.config.max_tokens,
            "temperature": self.config.temperature,
        }
        if tools:
            request["tools"] = [tool.to_openai_tool() for tool in tools]

        try:
            response = await self.client.chat.completions.create(**request)
        except OpenAIError as e:
            raise InferenceError(f"Inference API error: {e}") from e

        if not response.choices:
            raise InferenceError("No response choices returned")
        return response.choices[0].message

    async def generate_text(
        self,
        system_prompt: str,
        conversation: Sequence[ChatMessage]
    ) -> str:
        message = await self._complete(system_prompt, conversation)
        if message.content is None:
            raise InferenceError("No response content returned")
        return message.content

    async def generate_with_tools(
        self,
        system_prompt: str,
        conversation: Sequence[ChatMessage],
        tools: Sequence[ToolDefinition]
    ) -> InferenceResult:
        message = await self._complete(system_prompt, conversation, tools)

        if message.tool_calls:
            calls = tuple(
                ToolCall(
                    id=raw.id,
                    name=raw.function.name,
                    arguments=_parse_arguments(raw.function.name, raw.function.arguments),
                )
                for raw in message.tool_calls
            )
            return ToolCallsResult(calls=calls)

        return TextResult(content=message.content or "")

    async def embed(self, texts: Sequence[str]) -> list[list[float]]:
        return await self.embeddings.generate_batch(texts)


def _parse_arguments(tool_name: str, raw: str | None) -> dict[str, Any]:
    """
    Decode a tool call's JSON argument string.

    Malformed or non-object arguments become an empty dict; the tool then
    fails on its own missing-argument check, which the model can see and fix.
    """
    if not raw:
        return {}
    try:
        parsed = json.loads(raw)
    except json.JSONDecodeError as e:
        logger.warning(f"Failed to parse arguments for {tool_name}: {e}")
        return {}
    return parsed if isinstance(parsed, dict) else {}
