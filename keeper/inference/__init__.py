"""
Inference
=========

Everything the keeper needs from a language model provider:

- types.py: messages, tool calls, tool definitions, inference results
- embeddings.py: batched text embeddings with caching
- gateway.py: the InferenceGateway used by the agent loop and the retriever
"""

from keeper.inference.types import (
    ChatMessage,
    InferenceResult,
    TextResult,
    ToolCall,
    ToolCallsResult,
    ToolDefinition,
)
from keeper.inference.gateway import InferenceGateway, OpenAIGateway

__all__ = [
    "ChatMessage",
    "InferenceResult",
    "TextResult",
    "ToolCall",
    "ToolCallsResult",
    "ToolDefinition",
    "InferenceGateway",
    "OpenAIGateway",
]
