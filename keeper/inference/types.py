"""
Inference Types
===============

The shapes exchanged with the inference gateway:

- ChatMessage: one entry in the conversation (system/user/assistant/tool)
- ToolCall: a tool invocation requested by the model
- ToolDefinition: a tool the model may call, with a JSON-Schema parameter spec
- InferenceResult: either TextResult or ToolCallsResult, never both

Messages serialize to the OpenAI chat message format, so a conversation can be
sent to any OpenAI-compatible endpoint unchanged.
"""

import json
from dataclasses import dataclass, field
from typing import Any, Union


@dataclass(frozen=True)
class ToolCall:
    """
    A tool invocation requested by the model.

    Attributes:
        id: Call identifier, unique within a turn
        name: The tool name
        arguments: Parsed arguments
    """
    id: str
    name: str
    arguments: dict[str, Any] = field(default_factory=dict)

    def to_openai_ref(self) -> dict:
        """Format as an entry of an assistant message's `tool_calls` list."""
        return {
            "id": self.id,
            "type": "function",
            "function": {
                "name": self.name,
                "arguments": json.dumps(self.arguments),
            },
        }

    def to_dict(self) -> dict:
        return {"id": self.id, "name": self.name, "arguments": self.arguments}


@dataclass(frozen=True)
class ToolDefinition:
    """
    A tool offered to the model.

    Attributes:
        name: Unique tool name
        description: What the tool does (shown to the model)
        parameters: JSON Schema for the arguments
    """
    name: str
    description: str
    parameters: dict[str, Any]

    def to_openai_tool(self) -> dict:
        return {
            "type": "function",
            "function": {
                "name": self.name,
                "description": self.description,
                "parameters": self.parameters,
            },
        }


@dataclass
class ChatMessage:
    """
    One message in a conversation.

    An assistant message always carries either content or tool calls.
    Use the constructors rather than building messages by hand.
    """
    role: str
    content: str | None = None
    tool_calls: list[ToolCall] | None = None
    tool_call_id: str | None = None
    name: str | None = None

    @classmethod
    def text(cls, role: str, content: str) -> "ChatMessage":
        """A plain text message (system, user or assistant)."""
        return cls(role=role, content=content)

    @classmethod
    def assistant_tool_calls(cls, calls: list[ToolCall]) -> "ChatMessage":
        """An assistant message that requests tool calls."""
        if not calls:
            raise ValueError("assistant tool-call message needs at least one call")
        return cls(role="assistant", tool_calls=list(calls))

    @classmethod
    def tool_result(cls, tool_call_id: str, name: str, output: str) -> "ChatMessage":
        """The answer to one tool call."""
        return cls(role="tool", content=output, tool_call_id=tool_call_id, name=name)

    def to_openai_message(self) -> dict:
        """
        Format for the Chat Completions API.

        Fields that are None are omitted.
        """
        message: dict[str, Any] = {"role": self.role}
        if self.content is not None:
            message["content"] = self.content
        if self.tool_calls:
            message["tool_calls"] = [call.to_openai_ref() for call in self.tool_calls]
        if self.tool_call_id is not None:
            message["tool_call_id"] = self.tool_call_id
        if self.name is not None:
            message["name"] = self.name
        return message


@dataclass(frozen=True)
class TextResult:
    """The model answered with text; the loop is done."""
    content: str

    def to_dict(self) -> dict:
        return {"type": "text", "content": self.content}


@dataclass(frozen=True)
class ToolCallsResult:
    """The model asked for one or more tool calls."""
    calls: tuple[ToolCall, ...]

    def to_dict(self) -> dict:
        return {"type": "tool_calls", "calls": [call.to_dict() for call in self.calls]}


InferenceResult = Union[TextResult, ToolCallsResult]
