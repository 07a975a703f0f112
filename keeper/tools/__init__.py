"""
Workspace Tools
===============

The tools an agent can call while executing a task. Every tool runs inside
the agent's own workspace directory:

1. code_eval: Run a Python or JavaScript snippet
2. http_fetch: GET a URL
3. file_read / file_write: Read and write files under the workspace
4. shell_exec: Run a single program (no shell interpretation)

How Tools Work:
1. The agent loop sends the tool definitions to the model
2. The model asks for one or more tool calls
3. The ToolExecutor runs each call through the registry
4. The output (or error) goes back to the model as a tool message

Tool functions return their output text and raise ToolError to fail. The
executor turns both into a uniform ToolResult.

This module provides:
- ToolResult: the outcome of one tool call
- WorkspaceTool: a tool definition plus its implementation
- ToolRegistry / tool_registry: lookup by name
"""

from dataclasses import dataclass
from pathlib import Path
from typing import Any, Awaitable, Callable, Iterable

from keeper.inference.types import ToolDefinition
from keeper.utils.logger import Logger

logger = Logger("Tools")


class ToolError(Exception):
    """Raised by a tool implementation to report a failure to the model."""


@dataclass(frozen=True)
class ToolResult:
    """
    Outcome of executing a single tool call.

    Attributes:
        tool_call_id: The call this result answers
        tool_name: The tool that was called
        success: Whether the tool succeeded
        output: Output text on success, error text on failure
    """
    tool_call_id: str
    tool_name: str
    success: bool
    output: str

    def to_dict(self) -> dict:
        return {
            "tool_call_id": self.tool_call_id,
            "tool_name": self.tool_name,
            "success": self.success,
            "output": self.output,
        }


ToolFunction = Callable[[dict[str, Any], Path], Awaitable[str]]


@dataclass(frozen=True)
class WorkspaceTool:
    """
    A tool the model can call.

    Attributes:
        name: Unique identifier for the tool
        description: What the tool does (shown to the model)
        parameters: JSON Schema for the arguments
        execute: Async function taking (arguments, workspace) and returning output text

    Example:
        async def echo(params: dict, workspace: Path) -> str:
            return require_str(params, "text")

        registry.register(WorkspaceTool(
            name="echo",
            description="Echo the given text",
            parameters={
                "type": "object",
                "properties": {"text": {"type": "string"}},
                "required": ["text"]
            },
            execute=echo
        ))
    """
    name: str
    description: str
    parameters: dict
    execute: ToolFunction

    @property
    def definition(self) -> ToolDefinition:
        return ToolDefinition(self.name, self.description, self.parameters)


class ToolRegistry:
    """
    Registry of available tools, keyed by name.

    Example:
        registry = ToolRegistry()
        registry.register(my_tool)

        output = await registry.run("my_tool", {"x": 1}, workspace)
        definitions = registry.definitions(allowed=["my_tool"])
    """

    def __init__(self):
        self._tools: dict[str, WorkspaceTool] = {}

    def register(self, tool: WorkspaceTool) -> None:
        """
        Register a tool.

        Raises:
            ValueError: If a tool with this name already exists
        """
        if tool.name in self._tools:
            raise ValueError(f"Tool '{tool.name}' is already registered")

        self._tools[tool.name] = tool
        logger.debug(f"Registered tool: {tool.name}")

    def get(self, name: str) -> WorkspaceTool | None:
        return self._tools.get(name)

    def definitions(self, allowed: Iterable[str] | None = None) -> list[ToolDefinition]:
        """
        Get tool definitions for the model, in registration order.

        Args:
            allowed: Optional allow-list of tool names; None means all tools

        Returns:
            Definitions of the registered (and allowed) tools
        """
        allowed_set = set(allowed) if allowed is not None else None
        return [
            tool.definition
            for tool in self._tools.values()
            if allowed_set is None or tool.name in allowed_set
        ]

    async def run(self, name: str, params: dict[str, Any], workspace: Path) -> str:
        """
        Run a tool by name.

        Raises:
            ToolError: If the tool is unknown or fails
        """
        tool = self.get(name)
        if tool is None:
            raise ToolError(f"Unknown tool: {name}")
        return await tool.execute(params, workspace)


def require_str(params: dict[str, Any], key: str) -> str:
    """
    Fetch a required string argument.

    Raises:
        ToolError: If the argument is missing or not a string
    """
    value = params.get(key)
    if not isinstance(value, str):
        raise ToolError(f"Missing '{key}' argument")
    return value


# Global tool registry instance
tool_registry = ToolRegistry()


def load_builtin_tools() -> ToolRegistry:
    """
    Import the built-in tool modules so they register themselves.

    Safe to call more than once: each module registers only on first import.
    """
    from keeper.tools import code_tools  # noqa: F401
    from keeper.tools import http_tools  # noqa: F401
    from keeper.tools import file_tools  # noqa: F401
    from keeper.tools import shell_tools  # noqa: F401

    return tool_registry


def tool_definitions(allowed: Iterable[str] | None = None) -> list[ToolDefinition]:
    """Definitions of the built-in tools, optionally filtered by name."""
    return load_builtin_tools().definitions(allowed)


__all__ = [
    "ToolError",
    "ToolResult",
    "WorkspaceTool",
    "ToolRegistry",
    "tool_registry",
    "require_str",
    "load_builtin_tools",
    "tool_definitions",
]
