"""
Tool Executor
=============

Runs the tool calls requested by the model inside an agent's workspace.

The executor:
1. Resolves (and creates) the agent's workspace directory
2. Runs each call through the tool registry
3. Wraps every outcome - success, tool failure, unknown tool, or an
   unexpected exception - into a ToolResult

Nothing raised by a tool escapes the executor. The agent loop can therefore
treat a tool call as a plain function from ToolCall to ToolResult.

Workspace layout:
    <data_dir>/
    └── workspaces/
        ├── agent-1/      # one directory per agent, never shared
        └── agent-2/
"""

from pathlib import Path
from typing import Sequence

from keeper.inference.types import ChatMessage, ToolCall
from keeper.tools import ToolError, ToolRegistry, ToolResult, load_builtin_tools
from keeper.utils.config import expand_path
from keeper.utils.logger import Logger

logger = Logger("ToolExecutor")


class ToolExecutor:
    """
    Executes tool calls for agents.

    Example:
        executor = ToolExecutor(Path("~/.keeper"))

        result = await executor.execute_one("agent-1", ToolCall(
            id="call_1",
            name="file_write",
            arguments={"path": "notes/today.md", "content": "hello"}
        ))
        assert result.success
    """

    def __init__(self, data_dir: Path | str, registry: ToolRegistry | None = None):
        """
        Initialize the tool executor.

        Args:
            data_dir: Root data directory; "~" is expanded
            registry: Tool registry (defaults to the built-in tools)
        """
        self.data_dir = expand_path(str(data_dir))
        self.registry = registry or load_builtin_tools()

    def workspace_for(self, agent_id: str) -> Path:
        """
        Get an agent's workspace directory, creating it if needed.

        Args:
            agent_id: The agent identifier

        Returns:
            Path to the workspace
        """
        workspace = self.data_dir / "workspaces" / agent_id
        workspace.mkdir(parents=True, exist_ok=True)
        return workspace

    async def execute_one(self, agent_id: str, tool_call: ToolCall) -> ToolResult:
        """
        Execute a single tool call.

        Args:
            agent_id: Whose workspace to run in
            tool_call: The call to execute

        Returns:
            ToolResult; never raises
        """
        logger.info(f"Executing tool: {tool_call.name}")

        try:
            workspace = self.workspace_for(agent_id)
            output = await self.registry.run(tool_call.name, tool_call.arguments, workspace)
        except ToolError as e:
            logger.warning(f"Tool {tool_call.name} failed: {_first_line(str(e))}")
            return ToolResult(tool_call.id, tool_call.name, success=False, output=str(e))
        except Exception as e:
            logger.error(f"Tool {tool_call.name} raised unexpectedly", e)
            return ToolResult(
                tool_call.id,
                tool_call.name,
                success=False,
                output=f"Tool error: {type(e).__name__}: {e}",
            )

        logger.debug(f"Tool {tool_call.name} succeeded ({len(output)} chars)")
        return ToolResult(tool_call.id, tool_call.name, success=True, output=output)

    async def execute_all(
        self,
        agent_id: str,
        tool_calls: Sequence[ToolCall]
    ) -> list[ToolResult]:
        """
        Execute tool calls one at a time, in the order requested.

        Later calls may depend on files written by earlier ones, so calls are
        never run concurrently.

        Returns:
            One ToolResult per call, in input order
        """
        results = []
        for tool_call in tool_calls:
            results.append(await self.execute_one(agent_id, tool_call))
        return results

    def format_results_for_messages(self, results: Sequence[ToolResult]) -> list[ChatMessage]:
        """Turn tool results into tool messages for the next inference call."""
        return [
            ChatMessage.tool_result(result.tool_call_id, result.tool_name, result.output)
            for result in results
        ]


def _first_line(text: str) -> str:
    return text.splitlines()[0] if text else ""
