"""Tests for ToolExecutor: workspace resolution and uniform result wrapping."""

from pathlib import Path

import pytest

from keeper.agent.tools_executor import ToolExecutor
from keeper.inference.types import ToolCall
from keeper.tools import ToolRegistry, WorkspaceTool


async def _explode(params, workspace):
    raise RuntimeError("kaboom")


class TestWorkspace:
    def test_workspace_created_under_data_dir(self, tmp_path):
        executor = ToolExecutor(tmp_path)
        workspace = executor.workspace_for("agent-7")
        assert workspace == tmp_path / "workspaces" / "agent-7"
        assert workspace.is_dir()

    def test_home_is_expanded(self):
        executor = ToolExecutor("~/keeper-data")
        assert executor.data_dir == Path.home() / "keeper-data"


class TestExecuteOne:
    @pytest.mark.asyncio
    async def test_success_wraps_output(self, tmp_path):
        executor = ToolExecutor(tmp_path)
        result = await executor.execute_one("agent-1", ToolCall(
            id="call_1", name="file_write", arguments={"path": "a.txt", "content": "abc"}
        ))
        assert result.success
        assert result.tool_call_id == "call_1"
        assert result.tool_name == "file_write"
        assert (tmp_path / "workspaces" / "agent-1" / "a.txt").read_text() == "abc"

    @pytest.mark.asyncio
    async def test_tool_failure_becomes_failed_result(self, tmp_path):
        executor = ToolExecutor(tmp_path)
        result = await executor.execute_one("agent-1", ToolCall(
            id="call_1", name="file_read", arguments={"path": "../../etc/passwd"}
        ))
        assert not result.success
        assert result.output == "Path traversal not allowed"

    @pytest.mark.asyncio
    async def test_unknown_tool(self, tmp_path):
        executor = ToolExecutor(tmp_path)
        result = await executor.execute_one("agent-1", ToolCall(id="c", name="teleport", arguments={}))
        assert not result.success
        assert result.output == "Unknown tool: teleport"

    @pytest.mark.asyncio
    async def test_unexpected_exception_never_escapes(self, tmp_path):
        registry = ToolRegistry()
        registry.register(WorkspaceTool("explode", "Always fails", {"type": "object"}, _explode))
        executor = ToolExecutor(tmp_path, registry=registry)

        result = await executor.execute_one("agent-1", ToolCall(id="c", name="explode", arguments={}))

        assert not result.success
        assert "RuntimeError: kaboom" in result.output


class TestExecuteAll:
    @pytest.mark.asyncio
    async def test_sequential_in_request_order(self, tmp_path):
        executor = ToolExecutor(tmp_path)
        calls = [
            ToolCall(id="1", name="file_write", arguments={"path": "n.txt", "content": "first"}),
            ToolCall(id="2", name="file_read", arguments={"path": "n.txt"}),
        ]
        results = await executor.execute_all("agent-1", calls)

        assert [r.tool_call_id for r in results] == ["1", "2"]
        assert results[1].output == "first"

    def test_results_become_tool_messages(self, tmp_path):
        from keeper.tools import ToolResult

        executor = ToolExecutor(tmp_path)
        messages = executor.format_results_for_messages([
            ToolResult("call_1", "shell_exec", True, "ok"),
        ])
        assert messages[0].to_openai_message() == {
            "role": "tool",
            "content": "ok",
            "tool_call_id": "call_1",
            "name": "shell_exec",
        }
