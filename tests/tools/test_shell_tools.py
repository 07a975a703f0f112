"""Tests for shell_exec: argument splitting, timeouts and exit codes."""

import pytest

from keeper.tools import ToolError
from keeper.tools.shell_tools import (
    DEFAULT_TIMEOUT_SECS,
    MAX_TIMEOUT_SECS,
    resolve_timeout,
    shell_exec,
)


class TestResolveTimeout:
    def test_default_when_missing(self):
        assert resolve_timeout({}) == DEFAULT_TIMEOUT_SECS

    def test_clamped_to_maximum(self):
        assert resolve_timeout({"timeout_secs": 500}) == MAX_TIMEOUT_SECS
        assert MAX_TIMEOUT_SECS == 120

    def test_value_within_range_kept(self):
        assert resolve_timeout({"timeout_secs": 45}) == 45

    @pytest.mark.parametrize("value, expected", [(0.5, 1), (0.001, 1), (2.2, 3), (119.5, 120)])
    def test_fractional_seconds_round_up(self, value, expected):
        assert resolve_timeout({"timeout_secs": value}) == expected

    def test_infinite_value_is_clamped(self):
        assert resolve_timeout({"timeout_secs": float("inf")}) == MAX_TIMEOUT_SECS

    @pytest.mark.parametrize("value", [0, -3, "ten", None, True, float("nan")])
    def test_invalid_values_use_default(self, value):
        assert resolve_timeout({"timeout_secs": value}) == DEFAULT_TIMEOUT_SECS


class TestShellExec:
    @pytest.mark.asyncio
    async def test_runs_in_workspace(self, tmp_path):
        (tmp_path / "marker.txt").write_text("x")
        output = await shell_exec({"command": "ls"}, tmp_path)
        assert "marker.txt" in output

    @pytest.mark.asyncio
    async def test_no_shell_interpretation(self, tmp_path):
        output = await shell_exec({"command": "echo a | b"}, tmp_path)
        assert output.strip() == "a | b"

    @pytest.mark.asyncio
    async def test_timeout_is_reported_explicitly(self, tmp_path):
        with pytest.raises(ToolError, match=r"Command timed out after 1s"):
            await shell_exec({"command": "sleep 5", "timeout_secs": 1}, tmp_path)

    @pytest.mark.asyncio
    async def test_nonzero_exit_includes_code_and_stderr(self, tmp_path):
        with pytest.raises(ToolError) as excinfo:
            await shell_exec({"command": "ls does-not-exist"}, tmp_path)
        message = str(excinfo.value)
        assert message.startswith("Exit code ")
        assert "[stderr]" in message

    @pytest.mark.asyncio
    async def test_empty_command(self, tmp_path):
        with pytest.raises(ToolError, match="Command cannot be empty"):
            await shell_exec({"command": "   "}, tmp_path)

    @pytest.mark.asyncio
    async def test_unknown_program(self, tmp_path):
        with pytest.raises(ToolError, match="Failed to execute command"):
            await shell_exec({"command": "definitely-not-a-real-program-xyz"}, tmp_path)
