"""
Shell Tool
==========

Runs one program with arguments in the agent's workspace.

The command is split on whitespace into a program and its arguments and run
directly, without a shell: pipes, redirects, globs and quoting are not
interpreted. Each call is bounded by a timeout (default 30s, never more than
120s); a command that runs past it is killed and reported as timed out.
"""

import asyncio
import math
from pathlib import Path
from typing import Any

from keeper.tools import ToolError, WorkspaceTool, require_str, tool_registry

DEFAULT_TIMEOUT_SECS = 30
MAX_TIMEOUT_SECS = 120


def resolve_timeout(params: dict[str, Any]) -> int:
    """
    Read `timeout_secs`, applying the default and the 120s ceiling.

    Missing, non-numeric or non-positive values use the default; fractional
    seconds round up so a positive value never becomes zero.
    """
    value = params.get("timeout_secs")
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return DEFAULT_TIMEOUT_SECS
    if math.isnan(value) or value <= 0:
        return DEFAULT_TIMEOUT_SECS
    return math.ceil(min(value, MAX_TIMEOUT_SECS))


def _combine_output(stdout: bytes, stderr: bytes) -> str:
    out = stdout.decode(errors="replace")
    err = stderr.decode(errors="replace")
    if not err:
        return out
    return f"{out}\n[stderr]\n{err}"


async def shell_exec(params: dict[str, Any], workspace: Path) -> str:
    """
    Run a command.

    Args:
        params: {"command": "ls -la", "timeout_secs": 30}
        workspace: Working directory for the command

    Returns:
        Combined stdout and stderr

    Raises:
        ToolError: On an empty command, launch failure, timeout, or non-zero exit
    """
    command = require_str(params, "command")
    parts = command.split()
    if not parts:
        raise ToolError("Command cannot be empty")

    timeout = resolve_timeout(params)

    try:
        process = await asyncio.create_subprocess_exec(
            *parts,
            cwd=workspace,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
    except OSError as e:
        raise ToolError(f"Failed to execute command: {e}") from e

    try:
        stdout, stderr = await asyncio.wait_for(process.communicate(), timeout=timeout)
    except asyncio.TimeoutError:
        process.kill()
        await process.wait()
        raise ToolError(f"Command timed out after {timeout}s")

    combined = _combine_output(stdout, stderr)
    if process.returncode != 0:
        raise ToolError(f"Exit code {process.returncode}\n{combined}")
    return combined


tool_registry.register(WorkspaceTool(
    name="shell_exec",
    description=(
        "Execute a command in the workspace (no shell features such as pipes). "
        "Returns stdout and stderr."
    ),
    parameters={
        "type": "object",
        "properties": {
            "command": {
                "type": "string",
                "description": "The command to execute"
            },
            "timeout_secs": {
                "type": "integer",
                "description": f"Timeout in seconds (default {DEFAULT_TIMEOUT_SECS}, max {MAX_TIMEOUT_SECS})",
                "default": DEFAULT_TIMEOUT_SECS
            }
        },
        "required": ["command"]
    },
    execute=shell_exec
))
