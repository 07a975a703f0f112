"""
File Tools
==========

Read and write files inside the agent's workspace.

Paths are always relative to the workspace. A path containing ".." anywhere,
or starting with "/", is rejected before it is joined to the workspace. Both
tools apply the same check, and it is the only thing keeping a tool call
inside the sandbox. "notes/../a.md" is refused too, even though it would
resolve inside the workspace.
"""

import asyncio
from pathlib import Path
from typing import Any

from keeper.tools import ToolError, WorkspaceTool, require_str, tool_registry


def is_safe_path(path: str) -> bool:
    """Check that a workspace-relative path cannot escape the workspace."""
    return ".." not in path and not path.startswith("/")


def _resolve(params: dict[str, Any], workspace: Path) -> tuple[str, Path]:
    path = require_str(params, "path")
    if not is_safe_path(path):
        raise ToolError("Path traversal not allowed")
    return path, workspace / path


def _read_sync(resolved: Path) -> str:
    try:
        return resolved.read_text()
    except (OSError, UnicodeDecodeError) as e:
        raise ToolError(f"Failed to read file: {e}") from e


def _write_sync(resolved: Path, content: str) -> None:
    try:
        resolved.parent.mkdir(parents=True, exist_ok=True)
    except OSError as e:
        raise ToolError(f"Failed to create directories: {e}") from e
    try:
        resolved.write_text(content)
    except OSError as e:
        raise ToolError(f"Failed to write file: {e}") from e


async def file_read(params: dict[str, Any], workspace: Path) -> str:
    """Read a workspace file as text."""
    _, resolved = _resolve(params, workspace)
    return await asyncio.to_thread(_read_sync, resolved)


async def file_write(params: dict[str, Any], workspace: Path) -> str:
    """Write text to a workspace file, creating parent directories."""
    path, resolved = _resolve(params, workspace)
    content = require_str(params, "content")
    await asyncio.to_thread(_write_sync, resolved, content)
    return f"Wrote {len(content.encode())} bytes to {path}"


tool_registry.register(WorkspaceTool(
    name="file_read",
    description="Read the contents of a file from the agent's workspace.",
    parameters={
        "type": "object",
        "properties": {
            "path": {
                "type": "string",
                "description": "Relative path within the workspace"
            }
        },
        "required": ["path"]
    },
    execute=file_read
))

tool_registry.register(WorkspaceTool(
    name="file_write",
    description="Write content to a file in the agent's workspace.",
    parameters={
        "type": "object",
        "properties": {
            "path": {
                "type": "string",
                "description": "Relative path within the workspace"
            },
            "content": {
                "type": "string",
                "description": "Content to write"
            }
        },
        "required": ["path", "content"]
    },
    execute=file_write
))
