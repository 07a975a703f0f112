"""
Code Evaluation Tool
====================

Runs a Python or JavaScript snippet inside the agent's workspace.

The snippet is written to a throwaway file (_eval.py / _eval.js), executed
with the workspace as the working directory, and deleted afterwards whether
or not the run succeeded. Files the snippet itself creates stay in the
workspace, so later tool calls can read them.
"""

import asyncio
from pathlib import Path
from typing import Any

from keeper.tools import ToolError, WorkspaceTool, require_str, tool_registry
from keeper.utils.logger import Logger

logger = Logger("CodeTools")

# language -> (interpreter, file extension)
INTERPRETERS = {
    "python": ("python3", "py"),
    "javascript": ("node", "js"),
}

# TODO: make this configurable per request once the execute API grows a field for it
CODE_EVAL_TIMEOUT_SECS = 120


async def code_eval(params: dict[str, Any], workspace: Path) -> str:
    """
    Evaluate a code snippet.

    Args:
        params: {"language": "python" | "javascript", "code": "..."}
        workspace: The agent's workspace directory

    Returns:
        The snippet's stdout

    Raises:
        ToolError: On missing arguments, unsupported language, or non-zero exit
    """
    language = require_str(params, "language")
    code = require_str(params, "code")

    if language not in INTERPRETERS:
        raise ToolError(f"Unsupported language: {language}")
    interpreter, extension = INTERPRETERS[language]

    script_path = workspace / f"_eval.{extension}"
    try:
        script_path.write_text(code)
    except OSError as e:
        raise ToolError(f"Failed to write script: {e}") from e

    try:
        try:
            process = await asyncio.create_subprocess_exec(
                interpreter,
                str(script_path),
                cwd=workspace,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as e:
            raise ToolError(f"Failed to execute {interpreter}: {e}") from e

        try:
            stdout, stderr = await asyncio.wait_for(
                process.communicate(), timeout=CODE_EVAL_TIMEOUT_SECS
            )
        except asyncio.TimeoutError:
            process.kill()
            await process.wait()
            raise ToolError(f"Code evaluation timed out after {CODE_EVAL_TIMEOUT_SECS}s")
    finally:
        script_path.unlink(missing_ok=True)

    out = stdout.decode(errors="replace")
    err = stderr.decode(errors="replace")

    if process.returncode != 0:
        logger.debug(f"{language} snippet exited with {process.returncode}")
        raise ToolError(f"Exit code {process.returncode}\nstdout: {out}\nstderr: {err}")

    return out


tool_registry.register(WorkspaceTool(
    name="code_eval",
    description="Evaluate a code snippet and return the output. Supports Python and JavaScript.",
    parameters={
        "type": "object",
        "properties": {
            "language": {
                "type": "string",
                "enum": list(INTERPRETERS),
                "description": "Programming language to evaluate"
            },
            "code": {
                "type": "string",
                "description": "The code to evaluate"
            }
        },
        "required": ["language", "code"]
    },
    execute=code_eval
))
