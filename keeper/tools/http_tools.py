"""
HTTP Fetch Tool
===============

Fetches a URL with HTTP GET and returns the body as text.

Limits:
- Only http:// and https:// URLs; anything else is rejected before a
  request is made
- 30 second limit on the whole request, not per read
- Bodies over 50KB are truncated with a marker so one page cannot flood the
  model's context
"""

import asyncio
from pathlib import Path
from typing import Any

import httpx

from keeper.tools import ToolError, WorkspaceTool, require_str, tool_registry
from keeper.utils.logger import Logger

logger = Logger("HttpTools")

HTTP_TIMEOUT_SECS = 30.0
MAX_BODY_CHARS = 50_000
TRUNCATION_MARKER = "...\n[truncated at 50KB]"


def truncate_body(body: str, limit: int = MAX_BODY_CHARS) -> str:
    """Cut `body` to `limit` characters, appending the truncation marker."""
    if len(body) <= limit:
        return body
    return body[:limit] + TRUNCATION_MARKER


async def http_fetch(params: dict[str, Any], workspace: Path) -> str:
    """
    Fetch a URL.

    Args:
        params: {"url": "https://..."}
        workspace: Unused; present for the common tool signature

    Returns:
        The (possibly truncated) response body

    Raises:
        ToolError: On a bad scheme, transport error, or non-2xx status
    """
    url = require_str(params, "url")

    if not url.startswith(("http://", "https://")):
        raise ToolError("URL must start with http:// or https://")

    try:
        async with httpx.AsyncClient(timeout=HTTP_TIMEOUT_SECS, follow_redirects=True) as client:
            response = await asyncio.wait_for(client.get(url), HTTP_TIMEOUT_SECS)
    except (httpx.TimeoutException, asyncio.TimeoutError) as e:
        raise ToolError(f"HTTP request timed out after {HTTP_TIMEOUT_SECS:.0f}s") from e
    except httpx.HTTPError as e:
        raise ToolError(f"HTTP request failed: {e}") from e

    body = truncate_body(response.text)

    if not response.is_success:
        logger.debug(f"GET {url} -> {response.status_code}")
        raise ToolError(f"HTTP {response.status_code}: {body}")

    return body


tool_registry.register(WorkspaceTool(
    name="http_fetch",
    description="Fetch content from a URL via HTTP GET. Returns the response body as text.",
    parameters={
        "type": "object",
        "properties": {
            "url": {
                "type": "string",
                "description": "The URL to fetch"
            }
        },
        "required": ["url"]
    },
    execute=http_fetch
))
