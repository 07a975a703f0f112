"""Tests for http_fetch using an in-process httpx transport."""

import asyncio
from unittest.mock import patch

import httpx
import pytest

from keeper.tools import ToolError
from keeper.tools.http_tools import MAX_BODY_CHARS, TRUNCATION_MARKER, http_fetch, truncate_body

_RealAsyncClient = httpx.AsyncClient


def _client_with(handler):
    def factory(**kwargs):
        return _RealAsyncClient(transport=httpx.MockTransport(handler), **kwargs)
    return factory


class TestTruncateBody:
    def test_short_body_untouched(self):
        assert truncate_body("hello") == "hello"

    def test_long_body_truncated_with_marker(self):
        body = "x" * (MAX_BODY_CHARS + 10)
        truncated = truncate_body(body)
        assert truncated.endswith("...\n[truncated at 50KB]")
        assert len(truncated) == MAX_BODY_CHARS + len(TRUNCATION_MARKER)


class TestHttpFetch:
    @pytest.mark.asyncio
    @pytest.mark.parametrize("url", ["ftp://example.com/file", "file:///etc/passwd", "example.com"])
    async def test_rejects_non_http_schemes_without_a_request(self, tmp_path, url):
        with patch("keeper.tools.http_tools.httpx.AsyncClient") as client_cls:
            with pytest.raises(ToolError, match="URL must start with http:// or https://"):
                await http_fetch({"url": url}, tmp_path)
        client_cls.assert_not_called()

    @pytest.mark.asyncio
    async def test_returns_body(self, tmp_path):
        handler = lambda request: httpx.Response(200, text="hello world")
        with patch("keeper.tools.http_tools.httpx.AsyncClient", side_effect=_client_with(handler)):
            body = await http_fetch({"url": "https://example.com"}, tmp_path)
        assert body == "hello world"

    @pytest.mark.asyncio
    async def test_non_2xx_fails_with_status_and_body(self, tmp_path):
        handler = lambda request: httpx.Response(404, text="not here")
        with patch("keeper.tools.http_tools.httpx.AsyncClient", side_effect=_client_with(handler)):
            with pytest.raises(ToolError, match="HTTP 404: not here"):
                await http_fetch({"url": "https://example.com/missing"}, tmp_path)

    @pytest.mark.asyncio
    async def test_large_body_truncated(self, tmp_path):
        handler = lambda request: httpx.Response(200, text="y" * (MAX_BODY_CHARS * 2))
        with patch("keeper.tools.http_tools.httpx.AsyncClient", side_effect=_client_with(handler)):
            body = await http_fetch({"url": "http://example.com/big"}, tmp_path)
        assert body.endswith(TRUNCATION_MARKER)

    @pytest.mark.asyncio
    async def test_transport_error_becomes_tool_error(self, tmp_path):
        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)
        with patch("keeper.tools.http_tools.httpx.AsyncClient", side_effect=_client_with(handler)):
            with pytest.raises(ToolError, match="HTTP request failed"):
                await http_fetch({"url": "http://localhost:1"}, tmp_path)

    @pytest.mark.asyncio
    async def test_slow_response_hits_overall_timeout(self, tmp_path):
        async def handler(request):
            await asyncio.sleep(5)
            return httpx.Response(200, text="too late")

        with patch("keeper.tools.http_tools.HTTP_TIMEOUT_SECS", 0.05), \
                patch("keeper.tools.http_tools.httpx.AsyncClient", side_effect=_client_with(handler)):
            with pytest.raises(ToolError, match="timed out"):
                await asyncio.wait_for(http_fetch({"url": "https://example.com/slow"}, tmp_path), timeout=2)
