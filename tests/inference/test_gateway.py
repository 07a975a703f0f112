"""Tests for OpenAIGateway against a mocked async client."""

from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

import pytest
from openai import OpenAIError

from keeper.errors import EmbeddingError, InferenceError
from keeper.inference.gateway import OpenAIGateway
from keeper.inference.types import ChatMessage, TextResult, ToolCallsResult, ToolDefinition


def _response(content=None, tool_calls=None):
    message = SimpleNamespace(content=content, tool_calls=tool_calls)
    return SimpleNamespace(choices=[SimpleNamespace(message=message)])


def _raw_call(id, name, arguments):
    return SimpleNamespace(id=id, function=SimpleNamespace(name=name, arguments=arguments))


def _gateway(config, response=None, error=None):
    client = MagicMock()
    client.chat.completions.create = AsyncMock(return_value=response, side_effect=error)
    return OpenAIGateway(config.inference, client=client), client


class TestGenerateWithTools:
    @pytest.mark.asyncio
    async def test_text_result(self, config):
        gateway, client = _gateway(config, _response(content="All done"))
        result = await gateway.generate_with_tools("sys", [ChatMessage.text("user", "hi")], [])

        assert result == TextResult("All done")
        request = client.chat.completions.create.call_args.kwargs
        assert request["messages"][0] == {"role": "system", "content": "sys"}
        assert request["model"] == "test-model"
        assert "tools" not in request

    @pytest.mark.asyncio
    async def test_tool_calls_result(self, config):
        raw = [_raw_call("call_1", "shell_exec", '{"command": "ls"}')]
        gateway, client = _gateway(config, _response(tool_calls=raw))
        tools = [ToolDefinition("shell_exec", "Run", {"type": "object"})]

        result = await gateway.generate_with_tools("sys", [ChatMessage.text("user", "list")], tools)

        assert isinstance(result, ToolCallsResult)
        assert result.calls[0].name == "shell_exec"
        assert result.calls[0].arguments == {"command": "ls"}
        assert client.chat.completions.create.call_args.kwargs["tools"][0]["function"]["name"] == "shell_exec"

    @pytest.mark.asyncio
    async def test_malformed_arguments_become_empty(self, config):
        raw = [_raw_call("call_1", "file_read", "{not json")]
        gateway, _ = _gateway(config, _response(tool_calls=raw))
        result = await gateway.generate_with_tools("sys", [ChatMessage.text("user", "x")], [])
        assert result.calls[0].arguments == {}

    @pytest.mark.asyncio
    async def test_provider_error_becomes_inference_error(self, config):
        gateway, _ = _gateway(config, error=OpenAIError("boom"))
        with pytest.raises(InferenceError, match="boom"):
            await gateway.generate_with_tools("sys", [ChatMessage.text("user", "x")], [])

    @pytest.mark.asyncio
    async def test_no_choices(self, config):
        gateway, _ = _gateway(config, SimpleNamespace(choices=[]))
        with pytest.raises(InferenceError, match="No response choices"):
            await gateway.generate_text("sys", [ChatMessage.text("user", "x")])


class TestEmbed:
    @pytest.mark.asyncio
    async def test_count_mismatch_is_an_error(self, config):
        gateway, client = _gateway(config)
        client.embeddings.create = AsyncMock(return_value=SimpleNamespace(data=[SimpleNamespace(embedding=[0.1])]))
        with pytest.raises(EmbeddingError, match="cardinality"):
            await gateway.embed(["a", "b"])


def test_base_url_derived_from_chat_url(config):
    assert config.inference.base_url == "http://localhost:11434/v1"
    assert config.inference.embedding_model == "test-model"
