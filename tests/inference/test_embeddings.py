"""Tests for the cached batch embedding generator."""

from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

import pytest
from openai import OpenAIError

from keeper.errors import EmbeddingError
from keeper.inference.embeddings import EmbeddingGenerator


def _client(vectors_per_call):
    client = MagicMock()
    client.embeddings.create = AsyncMock(side_effect=[
        SimpleNamespace(data=[SimpleNamespace(embedding=v) for v in vectors])
        for vectors in vectors_per_call
    ])
    return client


class TestEmbeddingGenerator:
    @pytest.mark.asyncio
    async def test_batch_in_input_order(self):
        generator = EmbeddingGenerator(_client([[[1.0], [2.0]]]), "text-embedding-3-small")
        assert await generator.generate_batch(["a", "b"]) == [[1.0], [2.0]]

    @pytest.mark.asyncio
    async def test_cached_texts_not_requested_again(self):
        client = _client([[[1.0]], [[2.0]]])
        generator = EmbeddingGenerator(client, "m")

        await generator.generate("a")
        vectors = await generator.generate_batch(["a", "b"])

        assert vectors == [[1.0], [2.0]]
        assert client.embeddings.create.await_args_list[1].kwargs["input"] == ["b"]
        assert generator.get_cache_size() == 2

    @pytest.mark.asyncio
    async def test_empty_input(self):
        generator = EmbeddingGenerator(_client([]), "m")
        assert await generator.generate_batch([]) == []

    @pytest.mark.asyncio
    async def test_provider_error(self):
        client = MagicMock()
        client.embeddings.create = AsyncMock(side_effect=OpenAIError("down"))
        with pytest.raises(EmbeddingError, match="down"):
            await EmbeddingGenerator(client, "m").generate_batch(["a"])

    def test_clear_cache(self):
        generator = EmbeddingGenerator(_client([]), "m")
        generator._cache["x"] = [1.0]
        generator.clear_cache()
        assert generator.get_cache_size() == 0
