"""
Embedding Generation
====================

Generates vector embeddings for lesson retrieval.

The retriever embeds the task text together with every candidate lesson in a
single batch call, so the same lesson texts are embedded over and over as an
agent runs more tasks. Embeddings are cached by text hash to avoid paying for
that repeatedly.

The provider must return exactly one vector per input. Anything else is
treated as a failed call (EmbeddingError) so the retriever can fall back to
lexical ranking instead of pairing vectors with the wrong lessons.
"""

import hashlib
from typing import Sequence

from openai import AsyncOpenAI, OpenAIError

from keeper.errors import EmbeddingError
from keeper.utils.logger import Logger

logger = Logger("Embeddings")


class EmbeddingGenerator:
    """
    Batched, cached text embeddings over an OpenAI-compatible endpoint.

    Example:
        generator = EmbeddingGenerator(client, model="text-embedding-3-small")

        vectors = await generator.generate_batch([
            "Fix failing tests in parser",
            "Summarize the quarterly report",
        ])
    """

    def __init__(self, client: AsyncOpenAI, model: str, max_cache_entries: int = 4096):
        """
        Initialize the embedding generator.

        Args:
            client: Async OpenAI client (shared with chat completions)
            model: Embedding model name
            max_cache_entries: Cache size; the cache is cleared when exceeded
        """
        self.client = client
        self.model = model
        self.max_cache_entries = max_cache_entries

        # Key: hash of text, Value: embedding vector
        self._cache: dict[str, list[float]] = {}

    def _hash_text(self, text: str) -> str:
        return hashlib.md5(f"{self.model}\0{text}".encode()).hexdigest()

    async def generate(self, text: str) -> list[float]:
        """Generate an embedding for a single text."""
        vectors = await self.generate_batch([text])
        return vectors[0]

    async def generate_batch(self, texts: Sequence[str]) -> list[list[float]]:
        """
        Generate embeddings for multiple texts in input order.

        Only texts missing from the cache are sent to the provider.

        Args:
            texts: Texts to embed

        Returns:
            One vector per input text

        Raises:
            EmbeddingError: If the request fails or the vector count is wrong
        """
        if not texts:
            return []

        results: list[list[float] | None] = []
        pending: list[tuple[int, str]] = []

        for i, text in enumerate(texts):
            cached = self._cache.get(self._hash_text(text))
            results.append(cached)
            if cached is None:
                pending.append((i, text))

        if pending:
            logger.debug(f"Generating {len(pending)} embeddings ({len(texts) - len(pending)} cached)")

            try:
                response = await self.client.embeddings.create(
                    model=self.model,
                    input=[text for _, text in pending]
                )
            except OpenAIError as e:
                raise EmbeddingError(f"Embedding request failed: {e}") from e

            if len(response.data) != len(pending):
                raise EmbeddingError(
                    f"Embedding cardinality mismatch: got {len(response.data)}, "
                    f"expected {len(pending)}"
                )

            if len(self._cache) + len(pending) > self.max_cache_entries:
                self._cache.clear()

            for (original_index, text), item in zip(pending, response.data):
                results[original_index] = item.embedding
                self._cache[self._hash_text(text)] = item.embedding

        return [vector for vector in results if vector is not None]

    def clear_cache(self) -> None:
        """Clear the embedding cache."""
        self._cache.clear()

    def get_cache_size(self) -> int:
        """Get the number of cached embeddings."""
        return len(self._cache)
