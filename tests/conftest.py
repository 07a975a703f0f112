"""Shared fixtures: temporary storage, a scripted in-process gateway, lesson builders."""

import asyncio
from pathlib import Path
from typing import Callable, Sequence

import pytest

from keeper.errors import EmbeddingError
from keeper.inference.gateway import InferenceGateway
from keeper.inference.types import (
    ChatMessage,
    TextResult,
    ToolCall,
    ToolCallsResult,
    ToolDefinition,
)
from keeper.memory.lessons import Lesson
from keeper.memory.store import LessonStore
from keeper.utils.config import AgentConfig, Config, InferenceConfig, StorageConfig


# ---------------------------------------------------------------------------
# Fake gateway
# ---------------------------------------------------------------------------

class FakeGateway(InferenceGateway):
    """
    Scripted gateway.

    Each generate_with_tools() call pops the next scripted item:
    - an InferenceResult is returned
    - an exception is raised
    - an async callable is awaited and its result returned
    When the script runs out it answers "done".
    """

    def __init__(
        self,
        responses: Sequence = (),
        embedder: Callable[[str], list[float]] | None = None,
        embed_error: Exception | None = None,
        drop_vectors: int = 0
    ):
        self.responses = list(responses)
        self.embedder = embedder
        self.embed_error = embed_error
        self.drop_vectors = drop_vectors
        self.conversations: list[list[ChatMessage]] = []
        self.system_prompts: list[str] = []
        self.embed_calls: list[list[str]] = []

    async def generate_text(self, system_prompt, conversation):
        result = await self.generate_with_tools(system_prompt, conversation, [])
        return result.content

    async def generate_with_tools(self, system_prompt, conversation, tools):
        self.system_prompts.append(system_prompt)
        self.conversations.append(list(conversation))
        if not self.responses:
            return TextResult("done")
        item = self.responses.pop(0)
        if isinstance(item, BaseException):
            raise item
        if callable(item):
            return await item()
        return item

    async def embed(self, texts):
        self.embed_calls.append(list(texts))
        if self.embed_error is not None:
            raise self.embed_error
        if self.embedder is None:
            raise EmbeddingError("embeddings not configured")
        vectors = [self.embedder(text) for text in texts]
        return vectors[: len(vectors) - self.drop_vectors]


def tool_calls(*specs: tuple[str, dict]) -> ToolCallsResult:
    """ToolCallsResult from (name, arguments) pairs."""
    return ToolCallsResult(calls=tuple(
        ToolCall(id=f"call_{i}", name=name, arguments=arguments)
        for i, (name, arguments) in enumerate(specs)
    ))


async def never_returns():
    await asyncio.sleep(30)
    return TextResult("too late")


@pytest.fixture
def fake_gateway():
    """Factory for scripted gateways."""
    return FakeGateway


@pytest.fixture
def calls():
    """Builder for ToolCallsResult values."""
    return tool_calls


@pytest.fixture
def hang():
    """A scripted response that outlives any short turn timeout."""
    return never_returns


# ---------------------------------------------------------------------------
# Storage and config
# ---------------------------------------------------------------------------

@pytest.fixture
def storage(tmp_path: Path) -> StorageConfig:
    return StorageConfig(data_dir=tmp_path)


@pytest.fixture
def store(tmp_path: Path):
    lesson_store = LessonStore(tmp_path / "keeper.db")
    yield lesson_store
    lesson_store.close()


@pytest.fixture
def config(tmp_path: Path) -> Config:
    return Config(
        inference=InferenceConfig(
            api_key="",
            api_url="http://localhost:11434/v1/chat/completions",
            model="test-model",
            max_tokens=256,
            temperature=0.0,
            embeddings_enabled=False,
        ),
        agent=AgentConfig(max_turns=5, turn_timeout_secs=5.0),
        storage=StorageConfig(data_dir=tmp_path),
        log_level="error",
    )


@pytest.fixture
def echo_tool() -> ToolDefinition:
    return ToolDefinition(
        name="shell_exec",
        description="Run a command",
        parameters={"type": "object", "properties": {"command": {"type": "string"}}},
    )


# ---------------------------------------------------------------------------
# Lessons
# ---------------------------------------------------------------------------

def build_lesson(**overrides) -> Lesson:
    fields = dict(
        agent_id="agent-1",
        action_id=1,
        category="general",
        goal="Say hello",
        approach="1 turn(s); tools: none; stop: completed",
        tools_used=[],
        outcome="Completed: hello",
        errors=[],
        fixes=["No tool failures"],
        duration_ms=1000,
        success=True,
        extractor_confidence=0.6,
        applicability_confidence=0.65,
        reusability_confidence=0.5,
        quality_score=0.5,
    )
    fields.update(overrides)
    return Lesson(**fields)


@pytest.fixture
def make_lesson():
    """Builder for Lesson values with sensible defaults."""
    return build_lesson


@pytest.fixture
def add_lesson(store):
    """Insert a lesson built from overrides and return it with its id."""
    def _add(**overrides) -> Lesson:
        return store.insert_lesson(build_lesson(**overrides))
    return _add
