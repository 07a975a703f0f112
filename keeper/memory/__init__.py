"""
Experiential Memory
===================

An agent's private memory of how past tasks went.

1. LESSONS: one distilled record per finished execution (SQLite)
2. RECALL: hybrid semantic + lexical retrieval of relevant lessons
3. EXTRACTION: building, scoring and storing a lesson after each run
4. FEEDBACK: rewarding or penalizing the lessons a run was given
5. ACTION LOG: one entry per execution, with its final status

This module provides a Facade pattern - a single MemoryManager class
that coordinates the store, retriever, extractor and feedback recorder.

Usage:
    from keeper.memory import MemoryManager

    memory = MemoryManager(store, gateway, config.storage)

    action_id = await memory.start_action("agent-1", task)
    context = await memory.recall("agent-1", task, category)
    event = await memory.open_retrieval_event("agent-1", action_id, context)

    # ... run the agent loop ...

    lesson = await memory.learn("agent-1", action_id, task, category, result, duration_ms, context.lesson_ids)
    await memory.record_feedback(event, success=result.completed, duration_ms=duration_ms)
"""

import asyncio
from typing import Sequence

from keeper.agent.core import LoopResult
from keeper.inference.gateway import InferenceGateway
from keeper.memory.extractor import LessonExtractor
from keeper.memory.feedback import FeedbackOutcome, FeedbackRecorder
from keeper.memory.lessons import ActionRecord, Lesson, RetrievalEvent
from keeper.memory.recall import LessonRetriever, MemoryContext, ScoredLesson
from keeper.memory.similarity import infer_category
from keeper.memory.store import LessonStore
from keeper.utils.config import StorageConfig
from keeper.utils.logger import Logger

logger = Logger("Memory")


class MemoryManager:
    """
    Facade over lesson storage, recall, extraction and feedback.

    Example:
        memory = MemoryManager(LessonStore(config.storage.database_path), gateway, config.storage)

        context = await memory.recall("agent-1", "Fix failing tests in parser", "debug")
        print(context.to_prompt_section())
    """

    def __init__(
        self,
        store: LessonStore,
        gateway: InferenceGateway | None,
        storage: StorageConfig,
        embeddings_enabled: bool = True
    ):
        """
        Initialize the memory system.

        Args:
            store: Lesson store
            gateway: Embedding source for recall (None for lexical-only)
            storage: Storage paths (artifact locations)
            embeddings_enabled: Whether recall may use embeddings at all
        """
        self.store = store
        self.retriever = LessonRetriever(store, gateway, embeddings_enabled=embeddings_enabled)
        self.extractor = LessonExtractor(store, storage)
        self.feedback = FeedbackRecorder(store)

        logger.debug("Memory system initialized")

    # ==========================================================================
    # Action Log
    # ==========================================================================

    async def start_action(self, agent_id: str, task: str) -> int:
        return await asyncio.to_thread(self.store.insert_action, agent_id, task)

    async def complete_action(
        self,
        action_id: int,
        success: bool,
        first_tool: str | None = None,
        turns_json: str | None = None
    ) -> None:
        status = "success" if success else "failed"
        await asyncio.to_thread(self.store.complete_action, action_id, status, first_tool, turns_json)

    async def get_actions(self, agent_id: str, limit: int = 20) -> list[ActionRecord]:
        return await asyncio.to_thread(self.store.list_actions, agent_id, limit)

    # ==========================================================================
    # Recall
    # ==========================================================================

    async def recall(self, agent_id: str, task: str, category: str | None = None) -> MemoryContext:
        """
        Recall lessons relevant to a task.

        Args:
            agent_id: Whose lessons to search
            task: Task text
            category: Task category (inferred from the task when omitted)

        Returns:
            MemoryContext with up to 7 lessons
        """
        return await self.retriever.retrieve(agent_id, task, category or infer_category(task))

    async def open_retrieval_event(
        self,
        agent_id: str,
        action_id: int,
        context: MemoryContext
    ) -> RetrievalEvent | None:
        """
        Record which lessons an execution was given.

        Returns:
            The new event, or None when nothing was recalled
        """
        if context.is_empty():
            return None

        event = RetrievalEvent(
            agent_id=agent_id,
            action_id=action_id,
            task=context.task,
            category=context.category,
            lesson_ids=context.lesson_ids,
        )
        return await asyncio.to_thread(self.store.create_retrieval_event, event)

    # ==========================================================================
    # Learning
    # ==========================================================================

    async def learn(
        self,
        agent_id: str,
        action_id: int,
        task: str,
        category: str,
        result: LoopResult,
        duration_ms: int,
        retrieved_lesson_ids: Sequence[int] = ()
    ) -> Lesson:
        """Extract, store and write the artifact for a finished run."""
        return await self.extractor.extract(
            agent_id=agent_id,
            action_id=action_id,
            task=task,
            category=category,
            result=result,
            duration_ms=duration_ms,
            retrieved_lesson_ids=retrieved_lesson_ids,
        )

    async def record_feedback(
        self,
        event: RetrievalEvent | None,
        success: bool,
        duration_ms: int
    ) -> FeedbackOutcome | None:
        """Apply feedback for a run's retrieval (no-op without an event)."""
        if event is None:
            return None
        return await self.feedback.record(event, success, duration_ms)

    # ==========================================================================
    # Inspection
    # ==========================================================================

    async def get_lesson(self, lesson_id: int) -> Lesson | None:
        return await asyncio.to_thread(self.store.get_lesson, lesson_id)

    async def list_lessons(self, agent_id: str, limit: int = 20) -> list[Lesson]:
        return await asyncio.to_thread(self.store.recent_lessons, agent_id, limit)

    def close(self) -> None:
        self.store.close()


# Export key classes
__all__ = [
    "MemoryManager",
    "MemoryContext",
    "ScoredLesson",
    "Lesson",
    "RetrievalEvent",
    "ActionRecord",
    "LessonStore",
    "LessonRetriever",
    "LessonExtractor",
    "FeedbackRecorder",
    "FeedbackOutcome",
    "infer_category",
]
