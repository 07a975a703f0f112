"""
Lesson Recall
=============

Picks the past lessons handed to a new task as context.

The recall process:
1. Prefilter: take the agent's most recent lessons (a fixed window;
   anything older is never reconsidered)
2. Score every candidate:

       score = 0.55 × semantic       (normalized cosine, task vs. lesson)
             + 0.20 × lexical        (token Jaccard, task vs. goal+approach+outcome)
             + 0.15 × quality_score
             + 0.10 × helpfulness    ((helpful + 1) / (retrieved + 2))
             + 0.05 × category match

3. Select greedily by score, skipping near-duplicates, until 7 lessons are
   chosen or at least 3 are chosen and the next score is under the floor
4. For a small corpus, fill any remaining slots from the ranked list with
   the floor ignored

Degraded mode:
    Without embeddings (disabled, no gateway, an error, or a vector count
    that doesn't match the input) the semantic term is dropped and the other
    weights are left as they are. A small recency decay is subtracted instead,
    spread over the window so the oldest candidate loses at most 0.01. It
    orders near-equal scores newest first without outweighing relevance.
    The lexical pass uses a lower floor to make up for the missing term.
"""

import asyncio
from dataclasses import dataclass, field
from typing import Sequence

from keeper.inference.gateway import InferenceGateway
from keeper.memory.lessons import Lesson
from keeper.memory.similarity import jaccard, normalized_cosine
from keeper.memory.store import LessonStore
from keeper.utils.logger import Logger

logger = Logger("LessonRecall")

SEMANTIC_WEIGHT = 0.55
LEXICAL_WEIGHT = 0.20
QUALITY_WEIGHT = 0.15
HELPFULNESS_WEIGHT = 0.10
CATEGORY_BONUS = 0.05

# Total decay across the ranking window, not per rank
RECENCY_DECAY = 0.01

MAX_RESULTS = 7
MIN_RESULTS = 3
SEMANTIC_FLOOR = 0.22
LEXICAL_FLOOR = 0.18

DUPLICATE_THRESHOLD = 0.82

# In-process ranking window, and the corpus size up to which the fill pass runs
RANKING_WINDOW = 300
SMALL_CORPUS = 40


@dataclass
class ScoredLesson:
    """
    A candidate lesson with its retrieval score.

    Attributes:
        lesson: The lesson
        score: Final weighted score
        lexical: Token Jaccard against the task
        semantic: Normalized cosine against the task (None in lexical mode)
        rank: Recency rank in the prefilter window (0 = newest)
    """
    lesson: Lesson
    score: float
    lexical: float
    semantic: float | None
    rank: int

    def to_dict(self) -> dict:
        return {
            "lesson_id": self.lesson.id,
            "score": round(self.score, 4),
            "lexical": round(self.lexical, 4),
            "semantic": None if self.semantic is None else round(self.semantic, 4),
            "rank": self.rank,
        }


@dataclass
class MemoryContext:
    """
    Lessons recalled for one task.

    This is what gets handed to the context assembler for the system prompt.
    """
    task: str
    category: str
    lessons: list[ScoredLesson] = field(default_factory=list)
    semantic: bool = False

    @property
    def lesson_ids(self) -> list[int]:
        return [scored.lesson.id for scored in self.lessons if scored.lesson.id is not None]

    def is_empty(self) -> bool:
        return not self.lessons

    def to_prompt_section(self) -> str:
        """
        Format the lessons for inclusion in the system prompt.

        Returns:
            A "Relevant Past Lessons" block, or "" when nothing was recalled
        """
        if not self.lessons:
            return ""

        lines = ["# Relevant Past Lessons", ""]
        for i, scored in enumerate(self.lessons, 1):
            lesson = scored.lesson
            status = "succeeded" if lesson.success else "did not succeed"
            lines.append(f"{i}. [{lesson.category}] {lesson.goal} ({status}, {lesson.duration_ms}ms)")
            lines.append(f"   Approach: {lesson.approach}")
            if lesson.tools_used:
                lines.append(f"   Tools: {', '.join(lesson.tools_used)}")
            if lesson.errors:
                lines.append(f"   Errors: {'; '.join(lesson.errors)}")
            if lesson.fixes:
                lines.append(f"   Fixes: {'; '.join(lesson.fixes)}")
            if lesson.outcome:
                lines.append(f"   Outcome: {lesson.outcome}")

        return "\n".join(lines)


def is_near_duplicate(a: Lesson, b: Lesson) -> bool:
    """Same category, and goal+approach texts overlap at or above the threshold."""
    return a.category == b.category and jaccard(a.signature_text, b.signature_text) >= DUPLICATE_THRESHOLD


def score_lesson(
    task: str,
    category: str,
    lesson: Lesson,
    rank: int,
    semantic: float | None = None,
    window_size: int = RANKING_WINDOW
) -> ScoredLesson:
    """
    Score one candidate.

    Args:
        task: The new task's text
        category: The new task's inferred category
        lesson: Candidate lesson
        rank: Recency rank of the candidate (0 = newest)
        semantic: Normalized cosine, or None to score in lexical mode
        window_size: Number of candidates being ranked

    Returns:
        ScoredLesson
    """
    lexical = jaccard(task, lesson.search_text)
    score = (
        LEXICAL_WEIGHT * lexical
        + QUALITY_WEIGHT * lesson.quality_score
        + HELPFULNESS_WEIGHT * lesson.helpfulness_rate
    )
    if lesson.category == category:
        score += CATEGORY_BONUS

    if semantic is None:
        score -= RECENCY_DECAY * rank / max(window_size, 1)
    else:
        score += SEMANTIC_WEIGHT * semantic

    return ScoredLesson(lesson=lesson, score=score, lexical=lexical, semantic=semantic, rank=rank)


def select_lessons(ranked: Sequence[ScoredLesson], floor: float, corpus_size: int) -> list[ScoredLesson]:
    """
    Greedy selection over candidates already sorted best-first.

    Args:
        ranked: Scored candidates, best first
        floor: Score below which selection stops once MIN_RESULTS are chosen
        corpus_size: Number of candidates considered (decides the fill pass)

    Returns:
        At most MAX_RESULTS lessons with no near-duplicate pairs
    """
    selected: list[ScoredLesson] = []

    def duplicates_selected(candidate: ScoredLesson) -> bool:
        return any(is_near_duplicate(candidate.lesson, chosen.lesson) for chosen in selected)

    for candidate in ranked:
        if len(selected) >= MAX_RESULTS:
            break
        if len(selected) >= MIN_RESULTS and candidate.score < floor:
            break
        if duplicates_selected(candidate):
            continue
        selected.append(candidate)

    if len(selected) < MAX_RESULTS and corpus_size <= SMALL_CORPUS:
        for candidate in ranked:
            if len(selected) >= MAX_RESULTS:
                break
            if any(candidate is chosen for chosen in selected) or duplicates_selected(candidate):
                continue
            selected.append(candidate)

    return selected


class LessonRetriever:
    """
    Hybrid semantic + lexical lesson retrieval.

    Example:
        retriever = LessonRetriever(store, gateway)

        context = await retriever.retrieve("agent-1", "Fix failing tests in parser", "debug")
        for scored in context.lessons:
            print(scored.lesson.goal, scored.score)
    """

    def __init__(
        self,
        store: LessonStore,
        gateway: InferenceGateway | None = None,
        embeddings_enabled: bool = True,
        window: int = RANKING_WINDOW
    ):
        """
        Initialize the retriever.

        Args:
            store: Lesson store to read candidates from
            gateway: Source of embeddings (None for lexical-only retrieval)
            embeddings_enabled: Set False to always rank lexically
            window: How many recent lessons to consider
        """
        self.store = store
        self.gateway = gateway
        self.embeddings_enabled = embeddings_enabled
        self.window = window

    async def _semantic_scores(self, task: str, candidates: Sequence[Lesson]) -> list[float] | None:
        """
        Normalized cosine of the task against each candidate.

        Returns:
            One score per candidate, or None when embeddings are unavailable
        """
        if self.gateway is None or not self.embeddings_enabled:
            return None

        texts = [task] + [lesson.embedding_text for lesson in candidates]
        try:
            vectors = await self.gateway.embed(texts)
        except Exception as e:
            logger.warning(f"Embedding failed, falling back to lexical ranking: {e}")
            return None

        if len(vectors) != len(texts):
            logger.warning(
                "Embedding count mismatch, falling back to lexical ranking",
                {"expected": len(texts), "received": len(vectors)}
            )
            return None

        task_vector = vectors[0]
        return [normalized_cosine(task_vector, vector) for vector in vectors[1:]]

    async def retrieve(self, agent_id: str, task: str, category: str) -> MemoryContext:
        """
        Recall lessons for a task.

        Args:
            agent_id: Whose lessons to search
            task: The new task's text
            category: The task's inferred category

        Returns:
            MemoryContext with up to 7 lessons, best first
        """
        candidates = await asyncio.to_thread(self.store.recent_lessons, agent_id, self.window)
        if not candidates:
            logger.debug(f"No lessons yet for {agent_id}")
            return MemoryContext(task=task, category=category)

        semantic_scores = await self._semantic_scores(task, candidates)

        scored = [
            score_lesson(
                task,
                category,
                lesson,
                rank,
                semantic=None if semantic_scores is None else semantic_scores[rank],
                window_size=len(candidates),
            )
            for rank, lesson in enumerate(candidates)
        ]
        # Equal scores go to the newer lesson
        scored.sort(key=lambda s: (-s.score, s.rank))

        floor = LEXICAL_FLOOR if semantic_scores is None else SEMANTIC_FLOOR
        selected = select_lessons(scored, floor, len(candidates))

        logger.info(
            f"Recalled {len(selected)} of {len(candidates)} lessons",
            {"agent_id": agent_id, "category": category, "semantic": semantic_scores is not None}
        )

        return MemoryContext(
            task=task,
            category=category,
            lessons=selected,
            semantic=semantic_scores is not None,
        )
