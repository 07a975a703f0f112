"""Tests for lesson ranking and selection."""

import pytest

from keeper.errors import EmbeddingError
from keeper.memory.recall import (
    CATEGORY_BONUS,
    HELPFULNESS_WEIGHT,
    LEXICAL_WEIGHT,
    MAX_RESULTS,
    QUALITY_WEIGHT,
    RECENCY_DECAY,
    SEMANTIC_WEIGHT,
    LessonRetriever,
    is_near_duplicate,
    score_lesson,
)
from keeper.memory.similarity import jaccard

_WORDS = [
    "sourdough", "garden", "violin", "glacier", "harbor", "meteor", "lantern", "orchid",
    "canyon", "falcon", "pottery", "tundra", "saffron", "compass", "marble", "origami",
    "quartz", "bamboo", "nebula", "walrus", "juniper", "kayak", "mosaic", "pepper",
]


def _distinct_goal(i: int) -> str:
    """Goals that share no tokens with each other or with the test tasks."""
    return f"{_WORDS[i % len(_WORDS)]}{i} {_WORDS[(i + 7) % len(_WORDS)]}{i} item{i}"


def _is_dup_free(lessons) -> bool:
    return not any(
        is_near_duplicate(a.lesson, b.lesson)
        for i, a in enumerate(lessons)
        for b in lessons[i + 1:]
    )


class TestScoring:
    def test_lexical_mode_drops_semantic_weight_without_renormalizing(self, make_lesson):
        task = "Fix failing tests in parser"
        lesson = make_lesson(id=1, category="debug", goal=task, quality_score=0.5)
        lexical = jaccard(task, lesson.search_text)

        scored = score_lesson(task, "debug", lesson, rank=3, window_size=10)

        expected = (
            LEXICAL_WEIGHT * lexical
            + QUALITY_WEIGHT * 0.5
            + HELPFULNESS_WEIGHT * 0.5
            + CATEGORY_BONUS
            - RECENCY_DECAY * 3 / 10
        )
        assert scored.semantic is None
        assert scored.score == pytest.approx(expected)
        # The remaining weights sum to 0.45 and are not scaled back up to 1
        assert LEXICAL_WEIGHT + QUALITY_WEIGHT + HELPFULNESS_WEIGHT == pytest.approx(0.45)

    def test_recency_decay_stays_below_one_relevance_step(self, make_lesson):
        lesson = make_lesson(category="writing")
        newest = score_lesson("Say hello", "debug", lesson, rank=0, window_size=300)
        oldest = score_lesson("Say hello", "debug", lesson, rank=299, window_size=300)

        assert 0 < newest.score - oldest.score < RECENCY_DECAY

    def test_semantic_mode_adds_weighted_cosine_and_no_decay(self, make_lesson):
        lesson = make_lesson(id=1, category="writing")
        lexical_only = score_lesson("Say hello", "debug", lesson, rank=0)
        semantic = score_lesson("Say hello", "debug", lesson, rank=5, semantic=0.8)

        assert semantic.score == pytest.approx(lexical_only.score + SEMANTIC_WEIGHT * 0.8)

    def test_helpfulness_is_laplace_smoothed(self, make_lesson):
        assert make_lesson().helpfulness_rate == pytest.approx(0.5)
        assert make_lesson(times_retrieved=3, times_helpful=3).helpfulness_rate == pytest.approx(0.8)


class TestNearDuplicates:
    def test_same_category_and_similar_text(self, make_lesson):
        a = make_lesson(category="debug", goal="Fix failing tests in parser")
        b = make_lesson(category="debug", goal="Fix failing tests in the parser")
        assert is_near_duplicate(a, b)

    def test_different_category_is_never_duplicate(self, make_lesson):
        a = make_lesson(category="debug", goal="Fix failing tests in parser")
        b = make_lesson(category="coding", goal="Fix failing tests in parser")
        assert not is_near_duplicate(a, b)


class TestLessonRetriever:
    @pytest.mark.asyncio
    async def test_no_lessons(self, store):
        context = await LessonRetriever(store).retrieve("agent-1", "anything", "general")
        assert context.is_empty()
        assert context.to_prompt_section() == ""

    @pytest.mark.asyncio
    async def test_never_more_than_seven(self, store, add_lesson):
        for i in range(20):
            add_lesson(goal=_distinct_goal(i), quality_score=0.9)

        context = await LessonRetriever(store).retrieve("agent-1", "anything at all", "general")

        assert len(context.lessons) == MAX_RESULTS

    @pytest.mark.asyncio
    async def test_near_duplicates_never_returned_together(self, store, add_lesson):
        for _ in range(5):
            add_lesson(category="debug", goal="Fix failing tests in parser", quality_score=0.9)
        for i in range(3):
            add_lesson(goal=_distinct_goal(i))

        context = await LessonRetriever(store).retrieve("agent-1", "Fix failing tests in parser", "debug")

        goals = [scored.lesson.goal for scored in context.lessons]
        assert goals.count("Fix failing tests in parser") == 1
        assert len(goals) == 4
        assert _is_dup_free(context.lessons)

    @pytest.mark.asyncio
    async def test_relevant_lesson_ranks_first_lexically(self, store, add_lesson):
        relevant = add_lesson(category="debug", goal="Fix failing tests in parser")
        for i in range(9):
            add_lesson(goal=_distinct_goal(i))

        context = await LessonRetriever(store).retrieve("agent-1", "Fix failing tests in parser", "debug")

        assert not context.semantic
        assert context.lessons[0].lesson.id == relevant.id
        assert len(context.lessons) <= MAX_RESULTS

    @pytest.mark.asyncio
    async def test_old_exact_match_beats_many_newer_lessons_lexically(self, store, add_lesson):
        target = add_lesson(category="debug", goal="Fix failing tests in parser")
        for i in range(120):
            add_lesson(goal=_distinct_goal(i), category="writing")

        context = await LessonRetriever(store).retrieve("agent-1", "Fix failing tests in parser", "debug")

        assert not context.semantic
        assert context.lesson_ids[0] == target.id

    @pytest.mark.asyncio
    async def test_round_trip_top_result(self, store, add_lesson):
        for i in range(5):
            add_lesson(goal=_distinct_goal(i))
        lesson = add_lesson(goal="Summarize the quarterly report for finance", category="writing")

        context = await LessonRetriever(store).retrieve(
            "agent-1", "Summarize the quarterly report for finance", "writing"
        )

        assert context.lesson_ids[0] == lesson.id

    @pytest.mark.asyncio
    async def test_floor_stops_selection_on_large_corpus(self, store, add_lesson):
        for i in range(45):
            add_lesson(goal=_distinct_goal(i), quality_score=0.0)

        context = await LessonRetriever(store).retrieve("agent-1", "Plan a trip", "debug")

        # Nothing clears the floor; only the minimum is kept and no fill pass runs
        assert len(context.lessons) == 3

    @pytest.mark.asyncio
    async def test_fill_pass_on_small_corpus(self, store, add_lesson):
        for i in range(10):
            add_lesson(goal=_distinct_goal(i), quality_score=0.0)

        context = await LessonRetriever(store).retrieve("agent-1", "Plan a trip", "debug")

        assert len(context.lessons) == MAX_RESULTS

    @pytest.mark.asyncio
    async def test_ties_go_to_newer_lessons(self, store, add_lesson):
        older = add_lesson(goal="alpha beta gamma")
        newer = add_lesson(goal="delta epsilon zeta")

        context = await LessonRetriever(store).retrieve("agent-1", "unrelated words", "general")

        assert context.lesson_ids == [newer.id, older.id]

    @pytest.mark.asyncio
    async def test_semantic_ranking_with_embeddings(self, store, add_lesson, fake_gateway):
        close = add_lesson(goal="Tune the database indexes")
        far = add_lesson(goal="Paint the fence")

        def embedder(text):
            return [1.0, 0.0] if ("database" in text or "query" in text) else [0.0, 1.0]

        gateway = fake_gateway(embedder=embedder)
        context = await LessonRetriever(store, gateway).retrieve("agent-1", "Speed up this query", "general")

        assert context.semantic
        assert context.lesson_ids == [close.id, far.id]
        assert context.lessons[0].semantic == pytest.approx(1.0)
        assert len(gateway.embed_calls[0]) == 3

    @pytest.mark.asyncio
    async def test_embedding_count_mismatch_falls_back_to_lexical(self, store, add_lesson, fake_gateway):
        relevant = add_lesson(category="debug", goal="Fix failing tests in parser")
        add_lesson(goal=_distinct_goal(1))
        gateway = fake_gateway(embedder=lambda text: [1.0, 0.0], drop_vectors=1)

        context = await LessonRetriever(store, gateway).retrieve("agent-1", "Fix failing tests in parser", "debug")

        assert not context.semantic
        assert context.lessons[0].lesson.id == relevant.id
        assert context.lessons[0].semantic is None

    @pytest.mark.asyncio
    async def test_embedding_error_falls_back_to_lexical(self, store, add_lesson, fake_gateway):
        add_lesson(goal="Fix failing tests in parser")
        gateway = fake_gateway(embed_error=EmbeddingError("provider down"))

        context = await LessonRetriever(store, gateway).retrieve("agent-1", "Fix failing tests in parser", "debug")

        assert not context.semantic
        assert len(context.lessons) == 1

    @pytest.mark.asyncio
    async def test_embeddings_disabled_skips_gateway(self, store, add_lesson, fake_gateway):
        add_lesson()
        gateway = fake_gateway(embedder=lambda text: [1.0])

        await LessonRetriever(store, gateway, embeddings_enabled=False).retrieve("agent-1", "hello", "general")

        assert gateway.embed_calls == []
