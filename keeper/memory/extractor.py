"""
Lesson Extraction
=================

Turns a finished agent loop into a Lesson, writes its JSON artifact and
stores it.

What gets extracted:
- approach: "<n> turn(s); tools: a, b; stop: <reason>"
- errors:   up to 3 distinct "<tool>: <first line of the error>"
- fixes:    recoveries seen in the tool sequence ("retried X successfully",
            "used X after Y failed"), or "No tool failures"
- three confidences and a quality score:

    extractor     = 0.2 + 0.2·approach + 0.2·outcome + 0.25·tools + 0.15·errors
    applicability = 0.3 + 0.35·success + 0.2·(category ≠ general) + 0.15·tools
    reusability   = 0.2 + 0.3·success + 0.2·tools + 0.3·(errors and fixes)
    quality       = 0.15·success + 0.30·extractor + 0.30·applicability + 0.25·reusability

  every value clamped to [0, 1]

Artifact layout:
    <data_dir>/agents/<agent_id>/lessons/lesson-<action_id>.json

The artifact is best-effort. If it fails validation or can't be written the
lesson is still stored, with an empty artifact_path.
"""

import asyncio
import json
from pathlib import Path
from typing import Any, Sequence

from keeper.agent.core import LoopResult
from keeper.errors import ArtifactValidationError
from keeper.memory.lessons import Lesson
from keeper.memory.similarity import DEFAULT_CATEGORY
from keeper.memory.store import LessonStore, utc_now
from keeper.tools import ToolResult
from keeper.utils.config import StorageConfig
from keeper.utils.logger import Logger

logger = Logger("LessonExtractor")

ARTIFACT_SCHEMA = "keeper.lesson/v1"

MAX_ERRORS = 3
MAX_FIXES = 3
MAX_GOAL_CHARS = 200
MAX_OUTCOME_CHARS = 300

NO_FAILURES = "No tool failures"

_REQUIRED_TEXT_FIELDS = ("agent_id", "category", "goal", "approach", "outcome")
_SCORE_FIELDS = (
    "extractor_confidence",
    "applicability_confidence",
    "reusability_confidence",
    "quality_score",
)


def clamp(value: float) -> float:
    return max(0.0, min(1.0, value))


def _first_line(text: str) -> str:
    for line in text.splitlines():
        if line.strip():
            return line.strip()
    return ""


def _shorten(text: str, limit: int) -> str:
    text = " ".join(text.split())
    return text if len(text) <= limit else text[: limit - 3].rstrip() + "..."


# ==============================================================================
# Summaries
# ==============================================================================

def summarize_approach(result: LoopResult) -> str:
    turns = len(result.turns)
    tools = ", ".join(result.tools_used()) or "none"
    return f"{turns} turn(s); tools: {tools}; stop: {result.stop_reason.value}"


def summarize_outcome(result: LoopResult) -> str:
    if result.completed:
        answer = _shorten(result.final_response or "", MAX_OUTCOME_CHARS)
        return f"Completed: {answer}" if answer else "Completed with an empty answer"
    return f"Stopped ({result.stop_reason.value}) after {len(result.turns)} turn(s)"


def collect_errors(results: Sequence[ToolResult]) -> list[str]:
    """Up to MAX_ERRORS distinct failure summaries, in the order they happened."""
    errors: list[str] = []
    for result in results:
        if result.success:
            continue
        summary = f"{result.tool_name}: {_first_line(result.output) or 'failed'}"
        if summary not in errors:
            errors.append(summary)
        if len(errors) >= MAX_ERRORS:
            break
    return errors


def collect_fixes(results: Sequence[ToolResult]) -> list[str]:
    """
    Describe how the agent recovered from tool failures.

    A tool that succeeds after it failed earlier was retried; a different
    tool that succeeds while a failure is still unrecovered replaced it.

    Returns:
        ["No tool failures"] when nothing failed, otherwise up to MAX_FIXES
        recoveries (empty if the agent never recovered)
    """
    if all(result.success for result in results):
        return [NO_FAILURES]

    fixes: list[str] = []
    unrecovered: list[str] = []

    for result in results:
        name = result.tool_name
        if not result.success:
            if name not in unrecovered:
                unrecovered.append(name)
            continue

        if name in unrecovered:
            fix = f"retried {name} successfully"
            unrecovered.remove(name)
        elif unrecovered:
            fix = f"used {name} after {unrecovered.pop()} failed"
        else:
            continue

        if fix not in fixes:
            fixes.append(fix)
        if len(fixes) >= MAX_FIXES:
            break

    return fixes


# ==============================================================================
# Scoring
# ==============================================================================

def extractor_confidence(approach: str, outcome: str, tools: Sequence[str], errors: Sequence[str]) -> float:
    score = 0.2
    if approach:
        score += 0.2
    if outcome:
        score += 0.2
    if tools:
        score += 0.25
    if errors:
        score += 0.15
    return clamp(score)


def applicability_confidence(success: bool, category: str, tools: Sequence[str]) -> float:
    score = 0.3
    if success:
        score += 0.35
    if category != DEFAULT_CATEGORY:
        score += 0.2
    if tools:
        score += 0.15
    return clamp(score)


def reusability_confidence(
    success: bool,
    tools: Sequence[str],
    errors: Sequence[str],
    fixes: Sequence[str]
) -> float:
    score = 0.2
    if success:
        score += 0.3
    if tools:
        score += 0.2
    # A documented recovery: real failures plus at least one real fix
    if errors and fixes and fixes != [NO_FAILURES]:
        score += 0.3
    return clamp(score)


def quality_score(success: bool, extractor: float, applicability: float, reusability: float) -> float:
    return clamp(
        0.15 * float(success)
        + 0.30 * extractor
        + 0.30 * applicability
        + 0.25 * reusability
    )


# ==============================================================================
# Artifacts
# ==============================================================================

def build_artifact(lesson: Lesson, retrieved_lesson_ids: Sequence[int]) -> dict[str, Any]:
    payload = {"schema": ARTIFACT_SCHEMA}
    payload.update(lesson.to_dict())
    payload.pop("id", None)
    payload["retrieved_lesson_ids"] = list(retrieved_lesson_ids)
    return payload


def validate_artifact(payload: dict[str, Any]) -> None:
    """
    Check an artifact before it is written.

    Raises:
        ArtifactValidationError: On a wrong schema tag, an empty required
            field, or a score outside [0, 1]
    """
    if payload.get("schema") != ARTIFACT_SCHEMA:
        raise ArtifactValidationError(f"Unexpected schema: {payload.get('schema')!r}")

    for name in _REQUIRED_TEXT_FIELDS:
        value = payload.get(name)
        if not isinstance(value, str) or not value.strip():
            raise ArtifactValidationError(f"Missing required field: {name}")

    for name in _SCORE_FIELDS:
        value = payload.get(name)
        if not isinstance(value, (int, float)) or not 0.0 <= value <= 1.0:
            raise ArtifactValidationError(f"{name} out of range: {value!r}")


def _write_json(path: Path, payload: dict[str, Any]) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(payload, indent=2))


class LessonExtractor:
    """
    Builds, scores and persists lessons.

    Example:
        extractor = LessonExtractor(store, config.storage)

        lesson = await extractor.extract(
            agent_id="agent-1",
            action_id=12,
            task="Fix failing tests in parser",
            category="debug",
            result=loop_result,
            duration_ms=1320,
            retrieved_lesson_ids=[4],
        )
    """

    def __init__(self, store: LessonStore, storage: StorageConfig):
        self.store = store
        self.storage = storage

    def build_lesson(
        self,
        agent_id: str,
        action_id: int,
        task: str,
        category: str,
        result: LoopResult,
        duration_ms: int
    ) -> Lesson:
        """Distill a loop result into an unsaved Lesson."""
        tools = result.tools_used()
        approach = summarize_approach(result)
        outcome = summarize_outcome(result)
        errors = collect_errors(result.all_tool_results)
        fixes = collect_fixes(result.all_tool_results)
        success = result.completed

        extractor = extractor_confidence(approach, outcome, tools, errors)
        applicability = applicability_confidence(success, category, tools)
        reusability = reusability_confidence(success, tools, errors, fixes)

        return Lesson(
            agent_id=agent_id,
            action_id=action_id,
            category=category,
            goal=_shorten(task, MAX_GOAL_CHARS),
            approach=approach,
            tools_used=tools,
            outcome=outcome,
            errors=errors,
            fixes=fixes,
            duration_ms=duration_ms,
            success=success,
            extractor_confidence=extractor,
            applicability_confidence=applicability,
            reusability_confidence=reusability,
            quality_score=quality_score(success, extractor, applicability, reusability),
            created_at=utc_now(),
        )

    def artifact_path(self, agent_id: str, action_id: int) -> Path:
        return self.storage.artifact_dir(agent_id) / f"lesson-{action_id}.json"

    async def write_artifact(self, lesson: Lesson, retrieved_lesson_ids: Sequence[int]) -> str:
        """
        Validate and write a lesson's artifact.

        Returns:
            The path written, or "" if validation or the write failed
        """
        payload = build_artifact(lesson, retrieved_lesson_ids)
        path = self.artifact_path(lesson.agent_id, lesson.action_id)

        try:
            validate_artifact(payload)
            await asyncio.to_thread(_write_json, path, payload)
        except ArtifactValidationError as e:
            logger.warning(f"Lesson artifact rejected: {e}", {"action_id": lesson.action_id})
            return ""
        except OSError as e:
            logger.error(f"Failed to write lesson artifact {path}", e)
            return ""

        return str(path)

    async def extract(
        self,
        agent_id: str,
        action_id: int,
        task: str,
        category: str,
        result: LoopResult,
        duration_ms: int,
        retrieved_lesson_ids: Sequence[int] = ()
    ) -> Lesson:
        """
        Build the lesson for a finished run, write its artifact and store it.

        Returns:
            The stored lesson, with its id
        """
        lesson = self.build_lesson(agent_id, action_id, task, category, result, duration_ms)
        lesson.artifact_path = await self.write_artifact(lesson, retrieved_lesson_ids)
        lesson = await asyncio.to_thread(self.store.insert_lesson, lesson)

        logger.info(
            f"Stored lesson {lesson.id}",
            {"category": category, "success": lesson.success, "quality": round(lesson.quality_score, 3)}
        )
        return lesson
