"""
Retrieval Feedback
==================

Once a task finishes, decide whether the lessons it was given helped, and
adjust those lessons accordingly.

Verdict:
    baseline = mean duration of the agent's successful lessons in the same
               category, leaving out the current run

    helpful  = task succeeded and (no baseline, or duration <= baseline)

Effect on every lesson in the retrieval set:
    helpful   -> quality_score + 0.08   times_helpful   + 1
    unhelpful -> quality_score - 0.05   times_unhelpful + 1
    both      -> times_retrieved + 1    (quality_score stays in [0, 1])

The retrieval event is then closed with the success flag, duration,
latency delta (duration - baseline, or None without a baseline) and verdict.
An event is closed and its lessons updated in one transaction, and only
once. Concurrent runs may update the same lesson; the last write wins.
"""

import asyncio
from dataclasses import dataclass

from keeper.memory.lessons import RetrievalEvent
from keeper.memory.store import LessonStore
from keeper.utils.logger import Logger

logger = Logger("Feedback")

HELPFUL_DELTA = 0.08
UNHELPFUL_DELTA = -0.05


@dataclass(frozen=True)
class FeedbackOutcome:
    """The verdict applied to one retrieval."""
    helpful: bool
    delta: float
    baseline_ms: float | None
    latency_delta_ms: int | None
    lesson_ids: tuple[int, ...]


def judge(success: bool, duration_ms: int, baseline_ms: float | None) -> bool:
    """A retrieval helped if the task succeeded and wasn't slower than usual."""
    if not success:
        return False
    return baseline_ms is None or duration_ms <= baseline_ms


class FeedbackRecorder:
    """
    Applies feedback for finished executions.

    Example:
        recorder = FeedbackRecorder(store)
        outcome = await recorder.record(event, success=True, duration_ms=1320)
        if outcome and outcome.helpful:
            ...
    """

    def __init__(self, store: LessonStore):
        self.store = store

    async def record(
        self,
        event: RetrievalEvent,
        success: bool,
        duration_ms: int
    ) -> FeedbackOutcome | None:
        """
        Judge a retrieval and update its lessons and event.

        Args:
            event: The retrieval event created for this execution
            success: Whether the execution succeeded
            duration_ms: How long it took

        Returns:
            The applied outcome, or None if the event had no lessons or
            was already closed
        """
        if not event.lesson_ids:
            return None

        baseline = await asyncio.to_thread(
            self.store.average_success_duration,
            event.agent_id,
            event.category,
            event.action_id,
        )
        helpful = judge(success, duration_ms, baseline)
        delta = HELPFUL_DELTA if helpful else UNHELPFUL_DELTA
        latency_delta = None if baseline is None else int(round(duration_ms - baseline))

        if event.id is None:
            await asyncio.to_thread(self.store.apply_feedback, event.lesson_ids, helpful, delta)
        else:
            closed = await asyncio.to_thread(
                self.store.close_retrieval_event_with_feedback,
                event,
                success,
                duration_ms,
                latency_delta,
                helpful,
                delta,
            )
            if not closed:
                logger.warning(f"Retrieval event {event.id} was already closed, feedback not applied")
                return None

        logger.info(
            f"Feedback: {'helpful' if helpful else 'unhelpful'} for {len(event.lesson_ids)} lesson(s)",
            {"baseline_ms": baseline, "duration_ms": duration_ms, "latency_delta_ms": latency_delta}
        )

        return FeedbackOutcome(
            helpful=helpful,
            delta=delta,
            baseline_ms=baseline,
            latency_delta_ms=latency_delta,
            lesson_ids=tuple(event.lesson_ids),
        )
