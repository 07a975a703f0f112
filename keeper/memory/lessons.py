"""
Lesson Models
=============

Records kept in an agent's experiential memory.

- Lesson: what one completed task taught the agent (approach, outcome,
  errors, recoveries) plus scores that decide how often it is reused
- RetrievalEvent: which lessons were handed to a task as context, and
  afterwards whether they helped
- ActionRecord: the action log entry for one execution

Lessons are append-only. After creation only the usage counters and
quality_score change, and only through feedback.
"""

from dataclasses import asdict, dataclass, field
from typing import Any


@dataclass
class Lesson:
    """
    A distilled record of one past task.

    Attributes:
        agent_id: Owning agent (lessons are never shared across agents)
        action_id: The action log entry this lesson came from
        category: Inferred task category (debug, writing, analysis, coding, general)
        goal: Short goal text (the task, trimmed)
        approach: How the task was attacked
        tools_used: Tool names in first-use order, de-duplicated
        outcome: What happened
        errors: Up to 3 distinct tool failure summaries
        fixes: Recovery summaries
        duration_ms: Wall-clock execution time
        success: Whether the task reached a final answer
        extractor_confidence: How complete the extracted record is
        applicability_confidence: How likely it applies to future tasks
        reusability_confidence: How reusable the approach is
        quality_score: Derived score in [0, 1], adjusted by feedback
        artifact_path: Where the JSON artifact was written ("" if it was not)
        times_retrieved / times_helpful / times_unhelpful: Usage counters
        id: Assigned by the store on insert
    """
    agent_id: str
    action_id: int
    category: str
    goal: str
    approach: str
    tools_used: list[str] = field(default_factory=list)
    outcome: str = ""
    errors: list[str] = field(default_factory=list)
    fixes: list[str] = field(default_factory=list)
    duration_ms: int = 0
    success: bool = False
    extractor_confidence: float = 0.0
    applicability_confidence: float = 0.0
    reusability_confidence: float = 0.0
    quality_score: float = 0.0
    artifact_path: str = ""
    times_retrieved: int = 0
    times_helpful: int = 0
    times_unhelpful: int = 0
    created_at: str = ""
    id: int | None = None

    @property
    def search_text(self) -> str:
        """Text used for lexical matching."""
        return " ".join(part for part in (self.goal, self.approach, self.outcome) if part)

    @property
    def embedding_text(self) -> str:
        """Text embedded for semantic matching."""
        parts = [self.goal, self.approach]
        if self.tools_used:
            parts.append("tools: " + ", ".join(self.tools_used))
        parts.append(self.outcome)
        return "\n".join(part for part in parts if part)

    @property
    def signature_text(self) -> str:
        """Text compared when checking for near-duplicates."""
        return f"{self.goal} {self.approach}"

    @property
    def helpfulness_rate(self) -> float:
        """Laplace-smoothed share of retrievals that helped; 0.5 for a new lesson."""
        return (self.times_helpful + 1) / (self.times_retrieved + 2)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class RetrievalEvent:
    """
    Links one execution to the lessons it was given as context.

    Created when a retrieval returns at least one lesson; completed once
    the execution finishes.
    """
    agent_id: str
    action_id: int
    task: str
    category: str
    lesson_ids: list[int]
    created_at: str = ""
    completed_at: str | None = None
    success: bool | None = None
    duration_ms: int | None = None
    latency_delta_ms: int | None = None
    helpful: bool | None = None
    id: int | None = None

    @property
    def is_completed(self) -> bool:
        return self.completed_at is not None

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class ActionRecord:
    """An action log entry: one task execution for one agent."""
    agent_id: str
    task: str
    status: str = "running"
    first_tool: str | None = None
    turns_json: str | None = None
    created_at: str = ""
    completed_at: str | None = None
    id: int | None = None

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)
