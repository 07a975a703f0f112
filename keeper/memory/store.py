"""
Lesson Store
============

SQLite persistence for an agent's experiential memory.

Tables:
    actions           - action log, one row per task execution
    lessons           - one row per completed execution (append-only)
    retrieval_events  - which lessons were used as context, and whether they helped

All methods are synchronous. Async callers go through asyncio.to_thread();
a lock serializes access to the shared connection.

Database location:
    <data_dir>/keeper.db
"""

import json
import sqlite3
import threading
from datetime import datetime, timezone
from pathlib import Path
from typing import Iterable

from keeper.memory.lessons import ActionRecord, Lesson, RetrievalEvent
from keeper.utils.logger import Logger

logger = Logger("LessonStore")

SCHEMA_VERSION = 1

# Database-level prefilter: how many recent lessons a plain query returns
DEFAULT_RECENT_LIMIT = 40

_SCHEMA = """
CREATE TABLE IF NOT EXISTS meta (
    key TEXT PRIMARY KEY,
    value TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS actions (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    agent_id TEXT NOT NULL,
    task TEXT NOT NULL,
    status TEXT NOT NULL DEFAULT 'running',
    first_tool TEXT,
    turns_json TEXT,
    created_at TEXT NOT NULL,
    completed_at TEXT
);

CREATE TABLE IF NOT EXISTS lessons (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    agent_id TEXT NOT NULL,
    action_id INTEGER NOT NULL,
    category TEXT NOT NULL,
    goal TEXT NOT NULL,
    approach TEXT NOT NULL,
    tools_used TEXT NOT NULL,
    outcome TEXT NOT NULL,
    errors TEXT NOT NULL,
    fixes TEXT NOT NULL,
    duration_ms INTEGER NOT NULL,
    success INTEGER NOT NULL,
    extractor_confidence REAL NOT NULL,
    applicability_confidence REAL NOT NULL,
    reusability_confidence REAL NOT NULL,
    quality_score REAL NOT NULL,
    artifact_path TEXT NOT NULL DEFAULT '',
    times_retrieved INTEGER NOT NULL DEFAULT 0,
    times_helpful INTEGER NOT NULL DEFAULT 0,
    times_unhelpful INTEGER NOT NULL DEFAULT 0,
    created_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS retrieval_events (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    agent_id TEXT NOT NULL,
    action_id INTEGER NOT NULL,
    task TEXT NOT NULL,
    category TEXT NOT NULL,
    lesson_ids TEXT NOT NULL,
    created_at TEXT NOT NULL,
    completed_at TEXT,
    success INTEGER,
    duration_ms INTEGER,
    latency_delta_ms INTEGER,
    helpful INTEGER
);

CREATE INDEX IF NOT EXISTS idx_actions_agent ON actions(agent_id);
CREATE INDEX IF NOT EXISTS idx_lessons_agent ON lessons(agent_id, id);
CREATE INDEX IF NOT EXISTS idx_lessons_category ON lessons(agent_id, category);
CREATE INDEX IF NOT EXISTS idx_events_agent ON retrieval_events(agent_id);
"""


def utc_now() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="milliseconds")


def connect_db(path: Path | str) -> sqlite3.Connection:
    """Open (and create the directory for) a SQLite database."""
    if str(path) != ":memory:":
        Path(path).parent.mkdir(parents=True, exist_ok=True)
    conn = sqlite3.connect(str(path), check_same_thread=False)
    conn.row_factory = sqlite3.Row
    return conn


def ensure_schema(conn: sqlite3.Connection) -> None:
    """Create tables and indexes if they don't exist."""
    conn.executescript(_SCHEMA)
    conn.execute(
        """
        INSERT INTO meta (key, value) VALUES ('schema_version', ?)
        ON CONFLICT(key) DO UPDATE SET value = excluded.value
        """,
        (str(SCHEMA_VERSION),),
    )
    conn.commit()


def _optional_bool(value: int | None) -> bool | None:
    return None if value is None else bool(value)


def _row_to_lesson(row: sqlite3.Row) -> Lesson:
    return Lesson(
        id=row["id"],
        agent_id=row["agent_id"],
        action_id=row["action_id"],
        category=row["category"],
        goal=row["goal"],
        approach=row["approach"],
        tools_used=json.loads(row["tools_used"]),
        outcome=row["outcome"],
        errors=json.loads(row["errors"]),
        fixes=json.loads(row["fixes"]),
        duration_ms=row["duration_ms"],
        success=bool(row["success"]),
        extractor_confidence=row["extractor_confidence"],
        applicability_confidence=row["applicability_confidence"],
        reusability_confidence=row["reusability_confidence"],
        quality_score=row["quality_score"],
        artifact_path=row["artifact_path"],
        times_retrieved=row["times_retrieved"],
        times_helpful=row["times_helpful"],
        times_unhelpful=row["times_unhelpful"],
        created_at=row["created_at"],
    )


def _row_to_event(row: sqlite3.Row) -> RetrievalEvent:
    return RetrievalEvent(
        id=row["id"],
        agent_id=row["agent_id"],
        action_id=row["action_id"],
        task=row["task"],
        category=row["category"],
        lesson_ids=json.loads(row["lesson_ids"]),
        created_at=row["created_at"],
        completed_at=row["completed_at"],
        success=_optional_bool(row["success"]),
        duration_ms=row["duration_ms"],
        latency_delta_ms=row["latency_delta_ms"],
        helpful=_optional_bool(row["helpful"]),
    )


def _row_to_action(row: sqlite3.Row) -> ActionRecord:
    return ActionRecord(
        id=row["id"],
        agent_id=row["agent_id"],
        task=row["task"],
        status=row["status"],
        first_tool=row["first_tool"],
        turns_json=row["turns_json"],
        created_at=row["created_at"],
        completed_at=row["completed_at"],
    )


class LessonStore:
    """
    SQLite-backed store for lessons, retrieval events and the action log.

    Example:
        store = LessonStore(Path("~/.keeper/keeper.db").expanduser())

        action_id = store.insert_action("agent-1", "Fix failing tests in parser")
        lesson = store.insert_lesson(Lesson(agent_id="agent-1", action_id=action_id, ...))

        recent = store.recent_lessons("agent-1", limit=40)
    """

    def __init__(self, path: Path | str):
        """
        Open the store, creating the schema if needed.

        Args:
            path: Database file, or ":memory:"
        """
        self.path = path
        self._lock = threading.Lock()
        self._conn = connect_db(path)
        ensure_schema(self._conn)
        logger.debug(f"Lesson store opened at {path}")

    def close(self) -> None:
        with self._lock:
            self._conn.close()

    # ==========================================================================
    # Action log
    # ==========================================================================

    def insert_action(self, agent_id: str, task: str) -> int:
        """Start an action log entry; returns its id."""
        with self._lock:
            cursor = self._conn.execute(
                "INSERT INTO actions (agent_id, task, status, created_at) VALUES (?, ?, 'running', ?)",
                (agent_id, task, utc_now()),
            )
            self._conn.commit()
            return int(cursor.lastrowid)

    def complete_action(
        self,
        action_id: int,
        status: str,
        first_tool: str | None = None,
        turns_json: str | None = None
    ) -> None:
        """Close an action log entry with its final status."""
        with self._lock:
            self._conn.execute(
                """
                UPDATE actions
                SET status = ?, first_tool = ?, turns_json = ?, completed_at = ?
                WHERE id = ?
                """,
                (status, first_tool, turns_json, utc_now(), action_id),
            )
            self._conn.commit()

    def get_action(self, action_id: int) -> ActionRecord | None:
        with self._lock:
            row = self._conn.execute("SELECT * FROM actions WHERE id = ?", (action_id,)).fetchone()
        return _row_to_action(row) if row else None

    def list_actions(self, agent_id: str, limit: int = 20) -> list[ActionRecord]:
        with self._lock:
            rows = self._conn.execute(
                "SELECT * FROM actions WHERE agent_id = ? ORDER BY id DESC LIMIT ?",
                (agent_id, limit),
            ).fetchall()
        return [_row_to_action(row) for row in rows]

    # ==========================================================================
    # Lessons
    # ==========================================================================

    def insert_lesson(self, lesson: Lesson) -> Lesson:
        """
        Persist a new lesson.

        Returns:
            The lesson with `id` and `created_at` filled in
        """
        lesson.created_at = lesson.created_at or utc_now()
        with self._lock:
            cursor = self._conn.execute(
                """
                INSERT INTO lessons (
                    agent_id, action_id, category, goal, approach, tools_used,
                    outcome, errors, fixes, duration_ms, success,
                    extractor_confidence, applicability_confidence,
                    reusability_confidence, quality_score, artifact_path,
                    times_retrieved, times_helpful, times_unhelpful, created_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    lesson.agent_id,
                    lesson.action_id,
                    lesson.category,
                    lesson.goal,
                    lesson.approach,
                    json.dumps(lesson.tools_used),
                    lesson.outcome,
                    json.dumps(lesson.errors),
                    json.dumps(lesson.fixes),
                    lesson.duration_ms,
                    int(lesson.success),
                    lesson.extractor_confidence,
                    lesson.applicability_confidence,
                    lesson.reusability_confidence,
                    lesson.quality_score,
                    lesson.artifact_path,
                    lesson.times_retrieved,
                    lesson.times_helpful,
                    lesson.times_unhelpful,
                    lesson.created_at,
                ),
            )
            self._conn.commit()
            lesson.id = int(cursor.lastrowid)
        return lesson

    def get_lesson(self, lesson_id: int) -> Lesson | None:
        with self._lock:
            row = self._conn.execute("SELECT * FROM lessons WHERE id = ?", (lesson_id,)).fetchone()
        return _row_to_lesson(row) if row else None

    def get_lessons(self, lesson_ids: Iterable[int]) -> list[Lesson]:
        """Fetch lessons by id, preserving the order of `lesson_ids`."""
        ids = list(lesson_ids)
        if not ids:
            return []
        placeholders = ",".join("?" for _ in ids)
        with self._lock:
            rows = self._conn.execute(
                f"SELECT * FROM lessons WHERE id IN ({placeholders})", ids
            ).fetchall()
        by_id = {row["id"]: _row_to_lesson(row) for row in rows}
        return [by_id[i] for i in ids if i in by_id]

    def recent_lessons(self, agent_id: str, limit: int = DEFAULT_RECENT_LIMIT) -> list[Lesson]:
        """
        The agent's most recent lessons, newest first.

        This is the retrieval prefilter: lessons outside the window are
        never considered for ranking.
        """
        with self._lock:
            rows = self._conn.execute(
                "SELECT * FROM lessons WHERE agent_id = ? ORDER BY id DESC LIMIT ?",
                (agent_id, limit),
            ).fetchall()
        return [_row_to_lesson(row) for row in rows]

    def count_lessons(self, agent_id: str) -> int:
        with self._lock:
            row = self._conn.execute(
                "SELECT COUNT(*) AS n FROM lessons WHERE agent_id = ?", (agent_id,)
            ).fetchone()
        return int(row["n"])

    def average_success_duration(
        self,
        agent_id: str,
        category: str,
        exclude_action_id: int | None = None
    ) -> float | None:
        """
        Mean duration of the agent's successful lessons in a category.

        Args:
            agent_id: The agent
            category: Task category
            exclude_action_id: Leave out the lesson of this action (the current run)

        Returns:
            The mean in milliseconds, or None when there is no history
        """
        query = (
            "SELECT AVG(duration_ms) AS avg_ms FROM lessons "
            "WHERE agent_id = ? AND category = ? AND success = 1"
        )
        params: list = [agent_id, category]
        if exclude_action_id is not None:
            query += " AND action_id != ?"
            params.append(exclude_action_id)

        with self._lock:
            row = self._conn.execute(query, params).fetchone()
        return None if row["avg_ms"] is None else float(row["avg_ms"])

    def _update_lessons(self, lesson_ids: Iterable[int], helpful: bool, delta: float) -> None:
        counter = "times_helpful" if helpful else "times_unhelpful"
        self._conn.executemany(
            f"""
            UPDATE lessons
            SET quality_score = MIN(1.0, MAX(0.0, quality_score + ?)),
                times_retrieved = times_retrieved + 1,
                {counter} = {counter} + 1
            WHERE id = ?
            """,
            [(delta, lesson_id) for lesson_id in lesson_ids],
        )

    def apply_feedback(self, lesson_ids: Iterable[int], helpful: bool, delta: float) -> None:
        """
        Apply one feedback verdict to a set of lessons.

        quality_score moves by `delta`, clamped to [0, 1]; times_retrieved
        and the matching helpful/unhelpful counter each go up by one.
        """
        ids = list(lesson_ids)
        if not ids:
            return
        with self._lock, self._conn:
            self._update_lessons(ids, helpful, delta)

    # ==========================================================================
    # Retrieval events
    # ==========================================================================

    def create_retrieval_event(self, event: RetrievalEvent) -> RetrievalEvent:
        event.created_at = event.created_at or utc_now()
        with self._lock:
            cursor = self._conn.execute(
                """
                INSERT INTO retrieval_events (agent_id, action_id, task, category, lesson_ids, created_at)
                VALUES (?, ?, ?, ?, ?, ?)
                """,
                (
                    event.agent_id,
                    event.action_id,
                    event.task,
                    event.category,
                    json.dumps(event.lesson_ids),
                    event.created_at,
                ),
            )
            self._conn.commit()
            event.id = int(cursor.lastrowid)
        return event

    def close_retrieval_event_with_feedback(
        self,
        event: RetrievalEvent,
        success: bool,
        duration_ms: int,
        latency_delta_ms: int | None,
        helpful: bool,
        delta: float
    ) -> bool:
        """
        Close a retrieval event and apply its verdict to its lessons, atomically.

        The lessons are only updated if this call is the one that closes the
        event, so a verdict lands at most once per retrieval.

        Returns:
            True if the event was closed and the lessons updated, False if it
            was already closed or does not exist
        """
        with self._lock, self._conn:
            cursor = self._conn.execute(
                """
                UPDATE retrieval_events
                SET completed_at = ?, success = ?, duration_ms = ?,
                    latency_delta_ms = ?, helpful = ?
                WHERE id = ? AND completed_at IS NULL
                """,
                (utc_now(), int(success), duration_ms, latency_delta_ms, int(helpful), event.id),
            )
            if cursor.rowcount != 1:
                return False
            self._update_lessons(event.lesson_ids, helpful, delta)
        return True

    def get_retrieval_event(self, event_id: int) -> RetrievalEvent | None:
        with self._lock:
            row = self._conn.execute(
                "SELECT * FROM retrieval_events WHERE id = ?", (event_id,)
            ).fetchone()
        return _row_to_event(row) if row else None

    def list_retrieval_events(self, agent_id: str, limit: int = 20) -> list[RetrievalEvent]:
        with self._lock:
            rows = self._conn.execute(
                "SELECT * FROM retrieval_events WHERE agent_id = ? ORDER BY id DESC LIMIT ?",
                (agent_id, limit),
            ).fetchall()
        return [_row_to_event(row) for row in rows]
