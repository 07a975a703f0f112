"""
Background Jobs
===============

The job table behind background executions.

A background execution gets a job id straight away and runs the pipeline in
its own asyncio task. The task writes its outcome into the table; callers
poll with get().

    create()           -> Job(status=running)
    complete(id, data) -> Job(status=completed, result=data)
    fail(id, error)    -> Job(status=failed, error=error)
    get(id)            -> Job, or JobNotFoundError

Writers take the table's write lock and readers its read lock, so any number
of pollers can read while no write is in progress.

At most MAX_FINISHED_JOBS finished jobs are kept; past that, the oldest
finished jobs (by creation) are dropped. Running jobs are never dropped.
"""

import asyncio
import uuid
from contextlib import asynccontextmanager
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from enum import Enum
from typing import Any, AsyncIterator

from keeper.errors import JobNotFoundError
from keeper.utils.logger import Logger

logger = Logger("Jobs")

MAX_FINISHED_JOBS = 1000


class JobStatus(str, Enum):
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


@dataclass(frozen=True)
class Job:
    """
    A background execution.

    Attributes:
        id: Job id handed to the caller
        agent_id: The executing agent
        status: running, completed or failed
        result: The execution response as a dict, once completed
        error: Error text, once failed
    """
    id: str
    agent_id: str
    status: JobStatus = JobStatus.RUNNING
    result: dict[str, Any] | None = None
    error: str | None = None
    created_at: str = field(default_factory=lambda: datetime.now(timezone.utc).isoformat())
    finished_at: str | None = None

    @property
    def is_finished(self) -> bool:
        return self.status is not JobStatus.RUNNING

    def to_dict(self) -> dict[str, Any]:
        return {
            "job_id": self.id,
            "agent_id": self.agent_id,
            "status": self.status.value,
            "result": self.result,
            "error": self.error,
            "created_at": self.created_at,
            "finished_at": self.finished_at,
        }


class ReadWriteLock:
    """
    Many readers or one writer.

    Waiting writers block new readers so a steady stream of polls can't
    starve a finishing job.
    """

    def __init__(self):
        self._cond = asyncio.Condition()
        self._readers = 0
        self._writer = False
        self._writers_waiting = 0

    @asynccontextmanager
    async def read(self) -> AsyncIterator[None]:
        async with self._cond:
            await self._cond.wait_for(lambda: not self._writer and self._writers_waiting == 0)
            self._readers += 1
        try:
            yield
        finally:
            async with self._cond:
                self._readers -= 1
                if self._readers == 0:
                    self._cond.notify_all()

    @asynccontextmanager
    async def write(self) -> AsyncIterator[None]:
        async with self._cond:
            self._writers_waiting += 1
            try:
                await self._cond.wait_for(lambda: not self._writer and self._readers == 0)
            finally:
                self._writers_waiting -= 1
            self._writer = True
        try:
            yield
        finally:
            async with self._cond:
                self._writer = False
                self._cond.notify_all()


class JobTable:
    """
    In-memory table of background jobs.

    Example:
        jobs = JobTable()

        job = await jobs.create("agent-1")
        ...
        await jobs.complete(job.id, response.to_dict())

        status = await jobs.get(job.id)
    """

    def __init__(self, max_finished: int = MAX_FINISHED_JOBS):
        self._jobs: dict[str, Job] = {}
        self._lock = ReadWriteLock()
        self.max_finished = max_finished

    async def create(self, agent_id: str) -> Job:
        job = Job(id=uuid.uuid4().hex, agent_id=agent_id)
        async with self._lock.write():
            self._jobs[job.id] = job
        logger.debug(f"Job {job.id} started for {agent_id}")
        return job

    async def _finish(self, job_id: str, **changes: Any) -> Job:
        async with self._lock.write():
            job = self._jobs.get(job_id)
            if job is None:
                raise JobNotFoundError(job_id)
            job = replace(job, finished_at=datetime.now(timezone.utc).isoformat(), **changes)
            self._jobs[job_id] = job
            self._prune_finished()
        return job

    def _prune_finished(self) -> None:
        # Called under the write lock; dict order is creation order
        finished = [job_id for job_id, job in self._jobs.items() if job.is_finished]
        for job_id in finished[: max(0, len(finished) - self.max_finished)]:
            del self._jobs[job_id]
            logger.debug(f"Dropped finished job {job_id}")

    async def complete(self, job_id: str, result: dict[str, Any]) -> Job:
        return await self._finish(job_id, status=JobStatus.COMPLETED, result=result)

    async def fail(self, job_id: str, error: str) -> Job:
        return await self._finish(job_id, status=JobStatus.FAILED, error=error)

    async def get(self, job_id: str) -> Job:
        """
        Look up a job.

        Raises:
            JobNotFoundError: If no job has this id
        """
        async with self._lock.read():
            job = self._jobs.get(job_id)
        if job is None:
            raise JobNotFoundError(job_id)
        return job

    async def list_jobs(self, agent_id: str | None = None) -> list[Job]:
        async with self._lock.read():
            jobs = list(self._jobs.values())
        if agent_id is not None:
            jobs = [job for job in jobs if job.agent_id == agent_id]
        return jobs
