"""
Task Runner
===========

The task execution entry point. One pipeline serves both callers:

    execute(agent_id, request)
         │
         ├── agent busy? ──────────────► AgentBusyError
         │
         ├── background ──► job id now; pipeline runs in its own task
         │                  and writes into the job table
         │
         └── otherwise ───► await the pipeline, return the response

Pipeline (run_execution):
    1. Start an action log entry
    2. Infer the task category and recall lessons
    3. Record a retrieval event if anything was recalled
    4. Assemble the system prompt
    5. Run the agent loop
    6. Extract and store a lesson (with artifact)
    7. Apply feedback to the recalled lessons
    8. Close the action log entry
    9. Call the finish hook

Steps 6-9 are bookkeeping. Their failures are logged and never cost the
caller the loop result. The busy state is always left, whatever fails.
"""

import asyncio
import inspect
import json
import time
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Sequence

from keeper.agent.context import ContextAssembler
from keeper.agent.core import AgentLoop, AgentLoopConfig, LoopResult, StopReason, Turn
from keeper.agent.tools_executor import ToolExecutor
from keeper.errors import AgentBusyError
from keeper.inference.gateway import InferenceGateway, OpenAIGateway
from keeper.memory import MemoryManager
from keeper.memory.lessons import RetrievalEvent
from keeper.memory.recall import MemoryContext
from keeper.memory.similarity import infer_category
from keeper.runner.jobs import Job, JobStatus, JobTable
from keeper.tools import ToolResult
from keeper.utils.config import Config, InferenceConfig
from keeper.utils.logger import Logger

logger = Logger("TaskRunner")

GatewayFactory = Callable[[InferenceConfig], InferenceGateway]
FinishHook = Callable[[str, "ExecuteResponse"], Awaitable[None] | None]


@dataclass
class ExecuteRequest:
    """
    A request to execute a task.

    Attributes:
        task: Task text, sent to the model as the first user message
        max_turns: Turn limit (config default when None)
        turn_timeout: Per-turn inference timeout in seconds (config default when None)
        inference_url / inference_model / inference_api_key: Per-call overrides
        allowed_tools: Restrict the tools offered to the model (all when None)
        background: Return a job id instead of waiting for the result
    """
    task: str
    max_turns: int | None = None
    turn_timeout: float | None = None
    inference_url: str | None = None
    inference_model: str | None = None
    inference_api_key: str | None = None
    allowed_tools: list[str] | None = None
    background: bool = False

    def __post_init__(self):
        if not self.task or not self.task.strip():
            raise ValueError("task must not be empty")
        if self.max_turns is not None and self.max_turns < 1:
            raise ValueError("max_turns must be at least 1")
        if self.turn_timeout is not None and self.turn_timeout <= 0:
            raise ValueError("turn_timeout must be positive")

    @property
    def has_inference_overrides(self) -> bool:
        return any((self.inference_url, self.inference_model, self.inference_api_key))

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ExecuteRequest":
        return cls(
            task=data.get("task", ""),
            max_turns=data.get("max_turns"),
            turn_timeout=data.get("turn_timeout"),
            inference_url=data.get("inference_url"),
            inference_model=data.get("inference_model"),
            inference_api_key=data.get("inference_api_key"),
            allowed_tools=data.get("allowed_tools"),
            background=bool(data.get("background", False)),
        )


@dataclass
class ExecuteResponse:
    """The outcome of one execution."""
    agent_id: str
    task: str
    turns: list[Turn]
    stop_reason: StopReason
    final_response: str | None
    tool_results: list[ToolResult]
    retrieved_lesson_ids: list[int] = field(default_factory=list)
    lesson_id: int | None = None
    action_id: int | None = None
    duration_ms: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "agent_id": self.agent_id,
            "task": self.task,
            "turns": [turn.to_dict() for turn in self.turns],
            "stop_reason": self.stop_reason.value,
            "final_response": self.final_response,
            "tool_results": [result.to_dict() for result in self.tool_results],
            "retrieved_lesson_ids": self.retrieved_lesson_ids,
            "lesson_id": self.lesson_id,
            "action_id": self.action_id,
            "duration_ms": self.duration_ms,
        }


class BusyGuard:
    """
    Tracks which agents have an execution in flight.

    claim() marks the agent busy right away (or raises AgentBusyError) and
    returns an async context manager that marks it idle again on exit:

        async with guard.claim("agent-1"):
            ...
    """

    def __init__(self):
        self._executing: set[str] = set()

    def is_busy(self, agent_id: str) -> bool:
        return agent_id in self._executing

    def claim(self, agent_id: str) -> "_Claim":
        if agent_id in self._executing:
            raise AgentBusyError(agent_id)
        self._executing.add(agent_id)
        return _Claim(self, agent_id)

    def _release(self, agent_id: str) -> None:
        self._executing.discard(agent_id)


class _Claim:
    def __init__(self, guard: BusyGuard, agent_id: str):
        self.guard = guard
        self.agent_id = agent_id

    async def __aenter__(self) -> "_Claim":
        return self

    def release(self) -> None:
        self.guard._release(self.agent_id)

    async def __aexit__(self, exc_type, exc, tb) -> None:
        self.release()


class TaskRunner:
    """
    Runs tasks for agents, synchronously or as background jobs.

    Example:
        runner = TaskRunner(config, memory)

        response = await runner.execute("agent-1", ExecuteRequest(task="Fix failing tests in parser"))
        print(response.stop_reason, response.final_response)

        job_id = await runner.execute("agent-1", ExecuteRequest(task="...", background=True))
        job = await runner.get_job(job_id)
    """

    def __init__(
        self,
        config: Config,
        memory: MemoryManager,
        executor: ToolExecutor | None = None,
        gateway_factory: GatewayFactory | None = None,
        on_finished: FinishHook | None = None
    ):
        """
        Initialize the runner.

        Args:
            config: Application configuration
            memory: The memory system
            executor: Tool executor (defaults to the built-in tools under data_dir)
            gateway_factory: Builds a gateway from inference settings
            on_finished: Called with (agent_id, response) after every execution
        """
        self.config = config
        self.memory = memory
        self.executor = executor or ToolExecutor(config.storage.data_dir)
        self.gateway_factory = gateway_factory or OpenAIGateway
        self.on_finished = on_finished

        self.assembler = ContextAssembler()
        self.busy = BusyGuard()
        self.jobs = JobTable()

        self._default_gateway: InferenceGateway | None = None
        self._tasks: set[asyncio.Task] = set()

    # ==========================================================================
    # Entry points
    # ==========================================================================

    async def execute(self, agent_id: str, request: ExecuteRequest) -> ExecuteResponse | str:
        """
        Execute a task for an agent.

        Returns:
            The response, or a job id when request.background is set

        Raises:
            AgentBusyError: If the agent is already executing
        """
        claim = self.busy.claim(agent_id)

        if not request.background:
            async with claim:
                return await self.run_execution(agent_id, request)

        try:
            job = await self.jobs.create(agent_id)
            task = asyncio.create_task(self._run_job(claim, job, request))
        except Exception:
            claim.release()
            raise

        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

        logger.info(f"Started background job {job.id} for {agent_id}")
        return job.id

    async def get_job(self, job_id: str) -> Job:
        """
        Poll a background job.

        Raises:
            JobNotFoundError: If the id is unknown
        """
        return await self.jobs.get(job_id)

    async def wait_for_job(self, job_id: str, poll_interval: float = 0.1) -> Job:
        """Poll until a job has finished."""
        while True:
            job = await self.jobs.get(job_id)
            if job.status is not JobStatus.RUNNING:
                return job
            await asyncio.sleep(poll_interval)

    async def _run_job(self, claim: "_Claim", job: Job, request: ExecuteRequest) -> None:
        async with claim:
            try:
                response = await self.run_execution(job.agent_id, request)
            except asyncio.CancelledError:
                logger.warning(f"Background job {job.id} was cancelled")
                await self.jobs.fail(job.id, "cancelled")
                raise
            except Exception as e:
                logger.error(f"Background job {job.id} failed", e)
                await self.jobs.fail(job.id, str(e) or type(e).__name__)
                return
            await self.jobs.complete(job.id, response.to_dict())

    # ==========================================================================
    # Pipeline
    # ==========================================================================

    def _gateway_for(self, request: ExecuteRequest) -> InferenceGateway:
        if request.has_inference_overrides:
            return self.gateway_factory(self.config.inference.with_overrides(
                api_url=request.inference_url,
                model=request.inference_model,
                api_key=request.inference_api_key,
            ))
        if self._default_gateway is None:
            self._default_gateway = self.gateway_factory(self.config.inference)
        return self._default_gateway

    def _loop_config(self, request: ExecuteRequest) -> AgentLoopConfig:
        return AgentLoopConfig(
            max_turns=request.max_turns or self.config.agent.max_turns,
            turn_timeout_secs=request.turn_timeout or self.config.agent.turn_timeout_secs,
        )

    async def _recall(self, agent_id: str, task: str, category: str) -> MemoryContext:
        try:
            return await self.memory.recall(agent_id, task, category)
        except Exception as e:
            logger.error("Lesson recall failed, continuing without lessons", e)
            return MemoryContext(task=task, category=category)

    async def run_execution(self, agent_id: str, request: ExecuteRequest) -> ExecuteResponse:
        """
        Run the full pipeline for one task.

        Args:
            agent_id: The executing agent
            request: What to run and how

        Returns:
            ExecuteResponse
        """
        task = request.task
        gateway = self._gateway_for(request)

        action_id: int | None = None
        try:
            action_id = await self.memory.start_action(agent_id, task)
        except Exception as e:
            logger.error("Failed to start action log entry", e)

        category = infer_category(task)
        memory_context = await self._recall(agent_id, task, category)

        event: RetrievalEvent | None = None
        if action_id is not None:
            try:
                event = await self.memory.open_retrieval_event(agent_id, action_id, memory_context)
            except Exception as e:
                logger.error("Failed to record retrieval event", e)

        tools = self.executor.registry.definitions(request.allowed_tools)
        context = self.assembler.assemble(agent_id, tools, memory_context)

        start = time.monotonic()
        result = await AgentLoop(gateway, self.executor, self._loop_config(request)).run(
            agent_id=agent_id,
            system_prompt=context.system_prompt,
            task=task,
            tools=context.tools,
        )
        duration_ms = int((time.monotonic() - start) * 1000)

        logger.info(
            f"Executed task for {agent_id}: {len(result.turns)} turn(s), "
            f"{result.total_tool_calls} tool call(s), {result.stop_reason.value}",
            {"duration_ms": duration_ms, "category": category}
        )

        lesson_id = None
        if action_id is not None:
            lesson_id = await self._learn(agent_id, action_id, task, category, result, duration_ms, context.lesson_ids)
            await self._feedback(event, result, duration_ms)
            await self._complete_action(action_id, result)

        response = ExecuteResponse(
            agent_id=agent_id,
            task=task,
            turns=result.turns,
            stop_reason=result.stop_reason,
            final_response=result.final_response,
            tool_results=result.all_tool_results,
            retrieved_lesson_ids=context.lesson_ids,
            lesson_id=lesson_id,
            action_id=action_id,
            duration_ms=duration_ms,
        )

        await self._notify_finished(agent_id, response)
        return response

    async def _learn(
        self,
        agent_id: str,
        action_id: int,
        task: str,
        category: str,
        result: LoopResult,
        duration_ms: int,
        retrieved_lesson_ids: Sequence[int]
    ) -> int | None:
        try:
            lesson = await self.memory.learn(
                agent_id, action_id, task, category, result, duration_ms, retrieved_lesson_ids
            )
        except Exception as e:
            logger.error("Failed to store lesson", e)
            return None
        return lesson.id

    async def _feedback(self, event: RetrievalEvent | None, result: LoopResult, duration_ms: int) -> None:
        try:
            await self.memory.record_feedback(event, result.completed, duration_ms)
        except Exception as e:
            logger.error("Failed to apply retrieval feedback", e)

    async def _complete_action(self, action_id: int, result: LoopResult) -> None:
        first_tool = result.all_tool_results[0].tool_name if result.all_tool_results else "none"
        turns_json = json.dumps([turn.to_dict() for turn in result.turns])
        try:
            await self.memory.complete_action(
                action_id,
                success=result.completed and result.all_success,
                first_tool=first_tool,
                turns_json=turns_json,
            )
        except Exception as e:
            logger.error("Failed to complete action log entry", e)

    async def _notify_finished(self, agent_id: str, response: ExecuteResponse) -> None:
        if self.on_finished is None:
            return
        try:
            outcome = self.on_finished(agent_id, response)
            if inspect.isawaitable(outcome):
                await outcome
        except Exception as e:
            logger.error("Finish hook failed", e)


__all__ = [
    "TaskRunner",
    "ExecuteRequest",
    "ExecuteResponse",
    "BusyGuard",
    "Job",
    "JobStatus",
    "JobTable",
]
