"""
Agent Loop
==========

The bounded multi-turn loop that executes a task.

Agent Loop:
    Task
     │
     ▼
    conversation = [user task]
     │
     ▼
    ┌──► Inference with tools (bounded by turn timeout)
    │        │
    │        ├── timeout ─────────────► stop: turn_timeout
    │        ├── error ───────────────► stop: inference_error
    │        ├── text ────────────────► stop: completed (final answer)
    │        └── tool calls
    │              │
    │              ▼
    │        Append assistant message with the calls
    │        Run every call, in order, one at a time
    │        Append one tool message per result
    │              │
    └──────────────┘ (until max_turns ─► stop: max_turns)

Guarantees:
- Turns are numbered 1, 2, 3... with no gaps; a turn that times out or
  errors is not recorded.
- final_response is set exactly when the stop reason is "completed".
- all_success is False exactly when some tool call failed.
- total_tool_calls equals the number of tool results across all turns.

The conversation is only ever appended to, and only after an inference call
has returned, so a timed-out call leaves it exactly as it was.
"""

import asyncio
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Sequence

from keeper.agent.tools_executor import ToolExecutor
from keeper.errors import InferenceError
from keeper.inference.gateway import InferenceGateway
from keeper.inference.types import (
    ChatMessage,
    InferenceResult,
    TextResult,
    ToolCallsResult,
    ToolDefinition,
)
from keeper.tools import ToolResult
from keeper.utils.logger import Logger

logger = Logger("AgentLoop")


class StopReason(str, Enum):
    """Why an agent loop ended."""
    COMPLETED = "completed"
    MAX_TURNS = "max_turns"
    TURN_TIMEOUT = "turn_timeout"
    INFERENCE_ERROR = "inference_error"


@dataclass(frozen=True)
class AgentLoopConfig:
    """Bounds for one loop run."""
    max_turns: int = 5
    turn_timeout_secs: float = 60.0


@dataclass
class Turn:
    """
    One completed request/response cycle.

    Attributes:
        turn_number: 1-based position in the loop
        inference_result: What the model returned
        tool_results: Results of the calls made this turn (empty for text)
        duration_ms: Wall-clock time for inference plus tool execution
    """
    turn_number: int
    inference_result: InferenceResult
    tool_results: list[ToolResult] = field(default_factory=list)
    duration_ms: int = 0

    def to_dict(self) -> dict:
        return {
            "turn_number": self.turn_number,
            "inference_result": self.inference_result.to_dict(),
            "tool_results": [result.to_dict() for result in self.tool_results],
            "duration_ms": self.duration_ms,
        }


@dataclass
class LoopResult:
    """The terminal outcome of an agent loop."""
    turns: list[Turn]
    final_response: str | None
    all_tool_results: list[ToolResult]
    all_success: bool
    stop_reason: StopReason

    @property
    def total_tool_calls(self) -> int:
        return len(self.all_tool_results)

    @property
    def completed(self) -> bool:
        return self.stop_reason is StopReason.COMPLETED

    def tools_used(self) -> list[str]:
        """Tool names in first-use order, without repeats."""
        seen: list[str] = []
        for result in self.all_tool_results:
            if result.tool_name not in seen:
                seen.append(result.tool_name)
        return seen

    def to_dict(self) -> dict:
        return {
            "turns": [turn.to_dict() for turn in self.turns],
            "final_response": self.final_response,
            "total_tool_calls": self.total_tool_calls,
            "all_tool_results": [result.to_dict() for result in self.all_tool_results],
            "all_success": self.all_success,
            "stop_reason": self.stop_reason.value,
        }


class AgentLoop:
    """
    Drives one task to completion against an inference gateway.

    Example:
        loop = AgentLoop(gateway, ToolExecutor(data_dir))

        result = await loop.run(
            agent_id="agent-1",
            system_prompt="You are a careful engineer.",
            task="Count the lines in notes/today.md",
            tools=tool_definitions(),
        )
        print(result.stop_reason, result.final_response)
    """

    def __init__(
        self,
        gateway: InferenceGateway,
        executor: ToolExecutor,
        config: AgentLoopConfig | None = None
    ):
        self.gateway = gateway
        self.executor = executor
        self.config = config or AgentLoopConfig()

    async def run(
        self,
        agent_id: str,
        system_prompt: str,
        task: str,
        tools: Sequence[ToolDefinition],
        config: AgentLoopConfig | None = None
    ) -> LoopResult:
        """
        Run the loop until completion, error, timeout, or the turn limit.

        Args:
            agent_id: Whose workspace tool calls run in
            system_prompt: System prompt (including any memory context)
            task: The task text, sent as the first user message
            tools: Tool definitions offered to the model
            config: Per-run bounds; defaults to the loop's config

        Returns:
            LoopResult; never raises for inference or tool failures
        """
        bounds = config or self.config

        conversation: list[ChatMessage] = [ChatMessage.text("user", task)]
        turns: list[Turn] = []
        all_tool_results: list[ToolResult] = []
        all_success = True
        final_response: str | None = None
        stop_reason = StopReason.MAX_TURNS

        for turn_number in range(1, bounds.max_turns + 1):
            turn_start = time.monotonic()

            try:
                inference_result = await asyncio.wait_for(
                    self.gateway.generate_with_tools(system_prompt, list(conversation), tools),
                    timeout=bounds.turn_timeout_secs,
                )
            except asyncio.TimeoutError:
                logger.warning(f"Turn {turn_number} timed out after {bounds.turn_timeout_secs}s")
                stop_reason = StopReason.TURN_TIMEOUT
                break
            except InferenceError as e:
                logger.warning(f"Inference error on turn {turn_number}: {e}")
                stop_reason = StopReason.INFERENCE_ERROR
                break
            except Exception as e:
                logger.error(f"Gateway raised unexpectedly on turn {turn_number}", e)
                stop_reason = StopReason.INFERENCE_ERROR
                break

            if isinstance(inference_result, TextResult):
                final_response = inference_result.content
                turns.append(Turn(
                    turn_number=turn_number,
                    inference_result=inference_result,
                    duration_ms=_elapsed_ms(turn_start),
                ))
                stop_reason = StopReason.COMPLETED
                break

            if not isinstance(inference_result, ToolCallsResult):
                raise TypeError(f"Unexpected inference result: {inference_result!r}")

            calls = list(inference_result.calls)
            logger.info(f"Turn {turn_number}: {len(calls)} tool call(s)")

            conversation.append(ChatMessage.assistant_tool_calls(calls))
            turn_results = await self.executor.execute_all(agent_id, calls)
            conversation.extend(self.executor.format_results_for_messages(turn_results))

            if any(not result.success for result in turn_results):
                all_success = False
            all_tool_results.extend(turn_results)

            turns.append(Turn(
                turn_number=turn_number,
                inference_result=inference_result,
                tool_results=turn_results,
                duration_ms=_elapsed_ms(turn_start),
            ))
        else:
            logger.warning(f"Reached max turns ({bounds.max_turns}) without a final answer")

        return LoopResult(
            turns=turns,
            final_response=final_response,
            all_tool_results=all_tool_results,
            all_success=all_success,
            stop_reason=stop_reason,
        )


async def run_agent_loop(
    gateway: InferenceGateway,
    executor: ToolExecutor,
    agent_id: str,
    system_prompt: str,
    task: str,
    tools: Sequence[ToolDefinition],
    config: AgentLoopConfig | None = None
) -> LoopResult:
    """Convenience wrapper: run a single loop without keeping an AgentLoop around."""
    return await AgentLoop(gateway, executor, config).run(agent_id, system_prompt, task, tools)


def _elapsed_ms(start: float) -> int:
    return int((time.monotonic() - start) * 1000)
