"""
Context Assembly
================

Builds the system prompt for a task execution from:
- The keeper's base instructions
- The tools the agent may call this run
- Lessons recalled from the agent's memory

The task itself is not part of the system prompt; the agent loop sends it
as the first user message.
"""

from dataclasses import dataclass, field
from typing import Sequence

from keeper.inference.types import ToolDefinition
from keeper.memory.recall import MemoryContext
from keeper.utils.logger import Logger

logger = Logger("Context")


@dataclass
class AssembledContext:
    """
    Everything the agent loop needs besides the task.

    Attributes:
        system_prompt: Instructions plus memory context
        tools: Tool definitions offered to the model
        lesson_ids: Ids of the lessons included in the prompt
    """
    system_prompt: str
    tools: list[ToolDefinition] = field(default_factory=list)
    lesson_ids: list[int] = field(default_factory=list)


class ContextAssembler:
    """
    Assembles the system prompt for an execution.

    Example:
        assembler = ContextAssembler()

        context = assembler.assemble(
            agent_id="agent-1",
            tools=tool_definitions(),
            memory=memory_context,
        )
        result = await loop.run("agent-1", context.system_prompt, task, context.tools)
    """

    BASE_SYSTEM_PROMPT = """You are a keeper agent ({agent_id}) that completes tasks autonomously.

You work inside a private workspace directory. All file paths are relative to it.

Available tools: {tool_names}

Guidelines:
- Use tools to gather facts and verify results instead of guessing
- Keep tool calls small and check each result before the next step
- If a tool fails, read the error and try a different approach
- When the task is done, reply with a concise final answer and no tool calls

{memory_context}
"""

    def assemble(
        self,
        agent_id: str,
        tools: Sequence[ToolDefinition],
        memory: MemoryContext | None = None
    ) -> AssembledContext:
        """
        Assemble the context for one execution.

        Args:
            agent_id: The executing agent
            tools: Tool definitions for this run
            memory: Recalled lessons, if any

        Returns:
            AssembledContext
        """
        memory_section = memory.to_prompt_section() if memory else ""
        if memory_section:
            memory_section += "\n\nUse these lessons where they apply; they describe earlier runs of similar tasks."

        system_prompt = self.BASE_SYSTEM_PROMPT.format(
            agent_id=agent_id,
            tool_names=", ".join(tool.name for tool in tools) or "none",
            memory_context=memory_section,
        ).strip()

        lesson_ids = memory.lesson_ids if memory else []
        logger.debug(f"Assembled prompt for {agent_id} with {len(lesson_ids)} lesson(s)")

        return AssembledContext(
            system_prompt=system_prompt,
            tools=list(tools),
            lesson_ids=lesson_ids,
        )
