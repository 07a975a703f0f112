"""
Agent System
============

The agent executes one task at a time for one agent id. It:
1. Runs tool calls inside the agent's workspace
2. Drives the bounded multi-turn loop against the inference gateway
3. Assembles the system prompt, including recalled lessons

This module provides:
- ToolExecutor: Runs tool calls and wraps every outcome
- AgentLoop / run_agent_loop: The turn-by-turn state machine
- ContextAssembler: Builds the system prompt
"""

from keeper.agent.tools_executor import ToolExecutor
from keeper.agent.core import (
    AgentLoop,
    AgentLoopConfig,
    LoopResult,
    StopReason,
    Turn,
    run_agent_loop,
)
from keeper.agent.context import AssembledContext, ContextAssembler

__all__ = [
    "ToolExecutor",
    "AgentLoop",
    "AgentLoopConfig",
    "LoopResult",
    "StopReason",
    "Turn",
    "run_agent_loop",
    "AssembledContext",
    "ContextAssembler",
]
