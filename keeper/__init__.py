"""
Keeper Agent - Task Execution with Experiential Memory
======================================================

Runs open-ended tasks for autonomous agents. Each agent gets a sandboxed
workspace, a bounded tool-calling loop against an OpenAI-compatible model,
and a private memory of past task outcomes ("lessons") that is consulted
before every run and updated after it.

This package provides:
- Agent loop with per-turn timeouts and sequential tool execution
- Sandboxed workspace tools (code, HTTP, files, shell)
- Lesson memory with hybrid semantic + lexical retrieval
- Lesson extraction, artifact persistence, and retrieval feedback
- Task runner with synchronous and background (job) execution
"""

__version__ = "1.0.0"
