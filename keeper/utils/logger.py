"""
Logger Utility
==============

Context-aware logging for the keeper. Every component creates its own
logger with a short context name, so a single execution can be followed
through the log as it moves between components:

    [2026-10-19T10:30:00] [INFO] [TaskRunner] Executing task for agent-1
    [2026-10-19T10:30:01] [INFO] [AgentLoop] Turn 1: 2 tool call(s)
    [2026-10-19T10:30:01] [WARN] [ToolExecutor] Tool shell_exec failed
    [2026-10-19T10:30:03] [INFO] [LessonExtractor] Stored lesson 12

Levels are filtered by the LOG_LEVEL environment variable. Errors and
warnings go to stderr so they survive when stdout is piped elsewhere.

Usage:
    from keeper.utils.logger import Logger

    log = Logger("Retriever")
    log.info("Ranked candidates", {"agent_id": "agent-1", "count": 12})

    # Nested contexts for sub-operations
    tool_log = Logger("Agent").child("Tools")   # [Agent:Tools]
"""

import json
import os
import sys
from datetime import datetime
from enum import IntEnum
from typing import Any


class LogLevel(IntEnum):
    """Numeric log levels; a message is shown when its level >= the minimum."""
    DEBUG = 10
    INFO = 20
    WARNING = 30
    ERROR = 40


class Colors:
    """ANSI escape codes for terminal output."""
    RESET = "\033[0m"
    DEBUG = "\033[36m"    # Cyan
    INFO = "\033[32m"     # Green
    WARNING = "\033[33m"  # Yellow
    ERROR = "\033[31m"    # Red
    DIM = "\033[2m"


_LEVEL_NAMES = {
    "DEBUG": LogLevel.DEBUG,
    "INFO": LogLevel.INFO,
    "WARNING": LogLevel.WARNING,
    "WARN": LogLevel.WARNING,
    "ERROR": LogLevel.ERROR,
}


def parse_level(value: str | None, default: LogLevel = LogLevel.INFO) -> LogLevel:
    """
    Parse a level name such as "debug" or "WARN".

    Args:
        value: The level name (case-insensitive), or None
        default: Level to use when the name is missing or unknown

    Returns:
        The matching LogLevel
    """
    if not value:
        return default
    return _LEVEL_NAMES.get(value.strip().upper(), default)


def _level_from_env() -> LogLevel:
    return parse_level(os.getenv("LOG_LEVEL"))


def _use_color(stream) -> bool:
    if os.getenv("NO_COLOR"):
        return False
    return hasattr(stream, "isatty") and stream.isatty()


class Logger:
    """
    A logger bound to one component context.

    The logger supports:
    - Four levels (debug, info, warning, error)
    - A context prefix, extendable with child()
    - Optional structured data printed as indented JSON
    - Exception details on error()

    Example:
        log = Logger("LessonStore")
        log.debug("Opened database", {"path": "/tmp/keeper.db"})

        try:
            ...
        except OSError as e:
            log.error("Failed to write artifact", e)
    """

    def __init__(self, context: str = "", level: LogLevel | None = None):
        """
        Initialize a logger.

        Args:
            context: Prefix shown on every line (e.g., "AgentLoop")
            level: Minimum level; defaults to the LOG_LEVEL environment variable
        """
        self.context = context
        self._min_level = level if level is not None else _level_from_env()

    def child(self, child_context: str) -> "Logger":
        """
        Create a logger for a nested context.

        Args:
            child_context: Context appended after a colon

        Returns:
            A new Logger sharing this logger's level
        """
        new_context = f"{self.context}:{child_context}" if self.context else child_context
        return Logger(new_context, self._min_level)

    def is_enabled(self, level: LogLevel) -> bool:
        """Check whether messages at `level` would be shown."""
        return level >= self._min_level

    def _emit(
        self,
        level: LogLevel,
        label: str,
        color: str,
        message: str,
        data: dict[str, Any] | None = None
    ) -> None:
        if not self.is_enabled(level):
            return

        stream = sys.stderr if level >= LogLevel.WARNING else sys.stdout
        colored = _use_color(stream)

        timestamp = datetime.now().isoformat(timespec="seconds")
        context_str = f"[{self.context}] " if self.context else ""

        if colored:
            line = (
                f"{Colors.DIM}[{timestamp}]{Colors.RESET} "
                f"{color}[{label}]{Colors.RESET} {context_str}{message}"
            )
        else:
            line = f"[{timestamp}] [{label}] {context_str}{message}"
        print(line, file=stream)

        if data:
            payload = json.dumps(data, indent=2, default=str)
            if colored:
                payload = f"{Colors.DIM}{payload}{Colors.RESET}"
            print(payload, file=stream)

    def debug(self, message: str, data: dict[str, Any] | None = None) -> None:
        """Log detail that is only useful while developing (LOG_LEVEL=debug)."""
        self._emit(LogLevel.DEBUG, "DEBUG", Colors.DEBUG, message, data)

    def info(self, message: str, data: dict[str, Any] | None = None) -> None:
        """Log normal operational information."""
        self._emit(LogLevel.INFO, "INFO", Colors.INFO, message, data)

    def warning(self, message: str, data: dict[str, Any] | None = None) -> None:
        """
        Log a recoverable problem.

        Used for degraded paths that the caller never sees, such as an
        embedding failure that falls back to lexical ranking.
        """
        self._emit(LogLevel.WARNING, "WARN", Colors.WARNING, message, data)

    def error(
        self,
        message: str,
        error: BaseException | None = None,
        data: dict[str, Any] | None = None
    ) -> None:
        """
        Log a failure.

        Args:
            message: What was being attempted
            error: Optional exception; its type and message are included
            data: Optional extra structured data
        """
        details: dict[str, Any] = dict(data or {})
        if error is not None:
            details["error_type"] = type(error).__name__
            details["error_message"] = str(error)
        self._emit(LogLevel.ERROR, "ERROR", Colors.ERROR, message, details or None)


# Default logger for code that has no natural component name
logger = Logger("Keeper")
