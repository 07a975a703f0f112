"""
Utilities Module
================

Common utilities shared across the application:
- logger: Coloured, context-aware logging
- config: Centralized configuration management
"""

from keeper.utils.logger import Logger, logger
from keeper.utils.config import get_config, Config

__all__ = ["Logger", "logger", "get_config", "Config"]
