"""
Configuration Management
========================

Centralized configuration for the keeper. Environment variables (optionally
loaded from a .env file) are read once, validated, and exposed as frozen
dataclasses.

Nothing here is required: a keeper pointed at a local OpenAI-compatible
server (Ollama, vLLM, ...) runs without an API key.

Usage:
    from keeper.utils.config import get_config

    config = get_config()
    print(config.inference.model)
    print(config.agent.max_turns)
"""

import os
from dataclasses import dataclass, replace
from pathlib import Path

from dotenv import load_dotenv


def _optional(name: str, default: str) -> str:
    """
    Get an optional environment variable with a default.

    Args:
        name: The environment variable name
        default: Default value if not set

    Returns:
        The value or the default
    """
    return os.getenv(name) or default


def _optional_int(name: str, default: int) -> int:
    """
    Get an optional integer environment variable.

    Invalid values fall back to the default with a printed warning.
    """
    value = os.getenv(name)
    if not value:
        return default
    try:
        return int(value)
    except ValueError:
        print(f"Warning: {name} is not a valid integer, using default: {default}")
        return default


def _optional_float(name: str, default: float) -> float:
    """Get an optional float environment variable."""
    value = os.getenv(name)
    if not value:
        return default
    try:
        return float(value)
    except ValueError:
        print(f"Warning: {name} is not a valid number, using default: {default}")
        return default


def _optional_bool(name: str, default: bool) -> bool:
    """
    Get an optional boolean environment variable.

    Returns:
        True for "true"/"1"/"yes" (case-insensitive), False for anything else
    """
    value = os.getenv(name)
    if not value:
        return default
    return value.strip().lower() in ("true", "1", "yes")


def expand_path(path: str) -> Path:
    """Expand a leading ~ and return an absolute-ish Path."""
    return Path(os.path.expanduser(path))


# ==============================================================================
# Configuration Dataclasses
# ==============================================================================

@dataclass(frozen=True)
class InferenceConfig:
    """OpenAI-compatible chat completion endpoint."""
    api_key: str          # May be empty for local endpoints
    api_url: str          # Full chat completions URL
    model: str            # Chat model name
    max_tokens: int
    temperature: float
    embeddings_enabled: bool

    @property
    def base_url(self) -> str:
        """
        The API root the OpenAI client expects.

        "https://api.openai.com/v1/chat/completions" -> "https://api.openai.com/v1"
        """
        url = self.api_url.rstrip("/")
        if url.endswith("/chat/completions"):
            url = url[: -len("/chat/completions")]
        return url

    @property
    def embedding_model(self) -> str:
        """OpenAI chat models cannot embed; other providers reuse the chat model."""
        if self.model.startswith("gpt-"):
            return "text-embedding-3-small"
        return self.model

    def with_overrides(
        self,
        api_url: str | None = None,
        model: str | None = None,
        api_key: str | None = None
    ) -> "InferenceConfig":
        """
        Return a copy with per-request overrides applied.

        None means "keep the configured value".
        """
        return replace(
            self,
            api_url=api_url or self.api_url,
            model=model or self.model,
            api_key=api_key if api_key is not None else self.api_key,
        )


@dataclass(frozen=True)
class AgentConfig:
    """Defaults for the agent loop."""
    max_turns: int
    turn_timeout_secs: float


@dataclass(frozen=True)
class StorageConfig:
    """Where the data directory, lesson database and artifacts live."""
    data_dir: Path

    @property
    def database_path(self) -> Path:
        return self.data_dir / "keeper.db"

    def artifact_dir(self, agent_id: str) -> Path:
        return self.data_dir / "agents" / agent_id / "lessons"


@dataclass(frozen=True)
class Config:
    """
    Root configuration object.

    Access via:
        config = get_config()
        config.inference.api_url
        config.storage.data_dir
    """
    inference: InferenceConfig
    agent: AgentConfig
    storage: StorageConfig
    log_level: str


def load_config() -> Config:
    """
    Load configuration from the environment (and .env, if present).

    Returns:
        Config: The validated configuration
    """
    load_dotenv()

    return Config(
        inference=InferenceConfig(
            api_key=os.getenv("OPENAI_API_KEY", ""),
            api_url=_optional("INFERENCE_URL", "https://api.openai.com/v1/chat/completions"),
            model=_optional("INFERENCE_MODEL", "gpt-4o-mini"),
            max_tokens=_optional_int("INFERENCE_MAX_TOKENS", 1024),
            temperature=_optional_float("INFERENCE_TEMPERATURE", 0.3),
            embeddings_enabled=_optional_bool("EMBEDDINGS_ENABLED", True),
        ),
        agent=AgentConfig(
            max_turns=_optional_int("AGENT_MAX_TURNS", 5),
            turn_timeout_secs=_optional_float("AGENT_TURN_TIMEOUT", 60.0),
        ),
        storage=StorageConfig(
            data_dir=expand_path(_optional("KEEPER_DATA_DIR", "~/.keeper")),
        ),
        log_level=_optional("LOG_LEVEL", "info"),
    )


# ==============================================================================
# Singleton
# ==============================================================================

_config_instance: Config | None = None


def get_config() -> Config:
    """
    Get the shared configuration instance, loading it on first access.

    Returns:
        Config: The application configuration
    """
    global _config_instance
    if _config_instance is None:
        _config_instance = load_config()
    return _config_instance


def reset_config() -> None:
    """Forget the cached configuration so the next get_config() reloads it."""
    global _config_instance
    _config_instance = None
