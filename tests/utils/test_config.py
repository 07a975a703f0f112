"""Tests for environment-driven configuration."""

from pathlib import Path
from unittest.mock import patch

import pytest

from keeper.utils.config import get_config, load_config, reset_config

_VARS = [
    "OPENAI_API_KEY", "INFERENCE_URL", "INFERENCE_MODEL", "INFERENCE_MAX_TOKENS",
    "INFERENCE_TEMPERATURE", "EMBEDDINGS_ENABLED", "KEEPER_DATA_DIR",
    "AGENT_MAX_TURNS", "AGENT_TURN_TIMEOUT", "LOG_LEVEL",
]


@pytest.fixture
def clean_env(monkeypatch):
    for name in _VARS:
        monkeypatch.delenv(name, raising=False)
    with patch("keeper.utils.config.load_dotenv"):
        yield monkeypatch
    reset_config()


def test_defaults(clean_env):
    config = load_config()

    assert config.inference.api_key == ""
    assert config.inference.model == "gpt-4o-mini"
    assert config.inference.max_tokens == 1024
    assert config.inference.temperature == pytest.approx(0.3)
    assert config.inference.embeddings_enabled is True
    assert config.inference.embedding_model == "text-embedding-3-small"
    assert config.agent.max_turns == 5
    assert config.agent.turn_timeout_secs == pytest.approx(60.0)
    assert config.storage.data_dir == Path.home() / ".keeper"


def test_environment_overrides(clean_env, tmp_path):
    clean_env.setenv("INFERENCE_URL", "http://localhost:8000/v1/chat/completions")
    clean_env.setenv("INFERENCE_MODEL", "llama3")
    clean_env.setenv("AGENT_MAX_TURNS", "8")
    clean_env.setenv("EMBEDDINGS_ENABLED", "false")
    clean_env.setenv("KEEPER_DATA_DIR", str(tmp_path))

    config = load_config()

    assert config.inference.base_url == "http://localhost:8000/v1"
    assert config.inference.embedding_model == "llama3"
    assert config.inference.embeddings_enabled is False
    assert config.agent.max_turns == 8
    assert config.storage.database_path == tmp_path / "keeper.db"
    assert config.storage.artifact_dir("a1") == tmp_path / "agents" / "a1" / "lessons"


def test_per_request_overrides(clean_env):
    inference = load_config().inference
    overridden = inference.with_overrides(model="other", api_key="sk-test")

    assert overridden.model == "other"
    assert overridden.api_key == "sk-test"
    assert overridden.api_url == inference.api_url


def test_singleton(clean_env):
    reset_config()
    assert get_config() is get_config()
