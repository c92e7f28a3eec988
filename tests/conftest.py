"""Shared fixtures for toolwire tests."""

import pytest
import yaml

from toolwire.context_manager import ContextManager

TOOLWIRE_ENV = ("TOOLWIRE_MODEL", "TOOLWIRE_API_BASE", "TOOLWIRE_API_KEY")


@pytest.fixture(autouse=True)
def _clean_toolwire_env(monkeypatch):
    """Keep a developer's TOOLWIRE_* overrides out of the tests."""
    for name in TOOLWIRE_ENV:
        monkeypatch.delenv(name, raising=False)


@pytest.fixture
def tmp_dir(tmp_path, monkeypatch):
    """A temporary project directory, also the working directory."""
    monkeypatch.chdir(tmp_path)
    return tmp_path


@pytest.fixture
def sample_config_data():
    """A .toolwire.yml with every setting away from its default where it matters."""
    return {
        "active-model": "local",
        "max-iterations": 12,
        "max-tokens": 8000,
        "compression-threshold": 6000,
        "max-history-before-compaction": 30,
        "recent-messages": 8,
        "tool-result-max-chars": 2500,
        "shell-tool-name": "bash_command",
        "shell-blocks-as-tools": True,
        "show-tool-calls": True,
        "stream": False,
        "reasoning-display": "summary",
        "verbose": False,
        "tool-output-limits": {"read_file": 1500, "list_directory": 800},
        "models": {
            "local": {
                "provider": "local",
                "model": "openai/model",
                "description": "Local test model",
                "temperature": 0.0,
                "max-tokens": 8192,
                "context-window": 128000,
                "api-base": "http://localhost:8080/v1",
                "api-key": "not-needed",
            }
        },
    }


@pytest.fixture
def config_yaml_file(tmp_dir, sample_config_data):
    path = tmp_dir / ".toolwire.yml"
    path.write_text(yaml.safe_dump(sample_config_data, default_flow_style=False),
                    encoding="utf-8")
    return path


@pytest.fixture
def context_manager():
    """A context manager with the default budget."""
    return ContextManager(system_prompt="You are a test assistant.")
