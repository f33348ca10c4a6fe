"""Tests for configuration loading."""

import pytest

from arborflow.config import load_config

ENV_VARS = [
    "ARBORFLOW_CONFIG",
    "ARBORFLOW_DATABASE_URL",
    "ARBORFLOW_CHECKPOINTS",
    "ARBORFLOW_API_KEY",
    "ARBORFLOW_ORG",
    "ARBORFLOW_API_BASE_URL",
    "ARBORFLOW_LOG_LEVEL",
]


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for name in ENV_VARS:
        monkeypatch.delenv(name, raising=False)


def test_load_config_from_file(tmp_path, monkeypatch):
    config_path = tmp_path / "config.yaml"
    config_path.write_text(
        """
checkpoints:
  database_url: sqlite:///tmp/checkpoints.db
  debounce_seconds: 0.5
  api:
    org: acme
log_level: INFO
"""
    )
    monkeypatch.setenv("ARBORFLOW_CONFIG", str(config_path))

    config = load_config()
    assert config.checkpoints.enabled is True
    assert config.checkpoints.database_url == "sqlite:///tmp/checkpoints.db"
    assert config.checkpoints.debounce_seconds == 0.5
    assert config.checkpoints.api.org == "acme"
    assert config.log_level == "INFO"


def test_env_overrides_file(tmp_path, monkeypatch):
    config_path = tmp_path / "config.yaml"
    config_path.write_text("checkpoints:\n  database_url: memory://\n")
    monkeypatch.setenv("ARBORFLOW_DATABASE_URL", "postgresql://db/checkpoints")
    monkeypatch.setenv("ARBORFLOW_CHECKPOINTS", "off")
    monkeypatch.setenv("ARBORFLOW_API_KEY", "key")
    monkeypatch.setenv("ARBORFLOW_ORG", "org")
    monkeypatch.setenv("ARBORFLOW_API_BASE_URL", "https://traces.example.com")

    config = load_config(str(config_path))
    assert config.checkpoints.database_url == "postgresql://db/checkpoints"
    assert config.checkpoints.enabled is False
    assert config.checkpoints.api.api_key == "key"
    assert config.checkpoints.api.org == "org"
    assert config.checkpoints.api.base_url == "https://traces.example.com"


def test_defaults_without_file(tmp_path):
    config = load_config(str(tmp_path / "missing.yaml"))
    assert config.checkpoints.enabled is True
    assert config.checkpoints.database_url is None
    assert config.log_level == "WARNING"
