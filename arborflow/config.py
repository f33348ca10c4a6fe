from __future__ import annotations

import os
from typing import Optional

import yaml
from pydantic import BaseModel, Field

_FALSE_VALUES = {"false", "0", "no", "off"}


class ApiConfig(BaseModel):
    """Settings for the HTTP trace sink."""

    base_url: str = "https://api.arborflow.dev"
    api_key: Optional[str] = None
    org: Optional[str] = None
    timeout: float = 10.0


class CheckpointConfig(BaseModel):
    """Checkpoint persistence settings."""

    enabled: bool = True
    database_url: Optional[str] = None
    debounce_seconds: float = 0.0
    api: ApiConfig = Field(default_factory=ApiConfig)


class ArborflowConfig(BaseModel):
    """Top-level configuration model."""

    checkpoints: CheckpointConfig = Field(default_factory=CheckpointConfig)
    log_level: str = "WARNING"


def load_config(path: Optional[str] = None) -> ArborflowConfig:
    """Load configuration from YAML file.

    Args:
        path: Optional path to config file. Falls back to ARBORFLOW_CONFIG env
            variable or 'config.yaml' in the current directory.
    """

    config_path = path or os.getenv("ARBORFLOW_CONFIG", "config.yaml")
    if os.path.exists(config_path):
        with open(config_path) as f:
            data = yaml.safe_load(f) or {}
        config = ArborflowConfig(**data)
    else:
        config = ArborflowConfig()

    checkpoints = config.checkpoints
    env_db_url = os.getenv("ARBORFLOW_DATABASE_URL")
    if env_db_url:
        checkpoints.database_url = env_db_url

    toggle = os.getenv("ARBORFLOW_CHECKPOINTS")
    if toggle is not None and toggle.strip().lower() in _FALSE_VALUES:
        checkpoints.enabled = False

    checkpoints.api.api_key = os.getenv("ARBORFLOW_API_KEY") or checkpoints.api.api_key
    checkpoints.api.org = os.getenv("ARBORFLOW_ORG") or checkpoints.api.org
    checkpoints.api.base_url = (
        os.getenv("ARBORFLOW_API_BASE_URL") or checkpoints.api.base_url
    )

    config.log_level = os.getenv("ARBORFLOW_LOG_LEVEL") or config.log_level
    return config
