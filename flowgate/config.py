from __future__ import annotations

import os
from typing import Dict, Optional

import yaml
from pydantic import BaseModel, Field

from .constants import (
    DEFAULT_MODEL,
    DEFAULT_MODEL_PROVIDER,
    SUBWORKFLOW_POLL_INTERVAL,
    SUBWORKFLOW_TIMEOUT,
)


class ModelPrice(BaseModel):
    """USD price per 1K tokens for a model."""

    input: float
    output: float


class FlowgateConfig(BaseModel):
    """Top-level configuration model."""

    database_url: Optional[str] = None
    default_model: str = DEFAULT_MODEL
    model_provider: str = DEFAULT_MODEL_PROVIDER
    subworkflow_poll_interval: float = Field(default=SUBWORKFLOW_POLL_INTERVAL, gt=0)
    subworkflow_timeout: float = Field(default=SUBWORKFLOW_TIMEOUT, gt=0)
    pricing: Dict[str, ModelPrice] = Field(default_factory=dict)
    log_level: str = "INFO"

    def resolve_model(self, name: Optional[str]) -> str:
        """Return a pydantic-ai model string for ``name``.

        Bare names such as ``gpt-4o-mini`` are prefixed with the configured
        provider; names that already carry a provider are returned unchanged.
        """
        model = name or self.default_model
        if ":" in model:
            return model
        return f"{self.model_provider}:{model}"


def load_config(path: Optional[str] = None) -> FlowgateConfig:
    """Load configuration from YAML file.

    Args:
        path: Optional path to config file. Falls back to FLOWGATE_CONFIG env
            variable or 'flowgate.yaml' in the current directory.
    """

    config_path = path or os.getenv("FLOWGATE_CONFIG", "flowgate.yaml")
    if os.path.exists(config_path):
        with open(config_path) as f:
            data = yaml.safe_load(f) or {}
        config = FlowgateConfig(**data)
    else:
        config = FlowgateConfig()

    env_db_url = os.getenv("FLOWGATE_DATABASE_URL") or os.getenv("DATABASE_URL")
    if env_db_url:
        config.database_url = env_db_url
    env_log_level = os.getenv("FLOWGATE_LOG_LEVEL")
    if env_log_level:
        config.log_level = env_log_level
    return config
