"""Helpers shared by the executors that call a model through pydantic-ai."""

from __future__ import annotations

from typing import Any, Dict, Optional, Sequence

from pydantic_ai.messages import ModelMessage, ModelResponse
from pydantic_ai.models import Model
from pydantic_ai.usage import RunUsage

from ..config import FlowgateConfig


class ModelResolver:
    """Turns a step's ``model`` setting into something ``Agent`` accepts.

    An injected ``model`` (for example pydantic-ai's ``TestModel``) wins over
    every step setting.
    """

    def __init__(self, config: FlowgateConfig, model: Optional[Model] = None) -> None:
        self.config = config
        self.model = model

    def resolve(self, name: Optional[str]) -> Model | str:
        if self.model is not None:
            return self.model
        return self.config.resolve_model(name)

    def display_name(self, name: Optional[str]) -> str:
        return name or self.config.default_model


def usage_dict(usage: RunUsage) -> Dict[str, int]:
    prompt = usage.input_tokens or 0
    completion = usage.output_tokens or 0
    return {
        "prompt_tokens": prompt,
        "completion_tokens": completion,
        "total_tokens": prompt + completion,
    }


def responded_model(messages: Sequence[ModelMessage], fallback: str) -> str:
    """Model name reported by the last response, else ``fallback``."""
    for message in reversed(messages):
        if isinstance(message, ModelResponse) and message.model_name:
            return message.model_name
    return fallback


def model_settings(temperature: Optional[float]) -> Dict[str, Any]:
    return {} if temperature is None else {"temperature": temperature}
