"""Token usage and cost accounting."""

from __future__ import annotations

import re
from typing import TYPE_CHECKING, Any, Dict, Mapping, Optional

from pydantic import BaseModel, Field, model_validator

if TYPE_CHECKING:
    from .config import ModelPrice
    from .contracts import Run, StepState

# USD per 1K tokens.
MODEL_PRICING: Dict[str, Dict[str, float]] = {
    "gpt-4o": {"input": 0.0025, "output": 0.01},
    "gpt-4o-mini": {"input": 0.00015, "output": 0.0006},
    "gpt-4.1": {"input": 0.002, "output": 0.008},
    "gpt-4.1-mini": {"input": 0.0004, "output": 0.0016},
    "gpt-4-turbo": {"input": 0.01, "output": 0.03},
}
DEFAULT_PRICING: Dict[str, float] = {"input": 0.005, "output": 0.015}

_DATE_SUFFIX = re.compile(r"-\d{4}-\d{2}-\d{2}$")


class TokenUsage(BaseModel):
    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: Optional[int] = None

    @model_validator(mode="after")
    def _default_total(self) -> "TokenUsage":
        if self.total_tokens is None:
            self.total_tokens = self.prompt_tokens + self.completion_tokens
        return self

    def __add__(self, other: "TokenUsage") -> "TokenUsage":
        return TokenUsage(
            prompt_tokens=self.prompt_tokens + other.prompt_tokens,
            completion_tokens=self.completion_tokens + other.completion_tokens,
            total_tokens=(self.total_tokens or 0) + (other.total_tokens or 0),
        )

    @classmethod
    def from_output(cls, output: Optional[Mapping[str, Any]]) -> Optional["TokenUsage"]:
        """Extract the usage an executor reported in its output, if any."""
        if not output:
            return None
        usage = output.get("usage")
        if not isinstance(usage, Mapping):
            return None
        return cls.model_validate(usage)


class TokenUsageSummary(BaseModel):
    total: TokenUsage = Field(default_factory=TokenUsage)
    by_step: Dict[str, TokenUsage] = Field(default_factory=dict)
    estimated_cost_usd: float = 0.0


def estimate_cost(
    model: str,
    usage: TokenUsage,
    pricing: Optional[Mapping[str, "ModelPrice"]] = None,
) -> float:
    """Estimate the USD cost of ``usage`` on ``model``.

    Unknown models, after stripping any provider prefix and date suffix,
    fall back to ``DEFAULT_PRICING``.
    """
    name = model.split(":", 1)[-1]
    table: Dict[str, Dict[str, float]] = dict(MODEL_PRICING)
    for key, price in (pricing or {}).items():
        table[key] = {"input": price.input, "output": price.output}
    rate = table.get(name) or table.get(_DATE_SUFFIX.sub("", name)) or DEFAULT_PRICING
    return (usage.prompt_tokens / 1000) * rate["input"] + (
        usage.completion_tokens / 1000
    ) * rate["output"]


class TokenTracker:
    """Accumulates token usage per step and for the whole run."""

    def __init__(self, pricing: Optional[Mapping[str, "ModelPrice"]] = None) -> None:
        self._pricing = pricing
        self._by_step: Dict[str, TokenUsage] = {}
        self._total = TokenUsage()
        self._cost = 0.0

    def add_usage(
        self, step_id: str, usage: TokenUsage, model: Optional[str] = None
    ) -> None:
        self._by_step[step_id] = self._by_step.get(step_id, TokenUsage()) + usage
        self._total = self._total + usage
        if model:
            self._cost += estimate_cost(model, usage, self._pricing)

    def add_step(self, state: "StepState") -> None:
        if state.usage is not None:
            self.add_usage(state.step_id, state.usage, state.model)

    @classmethod
    def replay(
        cls, run: "Run", pricing: Optional[Mapping[str, "ModelPrice"]] = None
    ) -> "TokenTracker":
        """Rebuild a tracker from the usage recorded on step states.

        Completed steps count, and so does a step paused for review: its
        tokens were spent before the pause.
        """
        from .contracts import StepStatus

        tracker = cls(pricing)
        for state in run.step_states.values():
            if state.status in (StepStatus.COMPLETED, StepStatus.WAITING_FOR_REVIEW):
                tracker.add_step(state)
        return tracker

    def summary(self) -> TokenUsageSummary:
        return TokenUsageSummary(
            total=self._total.model_copy(),
            by_step={k: v.model_copy() for k, v in self._by_step.items()},
            estimated_cost_usd=self._cost,
        )


def reported_model(output: Optional[Mapping[str, Any]]) -> Optional[str]:
    model = output.get("model") if output else None
    return model if isinstance(model, str) else None
