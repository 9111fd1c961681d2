"""Tests for token usage accounting and cost estimation."""

import pytest

from flowgate.config import ModelPrice
from flowgate.contracts import Run, StepState, StepStatus
from flowgate.usage import (
    DEFAULT_PRICING,
    TokenTracker,
    TokenUsage,
    estimate_cost,
    reported_model,
)


def test_total_defaults_to_prompt_plus_completion():
    assert TokenUsage(prompt_tokens=7, completion_tokens=3).total_tokens == 10
    assert TokenUsage(prompt_tokens=7, completion_tokens=3, total_tokens=12).total_tokens == 12


def test_from_output_reads_reported_usage():
    usage = TokenUsage.from_output({"usage": {"prompt_tokens": 4, "completion_tokens": 1}})
    assert usage == TokenUsage(prompt_tokens=4, completion_tokens=1, total_tokens=5)
    assert TokenUsage.from_output({"result": "x"}) is None
    assert TokenUsage.from_output(None) is None


def test_estimate_cost_exact_dated_prefixed_and_default():
    usage = TokenUsage(prompt_tokens=1000, completion_tokens=1000)
    assert estimate_cost("gpt-4o", usage) == pytest.approx(0.0125)
    assert estimate_cost("gpt-4o-2024-08-06", usage) == pytest.approx(0.0125)
    assert estimate_cost("openai:gpt-4o-mini", usage) == pytest.approx(0.00075)
    assert estimate_cost("mystery-model", usage) == pytest.approx(
        DEFAULT_PRICING["input"] + DEFAULT_PRICING["output"]
    )


def test_estimate_cost_honours_pricing_overrides():
    usage = TokenUsage(prompt_tokens=2000, completion_tokens=0)
    pricing = {"house-model": ModelPrice(input=0.5, output=1.0)}
    assert estimate_cost("house-model", usage, pricing) == pytest.approx(1.0)


def test_tracker_accumulates_per_step_and_total():
    tracker = TokenTracker()
    tracker.add_usage("a", TokenUsage(prompt_tokens=10, completion_tokens=5), "gpt-4o")
    tracker.add_usage("b", TokenUsage(prompt_tokens=20, completion_tokens=8), "gpt-4o")
    summary = tracker.summary()
    assert summary.total == TokenUsage(prompt_tokens=30, completion_tokens=13, total_tokens=43)
    assert summary.by_step["a"].total_tokens == 15
    assert summary.by_step["b"].total_tokens == 28
    assert summary.estimated_cost_usd == pytest.approx(30 / 1000 * 0.0025 + 13 / 1000 * 0.01)


def test_usage_without_model_counts_tokens_but_not_cost():
    tracker = TokenTracker()
    tracker.add_usage("a", TokenUsage(prompt_tokens=10, completion_tokens=5))
    assert tracker.summary().total.total_tokens == 15
    assert tracker.summary().estimated_cost_usd == 0.0


def test_replay_counts_completed_and_paused_steps():
    run = Run(
        workflow_id="wf",
        workflow_name="wf",
        step_states={
            "a": StepState(
                step_id="a",
                status=StepStatus.COMPLETED,
                output={"result": "edited by a reviewer"},
                usage=TokenUsage(prompt_tokens=10, completion_tokens=5),
                model="gpt-4o",
            ),
            "b": StepState(
                step_id="b",
                status=StepStatus.WAITING_FOR_REVIEW,
                usage=TokenUsage(prompt_tokens=20, completion_tokens=8),
            ),
            "c": StepState(
                step_id="c",
                status=StepStatus.PENDING,
                usage=TokenUsage(prompt_tokens=99, completion_tokens=99),
            ),
            "d": StepState(step_id="d", status=StepStatus.COMPLETED, output={"decision": "approve"}),
        },
    )
    summary = TokenTracker.replay(run).summary()
    assert summary.total.total_tokens == 43
    assert set(summary.by_step) == {"a", "b"}
    assert summary.estimated_cost_usd == pytest.approx(10 / 1000 * 0.0025 + 5 / 1000 * 0.01)


def test_reported_model_ignores_non_string_values():
    assert reported_model({"model": "gpt-4o"}) == "gpt-4o"
    assert reported_model({"model": 3}) is None
    assert reported_model(None) is None
