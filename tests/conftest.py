from typing import Any, Dict

import pytest

from flowgate.config import FlowgateConfig
from flowgate.connectors import BaseConnector, ConnectorRegistry, ConnectorResult
from flowgate.contracts import StepType
from flowgate.engine import WorkflowEngine
from flowgate.persistence import InMemoryWorkflowRepository
from flowgate.steps import BaseStepExecutor, StepContext, default_executors
from flowgate.steps.judge import recommend


class RecordingConnector(BaseConnector):
    """Connector that remembers every call instead of talking to a service."""

    connector_type = "recorder"
    actions = ("send", "fail")

    def __init__(self) -> None:
        self.calls = []

    async def execute(self, action: str, params: Dict[str, Any]) -> ConnectorResult:
        self.calls.append((action, params))
        if action == "fail":
            return ConnectorResult(success=False, error="delivery refused")
        if action != "send":
            return self.unsupported(action)
        return ConnectorResult(success=True, data={"delivered": True})


class ScriptedModelCall(BaseStepExecutor):
    """Echoes the user prompt and reports a fixed token usage per step."""

    step_type = StepType.MODEL_CALL

    def __init__(self, usage: Dict[str, Dict[str, int]] | None = None) -> None:
        self.usage = usage or {}
        self.calls = []

    async def execute(self, config: Dict[str, Any], context: StepContext) -> Dict[str, Any]:
        self.calls.append(context.step.id)
        usage = self.usage.get(context.step.id, {"prompt_tokens": 10, "completion_tokens": 5})
        return {
            "result": f"echo: {config['user_prompt']}",
            "model": "gpt-4o",
            "usage": usage,
        }


class ScriptedJudge(BaseStepExecutor):
    step_type = StepType.JUDGE

    def __init__(self, confidence: float = 0.9) -> None:
        self.confidence = confidence

    async def execute(self, config: Dict[str, Any], context: StepContext) -> Dict[str, Any]:
        return {
            "criteria_scores": {},
            "overall_confidence": self.confidence,
            "issues": [],
            "recommendation": recommend(self.confidence, config["threshold"]),
            "reasoning": "scripted",
        }


@pytest.fixture
def repository():
    return InMemoryWorkflowRepository()


@pytest.fixture
def connector():
    return RecordingConnector()


@pytest.fixture
def fast_config():
    return FlowgateConfig(subworkflow_poll_interval=0.01, subworkflow_timeout=5)


@pytest.fixture
def model_call():
    return ScriptedModelCall()


@pytest.fixture
def judge():
    return ScriptedJudge()


@pytest.fixture
def executors(fast_config, connector, model_call, judge):
    registry = default_executors(fast_config, connectors=ConnectorRegistry([connector]))
    registry[StepType.MODEL_CALL] = model_call
    registry[StepType.JUDGE] = judge
    return registry


@pytest.fixture
def engine(repository, executors, fast_config):
    return WorkflowEngine(repository, executors=executors, config=fast_config)
