"""Step executors keyed by step type."""

from __future__ import annotations

from typing import Dict, Optional

from pydantic_ai.models import Model

from ..config import FlowgateConfig
from ..connectors import ConnectorRegistry, default_connectors
from ..contracts import StepType
from .agent import AgentExecutor
from .base import BaseStepExecutor, StepContext, StepOutcome, StepPause
from .condition import ConditionExecutor
from .connector import ConnectorExecutor
from .human_gate import HumanGateExecutor
from .judge import JudgeExecutor
from .llm import ModelResolver
from .model_call import ModelCallExecutor
from .sub_workflow import SubWorkflowExecutor
from .trigger import TriggerExecutor

ExecutorRegistry = Dict[StepType, BaseStepExecutor]


def default_executors(
    config: Optional[FlowgateConfig] = None,
    model: Optional[Model] = None,
    connectors: Optional[ConnectorRegistry] = None,
) -> ExecutorRegistry:
    """Build the executor for every step type.

    Args:
        config: Settings for model resolution and sub-workflow polling.
        model: A pydantic-ai model used by every LLM-backed step instead of the
            configured one, e.g. ``TestModel()`` in tests.
        connectors: Connector registry; defaults to the built-in connectors.
    """
    config = config or FlowgateConfig()
    resolver = ModelResolver(config, model)
    connectors = connectors if connectors is not None else default_connectors()
    executors = [
        TriggerExecutor(),
        ModelCallExecutor(resolver),
        JudgeExecutor(resolver),
        HumanGateExecutor(),
        ConnectorExecutor(connectors),
        ConditionExecutor(),
        AgentExecutor(resolver, connectors),
        SubWorkflowExecutor(config),
    ]
    return {executor.step_type: executor for executor in executors}


__all__ = [
    "BaseStepExecutor",
    "ExecutorRegistry",
    "StepContext",
    "StepOutcome",
    "StepPause",
    "default_executors",
]
