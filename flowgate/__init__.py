"""flowgate: human-in-the-loop workflow execution for model-driven automation."""

from .config import FlowgateConfig, load_config
from .contracts import (
    Edge,
    HumanDecision,
    Run,
    RunStatus,
    Step,
    StepStatus,
    StepType,
    TraceEvent,
    TraceEventType,
    Workflow,
)
from .engine import WorkflowEngine
from .graph import topological_sort, validate_workflow
from .patching import apply_operations
from .persistence import get_repository
from .steps import default_executors

__version__ = "0.1.0"
__all__ = [
    "Edge",
    "FlowgateConfig",
    "HumanDecision",
    "Run",
    "RunStatus",
    "Step",
    "StepStatus",
    "StepType",
    "TraceEvent",
    "TraceEventType",
    "Workflow",
    "WorkflowEngine",
    "apply_operations",
    "default_executors",
    "get_repository",
    "load_config",
    "topological_sort",
    "validate_workflow",
]
