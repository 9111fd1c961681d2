"""Exception hierarchy for flowgate."""

from __future__ import annotations


class FlowgateError(Exception):
    """Base class for all flowgate errors."""


class WorkflowNotFoundError(FlowgateError):
    def __init__(self, workflow_id: str) -> None:
        super().__init__(f"Workflow not found: {workflow_id}")
        self.workflow_id = workflow_id


class RunNotFoundError(FlowgateError):
    def __init__(self, run_id: str) -> None:
        super().__init__(f"Run not found: {run_id}")
        self.run_id = run_id


class InvalidRunStateError(FlowgateError):
    """Raised when an operation is attempted on a run in the wrong status."""


class InvalidTransitionError(FlowgateError):
    """Raised when a run status change would move the run backwards."""


class GraphCycleError(FlowgateError):
    """Raised when a workflow graph cannot be ordered for execution."""


class StepExecutionError(FlowgateError):
    """Terminal failure raised by a step executor."""


class SubWorkflowTimeoutError(StepExecutionError):
    """Raised when a nested run does not settle within the poll timeout."""
