"""Executor interface shared by every step type."""

from __future__ import annotations

import abc
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Awaitable, Callable, Dict, Optional, Union

from pydantic import BaseModel, Field

from ..contracts import Run, Step, StepState, StepType, TraceEventType, Workflow
from ..templating import InterpolationContext

if TYPE_CHECKING:
    from ..engine import WorkflowEngine

EmitFn = Callable[[TraceEventType, Dict[str, Any]], Awaitable[Any]]


class StepPause(BaseModel):
    """Returned by an executor that needs a human (or a child run) before finishing."""

    output: Dict[str, Any] = Field(default_factory=dict)


StepOutcome = Union[Dict[str, Any], StepPause]


@dataclass
class StepContext:
    """Everything an executor may look at while running one step."""

    run: Run
    workflow: Workflow
    step: Step
    step_state: StepState
    interpolation: InterpolationContext
    emit: EmitFn
    engine: Optional["WorkflowEngine"] = None

    def step_output(self, step_id: str) -> Optional[Dict[str, Any]]:
        return self.interpolation.steps.get(step_id)


class BaseStepExecutor(metaclass=abc.ABCMeta):
    step_type: StepType

    @abc.abstractmethod
    async def execute(self, config: Dict[str, Any], context: StepContext) -> StepOutcome:
        """Run the step with its interpolated ``config``.

        Returns the step output, or a :class:`StepPause` to suspend the run.
        Raises on terminal failure; the engine turns the error into a failed run.
        """
        raise NotImplementedError
