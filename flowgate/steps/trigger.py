from __future__ import annotations

from typing import Any, Dict

from ..contracts import StepType
from .base import BaseStepExecutor, StepContext


class TriggerExecutor(BaseStepExecutor):
    """Entry point of a workflow: its output is the run input."""

    step_type = StepType.TRIGGER

    async def execute(self, config: Dict[str, Any], context: StepContext) -> Dict[str, Any]:
        return dict(context.run.input)
