"""Nested workflow execution."""

from __future__ import annotations

import asyncio
import json
import logging
from typing import Any, Dict

from ..config import FlowgateConfig
from ..contracts import (
    Run,
    RunStatus,
    StepStatus,
    StepType,
    SubWorkflowConfig,
    TraceEventType,
    Workflow,
)
from ..errors import StepExecutionError, SubWorkflowTimeoutError
from .base import BaseStepExecutor, StepContext, StepOutcome, StepPause

logger = logging.getLogger(__name__)


def _parse_mapped_value(value: str) -> Any:
    try:
        return json.loads(value)
    except (json.JSONDecodeError, TypeError):
        return value


def child_output(child: Run, workflow: Workflow) -> Dict[str, Any]:
    """The output a finished child run hands back to its parent step."""
    block = workflow.block_config
    output: Dict[str, Any] = {}
    if block is not None and block.output_step_id:
        state = child.step_states.get(block.output_step_id)
        if state is not None and state.output:
            output = dict(state.output)
    else:
        completed = [
            state.output
            for state in child.step_states.values()
            if state.status == StepStatus.COMPLETED and state.output
        ]
        if completed:
            output = dict(completed[-1])

    if block is not None and block.output_fields:
        output = {k: output[k] for k in block.output_fields if k in output}
    return output


class SubWorkflowExecutor(BaseStepExecutor):
    """Runs another workflow as a child run and waits for it to settle."""

    step_type = StepType.SUB_WORKFLOW

    def __init__(self, config: FlowgateConfig) -> None:
        self._poll_interval = config.subworkflow_poll_interval
        self._timeout = config.subworkflow_timeout

    async def execute(self, config: Dict[str, Any], context: StepContext) -> StepOutcome:
        cfg = SubWorkflowConfig.model_validate(config)
        if not cfg.workflow_id:
            raise StepExecutionError("Sub-workflow step: workflow_id is required")
        engine = context.engine
        if engine is None:
            raise StepExecutionError("Sub-workflow step requires an engine")

        workflow = await engine.repository.get_workflow(cfg.workflow_id)
        if workflow is None:
            raise StepExecutionError(f"Sub-workflow step: workflow not found: {cfg.workflow_id}")

        previous = context.step_state.output or {}
        child_run_id = previous.get("child_run_id")
        if not child_run_id:
            child_input = {
                name: _parse_mapped_value(value) for name, value in cfg.input_mapping.items()
            }
            child = await engine.start_run(
                cfg.workflow_id,
                child_input,
                parent_run_id=context.run.id,
                parent_step_id=context.step.id,
            )
            child_run_id = child.id
            await context.emit(
                TraceEventType.SUB_WORKFLOW_STARTED,
                {
                    "workflow_id": cfg.workflow_id,
                    "workflow_name": workflow.name,
                    "child_run_id": child_run_id,
                },
            )
        else:
            logger.info(f"Re-checking child run {child_run_id} of run {context.run.id}")

        loop = asyncio.get_running_loop()
        deadline = loop.time() + self._timeout
        while loop.time() < deadline:
            await asyncio.sleep(self._poll_interval)
            child = await engine.repository.get_run(child_run_id)
            if child is None:
                raise StepExecutionError(
                    f"Sub-workflow step: child run {child_run_id} disappeared"
                )

            if child.status == RunStatus.COMPLETED:
                await context.emit(
                    TraceEventType.SUB_WORKFLOW_COMPLETED,
                    {
                        "workflow_id": cfg.workflow_id,
                        "workflow_name": workflow.name,
                        "child_run_id": child_run_id,
                    },
                )
                return {"child_run_id": child_run_id, **child_output(child, workflow)}
            if child.status == RunStatus.FAILED:
                raise StepExecutionError(
                    f"Sub-workflow failed: {child.error or 'Unknown error'}"
                )
            if child.status == RunStatus.WAITING_FOR_REVIEW:
                return StepPause(
                    output={
                        "child_run_id": child_run_id,
                        "reason": "Child workflow waiting for review",
                    }
                )

        raise SubWorkflowTimeoutError(
            f"Sub-workflow timed out after {self._timeout:g}s (child run {child_run_id})"
        )
