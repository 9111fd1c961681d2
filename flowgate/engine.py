"""Run driver: ordering, step state machine, branch routing and pause/resume."""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Dict, List, Optional, Union

from .config import FlowgateConfig
from .constants import INTERRUPTED_RUN_ERROR
from .contracts import (
    Edge,
    HumanDecision,
    HumanGateConfig,
    JsonObject,
    Run,
    RunStatus,
    Step,
    StepStatus,
    StepType,
    TraceEvent,
    TraceEventType,
    Workflow,
    utcnow,
)
from .errors import (
    InvalidRunStateError,
    RunNotFoundError,
    StepExecutionError,
    WorkflowNotFoundError,
)
from .graph import topological_sort
from .persistence import WorkflowRepository
from .steps import ExecutorRegistry, StepContext, StepPause, default_executors
from .templating import InterpolationContext, interpolate_value
from .tracing import TraceRecorder
from .usage import TokenTracker, TokenUsage, estimate_cost, reported_model

logger = logging.getLogger(__name__)


def build_interpolation_context(run: Run) -> InterpolationContext:
    """Context of the run input plus every completed step's output.

    Keys of an object-valued ``result`` are also reachable directly on the
    step, unless the step output already has a key of that name.
    """
    steps: Dict[str, Dict[str, Any]] = {}
    for step_id, output in run.completed_outputs().items():
        flattened = dict(output)
        result = output.get("result")
        if isinstance(result, dict):
            for key, value in result.items():
                flattened.setdefault(key, value)
        steps[step_id] = flattened
    return InterpolationContext(input=dict(run.input), steps=steps)


def edge_satisfied(edge: Edge, workflow: Workflow, run: Run) -> bool:
    """Whether ``edge`` lets its target run, given the source's outcome."""
    source = workflow.get_step(edge.source)
    state = run.step_states.get(edge.source)
    if source is None or state is None or state.status != StepStatus.COMPLETED:
        return False
    output = state.output or {}
    label = edge.label

    if source.type == StepType.CONDITION:
        branch = output.get("branch")
        if branch is None:
            return False
        return label is None or branch == label

    if source.type == StepType.JUDGE:
        recommendation = output.get("recommendation")
        if label is None or label == "pass":
            return recommendation == "pass"
        if label == "flag":
            return recommendation != "pass"
        return recommendation == label

    if source.type == StepType.HUMAN_GATE:
        decision = output.get("decision")
        if label is None or label == "approve":
            return decision in ("approve", "edit")
        return decision == label

    return True


def should_run(step: Step, workflow: Workflow, run: Run) -> bool:
    incoming = workflow.incoming_edges(step.id)
    if not incoming:
        return True
    return any(edge_satisfied(edge, workflow, run) for edge in incoming)


class WorkflowEngine:
    """Starts, drives and resumes workflow runs.

    Each run is advanced by one sequential driver task; distinct runs (a parent
    and its children included) are independent tasks on the running loop.
    """

    def __init__(
        self,
        repository: WorkflowRepository,
        executors: Optional[ExecutorRegistry] = None,
        config: Optional[FlowgateConfig] = None,
    ) -> None:
        self.repository = repository
        self.config = config or FlowgateConfig()
        self.executors = executors if executors is not None else default_executors(self.config)
        self._trace = TraceRecorder(repository)
        self._drivers: Dict[str, asyncio.Task] = {}

    # ------------------------------------------------------------------
    # Public API
    async def start_run(
        self,
        workflow_id: str,
        input: Optional[JsonObject] = None,
        parent_run_id: Optional[str] = None,
        parent_step_id: Optional[str] = None,
    ) -> Run:
        """Create a run for ``workflow_id`` and launch its driver in the background."""
        workflow = await self.repository.get_workflow(workflow_id)
        if workflow is None:
            raise WorkflowNotFoundError(workflow_id)

        run = Run.for_workflow(
            workflow, input, parent_run_id=parent_run_id, parent_step_id=parent_step_id
        )
        await self.repository.save_run(run)
        logger.info(f"Started run {run.id} of workflow {workflow.id} ({workflow.name})")
        await self._trace.emit(
            run.id,
            TraceEventType.RUN_STARTED,
            {
                "workflow_id": workflow.id,
                "workflow_name": workflow.name,
                "input": run.input,
                "parent_run_id": parent_run_id,
                "parent_step_id": parent_step_id,
            },
        )
        await self._launch(run.id)
        return run

    async def resume_run(
        self, run_id: str, decision: Union[HumanDecision, Dict[str, Any]]
    ) -> Run:
        """Apply a reviewer's decision to a paused run.

        Raises:
            RunNotFoundError: unknown ``run_id``.
            InvalidRunStateError: the run is not waiting for review.
        """
        if not isinstance(decision, HumanDecision):
            decision = HumanDecision.model_validate(decision)

        run = await self.repository.get_run(run_id)
        if run is None:
            raise RunNotFoundError(run_id)
        if run.status != RunStatus.WAITING_FOR_REVIEW:
            raise InvalidRunStateError(
                f"Run {run_id} is not waiting for review (status: {run.status.value})"
            )
        workflow = await self.repository.get_workflow(run.workflow_id)
        if workflow is None:
            raise WorkflowNotFoundError(run.workflow_id)

        paused_id = self._paused_step_id(run)
        if paused_id is None:
            raise InvalidRunStateError(f"Run {run_id} has no step waiting for review")
        step = workflow.get_step(paused_id)
        if step is None:
            raise InvalidRunStateError(
                f"Run {run_id} is paused at step {paused_id}, which is not in the workflow"
            )

        await self._trace.emit(
            run.id,
            TraceEventType.HITL_RESUMED,
            {"decision": decision.model_dump(exclude_none=True)},
            step,
        )
        logger.info(f"Resuming run {run.id} at step {paused_id} with {decision.action}")

        if decision.action == "reject":
            message = f"Rejected: {decision.comment or 'no reason provided'}"
            run.update_step(
                paused_id, status=StepStatus.FAILED, error=message, completed_at=utcnow()
            )
            run.error = message
            run.transition(RunStatus.FAILED)
            await self.repository.save_run(run)
            await self._trace.emit(run.id, TraceEventType.RUN_FAILED, {"error": message})
            return run

        if step.type == StepType.SUB_WORKFLOW:
            # Keep the child run id so the step re-checks the same child.
            run.update_step(paused_id, status=StepStatus.PENDING)
            run.transition(RunStatus.RUNNING)
            await self.repository.save_run(run)
            await self._launch(run.id, start_at=paused_id)
            return run

        state = run.step_states[paused_id]
        output: Dict[str, Any] = {
            **(state.output or {}),
            "decision": decision.action,
            "comment": decision.comment,
        }
        if decision.action == "edit" and decision.edited_output is not None:
            output["edited_output"] = decision.edited_output
            target = self._edit_target(step, decision)
            if target == paused_id:
                output["result"] = decision.edited_output
            elif target and target in run.step_states:
                run.update_step(target, output=dict(decision.edited_output))

        run.update_step(
            paused_id, status=StepStatus.COMPLETED, output=output, completed_at=utcnow()
        )
        run.transition(RunStatus.RUNNING)
        await self.repository.save_run(run)
        await self._launch(run.id, start_after=paused_id)
        return run

    async def reconcile_stale_runs(self) -> List[Run]:
        """Fail every run persisted as running; no driver survives a restart."""
        stale = [
            run
            for run in await self.repository.list_runs(status=RunStatus.RUNNING)
            if run.id not in self._drivers
        ]
        for run in stale:
            run.error = INTERRUPTED_RUN_ERROR
            run.transition(RunStatus.FAILED)
            await self.repository.save_run(run)
            await self._trace.emit(run.id, TraceEventType.RUN_FAILED, {"error": run.error})
        if stale:
            logger.info(f"Reconciled {len(stale)} stale runs")
        return stale

    async def get_run(self, run_id: str) -> Run:
        run = await self.repository.get_run(run_id)
        if run is None:
            raise RunNotFoundError(run_id)
        return run

    async def get_trace(self, run_id: str) -> List[TraceEvent]:
        return await self.repository.list_trace(run_id)

    async def wait_for_run(self, run_id: str) -> Run:
        """Wait for the run's current driver, then return the persisted run."""
        task = self._drivers.get(run_id)
        if task is not None:
            await task
        return await self.get_run(run_id)

    async def drain(self) -> None:
        """Wait until no driver task is in flight, including ones started meanwhile."""
        while True:
            pending = [task for task in self._drivers.values() if not task.done()]
            if not pending:
                return
            await asyncio.gather(*pending)

    # ------------------------------------------------------------------
    # Driver
    async def _launch(
        self, run_id: str, start_after: Optional[str] = None, start_at: Optional[str] = None
    ) -> None:
        previous = self._drivers.get(run_id)
        if previous is not None and not previous.done():
            await previous

        task = asyncio.create_task(
            self._drive(run_id, start_after=start_after, start_at=start_at),
            name=f"flowgate-run-{run_id}",
        )
        self._drivers[run_id] = task

        def _forget(done: asyncio.Task) -> None:
            if self._drivers.get(run_id) is done:
                del self._drivers[run_id]

        task.add_done_callback(_forget)

    async def _drive(
        self, run_id: str, start_after: Optional[str] = None, start_at: Optional[str] = None
    ) -> None:
        run: Optional[Run] = None
        try:
            run = await self.repository.get_run(run_id)
            if run is None:
                raise RunNotFoundError(run_id)
            workflow = await self.repository.get_workflow(run.workflow_id)
            if workflow is None:
                raise WorkflowNotFoundError(run.workflow_id)

            if run.status == RunStatus.PENDING:
                run.transition(RunStatus.RUNNING)
                await self.repository.save_run(run)

            ordered = topological_sort(workflow.steps, workflow.edges)
            tracker = TokenTracker.replay(run, self.config.pricing)

            order = [step.id for step in ordered]
            start = 0
            if start_at in order:
                start = order.index(start_at)
            elif start_after in order:
                start = order.index(start_after) + 1

            for step in ordered[start:]:
                if not await self._process_step(run, workflow, step, tracker):
                    return

            run.current_step_id = None
            run.usage = tracker.summary()
            run.transition(RunStatus.COMPLETED)
            await self.repository.save_run(run)
            duration_ms = int((utcnow() - run.created_at).total_seconds() * 1000)
            logger.info(f"Run {run.id} completed in {duration_ms}ms")
            await self._trace.emit(
                run.id,
                TraceEventType.RUN_COMPLETED,
                {"duration_ms": duration_ms, "usage": run.usage.model_dump()},
            )
        except Exception as e:
            logger.exception(f"Unexpected engine error in run {run_id}")
            await self._fail_unexpectedly(run_id, run, e)

    async def _process_step(
        self, run: Run, workflow: Workflow, step: Step, tracker: TokenTracker
    ) -> bool:
        """Advance one step; returns ``False`` when the driver must stop."""
        state = run.step_states.get(step.id) or run.update_step(step.id)
        if state.status in (StepStatus.COMPLETED, StepStatus.SKIPPED):
            return True

        if not should_run(step, workflow, run):
            run.update_step(step.id, status=StepStatus.SKIPPED)
            await self.repository.save_run(run)
            logger.debug(f"Run {run.id}: skipping step {step.id}")
            await self._trace.emit(
                run.id,
                TraceEventType.STEP_SKIPPED,
                {"reason": "No satisfied incoming edge"},
                step,
            )
            return True

        interpolation = build_interpolation_context(run)
        config = interpolate_value(step.config_dict(), interpolation)

        run.update_step(step.id, status=StepStatus.RUNNING, started_at=utcnow(), error=None)
        run.current_step_id = step.id
        await self.repository.save_run(run)
        logger.info(f"Run {run.id}: running step {step.id} ({step.type.value})")
        await self._trace.emit(
            run.id, TraceEventType.STEP_STARTED, {"type": step.type.value}, step
        )

        async def emit(type: TraceEventType, data: Dict[str, Any]) -> None:
            await self._trace.emit(run.id, type, data, step)

        context = StepContext(
            run=run,
            workflow=workflow,
            step=step,
            step_state=state,
            interpolation=interpolation,
            emit=emit,
            engine=self,
        )

        try:
            executor = self.executors.get(step.type)
            if executor is None:
                raise StepExecutionError(f"No executor registered for step type {step.type.value}")
            outcome = await executor.execute(config, context)
        except Exception as e:
            await self._fail_step(run, step, e, tracker)
            return False

        if isinstance(outcome, StepPause):
            paused = run.update_step(
                step.id,
                status=StepStatus.WAITING_FOR_REVIEW,
                output=outcome.output,
                usage=TokenUsage.from_output(outcome.output),
                model=reported_model(outcome.output),
            )
            tracker.add_step(paused)
            run.usage = tracker.summary()
            run.transition(RunStatus.WAITING_FOR_REVIEW)
            await self.repository.save_run(run)
            logger.info(f"Run {run.id} paused for review at step {step.id}")
            await self._trace.emit(
                run.id, TraceEventType.HITL_PAUSED, {"output": outcome.output}, step
            )
            return False

        completed = run.update_step(
            step.id,
            status=StepStatus.COMPLETED,
            output=outcome,
            completed_at=utcnow(),
            usage=TokenUsage.from_output(outcome),
            model=reported_model(outcome),
        )
        tracker.add_step(completed)
        run.usage = tracker.summary()
        await self.repository.save_run(run)
        await self._trace.emit(
            run.id, TraceEventType.STEP_COMPLETED, {"output": outcome}, step
        )
        await self._emit_detail(run, step, outcome)
        return True

    async def _emit_detail(self, run: Run, step: Step, output: Dict[str, Any]) -> None:
        if step.type == StepType.MODEL_CALL:
            usage = TokenUsage.from_output(output) or TokenUsage()
            model = output.get("model") or self.config.default_model
            await self._trace.emit(
                run.id,
                TraceEventType.LLM_CALL,
                {
                    "model": model,
                    "usage": usage.model_dump(),
                    "estimated_cost_usd": estimate_cost(model, usage, self.config.pricing),
                },
                step,
            )
        elif step.type == StepType.JUDGE:
            await self._trace.emit(
                run.id,
                TraceEventType.JUDGE_RESULT,
                {
                    key: output.get(key)
                    for key in (
                        "recommendation",
                        "overall_confidence",
                        "criteria_scores",
                        "issues",
                        "reasoning",
                        "model",
                    )
                },
                step,
            )
        elif step.type == StepType.CONNECTOR:
            await self._trace.emit(
                run.id,
                TraceEventType.CONNECTOR_FIRED,
                {
                    "connector_type": output.get("connector_type"),
                    "action": output.get("action"),
                    "success": output.get("success", True),
                },
                step,
            )

    async def _fail_step(
        self, run: Run, step: Step, error: Exception, tracker: TokenTracker
    ) -> None:
        message = f'Step "{step.name}" failed: {error}'
        logger.error(f"Run {run.id}: {message}")
        run.update_step(
            step.id, status=StepStatus.FAILED, error=str(error), completed_at=utcnow()
        )
        run.error = message
        run.usage = tracker.summary()
        run.transition(RunStatus.FAILED)
        await self.repository.save_run(run)
        await self._trace.emit(run.id, TraceEventType.STEP_FAILED, {"error": str(error)}, step)
        await self._trace.emit(run.id, TraceEventType.RUN_FAILED, {"error": message})

    async def _fail_unexpectedly(
        self, run_id: str, run: Optional[Run], error: Exception
    ) -> None:
        message = f"Unexpected engine error: {error}"
        try:
            run = run or await self.repository.get_run(run_id)
            if run is None or run.status in (RunStatus.COMPLETED, RunStatus.FAILED):
                return
            run.error = message
            run.transition(RunStatus.FAILED)
            await self.repository.save_run(run)
        except Exception:
            logger.exception(f"Could not record failure of run {run_id}")
            return
        await self._trace.emit(run_id, TraceEventType.RUN_FAILED, {"error": message})

    # ------------------------------------------------------------------
    # Resume helpers
    @staticmethod
    def _paused_step_id(run: Run) -> Optional[str]:
        current = run.step_states.get(run.current_step_id or "")
        if current is not None and current.status == StepStatus.WAITING_FOR_REVIEW:
            return current.step_id
        for state in run.step_states.values():
            if state.status == StepStatus.WAITING_FOR_REVIEW:
                return state.step_id
        return None

    @staticmethod
    def _edit_target(step: Step, decision: HumanDecision) -> Optional[str]:
        if decision.target_step_id:
            return decision.target_step_id
        if isinstance(step.config, HumanGateConfig):
            if step.config.review_target_step_id:
                return step.config.review_target_step_id
            if step.config.show_steps:
                return step.config.show_steps[0]
        if step.type == StepType.AGENT:
            return step.id
        return None
