"""In-memory implementation of the workflow repository."""

from __future__ import annotations

from collections import defaultdict
from typing import Dict, List, Optional

from ..contracts import Run, RunStatus, TraceEvent, Workflow
from .repository import WorkflowRepository


class InMemoryWorkflowRepository(WorkflowRepository):
    """Store workflow state in local memory.

    Useful for tests or when no database is configured. Data is not
    persisted across process restarts.
    """

    def __init__(self) -> None:
        self._workflows: Dict[str, Workflow] = {}
        self._runs: Dict[str, Run] = {}
        self._traces: Dict[str, List[TraceEvent]] = defaultdict(list)

    async def connect(self) -> None:
        pass

    async def close(self) -> None:
        pass

    # ------------------------------------------------------------------
    async def get_workflow(self, workflow_id: str) -> Workflow | None:
        workflow = self._workflows.get(workflow_id)
        return workflow.model_copy(deep=True) if workflow else None

    async def save_workflow(self, workflow: Workflow) -> None:
        self._workflows[workflow.id] = workflow.model_copy(deep=True)

    async def delete_workflow(self, workflow_id: str) -> bool:
        return self._workflows.pop(workflow_id, None) is not None

    async def list_workflows(self) -> list[Workflow]:
        workflows = sorted(self._workflows.values(), key=lambda wf: wf.name)
        return [wf.model_copy(deep=True) for wf in workflows]

    # ------------------------------------------------------------------
    async def get_run(self, run_id: str) -> Run | None:
        run = self._runs.get(run_id)
        return run.model_copy(deep=True) if run else None

    async def save_run(self, run: Run) -> None:
        self._runs[run.id] = run.model_copy(deep=True)

    async def delete_run(self, run_id: str) -> bool:
        self._traces.pop(run_id, None)
        return self._runs.pop(run_id, None) is not None

    async def list_runs(
        self, workflow_id: Optional[str] = None, status: Optional[RunStatus] = None
    ) -> list[Run]:
        runs = [
            run.model_copy(deep=True)
            for run in self._runs.values()
            if (workflow_id is None or run.workflow_id == workflow_id)
            and (status is None or run.status == status)
        ]
        return sorted(runs, key=lambda r: r.created_at, reverse=True)

    # ------------------------------------------------------------------
    async def append_trace(self, event: TraceEvent) -> None:
        self._traces[event.run_id].append(event)

    async def list_trace(self, run_id: str) -> list[TraceEvent]:
        return list(self._traces.get(run_id, []))
