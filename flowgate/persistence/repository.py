"""Repository abstraction for workflow, run and trace persistence."""

from __future__ import annotations

from typing import Optional, Protocol

from ..contracts import Run, RunStatus, TraceEvent, Workflow


class WorkflowRepository(Protocol):
    """Protocol for persistence backends.

    Implementations return independent copies: mutating a returned object
    never changes what is stored until it is saved again.
    """

    async def connect(self) -> None:
        """Open connections and create the schema if needed."""

    async def close(self) -> None:
        """Release any held connections."""

    async def get_workflow(self, workflow_id: str) -> Workflow | None:
        """Retrieve a workflow by id."""

    async def save_workflow(self, workflow: Workflow) -> None:
        """Insert or replace a workflow."""

    async def delete_workflow(self, workflow_id: str) -> bool:
        """Delete a workflow, returning whether it existed."""

    async def list_workflows(self) -> list[Workflow]:
        """Return all persisted workflows."""

    async def get_run(self, run_id: str) -> Run | None:
        """Retrieve a run by id."""

    async def save_run(self, run: Run) -> None:
        """Insert or replace a run."""

    async def delete_run(self, run_id: str) -> bool:
        """Delete a run and its trace, returning whether it existed."""

    async def list_runs(
        self, workflow_id: Optional[str] = None, status: Optional[RunStatus] = None
    ) -> list[Run]:
        """Return runs, newest first, optionally filtered."""

    async def append_trace(self, event: TraceEvent) -> None:
        """Append an event to its run's trace."""

    async def list_trace(self, run_id: str) -> list[TraceEvent]:
        """Return a run's trace events in emission order."""
