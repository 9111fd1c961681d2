"""Best-effort trace emission for run lifecycle events."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any, Dict, Optional

from .contracts import Step, TraceEvent, TraceEventType

if TYPE_CHECKING:
    from .persistence import WorkflowRepository

logger = logging.getLogger(__name__)


class TraceRecorder:
    """Append trace events to the repository's per-run log.

    Run state is authoritative: a failed trace write is logged and dropped so
    it never interrupts the driver that emitted it.
    """

    def __init__(self, repository: "WorkflowRepository") -> None:
        self._repository = repository

    async def emit(
        self,
        run_id: str,
        type: TraceEventType,
        data: Optional[Dict[str, Any]] = None,
        step: Optional[Step] = None,
    ) -> Optional[TraceEvent]:
        event = TraceEvent(
            run_id=run_id,
            step_id=step.id if step else None,
            step_name=step.name if step else None,
            type=type,
            data=data or {},
        )
        logger.debug(f"trace run={run_id} step={event.step_id} type={type.value}")
        try:
            await self._repository.append_trace(event)
        except Exception as e:
            logger.warning(f"Failed to write trace event {type.value} for run {run_id}: {e}")
            return None
        return event
