"""Audited, validated mutation of a workflow graph from a batch of operations.

Each operation is applied to the working copy only if it keeps the graph
sound; otherwise it is recorded as rejected and the copy is left as it was.
The input workflow is never mutated.
"""

from __future__ import annotations

import logging
from typing import Annotated, Any, Dict, List, Literal, Optional, Sequence, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationError

from .contracts import (
    STEP_REFERENCE_FIELDS,
    STEP_REFERENCE_LIST_FIELDS,
    Edge,
    Step,
    StepType,
    Workflow,
    utcnow,
)
from .graph import ValidationReport, validate_workflow, would_create_cycle

logger = logging.getLogger(__name__)

MIN_STEPS = 2


class _Operation(BaseModel):
    model_config = ConfigDict(extra="forbid")


class AddStep(_Operation):
    op: Literal["add_step"] = "add_step"
    step: Step
    after_step_id: Optional[str] = None


class RemoveStep(_Operation):
    op: Literal["remove_step"] = "remove_step"
    step_id: str


class UpdateStepConfig(_Operation):
    op: Literal["update_step_config"] = "update_step_config"
    step_id: str
    config_patch: Dict[str, Any] = Field(default_factory=dict)


class RenameStep(_Operation):
    op: Literal["rename_step"] = "rename_step"
    step_id: str
    name: str


class AddEdge(_Operation):
    op: Literal["add_edge"] = "add_edge"
    source: str
    target: str
    label: Optional[str] = None


class RemoveEdge(_Operation):
    op: Literal["remove_edge"] = "remove_edge"
    source: str
    target: str


PatchOperation = Annotated[
    Union[AddStep, RemoveStep, UpdateStepConfig, RenameStep, AddEdge, RemoveEdge],
    Field(discriminator="op"),
]
_operation_adapter: TypeAdapter[PatchOperation] = TypeAdapter(PatchOperation)


class AuditEntry(BaseModel):
    op: Dict[str, Any]
    status: Literal["applied", "rejected"]
    reason: Optional[str] = None


class DiffSummary(BaseModel):
    steps_added: int = 0
    steps_removed: int = 0
    steps_updated: int = 0
    edges_added: int = 0
    edges_removed: int = 0


class PatchResult(BaseModel):
    workflow: Workflow
    audit: List[AuditEntry] = Field(default_factory=list)
    diff: DiffSummary = Field(default_factory=DiffSummary)
    validation: ValidationReport


class OperationRejected(Exception):
    """Internal signal: the current operation must not be applied."""


def _index_of(steps: List[Step], step_id: str) -> int:
    for index, step in enumerate(steps):
        if step.id == step_id:
            return index
    raise OperationRejected(f"Step '{step_id}' does not exist")


def _add_step(steps: List[Step], edges: List[Edge], op: AddStep) -> None:
    if any(s.id == op.step.id for s in steps):
        raise OperationRejected(f"Step ID '{op.step.id}' already exists")
    if op.step.type == StepType.TRIGGER and any(s.type == StepType.TRIGGER for s in steps):
        raise OperationRejected("Cannot add another trigger: workflow must have exactly one")

    step = op.step.model_copy(deep=True)
    position = next(
        (i + 1 for i, s in enumerate(steps) if op.after_step_id and s.id == op.after_step_id),
        len(steps),
    )
    steps.insert(position, step)


def _blank_references(step: Step, removed_id: str) -> Step:
    config = step.config_dict()
    changed = False
    for field in STEP_REFERENCE_FIELDS:
        if config.get(field) == removed_id:
            config[field] = ""
            changed = True
    for field in STEP_REFERENCE_LIST_FIELDS:
        refs = config.get(field)
        if isinstance(refs, list) and removed_id in refs:
            config[field] = [ref for ref in refs if ref != removed_id]
            changed = True
    if not changed:
        return step
    return step.model_copy(update={"config": type(step.config).model_validate(config)})


def _remove_step(steps: List[Step], edges: List[Edge], op: RemoveStep) -> None:
    index = _index_of(steps, op.step_id)
    if steps[index].type == StepType.TRIGGER and sum(
        1 for s in steps if s.type == StepType.TRIGGER
    ) <= 1:
        raise OperationRejected("Cannot remove the only trigger step")
    if len(steps) <= MIN_STEPS:
        raise OperationRejected(
            f"Cannot remove step: workflow must have at least {MIN_STEPS} steps"
        )

    del steps[index]
    edges[:] = [e for e in edges if op.step_id not in (e.source, e.target)]
    steps[:] = [_blank_references(s, op.step_id) for s in steps]


def _update_step_config(steps: List[Step], edges: List[Edge], op: UpdateStepConfig) -> None:
    index = _index_of(steps, op.step_id)
    current = steps[index]
    patch = {k: v for k, v in op.config_patch.items() if k != "type"}
    merged = {**current.config_dict(), **patch}
    try:
        config = type(current.config).model_validate(merged)
    except ValidationError as e:
        raise OperationRejected(f"Invalid config for step '{op.step_id}': {e}") from e
    steps[index] = current.model_copy(update={"config": config})


def _rename_step(steps: List[Step], edges: List[Edge], op: RenameStep) -> None:
    index = _index_of(steps, op.step_id)
    steps[index] = steps[index].model_copy(update={"name": op.name})


def _add_edge(steps: List[Step], edges: List[Edge], op: AddEdge) -> None:
    step_ids = [s.id for s in steps]
    if op.source not in step_ids:
        raise OperationRejected(f"Edge source '{op.source}' does not reference an existing step")
    if op.target not in step_ids:
        raise OperationRejected(f"Edge target '{op.target}' does not reference an existing step")

    edge = Edge(source=op.source, target=op.target, label=op.label)
    if any(
        e.source == edge.source and e.target == edge.target and e.label == edge.label
        for e in edges
    ):
        raise OperationRejected("Duplicate edge already exists")
    if would_create_cycle(step_ids, edges, edge):
        raise OperationRejected("Adding this edge would create a cycle")
    edges.append(edge)


def _remove_edge(steps: List[Step], edges: List[Edge], op: RemoveEdge) -> None:
    for index, edge in enumerate(edges):
        if edge.source == op.source and edge.target == op.target:
            del edges[index]
            return
    raise OperationRejected(f"No edge from '{op.source}' to '{op.target}' found")


_HANDLERS = {
    "add_step": (_add_step, "steps_added"),
    "remove_step": (_remove_step, "steps_removed"),
    "update_step_config": (_update_step_config, "steps_updated"),
    "rename_step": (_rename_step, "steps_updated"),
    "add_edge": (_add_edge, "edges_added"),
    "remove_edge": (_remove_edge, "edges_removed"),
}


def apply_operations(
    workflow: Workflow, operations: Sequence[Union[PatchOperation, Dict[str, Any]]]
) -> PatchResult:
    """Apply ``operations`` in order to a copy of ``workflow``.

    Every operation gets one audit entry. Plain dicts are accepted; one that
    does not parse as an operation is rejected with the validation message.
    """
    steps = [s.model_copy(deep=True) for s in workflow.steps]
    edges = [e.model_copy() for e in workflow.edges]
    audit: List[AuditEntry] = []
    diff = DiffSummary()

    for raw in operations:
        if isinstance(raw, BaseModel):
            op, op_dump = raw, raw.model_dump(mode="json")
        else:
            op_dump = dict(raw)
            try:
                op = _operation_adapter.validate_python(raw)
            except ValidationError as e:
                audit.append(AuditEntry(op=op_dump, status="rejected", reason=str(e)))
                continue

        handler, counter = _HANDLERS[op.op]
        # Handlers work on scratch lists so a rejection leaves nothing behind.
        next_steps, next_edges = list(steps), list(edges)
        try:
            handler(next_steps, next_edges, op)
        except OperationRejected as e:
            logger.debug(f"Rejected {op.op}: {e}")
            audit.append(AuditEntry(op=op_dump, status="rejected", reason=str(e)))
            continue

        steps, edges = next_steps, next_edges
        setattr(diff, counter, getattr(diff, counter) + 1)
        audit.append(AuditEntry(op=op_dump, status="applied"))

    patched = workflow.model_copy(
        deep=True, update={"steps": steps, "edges": edges, "updated_at": utcnow()}
    )
    applied = sum(1 for entry in audit if entry.status == "applied")
    logger.info(
        f"Patched workflow {workflow.id}: {applied} applied, {len(audit) - applied} rejected"
    )
    return PatchResult(
        workflow=patched, audit=audit, diff=diff, validation=validate_workflow(patched)
    )
