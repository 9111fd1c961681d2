"""Graph algorithms and structural validation for workflows."""

from __future__ import annotations

from collections import deque
from typing import Dict, Iterable, List, Optional, Sequence

from pydantic import BaseModel, Field

from .contracts import Edge, Step, StepType, Workflow
from .errors import GraphCycleError

_WHITE, _GRAY, _BLACK = 0, 1, 2

BRANCHING_TYPES = {StepType.JUDGE, StepType.HUMAN_GATE, StepType.CONDITION}

REQUIRED_CONFIG_FIELDS: Dict[StepType, Sequence[str]] = {
    StepType.MODEL_CALL: ("system_prompt", "user_prompt"),
    StepType.JUDGE: ("input_step_id", "criteria"),
    StepType.HUMAN_GATE: ("instructions",),
    StepType.CONNECTOR: ("connector_type", "action"),
    StepType.CONDITION: ("expression",),
    StepType.AGENT: ("task_prompt",),
    StepType.SUB_WORKFLOW: ("workflow_id",),
}


def topological_sort(steps: Sequence[Step], edges: Iterable[Edge]) -> List[Step]:
    """Order ``steps`` with Kahn's algorithm.

    Steps with equal in-degree keep their declaration order, so the result is
    deterministic for a given graph.
    """
    by_id = {step.id: step for step in steps}
    in_degree = {step.id: 0 for step in steps}
    adjacency: Dict[str, List[str]] = {step.id: [] for step in steps}

    for edge in edges:
        if edge.source not in by_id or edge.target not in by_id:
            raise GraphCycleError(
                f"Edge {edge.source} -> {edge.target} references an unknown step"
            )
        adjacency[edge.source].append(edge.target)
        in_degree[edge.target] += 1

    queue = deque(step_id for step_id, degree in in_degree.items() if degree == 0)
    ordered: List[Step] = []
    while queue:
        step_id = queue.popleft()
        ordered.append(by_id[step_id])
        for neighbor in adjacency[step_id]:
            in_degree[neighbor] -= 1
            if in_degree[neighbor] == 0:
                queue.append(neighbor)

    if len(ordered) != len(by_id):
        raise GraphCycleError(
            "Workflow contains a cycle or unreachable steps; unable to compute execution order."
        )
    return ordered


def find_cycle(step_ids: Iterable[str], edges: Iterable[Edge]) -> Optional[List[str]]:
    """Return one cycle as a list of step ids, or ``None`` if the graph is acyclic."""
    ids = list(step_ids)
    adjacency: Dict[str, List[str]] = {step_id: [] for step_id in ids}
    for edge in edges:
        if edge.source in adjacency:
            adjacency[edge.source].append(edge.target)

    color = {step_id: _WHITE for step_id in ids}
    path: List[str] = []

    def visit(node: str) -> Optional[List[str]]:
        color[node] = _GRAY
        path.append(node)
        for neighbor in adjacency.get(node, []):
            state = color.get(neighbor)
            if state == _GRAY:
                return path[path.index(neighbor):] + [neighbor]
            if state == _WHITE:
                cycle = visit(neighbor)
                if cycle:
                    return cycle
        color[node] = _BLACK
        path.pop()
        return None

    for step_id in ids:
        if color[step_id] == _WHITE:
            cycle = visit(step_id)
            if cycle:
                return cycle
    return None


def would_create_cycle(step_ids: Iterable[str], edges: Iterable[Edge], proposed: Edge) -> bool:
    return find_cycle(step_ids, [*edges, proposed]) is not None


class ValidationReport(BaseModel):
    ok: bool = True
    errors: List[str] = Field(default_factory=list)
    warnings: List[str] = Field(default_factory=list)


def validate_workflow(workflow: Workflow) -> ValidationReport:
    """Check that a workflow is safe to execute.

    Errors make the workflow unrunnable; warnings point at likely mistakes.
    """
    errors: List[str] = []
    warnings: List[str] = []
    step_ids = set(workflow.step_ids())

    triggers = workflow.triggers()
    if len(triggers) != 1:
        errors.append(
            f"Workflow must have exactly one trigger step (found {len(triggers)})"
        )
    if len(workflow.steps) < 2:
        errors.append("Workflow must have at least 2 steps")

    seen = set()
    for step in workflow.steps:
        if step.id in seen:
            errors.append(f"Duplicate step ID: '{step.id}'")
        seen.add(step.id)

    for edge in workflow.edges:
        if edge.source not in step_ids:
            errors.append(f"Edge source '{edge.source}' does not reference an existing step")
        if edge.target not in step_ids:
            errors.append(f"Edge target '{edge.target}' does not reference an existing step")

    cycle = find_cycle(workflow.step_ids(), workflow.edges)
    if cycle:
        errors.append(f"Graph contains a cycle: {' -> '.join(cycle)}")

    for step in workflow.steps:
        config = step.config_dict()
        for field in REQUIRED_CONFIG_FIELDS.get(step.type, ()):
            if config.get(field) in (None, "", []):
                errors.append(
                    f"Step '{step.id}' ({step.type.value}): missing required config '{field}'"
                )
        for field in ("input_step_id", "judge_step_id", "review_target_step_id"):
            ref = config.get(field)
            if ref and ref not in step_ids:
                errors.append(
                    f"Step '{step.id}' ({step.type.value}): {field} '{ref}' does not reference an existing step"
                )
        for ref in config.get("show_steps") or []:
            if ref not in step_ids:
                errors.append(
                    f"Step '{step.id}' ({step.type.value}): show_steps references non-existent step '{ref}'"
                )
        if step.type == StepType.HUMAN_GATE and not config.get("show_steps"):
            warnings.append(
                f"Step '{step.id}' (human_gate): show_steps is empty, reviewer won't see any prior outputs"
            )

    connected = {e.source for e in workflow.edges} | {e.target for e in workflow.edges}
    for step in workflow.steps:
        if step.type != StepType.TRIGGER and step.id not in connected:
            warnings.append(f"Step '{step.id}' ('{step.name}') is orphaned (no edges)")

    for edge in workflow.edges:
        source = workflow.get_step(edge.source)
        if edge.label and source is not None and source.type not in BRANCHING_TYPES:
            warnings.append(
                f"Edge from '{edge.source}' has label '{edge.label}' but source is type "
                f"'{source.type.value}' (not a branching step)"
            )

    return ValidationReport(ok=not errors, errors=errors, warnings=warnings)
