"""Tests for audited graph patch operations."""

import pytest

from flowgate.contracts import Workflow
from flowgate.patching import AddEdge, RenameStep, apply_operations


@pytest.fixture
def workflow():
    return Workflow.model_validate(
        {
            "id": "wf-1",
            "name": "Review flow",
            "steps": [
                {"id": "t", "type": "trigger", "name": "Start"},
                {"id": "m", "type": "model_call", "name": "Draft",
                 "config": {"system_prompt": "s", "user_prompt": "u"}},
                {"id": "j", "type": "judge", "name": "Judge",
                 "config": {"input_step_id": "m", "criteria": [{"name": "tone"}]}},
                {"id": "h", "type": "human_gate", "name": "Review",
                 "config": {"instructions": "check", "show_steps": ["m", "j"],
                            "judge_step_id": "j", "review_target_step_id": "m"}},
            ],
            "edges": [
                {"source": "t", "target": "m"},
                {"source": "m", "target": "j"},
                {"source": "j", "target": "h", "label": "flag"},
            ],
        }
    )


def test_snapshot_is_never_mutated(workflow):
    before = workflow.model_dump()
    apply_operations(
        workflow,
        [
            {"op": "remove_step", "step_id": "m"},
            {"op": "rename_step", "step_id": "j", "name": "Quality"},
        ],
    )
    assert workflow.model_dump() == before


def test_add_step_inserts_after_anchor_or_appends(workflow):
    result = apply_operations(
        workflow,
        [
            {"op": "add_step", "after_step_id": "m",
             "step": {"id": "c", "type": "condition", "name": "Check",
                      "config": {"expression": "true"}}},
            {"op": "add_step", "after_step_id": "missing",
             "step": {"id": "s", "type": "connector", "name": "Notify",
                      "config": {"connector_type": "slack", "action": "send_message"}}},
        ],
    )
    assert [s.id for s in result.workflow.steps] == ["t", "m", "c", "j", "h", "s"]
    assert result.diff.steps_added == 2
    assert [a.status for a in result.audit] == ["applied", "applied"]


def test_add_step_rejects_duplicates_and_second_trigger(workflow):
    result = apply_operations(
        workflow,
        [
            {"op": "add_step", "step": {"id": "m", "type": "condition", "name": "Dup"}},
            {"op": "add_step", "step": {"id": "t2", "type": "trigger", "name": "Another"}},
        ],
    )
    assert [a.status for a in result.audit] == ["rejected", "rejected"]
    assert "already exists" in result.audit[0].reason
    assert "exactly one" in result.audit[1].reason
    assert len(result.workflow.steps) == 4


def test_add_step_with_mismatched_config_tag_is_rejected(workflow):
    result = apply_operations(
        workflow,
        [{"op": "add_step",
          "step": {"id": "x", "type": "judge", "name": "X", "config": {"type": "agent"}}}],
    )
    assert result.audit[0].status == "rejected"
    assert result.diff.steps_added == 0


def test_remove_step_drops_edges_and_blanks_references(workflow):
    result = apply_operations(workflow, [{"op": "remove_step", "step_id": "m"}])
    wf = result.workflow
    assert "m" not in wf.step_ids()
    assert all("m" not in (e.source, e.target) for e in wf.edges)
    judge = wf.get_step("j").config
    gate = wf.get_step("h").config
    assert judge.input_step_id == ""
    assert gate.show_steps == ["j"]
    assert gate.review_target_step_id == ""
    assert gate.judge_step_id == "j"
    assert result.diff.steps_removed == 1
    assert not result.validation.ok


def test_remove_step_guards_trigger_and_minimum_size(workflow):
    result = apply_operations(
        workflow,
        [
            {"op": "remove_step", "step_id": "t"},
            {"op": "remove_step", "step_id": "h"},
            {"op": "remove_step", "step_id": "j"},
            {"op": "remove_step", "step_id": "m"},
            {"op": "remove_step", "step_id": "nope"},
        ],
    )
    assert [a.status for a in result.audit] == [
        "rejected", "applied", "applied", "rejected", "rejected"
    ]
    assert "only trigger" in result.audit[0].reason
    assert "at least 2 steps" in result.audit[3].reason
    assert "does not exist" in result.audit[4].reason
    assert result.workflow.step_ids() == ["t", "m"]


def test_update_step_config_merges_and_ignores_type(workflow):
    result = apply_operations(
        workflow,
        [{"op": "update_step_config", "step_id": "j",
          "config_patch": {"threshold": 0.6, "type": "agent"}}],
    )
    judge = result.workflow.get_step("j")
    assert judge.config.threshold == 0.6
    assert judge.config.input_step_id == "m"
    assert judge.config.type == "judge"
    assert result.diff.steps_updated == 1


def test_update_step_config_rejects_invalid_values(workflow):
    result = apply_operations(
        workflow,
        [
            {"op": "update_step_config", "step_id": "j", "config_patch": {"threshold": 7}},
            {"op": "update_step_config", "step_id": "j", "config_patch": {"bogus": 1}},
        ],
    )
    assert [a.status for a in result.audit] == ["rejected", "rejected"]
    assert result.workflow.get_step("j").config.threshold == 0.8


def test_rename_step_accepts_models(workflow):
    result = apply_operations(workflow, [RenameStep(step_id="h", name="Final review")])
    assert result.workflow.get_step("h").name == "Final review"
    assert result.audit[0].op == {"op": "rename_step", "step_id": "h", "name": "Final review"}


def test_add_edge_checks_endpoints_duplicates_and_cycles(workflow):
    result = apply_operations(
        workflow,
        [
            AddEdge(source="j", target="h", label="pass"),
            {"op": "add_edge", "source": "j", "target": "h", "label": "flag"},
            {"op": "add_edge", "source": "h", "target": "m"},
            {"op": "add_edge", "source": "ghost", "target": "m"},
        ],
    )
    assert [a.status for a in result.audit] == ["applied", "rejected", "rejected", "rejected"]
    assert "Duplicate" in result.audit[1].reason
    assert "cycle" in result.audit[2].reason
    assert "ghost" in result.audit[3].reason
    assert result.diff.edges_added == 1


def test_remove_edge_removes_first_match_only(workflow):
    result = apply_operations(
        workflow,
        [
            {"op": "add_edge", "source": "j", "target": "h", "label": "pass"},
            {"op": "remove_edge", "source": "j", "target": "h"},
            {"op": "remove_edge", "source": "t", "target": "h"},
        ],
    )
    assert [a.status for a in result.audit] == ["applied", "applied", "rejected"]
    remaining = [(e.source, e.target, e.label) for e in result.workflow.edges]
    assert ("j", "h", "pass") in remaining
    assert ("j", "h", "flag") not in remaining
    assert result.diff.edges_removed == 1


def test_unparseable_operations_are_rejected_with_reason(workflow):
    result = apply_operations(
        workflow, [{"op": "teleport_step"}, {"op": "rename_step", "step_id": "h"}]
    )
    assert [a.status for a in result.audit] == ["rejected", "rejected"]
    assert result.audit[0].op == {"op": "teleport_step"}
    assert result.audit[1].reason


def test_validation_report_accompanies_result(workflow):
    result = apply_operations(workflow, [])
    assert result.validation.ok
    assert result.audit == []
