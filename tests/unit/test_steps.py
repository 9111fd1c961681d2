"""Tests for the step executors, with pydantic-ai's TestModel standing in for a provider."""

import pytest
from pydantic_ai.models.test import TestModel

from flowgate.config import FlowgateConfig
from flowgate.connectors import ConnectorRegistry
from flowgate.contracts import Run, StepStatus, StepType, TraceEventType, Workflow
from flowgate.engine import build_interpolation_context
from flowgate.errors import StepExecutionError
from flowgate.steps import StepContext, StepPause, default_executors
from flowgate.steps.judge import recommend


def _workflow(*steps):
    return Workflow.model_validate({"name": "steps", "steps": list(steps)})


def _context(workflow, step_id, outputs=None, run_input=None):
    run = Run.for_workflow(workflow, run_input or {})
    for done_id, output in (outputs or {}).items():
        run.update_step(done_id, status=StepStatus.COMPLETED, output=output)
    events = []

    async def emit(type, data):
        events.append((type, data))

    context = StepContext(
        run=run,
        workflow=workflow,
        step=workflow.get_step(step_id),
        step_state=run.step_states[step_id],
        interpolation=build_interpolation_context(run),
        emit=emit,
    )
    return context, events


def _executors(model=None, connector=None):
    connectors = ConnectorRegistry([connector] if connector else [])
    return default_executors(FlowgateConfig(), model=model, connectors=connectors)


TRIGGER = {"id": "t", "type": "trigger", "name": "Start"}


@pytest.mark.asyncio
async def test_trigger_echoes_run_input():
    wf = _workflow(TRIGGER)
    context, _ = _context(wf, "t", run_input={"ticket": "broken"})
    executor = _executors()[StepType.TRIGGER]
    assert await executor.execute({}, context) == {"ticket": "broken"}


@pytest.mark.asyncio
async def test_model_call_returns_result_model_and_usage():
    wf = _workflow(TRIGGER, {"id": "m", "type": "model_call", "name": "Draft"})
    context, _ = _context(wf, "m")
    executor = _executors(model=TestModel(custom_output_text="Dear customer"))[
        StepType.MODEL_CALL
    ]
    output = await executor.execute(
        {"system_prompt": "Be kind", "user_prompt": "Reply", "temperature": 0.2}, context
    )
    assert output["result"] == "Dear customer"
    assert output["model"] == "test"
    usage = output["usage"]
    assert usage["total_tokens"] == usage["prompt_tokens"] + usage["completion_tokens"]
    assert usage["total_tokens"] > 0


@pytest.mark.asyncio
async def test_model_call_json_mode_parses_or_reports_error():
    wf = _workflow(TRIGGER, {"id": "m", "type": "model_call", "name": "Draft"})
    context, _ = _context(wf, "m")
    config = {"system_prompt": "s", "user_prompt": "u", "response_format": "json"}

    parsed = await _executors(model=TestModel(custom_output_text='{"category": "billing"}'))[
        StepType.MODEL_CALL
    ].execute(config, context)
    assert parsed["result"] == {"category": "billing"}
    assert "parse_error" not in parsed

    broken = await _executors(model=TestModel(custom_output_text="not json"))[
        StepType.MODEL_CALL
    ].execute(config, context)
    assert broken["result"] == "not json"
    assert "parse_error" in broken


@pytest.mark.parametrize(
    "confidence, expected",
    [(0.8, "pass"), (0.95, "pass"), (0.48, "flag"), (0.5, "flag"), (0.47, "fail"), (0.0, "fail")],
)
def test_recommend_thresholds(confidence, expected):
    assert recommend(confidence, 0.8) == expected


@pytest.mark.asyncio
async def test_judge_scores_input_step_output():
    wf = _workflow(
        TRIGGER,
        {"id": "m", "type": "model_call", "name": "Draft"},
        {"id": "j", "type": "judge", "name": "Judge"},
    )
    context, _ = _context(wf, "j", outputs={"m": {"result": "Dear customer"}})
    model = TestModel(
        custom_output_args={
            "criteria_scores": {"tone": 0.5},
            "overall_confidence": 0.5,
            "issues": ["too terse"],
            "reasoning": "Could be warmer",
        }
    )
    output = await _executors(model=model)[StepType.JUDGE].execute(
        {"input_step_id": "m", "criteria": [{"name": "tone"}], "threshold": 0.8}, context
    )
    assert output["recommendation"] == "flag"
    assert output["overall_confidence"] == 0.5
    assert output["issues"] == ["too terse"]
    assert output["model"] == "test"
    assert output["usage"]["total_tokens"] > 0


@pytest.mark.asyncio
async def test_judge_without_input_output_fails():
    wf = _workflow(TRIGGER, {"id": "j", "type": "judge", "name": "Judge"})
    context, _ = _context(wf, "j")
    with pytest.raises(StepExecutionError, match="has no output"):
        await _executors(model=TestModel())[StepType.JUDGE].execute(
            {"input_step_id": "m", "criteria": [], "threshold": 0.8}, context
        )


@pytest.mark.asyncio
async def test_human_gate_pauses_with_shown_outputs():
    wf = _workflow(
        TRIGGER,
        {"id": "m", "type": "model_call", "name": "Draft"},
        {"id": "h", "type": "human_gate", "name": "Review"},
    )
    context, _ = _context(wf, "h", outputs={"m": {"result": "draft"}})
    outcome = await _executors()[StepType.HUMAN_GATE].execute(
        {"instructions": "Check tone", "show_steps": ["m"]}, context
    )
    assert isinstance(outcome, StepPause)
    assert outcome.output["instructions"] == "Check tone"
    assert outcome.output["show_steps"] == {"m": {"result": "draft"}}


@pytest.mark.asyncio
async def test_human_gate_auto_approves_on_passing_judge():
    wf = _workflow(
        TRIGGER,
        {"id": "j", "type": "judge", "name": "Judge"},
        {"id": "h", "type": "human_gate", "name": "Review"},
    )
    config = {"instructions": "x", "show_steps": ["j"], "auto_approve_on_judge_pass": True}
    gate = _executors()[StepType.HUMAN_GATE]

    passed, _ = _context(wf, "h", outputs={"j": {"recommendation": "pass"}})
    outcome = await gate.execute(config, passed)
    assert outcome["decision"] == "approve"
    assert outcome["auto_approved"] is True
    assert outcome["judge_step_id"] == "j"

    flagged, _ = _context(wf, "h", outputs={"j": {"recommendation": "flag"}})
    assert isinstance(await gate.execute(config, flagged), StepPause)


@pytest.mark.asyncio
async def test_connector_success_and_failures(connector):
    wf = _workflow(TRIGGER, {"id": "c", "type": "connector", "name": "Notify"})
    context, _ = _context(wf, "c")
    executor = _executors(connector=connector)[StepType.CONNECTOR]

    output = await executor.execute(
        {"connector_type": "recorder", "action": "send", "params": {"to": "ops"}}, context
    )
    assert output == {
        "connector_type": "recorder",
        "action": "send",
        "success": True,
        "delivered": True,
    }
    assert connector.calls == [("send", {"to": "ops"})]

    with pytest.raises(StepExecutionError, match="delivery refused"):
        await executor.execute({"connector_type": "recorder", "action": "fail"}, context)
    with pytest.raises(StepExecutionError, match="Unknown connector type"):
        await executor.execute({"connector_type": "fax", "action": "send"}, context)


@pytest.mark.asyncio
async def test_condition_chooses_branch():
    wf = _workflow(
        TRIGGER,
        {"id": "c", "type": "condition", "name": "Urgent?",
         "config": {"expression": "{{input.priority}} >= 3"}},
    )
    executor = _executors()[StepType.CONDITION]
    high, _ = _context(wf, "c", run_input={"priority": 5})
    low, _ = _context(wf, "c", run_input={"priority": 1})
    assert await executor.execute({}, high) == {"result": True, "branch": "yes", "label": "yes"}
    assert await executor.execute({}, low) == {"result": False, "branch": "no", "label": "no"}


@pytest.mark.asyncio
async def test_condition_reports_configured_branch_labels():
    wf = _workflow(
        TRIGGER,
        {"id": "c", "type": "condition", "name": "Urgent?",
         "config": {"expression": "{{input.priority}} >= 3",
                    "yes_label": "Escalate", "no_label": "Queue"}},
    )
    executor = _executors()[StepType.CONDITION]
    high, _ = _context(wf, "c", run_input={"priority": 5})
    low, _ = _context(wf, "c", run_input={"priority": 1})
    assert await executor.execute({}, high) == {"result": True, "branch": "yes", "label": "Escalate"}
    assert await executor.execute({}, low) == {"result": False, "branch": "no", "label": "Queue"}


AGENT_TOOLS = [
    {"type": "builtin", "name": "format_text"},
    {"type": "connector", "connector_type": "recorder", "action": "send"},
    {"type": "builtin", "name": "no_such_tool"},
]


@pytest.mark.asyncio
async def test_agent_runs_tools_and_traces_iterations(connector):
    wf = _workflow(TRIGGER, {"id": "a", "type": "agent", "name": "Agent"})
    context, events = _context(wf, "a")
    model = TestModel(custom_output_args={"result": {"answer": "done"}, "confidence": 0.9})
    executor = _executors(model=model, connector=connector)[StepType.AGENT]

    output = await executor.execute(
        {"task_prompt": "Handle the ticket", "tools": AGENT_TOOLS, "max_iterations": 5}, context
    )
    assert output["result"] == {"answer": "done"}
    assert output["stop_reason"] == "completed"
    assert output["total_iterations"] == len(output["iterations"]) == 2
    assert output["model"] == "test"
    assert len(connector.calls) == 1

    types = [event_type for event_type, _ in events]
    assert types.count(TraceEventType.AGENT_ITERATION) == 2
    tool_names = {data["tool_name"] for t, data in events if t == TraceEventType.AGENT_TOOL_CALL}
    assert tool_names == {"format_text", "recorder_send"}
    assert types[-1] == TraceEventType.AGENT_COMPLETE


@pytest.mark.asyncio
async def test_agent_escalates_low_confidence():
    wf = _workflow(TRIGGER, {"id": "a", "type": "agent", "name": "Agent"})
    context, _ = _context(wf, "a")
    model = TestModel(custom_output_args={"result": {"answer": "maybe"}, "confidence": 0.2})
    outcome = await _executors(model=model)[StepType.AGENT].execute(
        {"task_prompt": "Guess", "hitl_on_low_confidence": True, "confidence_threshold": 0.5},
        context,
    )
    assert isinstance(outcome, StepPause)
    assert outcome.output["stop_reason"] == "hitl_escalation"
    assert outcome.output["result"] == {"answer": "maybe"}


@pytest.mark.asyncio
async def test_agent_stops_at_iteration_limit(connector):
    wf = _workflow(TRIGGER, {"id": "a", "type": "agent", "name": "Agent"})
    context, events = _context(wf, "a")
    executor = _executors(model=TestModel(), connector=connector)[StepType.AGENT]
    output = await executor.execute(
        {"task_prompt": "Loop", "tools": AGENT_TOOLS, "max_iterations": 1}, context
    )
    assert output["stop_reason"] == "max_iterations"
    assert output["total_iterations"] == 1
    assert events[-1][1]["stop_reason"] == "max_iterations"
