"""Core data contracts: workflow graphs, runs and trace events."""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Annotated, Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, JsonValue, model_validator

from .constants import DEFAULT_AGENT_MAX_ITERATIONS, DEFAULT_CONFIDENCE_THRESHOLD
from .errors import InvalidTransitionError
from .usage import TokenUsage, TokenUsageSummary

JsonObject = Dict[str, JsonValue]


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class StepType(str, Enum):
    TRIGGER = "trigger"
    MODEL_CALL = "model_call"
    JUDGE = "judge"
    HUMAN_GATE = "human_gate"
    CONNECTOR = "connector"
    CONDITION = "condition"
    AGENT = "agent"
    SUB_WORKFLOW = "sub_workflow"


# ---------------------------------------------------------------------------
# Step configuration payloads, one per step type


class _StepConfigBase(BaseModel):
    model_config = ConfigDict(extra="forbid")


class ManualField(BaseModel):
    name: str
    type: Literal["string", "number", "text"] = "string"


class TriggerConfig(_StepConfigBase):
    type: Literal["trigger"] = "trigger"
    trigger_type: Literal["manual", "dataset", "webhook"] = "manual"
    dataset_id: Optional[str] = None
    manual_fields: List[ManualField] = Field(default_factory=list)


class ModelCallConfig(_StepConfigBase):
    type: Literal["model_call"] = "model_call"
    model: Optional[str] = None
    system_prompt: str = ""
    user_prompt: str = ""
    temperature: float = 0.7
    response_format: Literal["text", "json"] = "text"


class JudgeCriterion(BaseModel):
    name: str
    description: str = ""
    weight: float = Field(default=1.0, ge=0, le=1)


class JudgeConfig(_StepConfigBase):
    type: Literal["judge"] = "judge"
    input_step_id: str = ""
    criteria: List[JudgeCriterion] = Field(default_factory=list)
    threshold: float = Field(default=0.8, ge=0, le=1)
    model: Optional[str] = None


class HumanGateConfig(_StepConfigBase):
    type: Literal["human_gate"] = "human_gate"
    instructions: str = ""
    show_steps: List[str] = Field(default_factory=list)
    auto_approve_on_judge_pass: bool = False
    judge_step_id: str = ""
    review_target_step_id: str = ""


class ConnectorConfig(_StepConfigBase):
    type: Literal["connector"] = "connector"
    connector_type: str = ""
    action: str = ""
    params: JsonObject = Field(default_factory=dict)


class ConditionConfig(_StepConfigBase):
    type: Literal["condition"] = "condition"
    expression: str = ""
    yes_label: Optional[str] = None
    no_label: Optional[str] = None


class AgentToolRef(BaseModel):
    type: Literal["connector", "builtin"]
    connector_type: Optional[str] = None
    action: Optional[str] = None
    name: Optional[str] = None


class AgentConfig(_StepConfigBase):
    type: Literal["agent"] = "agent"
    model: Optional[str] = None
    system_prompt: str = "You are a helpful agent."
    task_prompt: str = ""
    tools: List[AgentToolRef] = Field(default_factory=list)
    max_iterations: int = Field(default=DEFAULT_AGENT_MAX_ITERATIONS, ge=1)
    temperature: float = 0.3
    hitl_on_low_confidence: bool = False
    confidence_threshold: float = Field(default=DEFAULT_CONFIDENCE_THRESHOLD, ge=0, le=1)
    output_schema: Optional[JsonObject] = None


class SubWorkflowConfig(_StepConfigBase):
    type: Literal["sub_workflow"] = "sub_workflow"
    workflow_id: str = ""
    input_mapping: Dict[str, str] = Field(default_factory=dict)


StepConfig = Annotated[
    Union[
        TriggerConfig,
        ModelCallConfig,
        JudgeConfig,
        HumanGateConfig,
        ConnectorConfig,
        ConditionConfig,
        AgentConfig,
        SubWorkflowConfig,
    ],
    Field(discriminator="type"),
]

# Config fields that hold a reference to another step in the same workflow.
STEP_REFERENCE_FIELDS = ("input_step_id", "judge_step_id", "review_target_step_id")
STEP_REFERENCE_LIST_FIELDS = ("show_steps",)


# ---------------------------------------------------------------------------
# Graph


class Step(BaseModel):
    """A typed unit of work in a workflow graph."""

    id: str
    type: StepType
    name: str
    config: StepConfig

    @model_validator(mode="before")
    @classmethod
    def _tag_config(cls, data: Any) -> Any:
        # An untagged config takes the step's type as its tag.
        if isinstance(data, dict):
            step_type = data.get("type")
            if isinstance(step_type, Enum):
                step_type = step_type.value
            config = data.get("config")
            if config is None:
                data = {**data, "config": {"type": step_type}}
            elif isinstance(config, dict) and "type" not in config:
                data = {**data, "config": {**config, "type": step_type}}
        return data

    @model_validator(mode="after")
    def _check_config_tag(self) -> "Step":
        if self.config.type != self.type.value:
            raise ValueError(
                f"config type '{self.config.type}' does not match step type '{self.type.value}'"
            )
        return self

    def config_dict(self) -> Dict[str, Any]:
        return self.config.model_dump(mode="json")


class Edge(BaseModel):
    source: str
    target: str
    label: Optional[str] = None

    @model_validator(mode="after")
    def _blank_label(self) -> "Edge":
        if self.label == "":
            self.label = None
        return self


class InputField(BaseModel):
    name: str
    type: Literal["string", "number", "text", "boolean", "json"] = "string"
    description: Optional[str] = None
    required: bool = True


class BlockConfig(BaseModel):
    """Settings that let a workflow be embedded as a sub-workflow block."""

    block_name: str = ""
    input_schema: List[InputField] = Field(default_factory=list)
    output_step_id: Optional[str] = None
    output_fields: List[str] = Field(default_factory=list)


class Workflow(BaseModel):
    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    name: str
    description: str = ""
    steps: List[Step] = Field(default_factory=list)
    edges: List[Edge] = Field(default_factory=list)
    block_config: Optional[BlockConfig] = None
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    def get_step(self, step_id: str) -> Optional[Step]:
        return next((s for s in self.steps if s.id == step_id), None)

    def step_ids(self) -> List[str]:
        return [s.id for s in self.steps]

    def incoming_edges(self, step_id: str) -> List[Edge]:
        return [e for e in self.edges if e.target == step_id]

    def triggers(self) -> List[Step]:
        return [s for s in self.steps if s.type == StepType.TRIGGER]


# ---------------------------------------------------------------------------
# Runs


class RunStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    WAITING_FOR_REVIEW = "waiting_for_review"
    COMPLETED = "completed"
    FAILED = "failed"


_RUN_TRANSITIONS = {
    RunStatus.PENDING: {RunStatus.RUNNING, RunStatus.FAILED},
    RunStatus.RUNNING: {
        RunStatus.COMPLETED,
        RunStatus.FAILED,
        RunStatus.WAITING_FOR_REVIEW,
    },
    RunStatus.WAITING_FOR_REVIEW: {RunStatus.RUNNING, RunStatus.FAILED},
    RunStatus.COMPLETED: set(),
    RunStatus.FAILED: set(),
}


class StepStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    SKIPPED = "skipped"
    WAITING_FOR_REVIEW = "waiting_for_review"


class StepState(BaseModel):
    step_id: str
    status: StepStatus = StepStatus.PENDING
    output: Optional[JsonObject] = None
    error: Optional[str] = None
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    # Usage the executor reported; edits to output leave it untouched.
    usage: Optional[TokenUsage] = None
    model: Optional[str] = None


class Run(BaseModel):
    """One execution of a workflow against one input."""

    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    workflow_id: str
    workflow_name: str
    status: RunStatus = RunStatus.PENDING
    input: JsonObject = Field(default_factory=dict)
    step_states: Dict[str, StepState] = Field(default_factory=dict)
    current_step_id: Optional[str] = None
    error: Optional[str] = None
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)
    completed_at: Optional[datetime] = None
    parent_run_id: Optional[str] = None
    parent_step_id: Optional[str] = None
    usage: Optional[TokenUsageSummary] = None

    @classmethod
    def for_workflow(
        cls,
        workflow: Workflow,
        input: Optional[JsonObject] = None,
        parent_run_id: Optional[str] = None,
        parent_step_id: Optional[str] = None,
    ) -> "Run":
        return cls(
            workflow_id=workflow.id,
            workflow_name=workflow.name,
            input=input or {},
            step_states={s.id: StepState(step_id=s.id) for s in workflow.steps},
            parent_run_id=parent_run_id,
            parent_step_id=parent_step_id,
        )

    def transition(self, status: RunStatus) -> None:
        """Move the run to ``status``, refusing backwards moves."""
        if status == self.status:
            return
        if status not in _RUN_TRANSITIONS[self.status]:
            raise InvalidTransitionError(
                f"Run {self.id} cannot move from {self.status.value} to {status.value}"
            )
        self.status = status
        self.updated_at = utcnow()
        if status in (RunStatus.COMPLETED, RunStatus.FAILED):
            self.completed_at = self.updated_at

    def update_step(self, step_id: str, **updates: Any) -> StepState:
        state = self.step_states.setdefault(step_id, StepState(step_id=step_id))
        for key, value in updates.items():
            setattr(state, key, value)
        self.updated_at = utcnow()
        return state

    def completed_outputs(self) -> Dict[str, JsonObject]:
        return {
            step_id: state.output
            for step_id, state in self.step_states.items()
            if state.status == StepStatus.COMPLETED and state.output is not None
        }


class HumanDecision(BaseModel):
    action: Literal["approve", "edit", "reject"]
    edited_output: Optional[JsonObject] = None
    comment: Optional[str] = None
    target_step_id: Optional[str] = None


class JudgeResult(BaseModel):
    criteria_scores: Dict[str, float] = Field(default_factory=dict)
    overall_confidence: float = 0.0
    issues: List[str] = Field(default_factory=list)
    recommendation: Literal["pass", "flag", "fail"]
    reasoning: str = ""


# ---------------------------------------------------------------------------
# Trace


class TraceEventType(str, Enum):
    RUN_STARTED = "run_started"
    RUN_COMPLETED = "run_completed"
    RUN_FAILED = "run_failed"
    STEP_STARTED = "step_started"
    STEP_COMPLETED = "step_completed"
    STEP_FAILED = "step_failed"
    STEP_SKIPPED = "step_skipped"
    LLM_CALL = "llm_call"
    JUDGE_RESULT = "judge_result"
    HITL_PAUSED = "hitl_paused"
    HITL_RESUMED = "hitl_resumed"
    CONNECTOR_FIRED = "connector_fired"
    AGENT_ITERATION = "agent_iteration"
    AGENT_TOOL_CALL = "agent_tool_call"
    AGENT_COMPLETE = "agent_complete"
    SUB_WORKFLOW_STARTED = "sub_workflow_started"
    SUB_WORKFLOW_COMPLETED = "sub_workflow_completed"


class TraceEvent(BaseModel):
    """An immutable record of one run-lifecycle occurrence."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    run_id: str
    step_id: Optional[str] = None
    step_name: Optional[str] = None
    type: TraceEventType
    data: Dict[str, Any] = Field(default_factory=dict)
    timestamp: datetime = Field(default_factory=utcnow)
