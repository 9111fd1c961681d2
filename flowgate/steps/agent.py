"""Autonomous tool-using agent step."""

from __future__ import annotations

import json
import logging
from typing import Any, Dict, List, Optional, Sequence

from pydantic import BaseModel, Field
from pydantic_ai import Agent, capture_run_messages
from pydantic_ai.exceptions import UsageLimitExceeded
from pydantic_ai.messages import (
    ModelMessage,
    ModelRequest,
    ModelResponse,
    TextPart,
    ToolCallPart,
    ToolReturnPart,
)
from pydantic_ai.usage import UsageLimits

from ..connectors import ConnectorRegistry
from ..contracts import AgentConfig, StepType, TraceEventType
from .agent_tools import resolve_agent_tools
from .base import BaseStepExecutor, StepContext, StepOutcome, StepPause
from .llm import ModelResolver, model_settings, responded_model

logger = logging.getLogger(__name__)


class AgentAnswer(BaseModel):
    """Final answer an agent submits when its task is complete."""

    result: Dict[str, Any] = Field(default_factory=dict)
    confidence: Optional[float] = Field(
        default=None, ge=0, le=1, description="Self-assessed confidence in the result"
    )


def _system_prompt(cfg: AgentConfig) -> str:
    prompt = cfg.system_prompt
    if cfg.output_schema:
        prompt += (
            "\n\nThe result object must match this JSON schema:\n"
            + json.dumps(cfg.output_schema, indent=2)
        )
    if cfg.hitl_on_low_confidence:
        prompt += (
            "\n\nAssess your confidence in the final answer on a scale of 0 to 1 "
            "and report it in the confidence field."
        )
    return prompt


def _usage_from_messages(messages: Sequence[ModelMessage]) -> Dict[str, int]:
    prompt = completion = 0
    for message in messages:
        if isinstance(message, ModelResponse):
            prompt += message.usage.input_tokens or 0
            completion += message.usage.output_tokens or 0
    return {
        "prompt_tokens": prompt,
        "completion_tokens": completion,
        "total_tokens": prompt + completion,
    }


def _iterations(messages: Sequence[ModelMessage], tool_names: set) -> List[Dict[str, Any]]:
    """One entry per model response, with the tool calls it made and their results."""
    returns: Dict[str, Any] = {}
    for message in messages:
        if isinstance(message, ModelRequest):
            for part in message.parts:
                if isinstance(part, ToolReturnPart):
                    returns[part.tool_call_id] = part.content

    iterations: List[Dict[str, Any]] = []
    for message in messages:
        if not isinstance(message, ModelResponse):
            continue
        calls = [
            {
                "tool_name": part.tool_name,
                "arguments": part.args_as_dict(),
                "result": returns.get(part.tool_call_id),
            }
            for part in message.parts
            if isinstance(part, ToolCallPart) and part.tool_name in tool_names
        ]
        iterations.append(
            {
                "index": len(iterations),
                "reasoning": "".join(
                    p.content for p in message.parts if isinstance(p, TextPart)
                ),
                "tool_calls": calls,
                "tokens_used": {
                    "prompt": message.usage.input_tokens or 0,
                    "completion": message.usage.output_tokens or 0,
                },
            }
        )
    return iterations


class AgentExecutor(BaseStepExecutor):
    step_type = StepType.AGENT

    def __init__(self, resolver: ModelResolver, connectors: ConnectorRegistry) -> None:
        self._resolver = resolver
        self._connectors = connectors

    async def execute(self, config: Dict[str, Any], context: StepContext) -> StepOutcome:
        cfg = AgentConfig.model_validate(config)
        tools = resolve_agent_tools(cfg.tools, self._connectors)
        agent = Agent(
            self._resolver.resolve(cfg.model),
            system_prompt=_system_prompt(cfg),
            output_type=AgentAnswer,
            tools=tools,
        )

        answer: Optional[AgentAnswer] = None
        stop_reason = "completed"
        with capture_run_messages() as messages:
            try:
                result = await agent.run(
                    cfg.task_prompt,
                    model_settings=model_settings(cfg.temperature),
                    usage_limits=UsageLimits(request_limit=cfg.max_iterations),
                )
                answer = result.output
            except UsageLimitExceeded as e:
                logger.warning(f"Agent step {context.step.id} stopped: {e}")
                stop_reason = "max_iterations"

        iterations = _iterations(messages, {tool.name for tool in tools})
        for iteration in iterations:
            await context.emit(
                TraceEventType.AGENT_ITERATION,
                {k: v for k, v in iteration.items() if k != "tool_calls"},
            )
            for call in iteration["tool_calls"]:
                await context.emit(
                    TraceEventType.AGENT_TOOL_CALL,
                    {"iteration": iteration["index"], **call},
                )

        if answer is not None:
            payload = answer.result
        else:
            # Out of requests: keep whatever the model last said.
            last_text = next(
                (it["reasoning"] for it in reversed(iterations) if it["reasoning"]), ""
            )
            payload = {"partial": last_text} if last_text else {}

        confidence = answer.confidence if answer is not None else None
        if (
            cfg.hitl_on_low_confidence
            and confidence is not None
            and confidence < cfg.confidence_threshold
        ):
            stop_reason = "hitl_escalation"

        output = {
            "result": payload,
            "iterations": iterations,
            "total_iterations": len(iterations),
            "stop_reason": stop_reason,
            "confidence": confidence,
            "usage": _usage_from_messages(messages),
            "model": responded_model(messages, self._resolver.display_name(cfg.model)),
        }
        await context.emit(
            TraceEventType.AGENT_COMPLETE,
            {
                "stop_reason": stop_reason,
                "total_iterations": len(iterations),
                "usage": output["usage"],
                "model": output["model"],
                "confidence": confidence,
            },
        )

        if stop_reason == "hitl_escalation":
            logger.info(
                f"Agent step {context.step.id} escalated for review "
                f"(confidence {confidence} < {cfg.confidence_threshold})"
            )
            return StepPause(output=output)
        return output
