"""Automated quality judge over another step's output."""

from __future__ import annotations

import json
import logging
from typing import Any, Dict, List

from pydantic import BaseModel, Field
from pydantic_ai import Agent

from ..constants import JUDGE_FLAG_RATIO
from ..contracts import JudgeConfig, JudgeCriterion, JudgeResult, StepType
from ..errors import StepExecutionError
from .base import BaseStepExecutor, StepContext
from .llm import ModelResolver, model_settings, responded_model, usage_dict

logger = logging.getLogger(__name__)

JUDGE_SYSTEM_PROMPT = (
    "You are a quality assessment judge. Evaluate the given content against each "
    "criterion. Score every criterion from 0.0 to 1.0, give an overall confidence "
    "as the weighted average of the scores, list concrete issues, and explain "
    "your reasoning briefly."
)
JUDGE_TEMPERATURE = 0.3


class JudgeAssessment(BaseModel):
    """Structured answer requested from the judge model."""

    criteria_scores: Dict[str, float] = Field(default_factory=dict)
    overall_confidence: float = Field(ge=0, le=1)
    issues: List[str] = Field(default_factory=list)
    reasoning: str = ""


def recommend(confidence: float, threshold: float) -> str:
    """Map a confidence score to pass / flag / fail against ``threshold``."""
    if confidence >= threshold:
        return "pass"
    if confidence >= threshold * JUDGE_FLAG_RATIO:
        return "flag"
    return "fail"


def build_judge_prompt(criteria: List[JudgeCriterion], content: Any) -> str:
    criteria_block = "\n".join(
        f"- {c.name} (weight: {c.weight}): {c.description}" for c in criteria
    )
    if not isinstance(content, str):
        content = json.dumps(content, indent=2)
    return f"## Criteria\n{criteria_block}\n\n## Content to Evaluate\n{content}"


class JudgeExecutor(BaseStepExecutor):
    step_type = StepType.JUDGE

    def __init__(self, resolver: ModelResolver) -> None:
        self._resolver = resolver

    async def execute(self, config: Dict[str, Any], context: StepContext) -> Dict[str, Any]:
        cfg = JudgeConfig.model_validate(config)
        content = context.step_output(cfg.input_step_id)
        if not content:
            raise StepExecutionError(
                f'Judge: input step "{cfg.input_step_id}" has no output in context'
            )

        agent = Agent(
            self._resolver.resolve(cfg.model),
            system_prompt=JUDGE_SYSTEM_PROMPT,
            output_type=JudgeAssessment,
        )
        result = await agent.run(
            build_judge_prompt(cfg.criteria, content),
            model_settings=model_settings(JUDGE_TEMPERATURE),
        )
        assessment = result.output
        verdict = JudgeResult(
            criteria_scores=assessment.criteria_scores,
            overall_confidence=assessment.overall_confidence,
            issues=assessment.issues,
            recommendation=recommend(assessment.overall_confidence, cfg.threshold),
            reasoning=assessment.reasoning,
        )
        logger.info(
            f"Judge {context.step.id} scored {verdict.overall_confidence:.2f} "
            f"(threshold {cfg.threshold}): {verdict.recommendation}"
        )
        return {
            **verdict.model_dump(),
            "model": responded_model(
                result.all_messages(), self._resolver.display_name(cfg.model)
            ),
            "usage": usage_dict(result.usage()),
        }
