"""Human-approval gate."""

from __future__ import annotations

import logging
from typing import Any, Dict, Optional

from ..contracts import HumanGateConfig, StepType
from .base import BaseStepExecutor, StepContext, StepOutcome, StepPause

logger = logging.getLogger(__name__)


class HumanGateExecutor(BaseStepExecutor):
    """Pauses the run for review unless a passing judge lets it through."""

    step_type = StepType.HUMAN_GATE

    async def execute(self, config: Dict[str, Any], context: StepContext) -> StepOutcome:
        cfg = HumanGateConfig.model_validate(config)

        if cfg.auto_approve_on_judge_pass:
            judge_id = self._judge_step_id(cfg, context)
            judge_output = context.step_output(judge_id) if judge_id else None
            if judge_output and judge_output.get("recommendation") == "pass":
                logger.info(
                    f"Gate {context.step.id} auto-approved by judge {judge_id} "
                    f"for run {context.run.id}"
                )
                return {
                    "decision": "approve",
                    "auto_approved": True,
                    "reason": f'Judge "{judge_id}" passed',
                    "judge_step_id": judge_id,
                }

        return StepPause(
            output={
                "instructions": cfg.instructions,
                "show_steps": {
                    step_id: context.step_output(step_id) for step_id in cfg.show_steps
                },
            }
        )

    @staticmethod
    def _judge_step_id(cfg: HumanGateConfig, context: StepContext) -> Optional[str]:
        if cfg.judge_step_id:
            return cfg.judge_step_id
        for step_id in cfg.show_steps:
            step = context.workflow.get_step(step_id)
            if step is not None and step.type == StepType.JUDGE:
                return step_id
        return None
