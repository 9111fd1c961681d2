from __future__ import annotations

import logging
from typing import Any, Dict

from ..contracts import ConditionConfig, StepType
from ..templating import evaluate_condition
from .base import BaseStepExecutor, StepContext

logger = logging.getLogger(__name__)


class ConditionExecutor(BaseStepExecutor):
    step_type = StepType.CONDITION

    async def execute(self, config: Dict[str, Any], context: StepContext) -> Dict[str, Any]:
        # Evaluate the stored expression; evaluate_condition interpolates it itself.
        cfg = ConditionConfig.model_validate(context.step.config_dict())
        result = evaluate_condition(cfg.expression, context.interpolation)
        branch = "yes" if result else "no"
        # Edges route on branch; label is the display name for it.
        label = (cfg.yes_label if result else cfg.no_label) or branch
        logger.debug(f"Condition {context.step.id} '{cfg.expression}' -> {branch} ({label})")
        return {"result": result, "branch": branch, "label": label}
