"""Single model completion step."""

from __future__ import annotations

import json
import logging
from typing import Any, Dict

from pydantic_ai import Agent

from ..contracts import ModelCallConfig, StepType
from .base import BaseStepExecutor, StepContext
from .llm import ModelResolver, model_settings, responded_model, usage_dict

logger = logging.getLogger(__name__)


class ModelCallExecutor(BaseStepExecutor):
    step_type = StepType.MODEL_CALL

    def __init__(self, resolver: ModelResolver) -> None:
        self._resolver = resolver

    async def execute(self, config: Dict[str, Any], context: StepContext) -> Dict[str, Any]:
        cfg = ModelCallConfig.model_validate(config)
        agent = Agent(
            self._resolver.resolve(cfg.model),
            system_prompt=cfg.system_prompt,
            output_type=str,
        )
        logger.info(f"Calling model for step {context.step.id} of run {context.run.id}")
        result = await agent.run(
            cfg.user_prompt, model_settings=model_settings(cfg.temperature)
        )

        raw = result.output
        output: Dict[str, Any] = {"result": raw}
        if cfg.response_format == "json":
            try:
                output = {"result": json.loads(raw)}
            except json.JSONDecodeError as e:
                logger.warning(f"Step {context.step.id} returned invalid JSON: {e}")
                output = {"result": raw, "parse_error": f"Failed to parse JSON response: {e}"}

        output["model"] = responded_model(
            result.all_messages(), self._resolver.display_name(cfg.model)
        )
        output["usage"] = usage_dict(result.usage())
        return output
