from __future__ import annotations

import logging
from typing import Any, Dict

from ..connectors import ConnectorRegistry
from ..contracts import ConnectorConfig, StepType
from ..errors import StepExecutionError
from .base import BaseStepExecutor, StepContext

logger = logging.getLogger(__name__)


class ConnectorExecutor(BaseStepExecutor):
    """Fires a side-effecting connector action."""

    step_type = StepType.CONNECTOR

    def __init__(self, connectors: ConnectorRegistry) -> None:
        self._connectors = connectors

    async def execute(self, config: Dict[str, Any], context: StepContext) -> Dict[str, Any]:
        cfg = ConnectorConfig.model_validate(config)
        connector = self._connectors.get(cfg.connector_type)
        if connector is None:
            raise StepExecutionError(f'Unknown connector type: "{cfg.connector_type}"')

        logger.info(
            f"Firing {cfg.connector_type}.{cfg.action} for step {context.step.id} "
            f"of run {context.run.id}"
        )
        try:
            result = await connector.execute(cfg.action, dict(cfg.params))
        except Exception as e:
            raise StepExecutionError(
                f"Connector {cfg.connector_type}.{cfg.action} raised: {e}"
            ) from e
        if not result.success:
            raise StepExecutionError(
                result.error or f"Connector {cfg.connector_type}.{cfg.action} failed"
            )
        return {
            "connector_type": cfg.connector_type,
            "action": cfg.action,
            "success": True,
            **result.data,
        }
