"""Connector registry and built-in integrations."""

from __future__ import annotations

import logging
from typing import Dict, Iterable, List, Optional

from .base import BaseConnector, ConnectorResult
from .http import HttpConnector
from .slack import SlackConnector

logger = logging.getLogger(__name__)


class ConnectorRegistry:
    """Maps connector types to connector instances."""

    def __init__(self, connectors: Optional[Iterable[BaseConnector]] = None) -> None:
        self._connectors: Dict[str, BaseConnector] = {}
        for connector in connectors or ():
            self.register(connector)

    def register(self, connector: BaseConnector) -> None:
        if connector.connector_type in self._connectors:
            logger.warning(f"Overwriting existing connector: {connector.connector_type}")
        self._connectors[connector.connector_type] = connector

    def get(self, connector_type: str) -> Optional[BaseConnector]:
        return self._connectors.get(connector_type)

    def types(self) -> List[str]:
        return list(self._connectors)

    def __iter__(self):
        return iter(self._connectors.values())

    async def aclose(self) -> None:
        for connector in self._connectors.values():
            await connector.aclose()


def default_connectors() -> ConnectorRegistry:
    """Registry with the built-in HTTP and Slack connectors."""
    return ConnectorRegistry([HttpConnector(), SlackConnector()])


__all__ = [
    "BaseConnector",
    "ConnectorRegistry",
    "ConnectorResult",
    "HttpConnector",
    "SlackConnector",
    "default_connectors",
]
