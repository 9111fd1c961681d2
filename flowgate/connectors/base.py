"""Base connector interface for side-effecting integrations."""

from __future__ import annotations

import abc
from typing import Any, Dict, Optional

from pydantic import BaseModel, Field


class ConnectorResult(BaseModel):
    success: bool
    data: Dict[str, Any] = Field(default_factory=dict)
    error: Optional[str] = None


class BaseConnector(metaclass=abc.ABCMeta):
    """Abstract base for integrations fired by connector steps and agent tools."""

    connector_type: str = ""
    actions: tuple[str, ...] = ()

    @abc.abstractmethod
    async def execute(self, action: str, params: Dict[str, Any]) -> ConnectorResult:
        """Perform ``action`` with ``params``.

        Expected failures are reported as ``ConnectorResult(success=False)``;
        anything raised is treated as a failure by the caller as well.
        """
        raise NotImplementedError

    async def aclose(self) -> None:
        """Release client resources (no-op by default)."""
        pass

    def unsupported(self, action: str) -> ConnectorResult:
        supported = ", ".join(self.actions) or "none"
        return ConnectorResult(
            success=False,
            error=f'Unknown {self.connector_type} action: "{action}". Supported: {supported}',
        )
