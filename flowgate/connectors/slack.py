"""Slack incoming-webhook connector."""

from __future__ import annotations

import os
from typing import Any, Dict, Optional

import httpx

from .base import BaseConnector, ConnectorResult


class SlackConnector(BaseConnector):
    connector_type = "slack"
    actions = ("send_message",)

    def __init__(self, client: Optional[httpx.AsyncClient] = None, timeout: float = 15.0):
        self._client = client or httpx.AsyncClient(timeout=timeout)

    async def execute(self, action: str, params: Dict[str, Any]) -> ConnectorResult:
        if action != "send_message":
            return self.unsupported(action)

        webhook_url = params.get("webhook_url") or os.getenv("SLACK_WEBHOOK_URL")
        if not webhook_url:
            return ConnectorResult(
                success=False,
                error="No Slack webhook URL configured. Set SLACK_WEBHOOK_URL or provide webhook_url in params.",
            )

        payload = {"text": params.get("text", "")}
        for key in ("channel", "username", "icon_emoji"):
            if params.get(key) is not None:
                payload[key] = params[key]

        try:
            response = await self._client.post(webhook_url, json=payload)
        except httpx.HTTPError as e:
            return ConnectorResult(success=False, error=f"Slack webhook failed: {e}")
        if response.is_error:
            return ConnectorResult(
                success=False,
                error=f"Slack webhook failed: {response.status_code} {response.text}",
            )
        return ConnectorResult(success=True, data={"message": "Message sent"})

    async def aclose(self) -> None:
        await self._client.aclose()
