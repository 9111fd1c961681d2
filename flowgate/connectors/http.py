"""Generic HTTP request connector."""

from __future__ import annotations

import json
from typing import Any, Dict, Optional

import httpx

from .base import BaseConnector, ConnectorResult

_ERROR_BODY_LIMIT = 200


class HttpConnector(BaseConnector):
    connector_type = "http"
    actions = ("request",)

    def __init__(self, client: Optional[httpx.AsyncClient] = None, timeout: float = 30.0):
        self._client = client or httpx.AsyncClient(timeout=timeout)

    async def execute(self, action: str, params: Dict[str, Any]) -> ConnectorResult:
        if action != "request":
            return self.unsupported(action)

        url = params.get("url")
        if not url:
            return ConnectorResult(success=False, error="URL is required for HTTP connector")

        method = str(params.get("method") or "POST").upper()
        headers: Dict[str, str] = {}
        auth_type = params.get("auth_type") or "none"
        auth_token = params.get("auth_token")
        if auth_type == "bearer" and auth_token:
            headers["Authorization"] = f"Bearer {auth_token}"
        elif auth_type == "api-key" and auth_token:
            headers["X-API-Key"] = str(auth_token)
        if isinstance(params.get("headers"), dict):
            headers.update({k: str(v) for k, v in params["headers"].items()})

        body = params.get("body")
        request_kwargs: Dict[str, Any] = {"headers": headers}
        if isinstance(body, str):
            request_kwargs["content"] = body
            headers.setdefault("Content-Type", "application/json")
        elif body is not None:
            request_kwargs["json"] = body

        try:
            response = await self._client.request(method, url, **request_kwargs)
        except httpx.HTTPError as e:
            return ConnectorResult(success=False, error=f"HTTP request failed: {e}")

        try:
            parsed: Any = response.json()
        except json.JSONDecodeError:
            parsed = response.text

        data = {"status": response.status_code, "body": parsed}
        if response.is_error:
            text = response.text
            if len(text) > _ERROR_BODY_LIMIT:
                text = text[:_ERROR_BODY_LIMIT] + "..."
            return ConnectorResult(
                success=False, error=f"HTTP {response.status_code}: {text}", data=data
            )
        return ConnectorResult(success=True, data=data)

    async def aclose(self) -> None:
        await self._client.aclose()
