"""Tools an agent step can be given: connector actions and a few builtins."""

from __future__ import annotations

import json
import logging
from typing import Any, Dict, List, Literal, Optional

from pydantic_ai import Tool

from ..connectors import BaseConnector, ConnectorRegistry
from ..contracts import AgentToolRef

logger = logging.getLogger(__name__)


def parse_json(json_string: str) -> Dict[str, Any]:
    """Parse a JSON string into a structured object."""
    try:
        return {"success": True, "data": json.loads(json_string)}
    except json.JSONDecodeError as e:
        return {"success": False, "error": f"Invalid JSON: {e}"}


def format_text(
    text: str,
    operation: Literal["uppercase", "lowercase", "trim", "template"],
    variables: Optional[Dict[str, str]] = None,
) -> Dict[str, Any]:
    """Apply a text transformation: uppercase, lowercase, trim, or template substitution.

    Args:
        text: The text to transform.
        operation: The transformation to apply.
        variables: Key-value pairs substituted for ``{{key}}`` when operation is 'template'.
    """
    if operation == "uppercase":
        return {"result": text.upper()}
    if operation == "lowercase":
        return {"result": text.lower()}
    if operation == "trim":
        return {"result": text.strip()}
    result = text
    for key, value in (variables or {}).items():
        result = result.replace(f"{{{{{key}}}}}", str(value))
    return {"result": result}


BUILTIN_TOOLS = {"parse_json": parse_json, "format_text": format_text}


def connector_tool(connector: BaseConnector, action: str) -> Tool:
    """Expose one connector action as an agent tool."""

    async def call_connector(params: Dict[str, Any]) -> Dict[str, Any]:
        try:
            result = await connector.execute(action, params)
        except Exception as e:
            logger.warning(f"Connector tool {connector.connector_type}.{action} raised: {e}")
            return {"success": False, "error": str(e)}
        return result.model_dump()

    return Tool(
        call_connector,
        takes_ctx=False,
        name=f"{connector.connector_type}_{action}",
        description=(
            f"Run the '{action}' action of the {connector.connector_type} connector. "
            "Pass the action parameters as the 'params' object."
        ),
    )


def resolve_agent_tools(refs: List[AgentToolRef], connectors: ConnectorRegistry) -> List[Tool]:
    """Build the tool list for ``refs``; unknown references are skipped with a warning."""
    tools: Dict[str, Tool] = {}
    for ref in refs:
        if ref.type == "builtin":
            function = BUILTIN_TOOLS.get(ref.name or "")
            if function is None:
                logger.warning(f"Unknown builtin tool: {ref.name}")
                continue
            tool = Tool(function, takes_ctx=False)
            tools[tool.name] = tool
            continue

        connector = connectors.get(ref.connector_type or "")
        if connector is None:
            logger.warning(f"Unknown connector for agent tool: {ref.connector_type}")
            continue
        if ref.action not in connector.actions:
            logger.warning(f"Connector {ref.connector_type} has no action {ref.action}")
            continue
        tool = connector_tool(connector, ref.action)
        tools[tool.name] = tool
    return list(tools.values())
