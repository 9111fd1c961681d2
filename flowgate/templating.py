"""Placeholder interpolation and branch condition evaluation.

Templates reference the run input and the outputs of completed steps::

    {{input.customer_name}}
    {{steps.draft.result}}
    {{steps.review.issues.0}}

Placeholders that cannot be resolved are left in place verbatim rather than
raising, which keeps half-configured workflows debuggable but means a typo in
a path silently survives into the rendered text.
"""

from __future__ import annotations

import json
import math
import re
from typing import TYPE_CHECKING, Any, Dict, List, Mapping, Optional

from pydantic import BaseModel, Field

if TYPE_CHECKING:
    from .contracts import InputField, Workflow

_PLACEHOLDER = re.compile(r"\{\{([^}]+)\}\}")
_INPUT_REFERENCE = re.compile(r"\{\{\s*input\.([a-zA-Z_][a-zA-Z0-9_.]*)\s*\}\}")

# Two-character operators come first so ">=" is never read as ">".
_OPERATORS = ("===", "!==", ">=", "<=", ">", "<")
_FALSY = {"", "0", "null", "undefined"}


class InterpolationContext(BaseModel):
    input: Dict[str, Any] = Field(default_factory=dict)
    steps: Dict[str, Dict[str, Any]] = Field(default_factory=dict)

    def as_mapping(self) -> Dict[str, Any]:
        return {"input": self.input, "steps": self.steps}


def resolve_path(root: Any, path: str) -> Any:
    """Walk a dotted ``path`` through nested mappings and lists."""
    current = root
    for part in path.split("."):
        if isinstance(current, Mapping):
            current = current.get(part)
        elif isinstance(current, list) and part.isdigit():
            index = int(part)
            current = current[index] if index < len(current) else None
        else:
            return None
        if current is None:
            return None
    return current


def to_text(value: Any) -> str:
    """Render a resolved value the way it appears inside a template."""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    if isinstance(value, (dict, list)):
        return json.dumps(value, separators=(",", ":"))
    return str(value)


def interpolate(template: str, context: InterpolationContext) -> str:
    root = context.as_mapping()

    def _replace(match: re.Match) -> str:
        value = resolve_path(root, match.group(1).strip())
        if value is None:
            return match.group(0)
        return to_text(value)

    return _PLACEHOLDER.sub(_replace, template)


def interpolate_value(value: Any, context: InterpolationContext) -> Any:
    """Interpolate every string leaf of ``value``, preserving its structure."""
    if isinstance(value, str):
        return interpolate(value, context)
    if isinstance(value, list):
        return [interpolate_value(item, context) for item in value]
    if isinstance(value, dict):
        return {key: interpolate_value(item, context) for key, item in value.items()}
    return value


def _strip_quotes(text: str) -> str:
    if len(text) >= 2 and text[0] == text[-1] and text[0] in ("'", '"'):
        return text[1:-1]
    return text


def _as_number(text: str) -> Optional[float]:
    try:
        number = float(text)
    except ValueError:
        return None
    return None if math.isnan(number) else number


def _compare(left: Any, op: str, right: Any) -> bool:
    if op == "===":
        return left == right
    if op == "!==":
        return left != right
    if op == ">":
        return left > right
    if op == "<":
        return left < right
    if op == ">=":
        return left >= right
    return left <= right


def evaluate_condition(expression: str, context: InterpolationContext) -> bool:
    """Evaluate a branch condition such as ``{{steps.j.recommendation}} === 'pass'``."""
    resolved = interpolate(expression, context)

    if resolved == "true":
        return True
    if resolved == "false":
        return False

    for op in _OPERATORS:
        index = resolved.find(op)
        if index == -1:
            continue
        left = _strip_quotes(resolved[:index].strip())
        right = _strip_quotes(resolved[index + len(op):].strip())
        left_number, right_number = _as_number(left), _as_number(right)
        if left_number is not None and right_number is not None:
            return _compare(left_number, op, right_number)
        return _compare(left, op, right)

    return resolved not in _FALSY


# ---------------------------------------------------------------------------
# Input schema inference

_NUMBER_KEYWORDS = (
    "count", "amount", "price", "quantity", "score", "age", "number", "total", "limit",
)
_TEXT_KEYWORDS = (
    "description", "body", "content", "text", "message",
    "html", "prompt", "instructions", "notes", "details",
)
_BOOLEAN_PREFIXES = ("is_", "has_", "should_")
_BOOLEAN_KEYWORDS = ("enable", "active", "flag")


def _infer_field_type(name: str) -> str:
    lower = name.lower()
    if any(keyword in lower for keyword in _NUMBER_KEYWORDS):
        return "number"
    if any(keyword in lower for keyword in _TEXT_KEYWORDS):
        return "text"
    if lower.startswith(_BOOLEAN_PREFIXES) or any(k in lower for k in _BOOLEAN_KEYWORDS):
        return "boolean"
    return "string"


def _find_input_references(value: Any) -> List[str]:
    if isinstance(value, str):
        return [m.group(1).split(".")[0] for m in _INPUT_REFERENCE.finditer(value)]
    if isinstance(value, list):
        return [name for item in value for name in _find_input_references(item)]
    if isinstance(value, dict):
        return [name for item in value.values() for name in _find_input_references(item)]
    return []


def infer_input_schema(workflow: "Workflow") -> List["InputField"]:
    """Infer the input fields a workflow expects.

    Fields come from ``{{input.*}}`` references in step configs, then from the
    trigger's manual fields; a block input schema overrides both.
    """
    from .contracts import InputField, StepType, TriggerConfig

    fields: Dict[str, InputField] = {}
    for step in workflow.steps:
        for name in _find_input_references(step.config_dict()):
            fields.setdefault(name, InputField(name=name, type=_infer_field_type(name)))

    for step in workflow.steps:
        if step.type == StepType.TRIGGER and isinstance(step.config, TriggerConfig):
            for manual in step.config.manual_fields:
                fields.setdefault(manual.name, InputField(name=manual.name, type=manual.type))

    if workflow.block_config is not None:
        for declared in workflow.block_config.input_schema:
            fields[declared.name] = declared.model_copy()

    return list(fields.values())
