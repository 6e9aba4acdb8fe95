"""Human-readable renderings of tool parameters."""

from __future__ import annotations

import json
from typing import Any, Dict, List

from .models import ToolDefinition

_JSON_TYPES = {
    "string": "string",
    "integer": "integer",
    "number": "number",
    "boolean": "boolean",
    "object": "object",
}


def format_tool_signature(tool: ToolDefinition) -> str:
    """Render ``name(a: integer, b?: string[])`` from the parameter schema."""
    schema = tool.json_schema()
    required = set(schema.get("required") or [])
    params: List[str] = []
    for name, prop in (schema.get("properties") or {}).items():
        marker = "" if name in required else "?"
        params.append(f"{name}{marker}: {_type_label(prop)}")
    return f"{tool.name}({', '.join(params)})"


def format_tool_schema(tool: ToolDefinition) -> str:
    return json.dumps(tool.json_schema(), indent=2)


def _type_label(prop: Dict[str, Any]) -> str:
    if "$ref" in prop or "allOf" in prop:
        return "object"
    if "enum" in prop or "const" in prop:
        return "string"
    if "anyOf" in prop:
        labels = {_type_label(option) for option in prop["anyOf"]}
        if labels <= {"integer", "number"}:
            return "number"
        return " | ".join(sorted(labels))
    prop_type = prop.get("type")
    if prop_type == "array":
        return f"{_type_label(prop.get('items') or {})}[]"
    return _JSON_TYPES.get(prop_type, "unknown")
