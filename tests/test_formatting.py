"""Tests for human-readable tool renderings."""

import json

from spec2tools.formatting import format_tool_schema, format_tool_signature
from spec2tools.openapi import parse_operations


def _tool(document, name):
    return {tool.name: tool for tool in parse_operations(document)}[name]


class TestSignature:
    def test_required_and_optional(self, users_spec):
        assert format_tool_signature(_tool(users_spec, "createUser")) == "createUser(name: string, email?: string)"
        assert format_tool_signature(_tool(users_spec, "getUser")) == "getUser(id: integer)"

    def test_no_parameters(self, api_key_spec):
        assert format_tool_signature(_tool(api_key_spec, "health")) == "health()"

    def test_arrays_enums_and_objects(self, users_spec):
        users_spec["paths"]["/users"]["get"]["parameters"] = [
            {"name": "tags", "in": "query", "required": True, "schema": {"type": "array", "items": {"type": "string"}}},
            {"name": "order", "in": "query", "schema": {"type": "string", "enum": ["asc", "desc"]}},
            {"name": "filter", "in": "query", "schema": {"type": "object", "properties": {"q": {"type": "string"}}}},
        ]
        signature = format_tool_signature(_tool(users_spec, "listUsers"))
        assert signature == "listUsers(tags: string[], order?: string, filter?: object)"

    def test_number_label(self, users_spec):
        users_spec["paths"]["/users"]["get"]["parameters"] = [
            {"name": "score", "in": "query", "required": True, "schema": {"type": "number"}},
        ]
        assert format_tool_signature(_tool(users_spec, "listUsers")) == "listUsers(score: number)"


class TestSchema:
    def test_pretty_printed_json(self, users_spec):
        rendered = format_tool_schema(_tool(users_spec, "getUser"))
        assert json.loads(rendered)["properties"]["id"]["type"] == "integer"
        assert "\n  " in rendered
