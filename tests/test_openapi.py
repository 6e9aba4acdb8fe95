"""Tests for loading OpenAPI documents and parsing operations into tools."""

import json

import httpx
import pytest
import yaml

from spec2tools.errors import SpecLoadError, UnsupportedSchemaError
from spec2tools.models import ApiKeyAuth, BasicAuth, BearerAuth, NoAuth, OAuth2Auth
from spec2tools.openapi import (
    OpenAPILoader,
    collect_schema_errors,
    extract_auth_config,
    extract_base_url,
    extract_operation_auth_config,
    parse_operations,
    tool_name_for,
)


def _by_name(tools):
    return {tool.name: tool for tool in tools}


class TestLoader:
    """Loading from files and URLs."""

    @pytest.mark.asyncio
    async def test_load_json_file(self, tmp_path, users_spec):
        path = tmp_path / "spec.json"
        path.write_text(json.dumps(users_spec))
        document = await OpenAPILoader().load_spec(str(path))
        assert document["info"]["title"] == "Users API"

    @pytest.mark.asyncio
    async def test_load_yaml_file(self, tmp_path, users_spec):
        path = tmp_path / "spec.yaml"
        path.write_text(yaml.safe_dump(users_spec))
        document = await OpenAPILoader().load_spec(str(path))
        assert set(document["paths"]) == {"/users", "/users/{id}"}

    @pytest.mark.asyncio
    async def test_missing_file(self, tmp_path):
        with pytest.raises(SpecLoadError) as exc_info:
            await OpenAPILoader().load_spec(str(tmp_path / "missing.yaml"))
        assert "Cannot read file" in str(exc_info.value)

    @pytest.mark.asyncio
    async def test_invalid_content(self, tmp_path):
        path = tmp_path / "spec.json"
        path.write_text("{not json")
        with pytest.raises(SpecLoadError) as exc_info:
            await OpenAPILoader().load_spec(str(path))
        assert "Invalid JSON or YAML format" in str(exc_info.value)

    @pytest.mark.asyncio
    async def test_scalar_yaml_rejected(self, tmp_path):
        path = tmp_path / "spec.yaml"
        path.write_text("just a string\n")
        with pytest.raises(SpecLoadError):
            await OpenAPILoader().load_spec(str(path))

    @pytest.mark.asyncio
    async def test_load_from_url(self, recorder, users_spec):
        recorder.responder = lambda request: httpx.Response(200, text=yaml.safe_dump(users_spec))
        loader = OpenAPILoader(transport=recorder.transport())
        document = await loader.load_spec("https://specs.example.com/users.yaml")
        assert document["servers"][0]["url"] == "https://api.example.com/"
        assert str(recorder.last.url) == "https://specs.example.com/users.yaml"

    @pytest.mark.asyncio
    async def test_http_error_status(self, recorder):
        recorder.responder = lambda request: httpx.Response(404)
        loader = OpenAPILoader(transport=recorder.transport())
        with pytest.raises(SpecLoadError) as exc_info:
            await loader.load_spec("https://specs.example.com/missing.json")
        assert exc_info.value.status_code == 404
        assert "HTTP 404" in str(exc_info.value)

    @pytest.mark.asyncio
    async def test_transport_failure(self):
        def refuse(request):
            raise httpx.ConnectError("connection refused", request=request)

        loader = OpenAPILoader(transport=httpx.MockTransport(refuse))
        with pytest.raises(SpecLoadError) as exc_info:
            await loader.load_spec("https://specs.example.com/spec.json")
        assert exc_info.value.status_code is None

    @pytest.mark.asyncio
    async def test_url_cache(self, recorder, users_spec):
        recorder.responder = lambda request: httpx.Response(200, json=users_spec)
        loader = OpenAPILoader(cache_seconds=60, transport=recorder.transport())
        await loader.load_spec("https://specs.example.com/spec.json")
        await loader.load_spec("https://specs.example.com/spec.json")
        assert len(recorder.requests) == 1

    @pytest.mark.asyncio
    async def test_no_cache_by_default(self, recorder, users_spec):
        recorder.responder = lambda request: httpx.Response(200, json=users_spec)
        loader = OpenAPILoader(transport=recorder.transport())
        await loader.load_spec("https://specs.example.com/spec.json")
        await loader.load_spec("https://specs.example.com/spec.json")
        assert len(recorder.requests) == 2


class TestBaseUrl:
    """Base URL extraction."""

    def test_trailing_slash_stripped(self, users_spec):
        assert extract_base_url(users_spec) == "https://api.example.com"

    def test_missing_servers(self):
        with pytest.raises(SpecLoadError) as exc_info:
            extract_base_url({"paths": {}})
        assert "No server URL" in str(exc_info.value)

    def test_override_wins(self, users_spec):
        assert extract_base_url(users_spec, override="http://localhost:9000/") == "http://localhost:9000"

    def test_server_variables_use_defaults(self):
        document = {
            "servers": [
                {
                    "url": "https://{region}.example.com/{version}",
                    "variables": {"region": {"default": "eu"}, "version": {"default": "v2"}},
                }
            ]
        }
        assert extract_base_url(document) == "https://eu.example.com/v2"

    def test_relative_server_joined_with_spec_url(self):
        document = {"servers": [{"url": "/api/v1"}]}
        base = extract_base_url(document, source="https://specs.example.com/docs/openapi.json")
        assert base == "https://specs.example.com/api/v1"


class TestAuthConfig:
    """Security scheme extraction."""

    def test_no_security(self, users_spec):
        assert extract_auth_config(users_spec) == NoAuth()

    def test_api_key_header(self, api_key_spec):
        assert extract_auth_config(api_key_spec) == ApiKeyAuth(name="X-API-Key", location="header")

    def test_api_key_query(self, api_key_spec):
        api_key_spec["components"]["securitySchemes"]["ApiKey"]["in"] = "query"
        assert extract_auth_config(api_key_spec) == ApiKeyAuth(name="X-API-Key", location="query")

    def test_api_key_cookie_rejected(self, api_key_spec):
        api_key_spec["components"]["securitySchemes"]["ApiKey"]["in"] = "cookie"
        with pytest.raises(UnsupportedSchemaError):
            extract_auth_config(api_key_spec)

    @pytest.mark.parametrize(
        "scheme, expected",
        [("bearer", BearerAuth()), ("Bearer", BearerAuth()), ("basic", BasicAuth())],
    )
    def test_http_schemes(self, users_spec, scheme, expected):
        users_spec["components"] = {"securitySchemes": {"Http": {"type": "http", "scheme": scheme}}}
        users_spec["security"] = [{"Http": []}]
        assert extract_auth_config(users_spec) == expected

    def test_unknown_http_scheme_is_no_auth(self, users_spec):
        users_spec["components"] = {"securitySchemes": {"Http": {"type": "http", "scheme": "digest"}}}
        users_spec["security"] = [{"Http": []}]
        assert extract_auth_config(users_spec) == NoAuth()

    def test_oauth2_authorization_code(self, users_spec):
        users_spec["components"] = {
            "securitySchemes": {
                "OAuth": {
                    "type": "oauth2",
                    "flows": {
                        "authorizationCode": {
                            "authorizationUrl": "https://auth.example.com/authorize",
                            "tokenUrl": "https://auth.example.com/token",
                            "scopes": {"read": "Read", "write": "Write"},
                        }
                    },
                }
            }
        }
        users_spec["security"] = [{"OAuth": ["read", "write"]}]
        config = extract_auth_config(users_spec)
        assert config == OAuth2Auth(
            authorization_url="https://auth.example.com/authorize",
            token_url="https://auth.example.com/token",
            scopes=("read", "write"),
        )

    def test_oauth2_without_authorization_code_rejected(self, users_spec):
        users_spec["components"] = {
            "securitySchemes": {
                "OAuth": {"type": "oauth2", "flows": {"clientCredentials": {"tokenUrl": "https://x/token"}}}
            }
        }
        users_spec["security"] = [{"OAuth": []}]
        with pytest.raises(UnsupportedSchemaError):
            extract_auth_config(users_spec)

    def test_undeclared_scheme_is_no_auth(self, users_spec):
        users_spec["security"] = [{"Missing": []}]
        assert extract_auth_config(users_spec) == NoAuth()

    def test_operation_security_overrides_global(self, api_key_spec):
        public = api_key_spec["paths"]["/health"]["get"]
        inherited = api_key_spec["paths"]["/users"]["get"]
        assert extract_operation_auth_config(api_key_spec, public) == NoAuth()
        assert extract_operation_auth_config(api_key_spec, inherited) == ApiKeyAuth(name="X-API-Key")

    def test_operation_security_can_require_auth_without_global(self, users_spec):
        users_spec["components"] = {"securitySchemes": {"Token": {"type": "http", "scheme": "bearer"}}}
        operation = users_spec["paths"]["/users"]["post"]
        operation["security"] = [{"Token": []}]
        tools = _by_name(parse_operations(users_spec))
        assert tools["createUser"].auth_config == BearerAuth()
        assert tools["listUsers"].auth_config == NoAuth()


class TestToolNames:
    """Tool naming."""

    def test_operation_id_wins(self):
        assert tool_name_for({"operationId": "listUsers"}, "GET", "/users") == "listUsers"

    def test_synthesized_from_method_and_path(self):
        assert tool_name_for({}, "GET", "/users/{id}") == "get_users_id"
        assert tool_name_for({}, "DELETE", "/users/{id}/posts/{postId}") == "delete_users_id_posts_postId"

    def test_root_path(self):
        assert tool_name_for({}, "GET", "/") == "get_"


class TestParseOperations:
    """Operation parsing."""

    def test_one_tool_per_operation(self, users_spec):
        tools = _by_name(parse_operations(users_spec))
        assert set(tools) == {"listUsers", "createUser", "getUser"}
        assert tools["getUser"].method == "GET"
        assert tools["getUser"].path == "/users/{id}"

    def test_deterministic(self, users_spec):
        first = parse_operations(users_spec)
        second = parse_operations(users_spec)
        assert [t.name for t in first] == [t.name for t in second]
        for a, b in zip(first, second):
            assert a.placement == b.placement
            assert a.json_schema() == b.json_schema()

    def test_placement(self, users_spec):
        tools = _by_name(parse_operations(users_spec))
        assert tools["getUser"].placement.path_params == {"id"}
        assert tools["listUsers"].placement.query_params == {"limit"}
        assert tools["createUser"].placement.body_params == {"name", "email"}

    def test_placement_disjoint_and_complete(self, users_spec):
        for tool in parse_operations(users_spec):
            placement = tool.placement
            assert not placement.path_params & placement.query_params
            assert not placement.query_params & placement.body_params
            assert not placement.path_params & placement.body_params
            assert placement.all_params() == set(tool.json_schema().get("properties", {}))

    def test_body_flattened_into_input(self, users_spec):
        schema = _by_name(parse_operations(users_spec))["createUser"].json_schema()
        assert set(schema["properties"]) == {"name", "email"}
        assert schema["required"] == ["name"]

    def test_header_and_cookie_parameters_skipped(self, users_spec):
        users_spec["paths"]["/users"]["get"]["parameters"] += [
            {"name": "X-Trace", "in": "header", "schema": {"type": "string"}},
            {"name": "session", "in": "cookie", "schema": {"type": "string"}},
        ]
        tool = _by_name(parse_operations(users_spec))["listUsers"]
        assert tool.placement.all_params() == {"limit"}

    def test_path_level_parameters_shared(self, users_spec):
        item = users_spec["paths"]["/users/{id}"]
        item["parameters"] = [item["get"].pop("parameters")[0]]
        item["delete"] = {"operationId": "deleteUser"}
        tools = _by_name(parse_operations(users_spec))
        assert tools["deleteUser"].placement.path_params == {"id"}
        assert tools["getUser"].placement.path_params == {"id"}

    def test_later_parameter_declaration_wins(self, users_spec):
        users_spec["paths"]["/users"]["post"]["parameters"] = [
            {"name": "name", "in": "query", "schema": {"type": "string"}},
        ]
        tool = _by_name(parse_operations(users_spec))["createUser"]
        assert tool.placement.location_of("name") == "body"
        assert not tool.placement.query_params & tool.placement.body_params

    def test_parameter_without_schema_is_string(self, users_spec):
        users_spec["paths"]["/users"]["get"]["parameters"] = [{"name": "q", "in": "query"}]
        tool = _by_name(parse_operations(users_spec))["listUsers"]
        assert tool.json_schema()["properties"]["q"]["type"] == "string"

    def test_descriptions_reach_the_tool_schema(self, users_spec):
        users_spec["paths"]["/users"]["get"]["parameters"] = [
            {"name": "limit", "in": "query", "description": "Max items", "schema": {"type": "integer"}},
            {"name": "cursor", "in": "query", "schema": {"type": "string", "description": "Page cursor"}},
        ]
        body = users_spec["paths"]["/users"]["post"]["requestBody"]["content"]["application/json"]["schema"]
        body["properties"]["name"]["description"] = "Display name"
        tools = _by_name(parse_operations(users_spec))

        listed = tools["listUsers"].json_schema()["properties"]
        assert listed["limit"]["description"] == "Max items"
        assert listed["cursor"]["description"] == "Page cursor"
        created = tools["createUser"].json_schema()["properties"]
        assert created["name"]["description"] == "Display name"
        assert "description" not in created["email"]

    def test_required_path_parameter(self, users_spec):
        schema = _by_name(parse_operations(users_spec))["getUser"].json_schema()
        assert schema["required"] == ["id"]
        assert schema["properties"]["id"]["type"] == "integer"

    def test_description_fallbacks(self, users_spec):
        users_spec["paths"]["/users/{id}"]["get"]["description"] = "Fetch one user"
        users_spec["paths"]["/users/{id}"]["delete"] = {"operationId": "deleteUser"}
        tools = _by_name(parse_operations(users_spec))
        assert tools["listUsers"].description == "List users"
        assert tools["getUser"].description == "Fetch one user"
        assert tools["deleteUser"].description == "DELETE /users/{id}"

    def test_body_ref_resolved(self, users_spec):
        body = users_spec["paths"]["/users"]["post"]["requestBody"]["content"]["application/json"]
        users_spec["components"] = {"schemas": {"NewUser": body["schema"]}}
        body["schema"] = {"$ref": "#/components/schemas/NewUser"}
        tool = _by_name(parse_operations(users_spec))["createUser"]
        assert tool.placement.body_params == {"name", "email"}

    def test_non_json_body_ignored(self, users_spec):
        users_spec["paths"]["/users"]["post"]["requestBody"] = {
            "content": {"text/plain": {"schema": {"type": "string"}}}
        }
        tool = _by_name(parse_operations(users_spec))["createUser"]
        assert tool.placement.all_params() == set()

    def test_binary_body_rejected(self, users_spec):
        users_spec["paths"]["/users"]["post"]["requestBody"]["content"]["application/json"]["schema"][
            "properties"
        ]["avatar"] = {"type": "string", "format": "binary"}
        with pytest.raises(UnsupportedSchemaError) as exc_info:
            parse_operations(users_spec)
        assert exc_info.value.path == "createUser.requestBody.avatar"

    def test_unsupported_schema_aborts_parse(self, users_spec):
        users_spec["paths"]["/users"]["get"]["parameters"][0]["schema"] = {
            "oneOf": [{"type": "string"}, {"type": "integer"}]
        }
        with pytest.raises(UnsupportedSchemaError) as exc_info:
            parse_operations(users_spec)
        assert exc_info.value.path == "listUsers.parameters.limit"

    def test_nested_body_object_depth(self, users_spec):
        properties = users_spec["paths"]["/users"]["post"]["requestBody"]["content"]["application/json"][
            "schema"
        ]["properties"]
        properties["address"] = {"type": "object", "properties": {"city": {"type": "string"}}}
        tool = _by_name(parse_operations(users_spec))["createUser"]
        assert "address" in tool.placement.body_params

        properties["address"]["properties"]["geo"] = {
            "type": "object",
            "properties": {"lat": {"type": "number"}},
        }
        with pytest.raises(UnsupportedSchemaError):
            parse_operations(users_spec)

    def test_duplicate_names_last_wins(self, users_spec):
        users_spec["paths"]["/people"] = {"get": {"operationId": "listUsers", "summary": "People"}}
        tools = parse_operations(users_spec)
        assert [t.name for t in tools].count("listUsers") == 1
        assert _by_name(tools)["listUsers"].path == "/people"

    def test_ignores_unknown_methods(self, users_spec):
        users_spec["paths"]["/users"]["options"] = {"operationId": "optionsUsers"}
        users_spec["paths"]["/users"]["head"] = {"operationId": "headUsers"}
        assert "optionsUsers" not in _by_name(parse_operations(users_spec))


class TestCollectSchemaErrors:
    """Collecting every unsupported schema at once."""

    def test_reports_each_failing_operation(self, users_spec):
        users_spec["paths"]["/users"]["get"]["parameters"][0]["schema"] = {"anyOf": []}
        users_spec["paths"]["/users/{id}"]["get"]["parameters"][0]["schema"] = {"type": "array"}
        errors = collect_schema_errors(users_spec)
        assert {error.path for error in errors} == {
            "listUsers.parameters.limit",
            "getUser.parameters.id",
        }

    def test_clean_document(self, users_spec):
        assert collect_schema_errors(users_spec) == []
