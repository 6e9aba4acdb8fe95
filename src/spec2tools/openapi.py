"""OpenAPI spec loader and operation parser."""

from __future__ import annotations

import json
import logging
import re
import time
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple
from urllib.parse import urljoin

import httpx
import yaml

from .errors import SpecLoadError, UnsupportedSchemaError
from .models import (
    HTTP_METHODS,
    ApiKeyAuth,
    AuthConfig,
    BasicAuth,
    BearerAuth,
    NoAuth,
    OAuth2Auth,
    ParameterPlacement,
    ToolDefinition,
)
from .schema import SchemaField, build_model, describe, model_name, resolve_ref, translate_schema


logger = logging.getLogger(__name__)

JSON_MEDIA_TYPE = "application/json"


def is_url(source: str) -> bool:
    return source.startswith("http://") or source.startswith("https://")


class OpenAPILoader:
    def __init__(
        self,
        cache_seconds: int = 0,
        timeout_seconds: float = 30,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.cache_seconds = cache_seconds
        self.timeout_seconds = timeout_seconds
        self.transport = transport
        self._cache: Dict[str, Tuple[float, Dict[str, Any]]] = {}

    async def load_spec(self, source: str) -> Dict[str, Any]:
        if is_url(source):
            cached = self._cache.get(source)
            if cached and time.time() - cached[0] < self.cache_seconds:
                return cached[1]
            content = await self._fetch(source)
        else:
            content = self._read(source)

        document = self._parse(source, content)

        if is_url(source) and self.cache_seconds > 0:
            self._cache[source] = (time.time(), document)
        logger.info("Loaded OpenAPI spec from %s", source)
        return document

    async def _fetch(self, url: str) -> str:
        try:
            async with httpx.AsyncClient(timeout=self.timeout_seconds, transport=self.transport) as client:
                response = await client.get(url)
        except httpx.HTTPError as exc:
            raise SpecLoadError(f"Cannot fetch {url}: {exc}") from exc

        if not response.is_success:
            logger.warning("Failed to fetch OpenAPI spec: %s (%s)", url, response.status_code)
            raise SpecLoadError(
                f"HTTP {response.status_code}: {response.reason_phrase}",
                status_code=response.status_code,
            )
        return response.text

    def _read(self, path: str) -> str:
        try:
            return Path(path).read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError) as exc:
            raise SpecLoadError(f"Cannot read file: {path}") from exc

    def _parse(self, source: str, content: str) -> Dict[str, Any]:
        try:
            if source.endswith(".json") or content.strip().startswith("{"):
                document = json.loads(content)
            else:
                document = yaml.safe_load(content)
        except (ValueError, yaml.YAMLError) as exc:
            raise SpecLoadError("Invalid JSON or YAML format") from exc

        if not isinstance(document, dict):
            raise SpecLoadError("Invalid JSON or YAML format")
        return document


def extract_base_url(
    document: Dict[str, Any], source: Optional[str] = None, override: Optional[str] = None
) -> str:
    """Pick the API base URL: explicit override, else the first declared server."""
    if override:
        return override.rstrip("/")

    servers = document.get("servers") or []
    server = servers[0] if servers else None
    if not isinstance(server, dict) or not server.get("url"):
        raise SpecLoadError("No server URL defined in OpenAPI spec")

    url = server["url"]
    for name, variable in (server.get("variables") or {}).items():
        default = (variable or {}).get("default")
        if default is not None:
            url = url.replace(f"{{{name}}}", str(default))

    if not is_url(url) and source and is_url(source):
        url = urljoin(source, url)
    return url.rstrip("/")


def extract_auth_config(document: Dict[str, Any]) -> AuthConfig:
    return _auth_config_from_security(document.get("security"), document)


def extract_operation_auth_config(document: Dict[str, Any], operation: Dict[str, Any]) -> AuthConfig:
    # An operation's own security list wins, even when it is empty.
    if "security" in operation:
        return _auth_config_from_security(operation.get("security") or [], document)
    return extract_auth_config(document)


def _auth_config_from_security(
    security: Optional[List[Dict[str, List[str]]]], document: Dict[str, Any]
) -> AuthConfig:
    if not security:
        return NoAuth()

    schemes = (document.get("components") or {}).get("securitySchemes") or {}
    requirement = security[0] or {}
    if not requirement:
        return NoAuth()

    scheme_name = next(iter(requirement))
    scheme = schemes.get(scheme_name)
    if not scheme:
        logger.warning("Security scheme %s is not declared in components", scheme_name)
        return NoAuth()

    return _parse_security_scheme(scheme_name, scheme, requirement.get(scheme_name) or [])


def _parse_security_scheme(name: str, scheme: Dict[str, Any], scopes: List[str]) -> AuthConfig:
    scheme_type = scheme.get("type")
    path = f"securitySchemes.{name}"

    if scheme_type == "oauth2":
        flow = (scheme.get("flows") or {}).get("authorizationCode")
        if not flow:
            raise UnsupportedSchemaError(path, "Only OAuth2 authorization code flow is supported")
        if not flow.get("authorizationUrl") or not flow.get("tokenUrl"):
            raise UnsupportedSchemaError(path, "OAuth2 flow requires authorizationUrl and tokenUrl")
        return OAuth2Auth(
            authorization_url=flow["authorizationUrl"],
            token_url=flow["tokenUrl"],
            scopes=tuple(scopes),
        )

    if scheme_type == "apiKey":
        location = scheme.get("in", "header")
        if location not in {"header", "query"}:
            raise UnsupportedSchemaError(path, f"apiKey in {location} is not supported")
        if not scheme.get("name"):
            raise UnsupportedSchemaError(path, "apiKey scheme requires a name")
        return ApiKeyAuth(name=scheme["name"], location=location)

    if scheme_type == "http":
        http_scheme = (scheme.get("scheme") or "").lower()
        if http_scheme == "bearer":
            return BearerAuth()
        if http_scheme == "basic":
            return BasicAuth()

    logger.warning("Unsupported security scheme %s (%s); treating as no auth", name, scheme_type)
    return NoAuth()


def tool_name_for(operation: Dict[str, Any], method: str, path: str) -> str:
    if operation.get("operationId"):
        return operation["operationId"]
    clean_path = re.sub(r"^_", "", path.replace("{", "").replace("}", "").replace("/", "_"))
    return f"{method.lower()}_{clean_path}"


def parse_operations(document: Dict[str, Any]) -> List[ToolDefinition]:
    """Build one tool definition per path and method of the document.

    The first unsupported schema aborts the whole parse. Tool names are
    unique: a later operation with an already used name replaces the earlier
    one.
    """
    tools: Dict[str, ToolDefinition] = {}
    for path, method, operation, shared_parameters in _iter_operations(document):
        tool = _build_tool(document, path, method, operation, shared_parameters)
        if tool.name in tools:
            previous = tools[tool.name]
            logger.warning(
                "Duplicate tool name %s: %s %s replaces %s %s",
                tool.name,
                tool.method,
                tool.path,
                previous.method,
                previous.path,
            )
        tools[tool.name] = tool
    logger.debug("Parsed %s operations", len(tools))
    return list(tools.values())


def collect_schema_errors(document: Dict[str, Any]) -> List[UnsupportedSchemaError]:
    """Translate every operation and report all failures instead of the first."""
    errors: List[UnsupportedSchemaError] = []
    for path, method, operation, shared_parameters in _iter_operations(document):
        try:
            _build_tool(document, path, method, operation, shared_parameters)
        except UnsupportedSchemaError as exc:
            errors.append(exc)
    return errors


def _iter_operations(document: Dict[str, Any]):
    for path, path_item in (document.get("paths") or {}).items():
        path_item = path_item or {}
        shared_parameters = path_item.get("parameters") or []
        for method in HTTP_METHODS:
            operation = path_item.get(method.lower())
            if operation is None:
                continue
            yield path, method, operation, shared_parameters


def _build_tool(
    document: Dict[str, Any],
    path: str,
    method: str,
    operation: Dict[str, Any],
    shared_parameters: List[Dict[str, Any]],
) -> ToolDefinition:
    name = tool_name_for(operation, method, path)
    fields: Dict[str, SchemaField] = {}
    locations: Dict[str, str] = {}

    parameters = [*shared_parameters, *(operation.get("parameters") or [])]
    for parameter in parameters:
        param_name = parameter.get("name")
        location = parameter.get("in")
        if not param_name:
            logger.debug("Skipping unnamed parameter in %s", name)
            continue
        if location not in {"path", "query"}:
            continue

        schema = parameter.get("schema")
        annotation: Any = str
        if schema:
            annotation = translate_schema(
                schema, f"{name}.parameters.{param_name}", document, depth=0
            )
        fields[param_name] = SchemaField(
            name=param_name,
            annotation=describe(annotation, parameter.get("description")),
            required=bool(parameter.get("required", False)),
        )
        locations[param_name] = location

    for field in _build_body_fields(document, operation, name):
        # Later declarations own the field and its placement.
        fields[field.name] = field
        locations[field.name] = "body"

    input_model = build_model(f"{model_name(name)}Input", fields.values())
    placement = ParameterPlacement(
        path_params=frozenset(n for n, loc in locations.items() if loc == "path"),
        query_params=frozenset(n for n, loc in locations.items() if loc == "query"),
        body_params=frozenset(n for n, loc in locations.items() if loc == "body"),
    )

    return ToolDefinition(
        name=name,
        description=operation.get("summary") or operation.get("description") or f"{method} {path}",
        input_model=input_model,
        method=method,
        path=path,
        auth_config=extract_operation_auth_config(document, operation),
        placement=placement,
    )


def _build_body_fields(
    document: Dict[str, Any], operation: Dict[str, Any], name: str
) -> List[SchemaField]:
    content = (operation.get("requestBody") or {}).get("content") or {}
    schema = (content.get(JSON_MEDIA_TYPE) or {}).get("schema")
    if not schema:
        return []

    if schema.get("type") == "string" and schema.get("format") == "binary":
        raise UnsupportedSchemaError(f"{name}.requestBody", "File uploads are not supported")

    seen_refs: frozenset = frozenset()
    if "$ref" in schema:
        schema, seen_refs = resolve_ref(schema["$ref"], document)

    if schema.get("type") != "object" and "properties" not in schema:
        logger.warning("Ignoring non-object JSON request body of %s", name)
        return []

    required = set(schema.get("required") or [])
    fields: List[SchemaField] = []
    for prop_name, prop_schema in (schema.get("properties") or {}).items():
        prop_path = f"{name}.requestBody.{prop_name}"
        if prop_schema.get("type") == "string" and prop_schema.get("format") == "binary":
            raise UnsupportedSchemaError(prop_path, "File uploads are not supported")
        fields.append(
            SchemaField(
                name=prop_name,
                annotation=translate_schema(prop_schema, prop_path, document, 1, seen_refs),
                required=prop_name in required,
            )
        )
    return fields
