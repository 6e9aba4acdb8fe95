"""Turn OpenAPI documents into schema-validated, callable HTTP tools."""

from .auth import AuthManager, AuthState
from .errors import (
    ApiResponseError,
    AuthenticationError,
    SpecLoadError,
    ToolExecutionError,
    UnsupportedSchemaError,
)
from .executors import Tool, ToolExecutor, bind_tools
from .models import (
    ApiKeyAuth,
    AuthConfig,
    BasicAuth,
    BearerAuth,
    NoAuth,
    OAuth2Auth,
    ParameterPlacement,
    ToolDefinition,
)
from .openapi import (
    OpenAPILoader,
    collect_schema_errors,
    extract_auth_config,
    extract_base_url,
    parse_operations,
)
from .tool_registry import ToolRegistry, ToolSession, create_tools

__all__ = [
    "ApiKeyAuth",
    "ApiResponseError",
    "AuthConfig",
    "AuthManager",
    "AuthState",
    "AuthenticationError",
    "BasicAuth",
    "BearerAuth",
    "NoAuth",
    "OAuth2Auth",
    "OpenAPILoader",
    "ParameterPlacement",
    "SpecLoadError",
    "Tool",
    "ToolDefinition",
    "ToolExecutionError",
    "ToolExecutor",
    "ToolRegistry",
    "ToolSession",
    "UnsupportedSchemaError",
    "bind_tools",
    "collect_schema_errors",
    "create_tools",
    "extract_auth_config",
    "extract_base_url",
    "parse_operations",
]
