"""Error types raised by the spec2tools core."""

from __future__ import annotations

from typing import Any, Optional


class Spec2ToolsError(Exception):
    pass


class SpecLoadError(Spec2ToolsError):
    """The OpenAPI document could not be fetched, read or parsed."""

    def __init__(self, message: str, status_code: Optional[int] = None) -> None:
        super().__init__(f"Failed to load OpenAPI spec: {message}")
        self.status_code = status_code


class UnsupportedSchemaError(Spec2ToolsError):
    """A schema node uses a feature outside the supported subset."""

    def __init__(self, path: str, reason: str) -> None:
        super().__init__(f"Unsupported schema at {path}: {reason}")
        self.path = path
        self.reason = reason


class AuthenticationError(Spec2ToolsError):
    def __init__(self, message: str) -> None:
        super().__init__(f"Authentication failed: {message}")


class ToolExecutionError(Spec2ToolsError):
    """Wraps any failure raised while invoking a single tool."""

    def __init__(self, tool_name: str, cause: BaseException) -> None:
        super().__init__(f"Tool {tool_name} failed: {cause}")
        self.tool_name = tool_name
        self.cause = cause


class ApiResponseError(Exception):
    """Non-2xx response from the target API."""

    def __init__(self, message: str, status_code: int, method: str, url: str, payload: Any) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.method = method
        self.url = url
        self.payload = payload
