"""Execution layer turning validated tool input into HTTP calls."""

from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Tuple, Type
from urllib.parse import quote

import httpx
from pydantic import BaseModel, ValidationError

from .auth import AuthManager
from .errors import ApiResponseError, ToolExecutionError
from .logging import REDACTED, redact_payload
from .models import ToolDefinition

logger = logging.getLogger(__name__)

BODY_METHODS = {"POST", "PUT", "PATCH"}

_PLACEHOLDER = re.compile(r"\{([^{}]+)\}")

_STATUS_HINTS = {
    401: "Authentication failed. Check your API key/token.",
    403: "Access forbidden. Verify your permissions.",
    404: "Resource not found.",
    429: "Rate limit exceeded. Try again later.",
}
_SERVER_ERROR_HINT = "Server error. The API service may be experiencing issues."


def stringify(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def status_hint(status_code: int) -> Optional[str]:
    if status_code >= 500:
        return _SERVER_ERROR_HINT
    return _STATUS_HINTS.get(status_code)


class ToolExecutor:
    def __init__(
        self,
        definition: ToolDefinition,
        base_url: str,
        auth_manager: AuthManager,
        timeout_seconds: float = 30,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.definition = definition
        self.base_url = base_url.rstrip("/")
        self.auth_manager = auth_manager
        self.timeout_seconds = timeout_seconds
        self.transport = transport

    async def execute(self, raw_params: Any) -> Any:
        name = self.definition.name
        try:
            params = self._validate(raw_params)
            logger.info("Executing tool=%s payload=%s", name, redact_payload(params))
            return await self._send(params)
        except ToolExecutionError:
            raise
        except ValidationError as exc:
            raise ToolExecutionError(name, ValueError(f"Invalid parameters: {exc}")) from exc
        except Exception as exc:
            logger.warning("Tool call failed. tool=%s error=%s", name, exc)
            raise ToolExecutionError(name, exc) from exc

    def _validate(self, raw_params: Any) -> Dict[str, Any]:
        validated = self.definition.input_model.model_validate(
            raw_params if raw_params is not None else {}
        )
        return validated.model_dump(by_alias=True, exclude_unset=True)

    async def _send(self, params: Dict[str, Any]) -> Any:
        definition = self.definition
        method = definition.method.upper()
        url = self.base_url + self._build_path(definition.path, params)
        query, body = self._split_params(params)

        headers: Dict[str, str] = {}
        if self.auth_manager.requires_auth(definition.auth_config):
            auth_query = self.auth_manager.get_auth_query_params(definition.auth_config)
            # The credential replaces any caller value under the same key.
            query = [(key, value) for key, value in query if key not in auth_query]
            query.extend(auth_query.items())
            headers.update(self.auth_manager.get_auth_headers(definition.auth_config))

        content: Optional[str] = None
        if method in BODY_METHODS and body:
            headers["Content-Type"] = "application/json"
            content = json.dumps(body)

        async with httpx.AsyncClient(timeout=self.timeout_seconds, transport=self.transport) as client:
            response = await client.request(
                method, url, params=query or None, headers=headers, content=content
            )

        payload = self._parse_response(response)
        if not response.is_success:
            display_url = self._display_url(response.request.url)
            raise self._response_error(method, display_url, response, payload)
        return payload

    def _build_path(self, path: str, params: Dict[str, Any]) -> str:
        def _replace(match: re.Match) -> str:
            key = match.group(1)
            if key not in params:
                # Unresolved placeholders stay as literal text.
                return match.group(0)
            return quote(stringify(params[key]), safe="")

        return _PLACEHOLDER.sub(_replace, path)

    def _split_params(
        self, params: Dict[str, Any]
    ) -> Tuple[List[Tuple[str, str]], Dict[str, Any]]:
        placement = self.definition.placement
        query: List[Tuple[str, str]] = []
        body: Dict[str, Any] = {}
        for key, value in params.items():
            location = placement.location_of(key)
            if location == "path":
                continue
            if location == "query":
                if value is None:
                    continue
                values = value if isinstance(value, list) else [value]
                query.extend((key, stringify(item)) for item in values)
            else:
                body[key] = value
        return query, body

    def _display_url(self, url: httpx.URL) -> str:
        """Render ``url`` for error messages with query credentials masked."""
        for name in self.auth_manager.get_auth_query_params(self.definition.auth_config):
            if name in url.params:
                url = url.copy_set_param(name, REDACTED)
        return str(url)

    def _parse_response(self, response: httpx.Response) -> Any:
        content_type = response.headers.get("content-type", "")
        if "json" in content_type.lower() and response.content:
            return response.json()
        return response.text

    def _response_error(
        self, method: str, url: str, response: httpx.Response, payload: Any
    ) -> ApiResponseError:
        rendered = payload if isinstance(payload, str) else json.dumps(payload, indent=2)
        lines = [
            f"HTTP {response.status_code} {response.reason_phrase}".rstrip(),
            f"URL: {method} {url}",
            f"Response: {rendered}",
        ]
        hint = status_hint(response.status_code)
        if hint:
            lines.append(hint)
        return ApiResponseError(
            "\n".join(lines),
            status_code=response.status_code,
            method=method,
            url=url,
            payload=payload,
        )


@dataclass(frozen=True)
class Tool:
    """A tool definition bound to its base URL and the session credentials."""

    definition: ToolDefinition
    executor: ToolExecutor

    @property
    def name(self) -> str:
        return self.definition.name

    @property
    def description(self) -> str:
        return self.definition.description

    @property
    def input_model(self) -> Type[BaseModel]:
        return self.definition.input_model

    async def invoke(self, params: Any) -> Any:
        return await self.executor.execute(params)


def bind_tools(
    definitions: List[ToolDefinition],
    base_url: str,
    auth_manager: AuthManager,
    timeout_seconds: float = 30,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> List[Tool]:
    return [
        Tool(
            definition=definition,
            executor=ToolExecutor(
                definition,
                base_url,
                auth_manager,
                timeout_seconds=timeout_seconds,
                transport=transport,
            ),
        )
        for definition in definitions
    ]
