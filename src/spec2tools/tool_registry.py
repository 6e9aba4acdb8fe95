"""Tool registry: builds the per-process tool session from an OpenAPI spec."""

from __future__ import annotations

import functools
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

import httpx

from .auth import AuthManager
from .config import Settings
from .errors import AuthenticationError, SpecLoadError, ToolExecutionError
from .executors import Tool, bind_tools
from .models import AuthConfig
from .oauth import OAuthFlow
from .openapi import OpenAPILoader, extract_auth_config, extract_base_url, parse_operations


logger = logging.getLogger(__name__)


@dataclass
class ToolSession:
    base_url: str
    auth_config: AuthConfig
    auth_manager: AuthManager
    tools: List[Tool] = field(default_factory=list)

    def names(self) -> List[str]:
        return [tool.name for tool in self.tools]

    def get(self, name: str) -> Optional[Tool]:
        for tool in self.tools:
            if tool.name == name:
                return tool
        return None

    async def call(self, name: str, params: Dict[str, Any]) -> Any:
        tool = self.get(name)
        if tool is None:
            raise ToolExecutionError(name, LookupError(f"Tool not found: {name}"))
        return await tool.invoke(params)


class ToolRegistry:
    def __init__(
        self,
        settings: Settings,
        openapi_loader: OpenAPILoader,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.settings = settings
        self.openapi_loader = openapi_loader
        self.transport = transport
        self._session: Optional[ToolSession] = None

    async def load_session(self, source: Optional[str] = None) -> ToolSession:
        if self._session is not None:
            return self._session

        source = source or self.settings.spec
        if not source:
            raise SpecLoadError("No OpenAPI spec path or URL configured")

        document = await self.openapi_loader.load_spec(source)
        base_url = extract_base_url(document, source=source, override=self.settings.base_url)
        auth_config = extract_auth_config(document)
        definitions = parse_operations(document)

        allowlist = self.settings.allowed_tools()
        if allowlist:
            definitions = [d for d in definitions if d.name in allowlist]

        auth_manager = AuthManager(auth_config, oauth_flow_factory=self._oauth_flow_factory())
        if self.settings.api_key:
            auth_manager.set_access_token(self.settings.api_key)
            logger.info("Using provided access token")

        tools = bind_tools(
            definitions,
            base_url,
            auth_manager,
            timeout_seconds=self.settings.http_timeout_seconds,
            transport=self.transport,
        )
        logger.info("Loaded %s tools from %s (base URL %s)", len(tools), source, base_url)

        self._session = ToolSession(
            base_url=base_url,
            auth_config=auth_config,
            auth_manager=auth_manager,
            tools=tools,
        )
        return self._session

    def _oauth_flow_factory(self):  # type: ignore[no-untyped-def]
        return functools.partial(
            OAuthFlow,
            host=self.settings.oauth_callback_host,
            port=self.settings.oauth_callback_port,
            timeout_seconds=self.settings.oauth_timeout_seconds,
            http_timeout_seconds=self.settings.http_timeout_seconds,
            transport=self.transport,
        )


async def create_tools(
    source: str, transport: Optional[httpx.AsyncBaseTransport] = None
) -> Dict[str, Tool]:
    """Build tools keyed by name for an API that needs no authentication."""
    registry = ToolRegistry(
        Settings(spec=source, base_url=None, api_key=None, tool_allowlist=None),
        OpenAPILoader(transport=transport),
        transport=transport,
    )
    session = await registry.load_session()
    if session.auth_manager.requires_auth():
        raise AuthenticationError(
            f"This API requires authentication ({session.auth_config.type}); "
            "build a ToolRegistry session and authenticate it instead"
        )
    return {tool.name: tool for tool in session.tools}
