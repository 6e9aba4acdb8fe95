"""CLI entry point for the spec2tools MCP server."""

from __future__ import annotations

import asyncio
import logging

import uvicorn

from .config import get_settings
from .errors import AuthenticationError, SpecLoadError, UnsupportedSchemaError
from .logging import configure_logging
from .models import OAuth2Auth
from .openapi import OpenAPILoader
from .server import build_server
from .tool_registry import ToolRegistry, ToolSession

logger = logging.getLogger(__name__)


async def _prepare_session() -> ToolSession:
    settings = get_settings()
    loader = OpenAPILoader(
        cache_seconds=settings.openapi_cache_seconds,
        timeout_seconds=settings.http_timeout_seconds,
    )
    registry = ToolRegistry(settings, loader)
    session = await registry.load_session()

    auth_manager = session.auth_manager
    if not auth_manager.requires_auth() or auth_manager.access_token:
        return session

    if not settings.interactive_auth:
        logger.warning(
            "API requires authentication (%s) but no credential was provided; set API_KEY",
            session.auth_config.type,
        )
    elif settings.transport == "stdio" and not isinstance(session.auth_config, OAuth2Auth):
        logger.warning("Credential prompts are unavailable over stdio; set API_KEY instead")
    else:
        await auth_manager.authenticate()
    return session


async def _run() -> None:
    settings = get_settings()
    configure_logging(settings.log_level)

    try:
        session = await _prepare_session()
    except (SpecLoadError, UnsupportedSchemaError, AuthenticationError) as exc:
        logger.error("%s", exc)
        raise SystemExit(1) from exc

    mcp, app = build_server(session, settings)
    transport = settings.transport.lower()

    if transport in {"http", "streamable-http", "streamablehttp"}:
        if not app:
            raise RuntimeError("HTTP app unavailable for streamable transport")
        config = uvicorn.Config(app, host=settings.host, port=settings.port)
        server = uvicorn.Server(config)
        await server.serve()
        return
    await mcp.run_stdio_async()


def main() -> None:
    asyncio.run(_run())


if __name__ == "__main__":
    main()
