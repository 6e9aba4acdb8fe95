"""MCP server republishing the session's tools."""

import json
import logging
from typing import Any, Awaitable, Callable

from fastmcp import FastMCP
from fastmcp.exceptions import ToolError
from pydantic import BaseModel

from .config import Settings
from .errors import ToolExecutionError
from .executors import Tool
from .tool_registry import ToolSession

logger = logging.getLogger(__name__)


def build_server(session: ToolSession, settings: Settings) -> tuple[FastMCP, object | None]:
    mcp = FastMCP(settings.server_name, instructions=_instructions(session))
    for tool in session.tools:
        mcp.tool(name=tool.name, description=tool.description)(_tool_handler(tool))
        logger.info("Registered tool: %s", tool.name)

    app = _get_http_app(mcp, settings)
    _attach_healthcheck(app)
    return mcp, app


def render_result(result: Any) -> str:
    if isinstance(result, str):
        return result
    return json.dumps(result, indent=2)


def _tool_handler(tool: Tool) -> Callable[[BaseModel], Awaitable[str]]:
    async def handler(payload: BaseModel) -> str:
        params = payload.model_dump(by_alias=True, exclude_unset=True)
        try:
            result = await tool.invoke(params)
        except ToolExecutionError as exc:
            raise ToolError(str(exc)) from exc
        return render_result(result)

    handler.__name__ = tool.name
    handler.__doc__ = tool.description
    handler.__annotations__ = {"payload": tool.input_model, "return": str}
    return handler


def _instructions(session: ToolSession) -> str:
    return (
        f"Tools generated from the OpenAPI document of {session.base_url}. "
        "Each tool issues one HTTP request against the API."
    )


def _get_http_app(mcp: FastMCP, settings: Settings):  # type: ignore[no-untyped-def]
    transport = settings.transport.lower()
    if transport in {"http", "streamable-http", "streamablehttp"}:
        return mcp.http_app(transport="streamable-http", stateless_http=True, json_response=True)
    return None


def _attach_healthcheck(app) -> None:  # type: ignore[no-untyped-def]
    if not app:
        return

    async def healthcheck(_request):  # type: ignore[no-untyped-def]
        from starlette.responses import JSONResponse

        return JSONResponse({"status": "ok"})

    app.add_route("/health", healthcheck, methods=["GET"])
