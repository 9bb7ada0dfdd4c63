"""MCP front-end: the tool registry served by the MCP SDK over Streamable HTTP."""

import json
import logging
from typing import Callable, List, Optional

import mcp.types as types
from mcp.server.lowlevel import Server
from mcp.server.streamable_http_manager import StreamableHTTPSessionManager
from mcp.shared.exceptions import McpError
from starlette.responses import JSONResponse
from starlette.types import Receive, Scope, Send

from hcm_gateway import __version__
from hcm_gateway.infra.error_handler import ErrorKind
from hcm_gateway.models.tool import ToolCall, ToolDescriptor, ToolFailure, ToolResult
from hcm_gateway.services.tool_execution_engine import ToolDispatcher
from hcm_gateway.services.tool_registry import ToolRegistry

logger = logging.getLogger(__name__)

SERVER_NAME = "oracle-hcm-mcp-gateway"

SERVER_INSTRUCTIONS = (
    "Tools for Oracle HCM absence management. Resolve a Westpac employee ID to an HCM "
    "PersonId first, then use the PersonId to look up absence types, absence balances "
    "and projected balances."
)

# Failures that are the caller's fault are protocol errors, not tool results
PROTOCOL_ERROR_KINDS = (ErrorKind.UNKNOWN_TOOL, ErrorKind.VALIDATION)


def to_mcp_tool(descriptor: ToolDescriptor) -> types.Tool:
    return types.Tool(
        name=descriptor.name,
        description=descriptor.description,
        inputSchema=descriptor.input_schema(),
    )


def to_call_tool_result(result: ToolResult) -> types.CallToolResult:
    """
    Convert a dispatcher outcome into an MCP tool result.

    Raises:
        McpError: INVALID_PARAMS for unknown tools and validation failures
    """
    if isinstance(result, ToolFailure):
        if result.error_kind in PROTOCOL_ERROR_KINDS:
            raise McpError(
                types.ErrorData(
                    code=types.INVALID_PARAMS,
                    message=result.message,
                    data={"error_kind": result.error_kind.value},
                )
            )
        return types.CallToolResult(
            content=[types.TextContent(type="text", text=f"{result.error_kind.value}: {result.message}")],
            structuredContent={"error_kind": result.error_kind.value, "message": result.message},
            isError=True,
        )

    payload = result.payload
    return types.CallToolResult(
        content=[types.TextContent(type="text", text=json.dumps(payload, ensure_ascii=False))],
        structuredContent=payload if isinstance(payload, dict) else None,
        isError=False,
    )


def build_mcp_server(
    registry: ToolRegistry,
    get_dispatcher: Callable[[], Optional[ToolDispatcher]],
) -> Server:
    """
    Build the low-level MCP server for ``registry``.

    Args:
        registry: Tools advertised by tools/list
        get_dispatcher: Returns the dispatcher built at startup, None before that
    """
    server = Server(SERVER_NAME, version=__version__, instructions=SERVER_INSTRUCTIONS)

    @server.list_tools()
    async def list_tools() -> List[types.Tool]:
        return [to_mcp_tool(descriptor) for descriptor in registry.list()]

    async def call_tool(request: types.CallToolRequest) -> types.ServerResult:
        dispatcher = get_dispatcher()
        if dispatcher is None:
            raise McpError(types.ErrorData(code=types.INTERNAL_ERROR, message="Gateway is not ready"))

        call = ToolCall(tool_name=request.params.name, arguments=request.params.arguments or {})
        result = await dispatcher.dispatch(call)
        return types.ServerResult(to_call_tool_result(result))

    # Bypasses @server.call_tool(), whose JSON Schema check and result wrapping
    # would hide error kinds from the caller
    server.request_handlers[types.CallToolRequest] = call_tool

    return server


class StreamableHTTPEndpoint:
    """ASGI endpoint for /mcp, served by the session manager the lifespan starts."""

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        session_manager: Optional[StreamableHTTPSessionManager] = getattr(
            scope["app"].state, "session_manager", None
        )
        if session_manager is None:
            response = JSONResponse({"detail": "MCP endpoint is not ready"}, status_code=503)
            await response(scope, receive, send)
            return
        await session_manager.handle_request(scope, receive, send)
