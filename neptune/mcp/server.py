"""
MCP server exposing the feed cache tools over stdio.
"""

import json
import logging
from typing import Any, Dict, List

from mcp.server import Server
from mcp.server.stdio import stdio_server
from mcp.types import TextContent, Tool

from neptune.mcp.tools import SERVER_NAME, SERVER_VERSION, TOOL_DEFINITIONS, FeedToolService

logger = logging.getLogger(__name__)


def create_server(tool_service: FeedToolService) -> Server:
    """
    Build an MCP server bound to one FeedToolService.

    ToolError raised by the service propagates out of the call_tool handler,
    which the SDK turns into an isError result carrying the message.
    """
    app = Server(SERVER_NAME, version=SERVER_VERSION)

    @app.list_tools()
    async def handle_list_tools() -> List[Tool]:
        return [Tool(**definition) for definition in TOOL_DEFINITIONS]

    @app.call_tool()
    async def handle_call_tool(name: str, arguments: Dict[str, Any]) -> List[TextContent]:
        result = await tool_service.call(name, arguments)
        return [TextContent(type="text", text=json.dumps(result, indent=2, ensure_ascii=False))]

    return app


async def run_stdio_server(tool_service: FeedToolService) -> None:
    app = create_server(tool_service)
    logger.info(f"🚀 {SERVER_NAME} {SERVER_VERSION} listening on stdio")
    async with stdio_server() as (read_stream, write_stream):
        await app.run(read_stream, write_stream, app.create_initialization_options())
