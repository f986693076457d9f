"""localmem MCP Server -- tool dispatch over stdio (and HTTP via http_server)."""

import asyncio
import logging
import sys
from typing import Optional

from mcp.server import Server
from mcp.server.stdio import stdio_server
from mcp.types import TextContent, Tool

from localmem import __version__
from localmem.config import Settings
from localmem.server.handlers import build_handlers
from localmem.server.tool_schemas import TOOL_SCHEMAS
from localmem.service import MemoryService

logger = logging.getLogger("localmem.server")

SERVER_NAME = "local-rag-memory"


def create_server(service: MemoryService) -> Server:
    """Build an MCP Server whose tools operate on *service*."""
    server = Server(SERVER_NAME, version=__version__)
    handlers = build_handlers(service)

    @server.list_tools()
    async def list_tools() -> list[Tool]:
        return [
            Tool(
                name=schema["name"],
                description=schema["description"],
                inputSchema=schema["inputSchema"],
            )
            for schema in TOOL_SCHEMAS
        ]

    @server.call_tool()
    async def call_tool(name: str, arguments: dict) -> list[TextContent]:
        """Dispatch tool call to the appropriate handler."""
        handler = handlers.get(name)
        if not handler:
            return [TextContent(type="text", text=f"Unknown tool: {name}")]

        try:
            result = await handler(arguments)
        except Exception as e:
            logger.error("Tool %s failed: %s", name, e)
            return [TextContent(type="text", text=f"Error in {name}: {e}")]
        content_list = result.get("content", [{}])
        text = content_list[0].get("text", str(result)) if content_list else str(result)
        return [TextContent(type="text", text=text)]

    return server


async def main(settings: Optional[Settings] = None) -> None:
    """Serve the MCP tools over stdio until the client disconnects."""
    settings = settings or Settings.from_env()
    logger.info("Starting localmem MCP server (stdio)...")
    with MemoryService(settings) as service:
        server = create_server(service)
        async with stdio_server() as (read_stream, write_stream):
            await server.run(
                read_stream,
                write_stream,
                server.create_initialization_options(),
            )


if __name__ == "__main__":
    logging.basicConfig(level=logging.WARNING, stream=sys.stderr)
    asyncio.run(main())
