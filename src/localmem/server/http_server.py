"""localmem HTTP Server -- JSON REST routes plus the MCP Streamable HTTP transport.

REST and MCP share one ``MemoryService``. The /mcp mount wraps the MCP
server with the SDK's StreamableHTTPSessionManager; every other route is a
thin Starlette endpoint over ``localmem.server.handlers``.
"""

import contextlib
import logging
from collections.abc import AsyncIterator
from datetime import datetime, timezone
from typing import Optional

from mcp.server import Server
from mcp.server.streamable_http_manager import StreamableHTTPSessionManager
from starlette.applications import Starlette
from starlette.concurrency import run_in_threadpool
from starlette.exceptions import HTTPException
from starlette.requests import Request
from starlette.responses import JSONResponse
from starlette.routing import Mount, Route
from starlette.types import Receive, Scope, Send

from localmem.errors import LocalMemError
from localmem.server import handlers
from localmem.service import MemoryService

logger = logging.getLogger("localmem.server.http")


async def _read_json(request: Request) -> dict:
    try:
        body = await request.json()
    except ValueError:
        raise HTTPException(status_code=400, detail="Invalid JSON body") from None
    if not isinstance(body, dict):
        raise HTTPException(status_code=400, detail="request body must be a JSON object")
    return body


def create_http_app(service: MemoryService, server: Optional[Server] = None) -> Starlette:
    """Create the Starlette ASGI app.

    Args:
        service: The MemoryService every route operates on.
        server: MCP Server to mount at /mcp. Built from *service* when omitted.
    """
    if server is None:
        from localmem.server.mcp_server import create_server

        server = create_server(service)

    session_manager = StreamableHTTPSessionManager(
        app=server,
        json_response=True,
        stateless=True,
    )

    async def mcp_asgi_app(scope: Scope, receive: Receive, send: Send) -> None:
        """ASGI app for the /mcp endpoint -- delegates to StreamableHTTPSessionManager."""
        await session_manager.handle_request(scope, receive, send)

    def _operation(name: str, status_code: int = 200, with_body: bool = True):
        operation = handlers.OPERATIONS[name]

        async def endpoint(request: Request) -> JSONResponse:
            body = await _read_json(request) if with_body else {}
            try:
                result = await run_in_threadpool(operation, service, body)
            except LocalMemError as e:
                status = handlers.error_status(e)
                logger.info("%s %s -> %d: %s", request.method, request.url.path, status, e)
                return JSONResponse({"error": str(e)}, status_code=status)
            return JSONResponse(result, status_code=status_code)

        return endpoint

    async def health(request: Request) -> JSONResponse:
        settings = service.settings
        return JSONResponse({
            "ok": True,
            "service": "local-rag-memory",
            "embeddingModel": service.embedder.model,
            "ollamaUrl": settings.ollama_url,
            "mcpEndpoint": f"http://{settings.host}:{settings.port}/mcp",
            "timestamp": datetime.now(timezone.utc).isoformat(),
        })

    async def http_error(request: Request, exc: HTTPException) -> JSONResponse:
        if exc.status_code == 404:
            return JSONResponse({"error": "not_found"}, status_code=404)
        return JSONResponse({"error": exc.detail}, status_code=exc.status_code)

    @contextlib.asynccontextmanager
    async def lifespan(app: Starlette) -> AsyncIterator[None]:
        async with session_manager.run():
            yield

    app = Starlette(
        routes=[
            Mount("/mcp", app=mcp_asgi_app),
            Route("/health", endpoint=health, methods=["GET"]),
            Route("/bags", endpoint=_operation("list_bags", with_body=False), methods=["GET"]),
            Route("/bags/upsert", endpoint=_operation("upsert_bag"), methods=["POST"]),
            Route("/bags/delete", endpoint=_operation("delete_bag"), methods=["POST"]),
            Route("/memories/store", endpoint=_operation("store_memory", status_code=201), methods=["POST"]),
            Route("/memories/recall", endpoint=_operation("recall_memories"), methods=["POST"]),
            Route("/memories/update", endpoint=_operation("update_memory"), methods=["POST"]),
            Route("/memories/delete", endpoint=_operation("delete_memory"), methods=["POST"]),
        ],
        exception_handlers={HTTPException: http_error},
        lifespan=lifespan,
    )
    return app


async def run_http(service: MemoryService, host: str, port: int, log_level: str = "info") -> None:
    """Create the HTTP app for *service* and serve it with uvicorn."""
    import uvicorn

    app = create_http_app(service)
    config = uvicorn.Config(app, host=host, port=port, log_level=log_level)
    srv = uvicorn.Server(config)
    logger.info("Serving on http://%s:%d (MCP at /mcp)", host, port)
    await srv.serve()
