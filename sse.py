"""Legacy SSE transport and the session registry behind it.

GET /sse opens a long-lived event stream and registers it under a fresh
session id; the first event tells the client where to POST its messages
(/message?session_id=...). POST /message hands the body to the live
connection with that id.

The registry is in-process memory. A stream opened on one instance cannot
receive messages POSTed to another, so multi-instance deployments need
sticky routing per session id (or a shared session-to-instance lookup).
"""

import logging
import uuid
from contextlib import asynccontextmanager
from typing import Any, Optional

import anyio
from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse
from mcp.shared.message import SessionMessage
from mcp.types import JSONRPCMessage
from sse_starlette import EventSourceResponse
from starlette.responses import Response

from oauth.middleware import MESSAGE_PATH, session_id_from_request

logger = logging.getLogger(__name__)

SSE_PATH = "/sse"
# Keepalive comment interval for idle streams
PING_INTERVAL_SECONDS = 15
# Same cap the MCP SDK applies to posted messages
MAX_MESSAGE_BYTES = 4 * 1024 * 1024


class SessionRegistry:
    """Process-local map from session id to a live connection handle.

    A handle is anything with ``async deliver(body: bytes)``; it should
    raise ``ValueError`` for a malformed message.
    """

    def __init__(self):
        self._sessions: dict[str, Any] = {}

    def open(self, handle) -> str:
        session_id = uuid.uuid4().hex
        self._sessions[session_id] = handle
        return session_id

    def close(self, session_id: str) -> None:
        self._sessions.pop(session_id, None)

    def get(self, session_id: str) -> Optional[Any]:
        return self._sessions.get(session_id)

    def __contains__(self, session_id: object) -> bool:
        return session_id in self._sessions

    def __len__(self) -> int:
        return len(self._sessions)

    @asynccontextmanager
    async def connection(self, handle):
        """Register ``handle`` for the lifetime of the block, however it ends."""
        session_id = self.open(handle)
        try:
            yield session_id
        finally:
            self.close(session_id)


class SseSession:
    """One SSE connection: in/out message streams plus the event-stream response."""

    def __init__(self, max_buffer_size: int = 16):
        self.read_stream_writer, self.read_stream = anyio.create_memory_object_stream(max_buffer_size)
        self.write_stream, self.write_stream_reader = anyio.create_memory_object_stream(max_buffer_size)

    async def deliver(self, body: bytes) -> None:
        """Queue one inbound JSON-RPC message for the MCP server."""
        message = JSONRPCMessage.model_validate_json(body)
        await self.read_stream_writer.send(SessionMessage(message))

    async def events(self, endpoint: str):
        yield {"event": "endpoint", "data": endpoint}
        async with self.write_stream_reader:
            async for session_message in self.write_stream_reader:
                data = session_message.message.model_dump_json(by_alias=True, exclude_none=True)
                yield {"event": "message", "data": data}

    @asynccontextmanager
    async def connect(self, scope, receive, send, endpoint: str):
        """Stream events to the client while the caller runs the MCP server."""
        async with anyio.create_task_group() as tg:

            async def stream_response():
                response = EventSourceResponse(self.events(endpoint), ping=PING_INTERVAL_SECONDS)
                await response(scope, receive, send)
                # Client went away: stop the server side too
                tg.cancel_scope.cancel()

            tg.start_soon(stream_response)
            try:
                yield self.read_stream, self.write_stream
            finally:
                self.read_stream_writer.close()
                self.write_stream.close()


class SseEndpoint:
    """Raw ASGI endpoint for GET /sse (it owns the response lifecycle)."""

    def __init__(self, registry: SessionRegistry, mcp_server):
        self.registry = registry
        self.mcp_server = mcp_server

    async def __call__(self, scope, receive, send):
        session = SseSession()
        async with self.registry.connection(session) as session_id:
            logger.info(f"[SSE] Connection established, session {session_id}")
            endpoint = f"{scope.get('root_path', '')}{MESSAGE_PATH}?session_id={session_id}"
            async with session.connect(scope, receive, send, endpoint) as (read_stream, write_stream):
                await self.mcp_server.run(
                    read_stream, write_stream, self.mcp_server.create_initialization_options()
                )
        logger.info(f"[SSE] Connection closed, session {session_id}")


def declared_length(request: Request) -> int:
    try:
        return int(request.headers.get("content-length", 0))
    except ValueError:
        return 0


def create_sse_router(registry: SessionRegistry, mcp_server) -> APIRouter:
    """Routes for the legacy SSE transport.

    Args:
        registry: Session registry shared with the gateway middleware
        mcp_server: Low-level MCP server run over each connection
    """
    router = APIRouter(tags=["sse"])

    endpoint = SseEndpoint(registry, mcp_server)
    router.add_route(SSE_PATH, endpoint, methods=["GET"], include_in_schema=False)
    router.add_route(f"{SSE_PATH}/", endpoint, methods=["GET"], include_in_schema=False)

    @router.post(MESSAGE_PATH)
    async def message_endpoint(request: Request) -> Response:
        """Deliver a client message to its SSE connection."""
        session_id = session_id_from_request(request)
        handle = registry.get(session_id) if session_id else None
        if handle is None:
            logger.info("[SSE] Message rejected: unknown session")
            return JSONResponse({"error": "Invalid or expired session ID"}, status_code=400)

        if declared_length(request) > MAX_MESSAGE_BYTES:
            return JSONResponse({"error": "Message too large"}, status_code=413)
        body = await request.body()
        if len(body) > MAX_MESSAGE_BYTES:
            return JSONResponse({"error": "Message too large"}, status_code=413)

        try:
            await handle.deliver(body)
        except ValueError:
            logger.info(f"[SSE] Malformed message for session {session_id}")
            return JSONResponse({"error": "Could not parse message"}, status_code=400)
        except (anyio.ClosedResourceError, anyio.BrokenResourceError):
            registry.close(session_id)
            return JSONResponse({"error": "Invalid or expired session ID"}, status_code=400)

        return Response("Accepted", status_code=202)

    return router
