"""Strava MCP Gateway.

Exposes the Strava MCP tools to remote clients behind one authentication
policy. It handles:
- MCP protocol endpoints via Streamable HTTP (/mcp)
- Legacy SSE endpoints (/sse, /message)
- The gateway's own OAuth 2.1 authorization server (optional, via oauth/)
- Static shared-secret access (AUTH_TOKEN)
"""
import logging
from contextlib import asynccontextmanager
from typing import Callable, Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from config import Config, load_config
from oauth.endpoints import create_oauth_router
from oauth.middleware import GatewayAuthMiddleware
from oauth.stores import RecordStore, create_store
from oauth.validator import AccessValidator, system_clock
from sse import SessionRegistry, create_sse_router
from strava_client import StravaClient
from tools import SERVER_NAME, create_mcp

logger = logging.getLogger(__name__)

VERSION = "3.0.0"
TOOL_NAMES = [
    "get_athlete",
    "get_athlete_stats",
    "get_activities",
    "get_activity_by_id",
    "create_activity",
    "update_activity",
    "get_activity_zones",
    "get_activity_streams",
    "get_club_activities",
    "create_upload",
    "get_upload",
    "search",
    "fetch",
]


def create_app(
    config: Config,
    store: Optional[RecordStore] = None,
    clock: Optional[Callable[[], int]] = None,
    strava_client: Optional[StravaClient] = None,
) -> FastAPI:
    """Build a fully wired gateway application for ``config``."""
    clock = clock or system_clock

    if strava_client is None:
        strava_client = StravaClient(
            config.strava_client_id,
            config.strava_client_secret,
            config.strava_refresh_token,
        )
    if not config.has_strava_credentials():
        logger.warning("[STARTUP] Strava credentials missing; tool calls will fail")

    mcp = create_mcp(strava_client)

    # Streamable HTTP app is created first; FastAPI needs its lifespan
    mcp_http_app = mcp.http_app(path="/", transport="streamable-http")

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        try:
            async with mcp_http_app.lifespan(app):
                yield
        finally:
            await strava_client.aclose()
            logger.info("[SHUTDOWN] Strava client closed")

    app = FastAPI(
        title="Strava MCP Gateway",
        description="Strava MCP tools behind OAuth 2.1 / shared-secret authentication",
        version=VERSION,
        lifespan=lifespan,
    )

    sessions = SessionRegistry()
    validator = None

    if config.oauth_enabled:
        store = store or create_store(config)
        validator = AccessValidator(store, clock)
        app.include_router(create_oauth_router(config, store, clock))

    app.include_router(create_sse_router(sessions, mcp._mcp_server))
    app.mount("/mcp", mcp_http_app)

    app.state.config = config
    app.state.store = store
    app.state.sessions = sessions
    app.state.strava_client = strava_client

    # Added last so it wraps the gateway middleware and answers preflights
    app.add_middleware(GatewayAuthMiddleware, config=config, validator=validator, sessions=sessions)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # ============== Server Info Endpoints ==============

    @app.get("/health")
    async def health_check():
        """Health check endpoint."""
        return {
            "status": "healthy",
            "version": VERSION,
            "oauth_enabled": config.oauth_enabled,
            "timestamp": clock(),
        }

    @app.get("/debug")
    async def debug():
        """Endpoint map for troubleshooting client setup."""
        return {
            "status": "ok",
            "version": VERSION,
            "oauth_enabled": config.oauth_enabled,
            "endpoints": {
                "health": "/health",
                "debug": "/debug",
                "oauth_metadata": "/.well-known/oauth-authorization-server",
                "authorize": "/authorize",
                "token": "/token",
                "register": "/register",
                "sse": "/sse (GET, establishes SSE connection)",
                "message": "/message (POST, requires session_id query param)",
                "mcp": "/mcp (Streamable HTTP, requires Bearer token)",
            },
        }

    @app.get("/")
    async def root():
        """Server info (requires authentication)."""
        return {
            "name": SERVER_NAME,
            "version": VERSION,
            "endpoints": {
                "streamable_http": "/mcp",
                "sse": "/sse",
            },
            "tools": TOOL_NAMES,
            "oauth_enabled": config.oauth_enabled,
            "active_sse_sessions": len(sessions),
        }

    logger.info(f"[STARTUP] App created (oauth={config.oauth_enabled}, static_token={bool(config.auth_token)})")
    return app


# ============== Main Entry Point ==============

def run():
    """Load config from the environment and serve with uvicorn."""
    import uvicorn

    from logging_config import setup_logging

    config = load_config()
    setup_logging(config.log_level, config.json_logs)
    if not config.oauth_enabled and not config.auth_token:
        logger.warning("[STARTUP] No AUTH_TOKEN and OAuth disabled: gateway is OPEN")
    logger.info(f"Starting MCP gateway on {config.host}:{config.port}")
    logger.info("Streamable HTTP endpoint: /mcp")
    logger.info("Legacy SSE endpoint: /sse")
    uvicorn.run(create_app(config), host=config.host, port=config.port, log_level=config.log_level.lower())


if __name__ == "__main__":
    run()
