"""Gateway authentication middleware.

One admission policy for every request, checked in this order:
1. Public paths (discovery, OAuth endpoints, health) pass.
2. POST /message with the session id of a live SSE connection passes.
3. A bearer value (Authorization header, else ?access_token= / ?token=)
   equal to the static AUTH_TOKEN passes.
4. A bearer value that is a live OAuth access token passes.
5. With neither AUTH_TOKEN nor OAuth configured the gateway is open.
Everything else gets the same 401, whichever check came closest.
"""

import logging
from typing import Optional

from fastapi import Request
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

from oauth.credentials import secrets_match
from oauth.endpoints import bearer_from_header, get_base_url
from oauth.stores import StoreError
from oauth.validator import AccessValidator

logger = logging.getLogger(__name__)

PUBLIC_PATHS = frozenset({
    "/health",
    "/debug",
    "/.well-known/oauth-authorization-server",
    "/.well-known/oauth-protected-resource",
    "/authorize",
    "/token",
    "/register",
})

MESSAGE_PATH = "/message"


def session_id_from_request(request: Request) -> Optional[str]:
    return request.query_params.get("session_id") or request.query_params.get("sessionId")


def extract_bearer(request: Request) -> Optional[str]:
    """Bearer candidate from the Authorization header, else from the query string."""
    token = bearer_from_header(request.headers.get("Authorization"))
    if token:
        return token
    return request.query_params.get("access_token") or request.query_params.get("token") or None


class GatewayAuthMiddleware(BaseHTTPMiddleware):
    """Admit or reject each request before it reaches the tool endpoints."""

    def __init__(
        self,
        app,
        config,
        validator: Optional[AccessValidator] = None,
        sessions=None,
    ):
        super().__init__(app)
        self.config = config
        self.validator = validator
        self.sessions = sessions

    def unauthorized(self, request: Request) -> JSONResponse:
        headers = {}
        if self.config.oauth_enabled:
            base_url = get_base_url(request, self.config.server_url)
            headers["WWW-Authenticate"] = (
                f'Bearer resource_metadata="{base_url}/.well-known/oauth-protected-resource"'
            )
        return JSONResponse(
            {"error": "Unauthorized", "message": "Missing or invalid access token"},
            status_code=401,
            headers=headers,
        )

    async def dispatch(self, request: Request, call_next):
        path = request.url.path

        if path in PUBLIC_PATHS:
            return await call_next(request)

        if path == MESSAGE_PATH and self.sessions is not None:
            session_id = session_id_from_request(request)
            if session_id and session_id in self.sessions:
                return await call_next(request)

        token = extract_bearer(request)

        if token and secrets_match(token, self.config.auth_token):
            logger.debug(f"[AUTH] {request.method} {path} admitted (static token)")
            return await call_next(request)

        if token and self.config.oauth_enabled and self.validator is not None:
            try:
                valid = await self.validator.validate(token)
            except StoreError:
                logger.error(f"[AUTH] Token validation unavailable for {request.method} {path}")
                return JSONResponse(
                    {"error": "server_error", "message": "Authentication backend unavailable"},
                    status_code=500,
                )
            if valid:
                logger.debug(f"[AUTH] {request.method} {path} admitted (oauth)")
                return await call_next(request)

        if not self.config.oauth_enabled and not self.config.auth_token:
            return await call_next(request)

        logger.info(f"[AUTH] {request.method} {path} rejected")
        return self.unauthorized(request)
