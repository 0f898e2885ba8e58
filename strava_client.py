"""Strava API client used by the MCP tools.

Holds its own upstream credentials (client id/secret + refresh token) and
refreshes the upstream access token shortly before it expires. This is
independent of the gateway's OAuth server.
"""

import asyncio
import logging
import time
from typing import Any, Optional

import httpx

logger = logging.getLogger(__name__)

STRAVA_API_URL = "https://www.strava.com/api/v3"
STRAVA_TOKEN_URL = "https://www.strava.com/oauth/token"

# Refresh 5 minutes before expiry
REFRESH_BUFFER_SECONDS = 300


class StravaError(Exception):
    """Raised when the upstream API cannot be reached or rejects a request."""


class StravaClient:
    """Async Strava API v3 client with automatic token refresh."""

    def __init__(
        self,
        client_id: Optional[str],
        client_secret: Optional[str],
        refresh_token: Optional[str],
        base_url: str = STRAVA_API_URL,
        token_url: str = STRAVA_TOKEN_URL,
        timeout: float = 15.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.client_id = client_id
        self.client_secret = client_secret
        self.refresh_token = refresh_token
        self.token_url = token_url
        self.access_token: Optional[str] = None
        self.expires_at = 0
        self._refresh_lock = asyncio.Lock()
        self._http = httpx.AsyncClient(base_url=base_url, timeout=timeout, transport=transport)

    async def aclose(self) -> None:
        await self._http.aclose()

    async def _refresh_access_token(self) -> None:
        if not (self.client_id and self.client_secret and self.refresh_token):
            raise StravaError("Strava credentials are not configured")

        response = await self._http.post(
            self.token_url,
            data={
                "client_id": self.client_id,
                "client_secret": self.client_secret,
                "grant_type": "refresh_token",
                "refresh_token": self.refresh_token,
            },
        )
        if response.status_code != 200:
            logger.error(f"[STRAVA] Token refresh failed with status {response.status_code}")
            raise StravaError("Failed to refresh Strava access token")

        tokens = response.json()
        self.access_token = tokens["access_token"]
        self.refresh_token = tokens.get("refresh_token", self.refresh_token)
        self.expires_at = int(tokens.get("expires_at", 0))
        logger.info("[STRAVA] Token refreshed successfully")

    async def _ensure_token(self, force: bool = False) -> str:
        async with self._refresh_lock:
            stale = self.expires_at - int(time.time()) < REFRESH_BUFFER_SECONDS
            if force or not self.access_token or stale:
                await self._refresh_access_token()
            return self.access_token

    async def request(self, method: str, endpoint: str, **kwargs) -> Any:
        """Send a request, refreshing and retrying once on 401."""
        token = await self._ensure_token()
        response = await self._http.request(
            method, endpoint, headers={"Authorization": f"Bearer {token}"}, **kwargs
        )
        if response.status_code == 401:
            token = await self._ensure_token(force=True)
            response = await self._http.request(
                method, endpoint, headers={"Authorization": f"Bearer {token}"}, **kwargs
            )
        response.raise_for_status()
        return response.json()

    async def get(self, endpoint: str, params: Optional[dict] = None) -> Any:
        return await self.request("GET", endpoint, params=params)

    @property
    def closed(self) -> bool:
        return self._http.is_closed


def format_error(error: Exception) -> str:
    """Turn an upstream failure into a message fit for a tool result."""
    if isinstance(error, httpx.HTTPStatusError):
        status = error.response.status_code
        if status == 401:
            return "Authentication failed. Please check your Strava credentials."
        if status == 403:
            return "Access forbidden. You may not have permission to perform this action."
        if status == 404:
            return "Resource not found. The requested activity, athlete, or resource does not exist."
        if status == 429:
            return "Rate limit exceeded. Please try again in a few minutes."
        try:
            data = error.response.json()
        except ValueError:
            data = None
        if isinstance(data, dict) and data.get("message"):
            return f"Strava API error: {data['message']}"
        return f"Strava API error ({status})"

    if isinstance(error, httpx.RequestError):
        return "Network error: Unable to reach Strava API."

    return str(error)
