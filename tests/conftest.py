"""
Shared test fixtures for the gateway test suite.

Key fixtures:
- clock: a controllable clock injected into the app, so expiry boundaries
  can be tested to the second
- store: an in-memory record store shared with the app under test
- make_app: factory building an app from config overrides
- client: httpx.AsyncClient wired to an OAuth-enabled app (in memory, no network)
- flow: helper driving register -> authorize -> consent -> token
"""

from urllib.parse import parse_qs, urlsplit

import httpx
import pytest

from config import Config
from main import create_app
from oauth.credentials import generate_token, sha256_base64url
from oauth.stores import MemoryRecordStore
from strava_client import StravaClient

BASE_URL = "https://gateway.example"
REDIRECT_URI = "https://client.example/cb"
OTHER_REDIRECT_URI = "https://other.example/cb"
STATIC_TOKEN = "static-shared-secret"
START_TIME = 1_700_000_000


class FakeClock:
    """Stands in for time.time(); only moves when told to."""

    def __init__(self, now: int = START_TIME):
        self.now = now

    def __call__(self) -> int:
        return self.now

    def advance(self, seconds: int) -> None:
        self.now += seconds


def make_pkce_pair() -> tuple[str, str]:
    verifier = generate_token(48)
    return verifier, sha256_base64url(verifier)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def store():
    return MemoryRecordStore()


@pytest.fixture
def make_config():
    """Factory for Config objects with test defaults."""

    def _make_config(**overrides) -> Config:
        data = {
            "oauth_enabled": True,
            "allowed_redirect_uris": [REDIRECT_URI, OTHER_REDIRECT_URI],
            "access_token_ttl": 3600,
            "refresh_token_ttl": 86400,
        }
        data.update(overrides)
        return Config(data)

    return _make_config


@pytest.fixture
def make_app(make_config, store, clock):
    """Factory building an app that shares the test store and clock."""

    def _make_app(**overrides):
        strava = StravaClient(None, None, None, transport=httpx.MockTransport(lambda r: httpx.Response(500)))
        return create_app(make_config(**overrides), store=store, clock=clock, strava_client=strava)

    return _make_app


@pytest.fixture
async def make_client():
    """Factory creating AsyncClients for an app; closed on teardown."""
    clients = []

    def _make_client(app) -> httpx.AsyncClient:
        client = httpx.AsyncClient(transport=httpx.ASGITransport(app=app), base_url=BASE_URL)
        clients.append(client)
        return client

    yield _make_client

    for client in clients:
        await client.aclose()


@pytest.fixture
async def client(make_app):
    app = make_app()
    async with httpx.AsyncClient(transport=httpx.ASGITransport(app=app), base_url=BASE_URL) as c:
        yield c


class OAuthFlow:
    """Drives the authorization-code + PKCE flow against a test client."""

    def __init__(self, client: httpx.AsyncClient):
        self.client = client

    async def register(self, redirect_uris=None, **extra) -> dict:
        body = {"redirect_uris": redirect_uris or [REDIRECT_URI], "client_name": "Test Client"}
        body.update(extra)
        response = await self.client.post("/register", json=body)
        assert response.status_code == 201, response.text
        return response.json()

    def authorize_params(self, client_id: str, challenge: str, **overrides) -> dict:
        params = {
            "response_type": "code",
            "client_id": client_id,
            "redirect_uri": REDIRECT_URI,
            "code_challenge": challenge,
            "code_challenge_method": "S256",
            "state": "xyz",
        }
        params.update(overrides)
        return params

    async def approve(self, client_id: str, challenge: str, **overrides) -> httpx.Response:
        data = self.authorize_params(client_id, challenge, **overrides)
        data["action"] = "allow"
        return await self.client.post("/authorize", data=data)

    async def get_code(self, client_id: str, challenge: str, **overrides) -> str:
        response = await self.approve(client_id, challenge, **overrides)
        assert response.status_code == 302, response.text
        query = parse_qs(urlsplit(response.headers["location"]).query)
        return query["code"][0]

    async def exchange(self, client_id: str, code: str, verifier: str, **overrides) -> httpx.Response:
        data = {
            "grant_type": "authorization_code",
            "code": code,
            "redirect_uri": REDIRECT_URI,
            "client_id": client_id,
            "code_verifier": verifier,
        }
        data.update(overrides)
        return await self.client.post("/token", data=data)

    async def refresh(self, client_id: str, refresh_token: str) -> httpx.Response:
        return await self.client.post("/token", data={
            "grant_type": "refresh_token",
            "refresh_token": refresh_token,
            "client_id": client_id,
        })

    async def obtain_tokens(self) -> tuple[str, dict]:
        """Register and run the whole flow; returns (client_id, token body)."""
        registered = await self.register()
        verifier, challenge = make_pkce_pair()
        code = await self.get_code(registered["client_id"], challenge)
        response = await self.exchange(registered["client_id"], code, verifier)
        assert response.status_code == 200, response.text
        return registered["client_id"], response.json()


@pytest.fixture
def flow(client):
    return OAuthFlow(client)
