"""OAuth 2.1 endpoints for the gateway's own authorization server.

This module contains all OAuth-related endpoints:
- Discovery metadata (/.well-known/*)
- Dynamic client registration (/register)
- Authorization with consent (GET/POST /authorize)
- Token endpoint (/token): authorization_code + PKCE, refresh_token

Public clients only: PKCE S256 is mandatory and the token endpoint takes
no client secret. No state is kept between the consent GET and POST;
the POST re-validates everything it receives.
"""

import functools
import logging
from typing import Callable, Optional
from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit

from fastapi import APIRouter, Request
from fastapi.responses import HTMLResponse, JSONResponse, RedirectResponse

from logging_config import redact
from oauth import errors
from oauth.credentials import (
    create_consent_token,
    generate_token,
    secrets_match,
    verify_consent_token,
    verify_pkce,
)
from oauth.errors import OAuthError
from oauth.stores import (
    AuthorizationGrant,
    RecordStore,
    RegisteredClient,
    StoreError,
    TokenPair,
)
from oauth.templates import render_consent_page
from oauth.validator import system_clock

logger = logging.getLogger(__name__)

DEFAULT_SCOPES = ["strava"]
AUTH_CODE_TTL_SECONDS = 300
REGISTRATION_TOKEN_HEADER = "X-Registration-Token"

GRANT_TYPES = ["authorization_code", "refresh_token"]
RESPONSE_TYPES = ["code"]

NO_STORE_HEADERS = {"Cache-Control": "no-store", "Pragma": "no-cache"}


def get_base_url(request: Request, server_url: Optional[str] = None) -> str:
    """Effective external base URL (scheme://host), honouring proxy headers."""
    if server_url:
        return server_url.rstrip("/")
    proto = request.headers.get("x-forwarded-proto") or request.url.scheme
    host = request.headers.get("x-forwarded-host") or request.headers.get("host") or request.url.netloc
    # Proxies may send a list: "https, http"
    proto = proto.split(",")[0].strip()
    host = host.split(",")[0].strip()
    return f"{proto}://{host}".rstrip("/")


def normalize_scopes(scope: Optional[str]) -> list[str]:
    if not scope:
        return list(DEFAULT_SCOPES)
    scopes = [value.strip() for value in scope.split(" ") if value.strip()]
    return scopes or list(DEFAULT_SCOPES)


def is_redirect_allowed(redirect_uri: str, allowed: list[str]) -> bool:
    """Global allow-list check: https only and an exact listed match."""
    if not isinstance(redirect_uri, str) or not redirect_uri.startswith("https://"):
        return False
    return redirect_uri in allowed


def all_strings(*values) -> bool:
    """True when every value is a non-empty string (JSON bodies can carry anything)."""
    return all(isinstance(value, str) and value for value in values)


def append_query(url: str, params: dict[str, str]) -> str:
    """Add query parameters to a URL, keeping any it already carries."""
    parts = urlsplit(url)
    query = parse_qsl(parts.query, keep_blank_values=True)
    query.extend((k, v) for k, v in params.items() if v)
    return urlunsplit((parts.scheme, parts.netloc, parts.path, urlencode(query), parts.fragment))


def bearer_from_header(value: Optional[str]) -> Optional[str]:
    if not value:
        return None
    parts = value.split(" ", 1)
    if len(parts) != 2 or parts[0].lower() != "bearer" or not parts[1].strip():
        return None
    return parts[1].strip()


def handle_oauth_errors(action: str):
    """Convert OAuthError / StoreError / unexpected failures into OAuth JSON errors."""

    def decorator(func):
        @functools.wraps(func)
        async def wrapper(*args, **kwargs):
            try:
                return await func(*args, **kwargs)
            except OAuthError as e:
                logger.info(f"[OAUTH] {action} rejected: {e}")
                return e.to_response()
            except StoreError:
                logger.error(f"[OAUTH] {action} failed: store unavailable")
                return OAuthError(errors.SERVER_ERROR, f"{action} failed", 500).to_response()
            except Exception:
                logger.exception(f"[OAUTH] {action} failed unexpectedly")
                return OAuthError(errors.SERVER_ERROR, f"{action} failed", 500).to_response()

        return wrapper

    return decorator


async def read_body(request: Request) -> dict:
    """Read a form-encoded or JSON request body into a dict."""
    content_type = request.headers.get("content-type", "")
    if content_type.startswith("application/json"):
        try:
            data = await request.json()
        except ValueError:
            raise OAuthError(errors.INVALID_REQUEST, "Malformed JSON body")
        if not isinstance(data, dict):
            raise OAuthError(errors.INVALID_REQUEST, "Request body must be an object")
        return data
    form = await request.form()
    return {key: value for key, value in form.items() if isinstance(value, str)}


def create_oauth_router(
    config,
    store: RecordStore,
    clock: Optional[Callable[[], int]] = None,
) -> APIRouter:
    """Build the authorization server routes bound to one config and store."""
    if not store.atomic_consume:
        raise ValueError(
            f"{type(store).__name__} cannot consume authorization codes atomically; "
            "codes could be redeemed twice"
        )

    now = clock or system_clock
    router = APIRouter(tags=["oauth"])

    # ============== Discovery ==============

    @router.get("/.well-known/oauth-protected-resource")
    async def oauth_protected_resource(request: Request):
        """OAuth 2.0 Protected Resource Metadata (RFC 9728)."""
        base_url = get_base_url(request, config.server_url)
        return {
            "resource": base_url,
            "authorization_servers": [base_url],
            "scopes_supported": DEFAULT_SCOPES,
            "bearer_methods_supported": ["header"],
        }

    @router.get("/.well-known/oauth-authorization-server")
    async def oauth_authorization_server(request: Request):
        """OAuth 2.0 Authorization Server Metadata (RFC 8414)."""
        base_url = get_base_url(request, config.server_url)
        return {
            "issuer": base_url,
            "authorization_endpoint": f"{base_url}/authorize",
            "token_endpoint": f"{base_url}/token",
            "registration_endpoint": f"{base_url}/register",
            "scopes_supported": DEFAULT_SCOPES,
            "response_types_supported": RESPONSE_TYPES,
            "grant_types_supported": GRANT_TYPES,
            "code_challenge_methods_supported": ["S256"],
            "token_endpoint_auth_methods_supported": ["none"],
        }

    # ============== Client Registration ==============

    @router.post("/register")
    @handle_oauth_errors("Client registration")
    async def register_client(request: Request):
        """OAuth 2.0 Dynamic Client Registration (RFC 7591)."""
        if config.registration_token:
            candidate = bearer_from_header(request.headers.get("Authorization"))
            if candidate is None:
                candidate = request.headers.get(REGISTRATION_TOKEN_HEADER)
            if not secrets_match(candidate, config.registration_token):
                raise OAuthError(errors.INVALID_CLIENT, "Invalid registration token", 401)

        try:
            data = await request.json()
        except ValueError:
            data = {}
        if not isinstance(data, dict):
            data = {}

        redirect_uris = data.get("redirect_uris")
        if not isinstance(redirect_uris, list) or not redirect_uris:
            raise OAuthError(errors.INVALID_CLIENT_METADATA, "redirect_uris is required")
        if not all(isinstance(uri, str) for uri in redirect_uris):
            raise OAuthError(errors.INVALID_CLIENT_METADATA, "redirect_uris must be strings")

        # All or nothing: one bad URI fails the whole registration
        for uri in redirect_uris:
            if not is_redirect_allowed(uri, config.allowed_redirect_uris):
                raise OAuthError(errors.INVALID_REDIRECT_URI, "redirect_uri not allowed")

        client_name = data.get("client_name")
        if client_name is not None and not isinstance(client_name, str):
            raise OAuthError(errors.INVALID_CLIENT_METADATA, "client_name must be a string")

        issued_at = now()
        client = RegisteredClient(
            client_id=generate_token(24),
            redirect_uris=list(redirect_uris),
            client_name=client_name,
            created_at=issued_at,
        )
        await store.put_client(client)
        logger.info(f"[OAUTH] Registered client {client.client_id} ({client_name or 'unnamed'})")

        return JSONResponse({
            "client_id": client.client_id,
            "client_id_issued_at": issued_at,
            "client_name": client_name,
            "token_endpoint_auth_method": "none",
            "redirect_uris": client.redirect_uris,
            "response_types": RESPONSE_TYPES,
            "grant_types": GRANT_TYPES,
        }, status_code=201)

    # ============== Authorization ==============

    async def validate_authorize_request(params: dict) -> RegisteredClient:
        if params.get("response_type") != "code":
            raise OAuthError(errors.UNSUPPORTED_RESPONSE_TYPE, "Only response_type=code is supported")

        required = ("client_id", "redirect_uri", "code_challenge", "code_challenge_method")
        if not all(params.get(name) for name in required):
            raise OAuthError(errors.INVALID_REQUEST, "Missing required parameters")

        if params["code_challenge_method"] != "S256":
            raise OAuthError(errors.INVALID_REQUEST, "Only S256 is supported")

        client = await store.get_client(params["client_id"])
        if client is None:
            raise OAuthError(errors.INVALID_CLIENT, "Unknown client")

        redirect_uri = params["redirect_uri"]
        if redirect_uri not in client.redirect_uris:
            raise OAuthError(errors.INVALID_REDIRECT_URI, "Redirect URI mismatch")

        # Checked again so a tampered client record cannot redirect off the allow-list
        if not is_redirect_allowed(redirect_uri, config.allowed_redirect_uris):
            raise OAuthError(errors.INVALID_REDIRECT_URI, "Redirect URI not allowed")

        return client

    def authorize_params(source) -> dict[str, str]:
        names = (
            "response_type", "client_id", "redirect_uri", "state", "scope",
            "code_challenge", "code_challenge_method",
        )
        return {name: source.get(name) or "" for name in names}

    @router.get("/authorize")
    @handle_oauth_errors("Authorization")
    async def authorize(request: Request):
        """Validate the request and render the consent form."""
        params = authorize_params(request.query_params)
        client = await validate_authorize_request(params)

        if config.consent_secret:
            params["consent_token"] = create_consent_token(
                config.consent_secret,
                client_id=params["client_id"],
                redirect_uri=params["redirect_uri"],
                code_challenge=params["code_challenge"],
                now=now(),
            )

        page = render_consent_page(
            client.client_name or "MCP Client",
            params,
            normalize_scopes(params["scope"]),
        )
        return HTMLResponse(page, headers={"Cache-Control": "no-store", "X-Frame-Options": "DENY"})

    @router.post("/authorize")
    @handle_oauth_errors("Authorization")
    async def authorize_submit(request: Request):
        """Handle the consent form: issue a code or report access_denied."""
        form = await request.form()
        params = authorize_params(form)
        client = await validate_authorize_request(params)

        if config.consent_secret:
            ok = verify_consent_token(
                form.get("consent_token") or "",
                config.consent_secret,
                client_id=params["client_id"],
                redirect_uri=params["redirect_uri"],
                code_challenge=params["code_challenge"],
                now=now(),
            )
            if not ok:
                raise OAuthError(errors.INVALID_REQUEST, "Invalid or expired consent")

        redirect_uri = params["redirect_uri"]
        state = params["state"]

        if form.get("action") == "deny":
            logger.info(f"[OAUTH] Consent denied for client {client.client_id}")
            location = append_query(redirect_uri, {
                "error": "access_denied",
                "error_description": "User denied access",
                "state": state,
            })
            return RedirectResponse(url=location, status_code=302)

        issued_at = now()
        grant = AuthorizationGrant(
            code=generate_token(24),
            client_id=client.client_id,
            redirect_uri=redirect_uri,
            code_challenge=params["code_challenge"],
            code_challenge_method="S256",
            scopes=normalize_scopes(params["scope"]),
            expires_at=issued_at + AUTH_CODE_TTL_SECONDS,
        )
        await store.put_grant(grant)
        await store.touch_client(client.client_id, issued_at)
        logger.info(f"[OAUTH] Authorization code issued for client {client.client_id}")

        location = append_query(redirect_uri, {"code": grant.code, "state": state})
        return RedirectResponse(url=location, status_code=302)

    # ============== Token Endpoint ==============

    def token_response(record: TokenPair, issued_at: int) -> JSONResponse:
        return JSONResponse({
            "access_token": record.access_token,
            "token_type": "Bearer",
            "expires_in": record.access_expires_at - issued_at,
            "refresh_token": record.refresh_token,
            "scope": " ".join(record.scopes),
        }, headers=NO_STORE_HEADERS)

    async def exchange_code(data: dict) -> JSONResponse:
        code = data.get("code")
        redirect_uri = data.get("redirect_uri")
        client_id = data.get("client_id")
        verifier = data.get("code_verifier")

        # Checked before the grant is consumed so a malformed request cannot burn it
        if not all_strings(code, redirect_uri, client_id, verifier):
            raise OAuthError(errors.INVALID_REQUEST, "Missing or malformed parameters")

        # The grant is gone from here on, whatever happens below
        grant = await store.consume_grant(code)
        if grant is None:
            raise OAuthError(errors.INVALID_GRANT, "Invalid or expired code")

        if grant.client_id != client_id or grant.redirect_uri != redirect_uri:
            raise OAuthError(errors.INVALID_GRANT, "Client or redirect mismatch")

        issued_at = now()
        if grant.expires_at < issued_at:
            raise OAuthError(errors.INVALID_GRANT, "Authorization code expired")

        if not verify_pkce(verifier, grant.code_challenge):
            raise OAuthError(errors.INVALID_GRANT, "PKCE verification failed")

        refresh_expires_at = issued_at + config.refresh_token_ttl
        record = TokenPair(
            access_token=generate_token(32),
            refresh_token=generate_token(32),
            client_id=client_id,
            scopes=grant.scopes,
            access_expires_at=min(issued_at + config.access_token_ttl, refresh_expires_at),
            refresh_expires_at=refresh_expires_at,
        )
        await store.put_token(record)
        await store.touch_client(client_id, issued_at)
        logger.info(f"[OAUTH] Token pair issued for client {client_id} (access {redact(record.access_token)})")

        return token_response(record, issued_at)

    async def refresh(data: dict) -> JSONResponse:
        refresh_token = data.get("refresh_token")
        client_id = data.get("client_id")

        if not all_strings(refresh_token, client_id):
            raise OAuthError(errors.INVALID_REQUEST, "Missing or malformed refresh_token or client_id")

        stored = await store.get_token_by_refresh(refresh_token)
        if stored is None:
            raise OAuthError(errors.INVALID_GRANT, "Unknown refresh token")

        if stored.client_id != client_id:
            raise OAuthError(errors.INVALID_GRANT, "Client mismatch")

        issued_at = now()
        if stored.refresh_expires_at < issued_at:
            raise OAuthError(errors.INVALID_GRANT, "Refresh token expired")

        # Same refresh token, new access token; the previous access token
        # stays valid until its own expiry.
        record = TokenPair(
            access_token=generate_token(32),
            refresh_token=stored.refresh_token,
            client_id=stored.client_id,
            scopes=stored.scopes,
            access_expires_at=min(issued_at + config.access_token_ttl, stored.refresh_expires_at),
            refresh_expires_at=stored.refresh_expires_at,
        )
        await store.put_token(record)
        await store.touch_client(client_id, issued_at)
        logger.info(f"[OAUTH] Access token refreshed for client {client_id}")

        return token_response(record, issued_at)

    @router.post("/token")
    @handle_oauth_errors("Token exchange")
    async def token(request: Request):
        """OAuth 2.0 Token Endpoint."""
        data = await read_body(request)
        grant_type = data.get("grant_type")
        logger.debug(f"[OAUTH] Token request grant_type={grant_type} client_id={data.get('client_id')}")

        if not grant_type:
            raise OAuthError(errors.INVALID_REQUEST, "grant_type is required")
        if grant_type == "authorization_code":
            return await exchange_code(data)
        if grant_type == "refresh_token":
            return await refresh(data)
        raise OAuthError(errors.UNSUPPORTED_GRANT_TYPE, f"Unsupported grant_type: {grant_type}")

    return router
