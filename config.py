"""Config management for strava-mcp-gateway."""
import os
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv


DEFAULT_ALLOWED_REDIRECT_URIS = [
    "https://claude.ai/api/mcp/auth_callback",
    "https://claude.com/api/mcp/auth_callback",
]

# Environment variable -> config key
ENV_KEYS = {
    "OAUTH_ENABLED": "oauth_enabled",
    "OAUTH_CLIENTS_TABLE": "clients_table",
    "OAUTH_CODES_TABLE": "codes_table",
    "OAUTH_TOKENS_TABLE": "tokens_table",
    "OAUTH_ACCESS_TOKEN_TTL_SECONDS": "access_token_ttl",
    "OAUTH_REFRESH_TOKEN_TTL_SECONDS": "refresh_token_ttl",
    "OAUTH_ALLOWED_REDIRECT_URIS": "allowed_redirect_uris",
    "OAUTH_REGISTRATION_TOKEN": "registration_token",
    "OAUTH_CONSENT_SECRET": "consent_secret",
    "OAUTH_STORE": "store_backend",
    "AUTH_TOKEN": "auth_token",
    "SUPABASE_URL": "supabase_url",
    "SUPABASE_SERVICE_KEY": "supabase_key",
    "STORE_TIMEOUT_SECONDS": "store_timeout",
    "SERVER_URL": "server_url",
    "MCP_HOST": "host",
    "MCP_PORT": "port",
    "LOG_LEVEL": "log_level",
    "LOG_FORMAT": "log_format",
    "STRAVA_CLIENT_ID": "strava_client_id",
    "STRAVA_CLIENT_SECRET": "strava_client_secret",
    "STRAVA_REFRESH_TOKEN": "strava_refresh_token",
}


def _as_bool(value) -> bool:
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() in ("1", "true", "yes", "on")


def _as_list(value) -> list[str]:
    if isinstance(value, (list, tuple)):
        return [str(v).strip() for v in value if str(v).strip()]
    return [v.strip() for v in str(value).split(",") if v.strip()]


class Config:
    """Configuration container.

    Built from a plain dict so tests can create independently configured
    instances; ``load_config()`` fills it from the environment.
    """

    def __init__(self, data: dict = None):
        self.data = data or {}

    def _int(self, key: str, default: int) -> int:
        value = self.data.get(key)
        if value is None or value == "":
            return default
        try:
            return int(value)
        except (TypeError, ValueError):
            raise ValueError(f"{key} must be an integer, got {value!r}")

    # --- OAuth ---

    @property
    def oauth_enabled(self) -> bool:
        return _as_bool(self.data.get("oauth_enabled", False))

    @property
    def clients_table(self) -> str:
        return self.data.get("clients_table") or "oauth_clients"

    @property
    def codes_table(self) -> str:
        return self.data.get("codes_table") or "oauth_codes"

    @property
    def tokens_table(self) -> str:
        return self.data.get("tokens_table") or "oauth_tokens"

    @property
    def access_token_ttl(self) -> int:
        return self._int("access_token_ttl", 3600)

    @property
    def refresh_token_ttl(self) -> int:
        return self._int("refresh_token_ttl", 30 * 24 * 60 * 60)

    @property
    def allowed_redirect_uris(self) -> list[str]:
        value = self.data.get("allowed_redirect_uris")
        if value is None:
            return list(DEFAULT_ALLOWED_REDIRECT_URIS)
        return _as_list(value)

    @property
    def registration_token(self) -> Optional[str]:
        return self.data.get("registration_token") or None

    @property
    def consent_secret(self) -> Optional[str]:
        return self.data.get("consent_secret") or None

    # --- Gateway ---

    @property
    def auth_token(self) -> Optional[str]:
        """Static shared secret accepted as a bearer value."""
        return self.data.get("auth_token") or None

    @property
    def server_url(self) -> Optional[str]:
        url = self.data.get("server_url")
        return url.rstrip("/") if url else None

    @property
    def host(self) -> str:
        return self.data.get("host") or "0.0.0.0"

    @property
    def port(self) -> int:
        return self._int("port", 8080)

    # --- Store ---

    @property
    def store_backend(self) -> str:
        return (self.data.get("store_backend") or "memory").lower()

    @property
    def supabase_url(self) -> Optional[str]:
        return self.data.get("supabase_url") or None

    @property
    def supabase_key(self) -> Optional[str]:
        return self.data.get("supabase_key") or None

    @property
    def store_timeout(self) -> int:
        return self._int("store_timeout", 5)

    # --- Logging ---

    @property
    def log_level(self) -> str:
        return (self.data.get("log_level") or "info").upper()

    @property
    def json_logs(self) -> bool:
        return (self.data.get("log_format") or "plain").lower() == "json"

    # --- Upstream ---

    @property
    def strava_client_id(self) -> Optional[str]:
        return self.data.get("strava_client_id")

    @property
    def strava_client_secret(self) -> Optional[str]:
        return self.data.get("strava_client_secret")

    @property
    def strava_refresh_token(self) -> Optional[str]:
        return self.data.get("strava_refresh_token")

    def has_strava_credentials(self) -> bool:
        """Check if config has the upstream credentials."""
        return bool(self.strava_client_id and self.strava_client_secret and self.strava_refresh_token)

    def validate(self) -> None:
        """Fail fast on values that would only break at request time."""
        self.access_token_ttl
        self.refresh_token_ttl
        self.store_timeout
        self.port
        if self.store_backend not in ("memory", "supabase"):
            raise ValueError(f"Unknown OAUTH_STORE backend: {self.store_backend}")
        if self.oauth_enabled and self.store_backend == "supabase":
            if not (self.supabase_url and self.supabase_key):
                raise ValueError("SUPABASE_URL and SUPABASE_SERVICE_KEY are required for the supabase store")


def load_config(env_file: Path = Path(".env")) -> Config:
    """Load config from the environment (and ``.env`` when present)."""
    if env_file.exists():
        load_dotenv(env_file)

    data = {}
    for env_name, key in ENV_KEYS.items():
        value = os.getenv(env_name)
        if value is not None:
            data[key] = value

    config = Config(data)
    config.validate()
    return config
