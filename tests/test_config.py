"""Tests for configuration loading (config.py) and logging setup."""

import json
import logging
from pathlib import Path

import pytest

from config import DEFAULT_ALLOWED_REDIRECT_URIS, ENV_KEYS, Config, load_config
from logging_config import JSONFormatter, redact


@pytest.fixture
def clean_env(monkeypatch):
    # setenv first so values written by load_dotenv are undone on teardown
    for name in ENV_KEYS:
        monkeypatch.setenv(name, "")
        monkeypatch.delenv(name)
    return monkeypatch


def test_defaults():
    config = Config({})

    assert config.oauth_enabled is False
    assert config.access_token_ttl == 3600
    assert config.refresh_token_ttl == 2592000
    assert config.allowed_redirect_uris == DEFAULT_ALLOWED_REDIRECT_URIS
    assert config.auth_token is None
    assert config.store_backend == "memory"
    assert config.port == 8080
    assert config.log_level == "INFO"
    assert config.json_logs is False
    assert not config.has_strava_credentials()


def test_load_from_environment(clean_env, tmp_path):
    clean_env.setenv("OAUTH_ENABLED", "true")
    clean_env.setenv("OAUTH_ACCESS_TOKEN_TTL_SECONDS", "600")
    clean_env.setenv("OAUTH_ALLOWED_REDIRECT_URIS", "https://a.example/cb, https://b.example/cb")
    clean_env.setenv("AUTH_TOKEN", "secret")
    clean_env.setenv("SERVER_URL", "https://gateway.example/")
    clean_env.setenv("LOG_FORMAT", "json")

    config = load_config(tmp_path / "missing.env")

    assert config.oauth_enabled is True
    assert config.access_token_ttl == 600
    assert config.allowed_redirect_uris == ["https://a.example/cb", "https://b.example/cb"]
    assert config.auth_token == "secret"
    assert config.server_url == "https://gateway.example"
    assert config.json_logs is True


def test_env_file_loaded(clean_env, tmp_path):
    env_file = tmp_path / ".env"
    env_file.write_text("AUTH_TOKEN=from-file\nMCP_PORT=9000\n")

    config = load_config(env_file)

    assert config.auth_token == "from-file"
    assert config.port == 9000


def test_bad_integer_fails_fast(clean_env):
    clean_env.setenv("OAUTH_REFRESH_TOKEN_TTL_SECONDS", "thirty days")

    with pytest.raises(ValueError, match="refresh_token_ttl"):
        load_config(Path("/nonexistent/.env"))


def test_unknown_store_backend():
    with pytest.raises(ValueError):
        Config({"store_backend": "redis"}).validate()


def test_supabase_store_needs_credentials():
    with pytest.raises(ValueError):
        Config({"oauth_enabled": True, "store_backend": "supabase"}).validate()

    Config({
        "oauth_enabled": True,
        "store_backend": "supabase",
        "supabase_url": "https://project.supabase.co",
        "supabase_key": "service-key",
    }).validate()


def test_empty_allow_list_is_respected():
    assert Config({"allowed_redirect_uris": ""}).allowed_redirect_uris == []


def test_json_formatter_extracts_tag():
    record = logging.LogRecord("oauth", logging.INFO, __file__, 10, "[OAUTH] Token issued", None, None)

    entry = json.loads(JSONFormatter("test-service").format(record))

    assert entry["tag"] == "OAUTH"
    assert entry["message"] == "Token issued"
    assert entry["service"] == "test-service"
    assert entry["level"] == "INFO"


def test_redact():
    assert redact("abcdefghijklmnop") == "abcdefgh..."
    assert redact("") == "<none>"
