"""
Tests for the record stores (oauth/stores.py).

The memory store is exercised directly. The Supabase store is tested
against a mocked supabase client to check which queries it issues and
that backend failures surface as StoreError.
"""

import asyncio
from types import SimpleNamespace
from unittest.mock import MagicMock

import pytest

from config import Config
from oauth.stores import (
    AuthorizationGrant,
    MemoryRecordStore,
    RegisteredClient,
    StoreError,
    SupabaseRecordStore,
    TokenPair,
    create_store,
)


def make_grant(code="code-1", **overrides) -> AuthorizationGrant:
    values = dict(
        code=code,
        client_id="client-1",
        redirect_uri="https://client.example/cb",
        code_challenge="challenge",
        scopes=["strava"],
        expires_at=1000,
    )
    values.update(overrides)
    return AuthorizationGrant(**values)


def make_token(access="access-1", refresh="refresh-1", access_expires_at=100) -> TokenPair:
    return TokenPair(
        access_token=access,
        refresh_token=refresh,
        client_id="client-1",
        scopes=["strava"],
        access_expires_at=access_expires_at,
        refresh_expires_at=1000,
    )


class TestMemoryRecordStore:
    async def test_client_roundtrip_and_touch(self):
        store = MemoryRecordStore()
        await store.put_client(RegisteredClient("client-1", ["https://client.example/cb"], created_at=10))

        await store.touch_client("client-1", 42)
        client = await store.get_client("client-1")

        assert client.redirect_uris == ["https://client.example/cb"]
        assert client.last_used_at == 42
        assert await store.get_client("missing") is None

    async def test_touch_unknown_client_is_noop(self):
        store = MemoryRecordStore()
        await store.touch_client("missing", 42)
        assert store.clients == {}

    async def test_grant_consumed_once(self):
        store = MemoryRecordStore()
        await store.put_grant(make_grant())

        first = await store.consume_grant("code-1")
        second = await store.consume_grant("code-1")

        assert first.client_id == "client-1"
        assert second is None

    async def test_concurrent_consumption_yields_one_grant(self):
        store = MemoryRecordStore()
        await store.put_grant(make_grant())

        results = await asyncio.gather(*(store.consume_grant("code-1") for _ in range(10)))

        assert sum(r is not None for r in results) == 1

    async def test_returned_records_are_copies(self):
        store = MemoryRecordStore()
        await store.put_token(make_token())

        record = await store.get_token_by_access("access-1")
        record.scopes.append("admin")

        assert (await store.get_token_by_access("access-1")).scopes == ["strava"]

    async def test_refresh_lookup_follows_latest_record(self):
        store = MemoryRecordStore()
        await store.put_token(make_token("access-1", "refresh-1"))
        await store.put_token(make_token("access-2", "refresh-1", access_expires_at=200))

        latest = await store.get_token_by_refresh("refresh-1")

        assert latest.access_token == "access-2"
        # The earlier access token is still stored until it expires
        assert await store.get_token_by_access("access-1") is not None
        assert await store.get_token_by_refresh("unknown") is None


@pytest.fixture
def supabase_client():
    return MagicMock()


@pytest.fixture
def supabase_store(supabase_client):
    return SupabaseRecordStore(supabase_client, "clients", "codes", "tokens")


class TestSupabaseRecordStore:
    async def test_consume_grant_is_single_delete(self, supabase_client, supabase_store):
        table = supabase_client.table.return_value
        table.delete.return_value.eq.return_value.execute.return_value = SimpleNamespace(
            data=[make_grant().to_dict()]
        )

        grant = await supabase_store.consume_grant("code-1")

        supabase_client.table.assert_called_with("codes")
        table.delete.return_value.eq.assert_called_once_with("code", "code-1")
        table.select.assert_not_called()
        assert grant.code == "code-1"
        assert grant.scopes == ["strava"]

    async def test_consume_missing_grant_returns_none(self, supabase_client, supabase_store):
        table = supabase_client.table.return_value
        table.delete.return_value.eq.return_value.execute.return_value = SimpleNamespace(data=[])

        assert await supabase_store.consume_grant("code-1") is None

    async def test_refresh_lookup_orders_by_access_expiry(self, supabase_client, supabase_store):
        table = supabase_client.table.return_value
        query = table.select.return_value.eq.return_value.order.return_value.limit.return_value
        row = make_token().to_dict()
        row["id"] = 7  # extra columns are ignored
        query.execute.return_value = SimpleNamespace(data=[row])

        record = await supabase_store.get_token_by_refresh("refresh-1")

        table.select.return_value.eq.assert_called_once_with("refresh_token", "refresh-1")
        table.select.return_value.eq.return_value.order.assert_called_once_with(
            "access_expires_at", desc=True
        )
        assert record.access_token == "access-1"

    async def test_backend_failure_raises_store_error(self, supabase_client, supabase_store):
        table = supabase_client.table.return_value
        table.select.return_value.eq.return_value.limit.return_value.execute.side_effect = TimeoutError(
            "timed out"
        )

        with pytest.raises(StoreError):
            await supabase_store.get_token_by_access("access-1")

    async def test_touch_client_updates_last_used(self, supabase_client, supabase_store):
        table = supabase_client.table.return_value
        table.update.return_value.eq.return_value.execute.return_value = SimpleNamespace(data=[])

        await supabase_store.touch_client("client-1", 99)

        table.update.assert_called_once_with({"last_used_at": 99})
        table.update.return_value.eq.assert_called_once_with("client_id", "client-1")


class TestCreateStore:
    def test_memory_is_default(self):
        assert isinstance(create_store(Config({})), MemoryRecordStore)

    def test_backends_consume_atomically(self):
        assert MemoryRecordStore.atomic_consume
        assert SupabaseRecordStore.atomic_consume
