"""Record stores for OAuth clients, authorization codes and token pairs.

Three independently keyed collections:
- clients: keyed by client_id
- codes: keyed by code, consumed by a single atomic read-and-delete
- tokens: keyed by access_token, with a secondary lookup by refresh_token

Endpoints never lock in process. Every critical section (code redemption,
token replacement) is a single store operation so several gateway
instances can share one backend.
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from dataclasses import asdict, dataclass, field, fields
from typing import Any, Callable, Optional

from logging_config import redact

logger = logging.getLogger(__name__)


class StoreError(Exception):
    """Raised when the backing store fails or times out."""


def _from_row(cls, row: dict[str, Any]):
    names = {f.name for f in fields(cls)}
    return cls(**{k: list(v) if isinstance(v, list) else v for k, v in row.items() if k in names})


@dataclass
class RegisteredClient:
    client_id: str
    redirect_uris: list[str]
    created_at: int
    client_name: Optional[str] = None
    last_used_at: Optional[int] = None

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, row: dict[str, Any]) -> "RegisteredClient":
        return _from_row(cls, row)


@dataclass
class AuthorizationGrant:
    code: str
    client_id: str
    redirect_uri: str
    code_challenge: str
    expires_at: int
    scopes: list[str] = field(default_factory=list)
    code_challenge_method: str = "S256"

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, row: dict[str, Any]) -> "AuthorizationGrant":
        return _from_row(cls, row)


@dataclass
class TokenPair:
    access_token: str
    refresh_token: str
    client_id: str
    scopes: list[str]
    access_expires_at: int
    refresh_expires_at: int

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, row: dict[str, Any]) -> "TokenPair":
        return _from_row(cls, row)


class RecordStore(ABC):
    """Abstract store used by the authorization server and access validator."""

    # Whether consume_grant() is a single atomic read-and-delete. A backend
    # that can only read and then delete allows double redemption.
    atomic_consume: bool = False

    @abstractmethod
    async def put_client(self, client: RegisteredClient) -> None: ...

    @abstractmethod
    async def get_client(self, client_id: str) -> Optional[RegisteredClient]: ...

    @abstractmethod
    async def touch_client(self, client_id: str, now: int) -> None: ...

    @abstractmethod
    async def put_grant(self, grant: AuthorizationGrant) -> None: ...

    @abstractmethod
    async def consume_grant(self, code: str) -> Optional[AuthorizationGrant]:
        """Remove and return the grant, or None if it does not exist."""

    @abstractmethod
    async def put_token(self, token: TokenPair) -> None: ...

    @abstractmethod
    async def get_token_by_access(self, access_token: str) -> Optional[TokenPair]: ...

    @abstractmethod
    async def get_token_by_refresh(self, refresh_token: str) -> Optional[TokenPair]:
        """Return the current record of a refresh-token lineage."""


class MemoryRecordStore(RecordStore):
    """In-process store.

    Only valid for a single instance (and tests). Every operation completes
    without awaiting, so each one is atomic with respect to the event loop.
    """

    atomic_consume = True

    def __init__(self):
        self.clients: dict[str, dict] = {}
        self.codes: dict[str, dict] = {}
        self.tokens: dict[str, dict] = {}
        # refresh_token -> access_token of the latest record in that lineage
        self.refresh_index: dict[str, str] = {}

    async def put_client(self, client: RegisteredClient) -> None:
        self.clients[client.client_id] = client.to_dict()

    async def get_client(self, client_id: str) -> Optional[RegisteredClient]:
        row = self.clients.get(client_id)
        return RegisteredClient.from_dict(row) if row else None

    async def touch_client(self, client_id: str, now: int) -> None:
        if client_id in self.clients:
            self.clients[client_id]["last_used_at"] = now

    async def put_grant(self, grant: AuthorizationGrant) -> None:
        self.codes[grant.code] = grant.to_dict()

    async def consume_grant(self, code: str) -> Optional[AuthorizationGrant]:
        row = self.codes.pop(code, None)
        return AuthorizationGrant.from_dict(row) if row else None

    async def put_token(self, token: TokenPair) -> None:
        self.tokens[token.access_token] = token.to_dict()
        self.refresh_index[token.refresh_token] = token.access_token

    async def get_token_by_access(self, access_token: str) -> Optional[TokenPair]:
        row = self.tokens.get(access_token)
        return TokenPair.from_dict(row) if row else None

    async def get_token_by_refresh(self, refresh_token: str) -> Optional[TokenPair]:
        access_token = self.refresh_index.get(refresh_token)
        if access_token is None:
            return None
        row = self.tokens.get(access_token)
        return TokenPair.from_dict(row) if row else None


class SupabaseRecordStore(RecordStore):
    """Store backed by three Supabase (Postgres) tables.

    Code redemption is a single ``DELETE ... RETURNING`` so concurrent
    redemptions on different instances see exactly one row between them.
    The supabase client is synchronous; calls run in a worker thread.
    """

    atomic_consume = True

    def __init__(self, client, clients_table: str, codes_table: str, tokens_table: str):
        self.client = client
        self.clients_table = clients_table
        self.codes_table = codes_table
        self.tokens_table = tokens_table

    async def _execute(self, action: str, query: Callable[[], Any]) -> list[dict]:
        try:
            response = await asyncio.to_thread(query)
        except Exception as e:
            logger.error(f"[STORE] {action} failed: {e}")
            raise StoreError(f"{action} failed") from e
        return response.data or []

    async def put_client(self, client: RegisteredClient) -> None:
        await self._execute(
            "put_client",
            lambda: self.client.table(self.clients_table).insert(client.to_dict()).execute(),
        )

    async def get_client(self, client_id: str) -> Optional[RegisteredClient]:
        rows = await self._execute(
            "get_client",
            lambda: self.client.table(self.clients_table)
            .select("*")
            .eq("client_id", client_id)
            .limit(1)
            .execute(),
        )
        return RegisteredClient.from_dict(rows[0]) if rows else None

    async def touch_client(self, client_id: str, now: int) -> None:
        await self._execute(
            "touch_client",
            lambda: self.client.table(self.clients_table)
            .update({"last_used_at": now})
            .eq("client_id", client_id)
            .execute(),
        )

    async def put_grant(self, grant: AuthorizationGrant) -> None:
        await self._execute(
            "put_grant",
            lambda: self.client.table(self.codes_table).insert(grant.to_dict()).execute(),
        )

    async def consume_grant(self, code: str) -> Optional[AuthorizationGrant]:
        rows = await self._execute(
            "consume_grant",
            lambda: self.client.table(self.codes_table).delete().eq("code", code).execute(),
        )
        if not rows:
            logger.debug(f"[STORE] No grant for code {redact(code)}")
            return None
        return AuthorizationGrant.from_dict(rows[0])

    async def put_token(self, token: TokenPair) -> None:
        await self._execute(
            "put_token",
            lambda: self.client.table(self.tokens_table).insert(token.to_dict()).execute(),
        )

    async def get_token_by_access(self, access_token: str) -> Optional[TokenPair]:
        rows = await self._execute(
            "get_token_by_access",
            lambda: self.client.table(self.tokens_table)
            .select("*")
            .eq("access_token", access_token)
            .limit(1)
            .execute(),
        )
        return TokenPair.from_dict(rows[0]) if rows else None

    async def get_token_by_refresh(self, refresh_token: str) -> Optional[TokenPair]:
        rows = await self._execute(
            "get_token_by_refresh",
            lambda: self.client.table(self.tokens_table)
            .select("*")
            .eq("refresh_token", refresh_token)
            .order("access_expires_at", desc=True)
            .limit(1)
            .execute(),
        )
        return TokenPair.from_dict(rows[0]) if rows else None


def create_store(config) -> RecordStore:
    """Build the record store selected by ``config.store_backend``."""
    if config.store_backend == "supabase":
        from supabase import ClientOptions, create_client

        client = create_client(
            config.supabase_url,
            config.supabase_key,
            options=ClientOptions(postgrest_client_timeout=config.store_timeout),
        )
        logger.info("[STORE] Using Supabase record store")
        return SupabaseRecordStore(
            client,
            clients_table=config.clients_table,
            codes_table=config.codes_table,
            tokens_table=config.tokens_table,
        )

    logger.info("[STORE] Using in-memory record store (single instance only)")
    return MemoryRecordStore()
