"""PostgreSQL implementations of the directory and session stores.

The directory datastore owns its query logic as stored procedures; these
adapters only call them and map rows to plain dictionaries.

Procedures consumed
- ``search_businesses_v2(query_text, embedding, group_id, threshold, limit)``
  returning ``jsonb`` ``{"results": [...]}``
- ``get_segments_by_scope(scope, group_id)``
- ``get_members_by_scope(scope, group_id, industry, chapter, search, limit, offset)``
- ``get_member_contact(membership_id, group_id, scope, business_name)``
- ``get_ai_session(identity)``, ``create_ai_session(...)``,
  ``update_ai_session(...)``, ``end_ai_session(identity)``

Connection management
- A shared asyncpg pool is created on demand and reused across calls
- Queries are funneled through ``_execute_query`` for uniform error handling
"""

import json
from typing import Any, Dict, List, Optional, Sequence

import asyncpg
import structlog
from asyncpg import Connection, Pool

from .base import (
    DirectoryStore,
    PhoneVariants,
    Session,
    SessionStore,
    StoreConnectionError,
    StoreQueryError,
)

logger = structlog.get_logger("directory_store.postgres")


class PostgresBackend:
    """Lazily created asyncpg pool shared by the PostgreSQL stores."""

    def __init__(
        self,
        dsn: str,
        pool_size: int = 10,
        command_timeout: int = 30,
    ):
        """Configure the backend.

        Parameters
        - dsn: PostgreSQL DSN including database and credentials
        - pool_size: Max size of asyncpg connection pool
        - command_timeout: Seconds to allow per DB command
        """
        self.dsn = dsn
        self.pool_size = pool_size
        self.command_timeout = command_timeout
        self._pool: Optional[Pool] = None

    async def _init_connection(self, conn: Connection) -> None:
        """Decode json/jsonb columns into Python objects."""
        for type_name in ("json", "jsonb"):
            await conn.set_type_codec(
                type_name,
                encoder=json.dumps,
                decoder=json.loads,
                schema="pg_catalog",
            )

    async def _get_pool(self) -> Pool:
        """Get or create connection pool."""
        if self._pool is None:
            try:
                self._pool = await asyncpg.create_pool(
                    self.dsn,
                    min_size=1,
                    max_size=self.pool_size,
                    command_timeout=self.command_timeout,
                    init=self._init_connection,
                )
                logger.info("Created PostgreSQL connection pool", pool_size=self.pool_size)
            except Exception as e:
                logger.error("Failed to create PostgreSQL connection pool", error=str(e))
                raise StoreConnectionError(f"Failed to create connection pool: {e}")

        return self._pool

    async def execute_query(
        self,
        query: str,
        *args: Any,
        fetch: bool = False,
        fetch_one: bool = False,
        fetch_val: bool = False
    ) -> Any:
        """Execute a query with error handling.

        The ``fetch``/``fetch_one``/``fetch_val`` flags control how results are
        retrieved. All failures are wrapped in ``StoreQueryError``.
        """
        pool = await self._get_pool()
        try:
            async with pool.acquire() as conn:
                if fetch_val:
                    return await conn.fetchval(query, *args)
                if fetch_one:
                    return await conn.fetchrow(query, *args)
                if fetch:
                    return await conn.fetch(query, *args)
                return await conn.execute(query, *args)
        except Exception as e:
            logger.error("Query execution failed", query=query.split("(")[0].strip(), error=str(e))
            raise StoreQueryError(f"Query failed: {e}")

    async def health_check(self) -> bool:
        try:
            return await self.execute_query("SELECT 1", fetch_val=True) == 1
        except Exception as e:
            logger.error("PostgreSQL health check failed", error=str(e))
            return False

    async def close(self) -> None:
        if self._pool is not None:
            await self._pool.close()
            self._pool = None
            logger.info("PostgreSQL connection pool closed")


def _rows(records: Optional[Sequence[Any]]) -> List[Dict[str, Any]]:
    return [dict(record) for record in records or []]


class PostgresDirectoryStore(DirectoryStore):
    """Directory reads backed by the datastore's stored procedures."""

    def __init__(self, backend: PostgresBackend):
        self.backend = backend

    async def semantic_search(
        self,
        query_text: str,
        embedding: Sequence[float],
        scope_id: str,
        threshold: float,
        limit: int
    ) -> List[Dict[str, Any]]:
        payload = await self.backend.execute_query(
            "SELECT search_businesses_v2($1, $2, $3::uuid, $4, $5)",
            query_text,
            json.dumps([float(v) for v in embedding]),
            scope_id,
            threshold,
            limit,
            fetch_val=True,
        )
        if isinstance(payload, str):
            payload = json.loads(payload)
        if isinstance(payload, dict):
            hits = payload.get("results") or []
        else:
            hits = payload or []

        logger.debug("Semantic search returned", scope_id=scope_id, hits=len(hits))
        return [hit for hit in hits if isinstance(hit, dict)]

    async def find_member_by_phone(
        self,
        scope_id: str,
        variants: PhoneVariants
    ) -> Optional[Dict[str, Any]]:
        row = await self.backend.execute_query(
            """
            WITH roster AS (
                SELECT id AS membership_id,
                       regexp_replace(COALESCE(profile_data->>'mobile_number', ''), '\\D', '', 'g') AS digits
                FROM t_group_memberships
                WHERE group_id = $1::uuid AND status = 'active' AND is_active = true
            )
            SELECT membership_id::text AS membership_id, digits AS phone,
                   CASE WHEN digits = $2 THEN 1
                        WHEN digits = $3 THEN 2
                        ELSE 3 END AS match_rank
            FROM roster
            WHERE digits = $2 OR digits = $3 OR right(digits, 10) = $4
            ORDER BY match_rank
            LIMIT 1
            """,
            scope_id,
            variants.exact,
            variants.country_normalized,
            variants.suffix,
            fetch_one=True,
        )
        return dict(row) if row else None

    async def list_directory_rows(self, scope_id: str, limit: int) -> List[Dict[str, Any]]:
        records = await self.backend.execute_query(
            """
            SELECT m.id::text AS membership_id,
                   p.business_name,
                   p.logo_url,
                   p.industry_id AS industry,
                   p.city,
                   m.profile_data->>'chapter' AS chapter,
                   m.profile_data->>'short_description' AS short_description,
                   m.profile_data->>'ai_enhanced_description' AS ai_enhanced_description,
                   m.profile_data->>'mobile_number' AS mobile_number,
                   m.profile_data->>'business_whatsapp' AS business_whatsapp,
                   p.business_email,
                   m.profile_data->>'website_url' AS website_url,
                   m.profile_data->>'booking_url' AS booking_url
            FROM t_group_memberships m
            JOIN t_tenant_profiles p ON p.tenant_id = m.tenant_id
            WHERE m.group_id = $1::uuid AND m.status = 'active' AND m.is_active = true
            ORDER BY p.business_name
            LIMIT $2
            """,
            scope_id,
            limit,
            fetch=True,
        )
        return _rows(records)

    async def list_segments(self, scope_id: str) -> List[Dict[str, Any]]:
        records = await self.backend.execute_query(
            "SELECT * FROM get_segments_by_scope($1, $2::uuid)",
            "group",
            scope_id,
            fetch=True,
        )
        return _rows(records)

    async def list_members(
        self,
        scope_id: str,
        segment: Optional[str],
        limit: int,
        offset: int
    ) -> List[Dict[str, Any]]:
        records = await self.backend.execute_query(
            "SELECT * FROM get_members_by_scope($1, $2::uuid, $3, NULL, NULL, $4, $5)",
            "group",
            scope_id,
            segment,
            limit,
            offset,
            fetch=True,
        )
        return _rows(records)

    async def get_member_contact(
        self,
        membership_id: Optional[str],
        scope_id: Optional[str],
        business_name: Optional[str]
    ) -> Optional[Dict[str, Any]]:
        row = await self.backend.execute_query(
            "SELECT * FROM get_member_contact($1::uuid, $2::uuid, $3, $4)",
            membership_id,
            scope_id,
            "group",
            business_name,
            fetch_one=True,
        )
        return dict(row) if row else None

    async def get_membership_scope(self, membership_id: str) -> Optional[str]:
        value = await self.backend.execute_query(
            "SELECT group_id::text FROM t_group_memberships WHERE id = $1::uuid",
            membership_id,
            fetch_val=True,
        )
        return value

    async def get_group_name(self, scope_id: str) -> Optional[str]:
        return await self.backend.execute_query(
            "SELECT group_name FROM t_business_groups WHERE id = $1::uuid",
            scope_id,
            fetch_val=True,
        )

    async def health_check(self) -> bool:
        return await self.backend.health_check()

    async def close(self) -> None:
        await self.backend.close()


class PostgresSessionStore(SessionStore):
    """Conversation sessions kept by the ``*_ai_session`` procedures."""

    def __init__(self, backend: PostgresBackend):
        self.backend = backend

    @staticmethod
    def _to_session(row: Dict[str, Any], identity_key: str) -> Session:
        return Session(
            session_id=str(row["session_id"]),
            identity_key=identity_key,
            scope_id=str(row["group_id"]) if row.get("group_id") else None,
            channel=row.get("channel") or "chat",
            user_id=row.get("user_id"),
            phone=row.get("phone"),
            context=dict(row.get("context") or {}),
            messages=list(row.get("messages") or []),
            created_at=row.get("created_at"),
            updated_at=row.get("updated_at"),
            expires_at=row.get("expires_at"),
        )

    async def get_active(self, identity_key: str) -> Optional[Session]:
        row = await self.backend.execute_query(
            "SELECT * FROM get_ai_session($1) WHERE expires_at IS NULL OR expires_at > now() LIMIT 1",
            identity_key,
            fetch_one=True,
        )
        if not row:
            return None
        return self._to_session(dict(row), identity_key)

    async def create(
        self,
        identity_key: str,
        scope_id: Optional[str],
        channel: str,
        user_id: Optional[str],
        phone: Optional[str],
        context: Dict[str, Any],
        ttl_seconds: int
    ) -> Session:
        row = await self.backend.execute_query(
            """
            SELECT * FROM create_ai_session(
                p_identity => $1, p_user_id => $2, p_group_id => $3::uuid,
                p_phone => $4, p_channel => $5, p_context => $6::jsonb,
                p_ttl_seconds => $7, p_language => 'en'
            )
            """,
            identity_key,
            user_id,
            scope_id,
            phone,
            channel,
            context,
            ttl_seconds,
            fetch_one=True,
        )
        if not row:
            raise StoreQueryError("create_ai_session returned no row")
        return self._to_session(dict(row), identity_key)

    async def update_context(
        self,
        session_id: str,
        context: Dict[str, Any],
        message: Optional[Dict[str, Any]] = None
    ) -> None:
        await self.backend.execute_query(
            "SELECT update_ai_session($1::uuid, $2::jsonb, NULL, $3::jsonb)",
            session_id,
            context,
            message,
        )

    async def end(self, identity_key: str) -> None:
        await self.backend.execute_query("SELECT end_ai_session($1)", identity_key)

    async def close(self) -> None:
        await self.backend.close()
