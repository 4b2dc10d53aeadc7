"""
PostgreSQL persistence layer for preview links and resource lookups.
"""

import asyncio
import json
from datetime import datetime
from typing import Any, Awaitable, Callable, List, Optional

import asyncpg

from access_shared.logging import get_logger
from access_shared.errors import StoreUnavailableError
from ..models import PreviewLink, ResourceRecord


PREVIEW_LINK_COLUMNS = "id, token, resource_id, created_by, expires_at, max_uses, use_count, created_at"


class PostgresDatabase:
    """Connection pool shared by the repositories."""

    def __init__(self, dsn: str, timeout_seconds: float = 2.0, *, min_size: int = 2, max_size: int = 10):
        self.dsn = dsn
        self.timeout_seconds = timeout_seconds
        self.min_size = min_size
        self.max_size = max_size
        self.logger = get_logger("media_gate.persistence.postgres")
        self.pool: Optional[asyncpg.Pool] = None

    async def start(self):
        """Start the persistence layer."""
        try:
            self.pool = await asyncpg.create_pool(
                self.dsn,
                min_size=self.min_size,
                max_size=self.max_size,
                command_timeout=self.timeout_seconds
            )
            await self._create_tables()
            self.logger.info("PostgreSQL persistence started")
        except (asyncpg.PostgresError, OSError, asyncio.TimeoutError) as e:
            self.logger.error("Failed to start PostgreSQL persistence", error=str(e))
            raise StoreUnavailableError("postgres", str(e)) from e

    async def stop(self):
        """Stop the persistence layer."""
        if self.pool:
            await self.pool.close()
            self.pool = None
            self.logger.info("PostgreSQL persistence stopped")

    async def _create_tables(self):
        """Create tables owned by this service."""
        async with self.pool.acquire() as conn:
            await conn.execute("""
                CREATE TABLE IF NOT EXISTS preview_links (
                    id VARCHAR(64) PRIMARY KEY,
                    token VARCHAR(128) NOT NULL UNIQUE,
                    resource_id VARCHAR(255) NOT NULL,
                    created_by VARCHAR(255) NOT NULL,
                    expires_at TIMESTAMP WITH TIME ZONE,
                    max_uses INTEGER CHECK (max_uses IS NULL OR max_uses >= 1),
                    use_count INTEGER NOT NULL DEFAULT 0,
                    created_at TIMESTAMP WITH TIME ZONE NOT NULL DEFAULT NOW()
                );
            """)
            await conn.execute("""
                CREATE INDEX IF NOT EXISTS idx_preview_links_resource ON preview_links(resource_id);
            """)
            await conn.execute("""
                CREATE INDEX IF NOT EXISTS idx_preview_links_created_by ON preview_links(created_by);
            """)
            await conn.execute("""
                CREATE INDEX IF NOT EXISTS idx_preview_links_expires
                ON preview_links(expires_at) WHERE expires_at IS NOT NULL;
            """)

    async def run(self, operation: str, fn: Callable[[asyncpg.Connection], Awaitable[Any]]) -> Any:
        """Run ``fn`` on a pooled connection, mapping failures to StoreUnavailableError."""
        if self.pool is None:
            raise StoreUnavailableError("postgres", "persistence not started")
        try:
            async with self.pool.acquire(timeout=self.timeout_seconds) as conn:
                return await fn(conn)
        except (asyncpg.PostgresError, asyncpg.InterfaceError, OSError, asyncio.TimeoutError) as e:
            self.logger.error("PostgreSQL operation failed", operation=operation, error=str(e))
            raise StoreUnavailableError("postgres", f"{operation} failed: {e}") from e

    async def health_check(self) -> bool:
        """Check PostgreSQL health."""
        try:
            await self.run("health_check", lambda conn: conn.fetchval("SELECT 1"))
            return True
        except StoreUnavailableError:
            return False


class PostgresPreviewLinkStore:
    """Preview link repository."""

    def __init__(self, database: PostgresDatabase):
        self.database = database
        self.logger = get_logger("media_gate.persistence.preview_links")

    async def create(self, link: PreviewLink) -> PreviewLink:
        row = await self.database.run("create_link", lambda conn: conn.fetchrow(f"""
            INSERT INTO preview_links (
                id, token, resource_id, created_by, expires_at, max_uses, use_count, created_at
            ) VALUES ($1, $2, $3, $4, $5, $6, $7, $8)
            RETURNING {PREVIEW_LINK_COLUMNS}
        """,
            link.id, link.token, link.resource_id, link.created_by,
            link.expires_at, link.max_uses, link.use_count, link.created_at
        ))
        return self._row_to_link(row)

    async def find_by_token(self, token: str) -> Optional[PreviewLink]:
        row = await self.database.run("find_by_token", lambda conn: conn.fetchrow(
            f"SELECT {PREVIEW_LINK_COLUMNS} FROM preview_links WHERE token = $1", token
        ))
        return self._row_to_link(row) if row else None

    async def find_by_id(self, link_id: str) -> Optional[PreviewLink]:
        row = await self.database.run("find_by_id", lambda conn: conn.fetchrow(
            f"SELECT {PREVIEW_LINK_COLUMNS} FROM preview_links WHERE id = $1", link_id
        ))
        return self._row_to_link(row) if row else None

    async def find_by_resource(self, resource_id: str) -> List[PreviewLink]:
        rows = await self.database.run("find_by_resource", lambda conn: conn.fetch(f"""
            SELECT {PREVIEW_LINK_COLUMNS} FROM preview_links
            WHERE resource_id = $1
            ORDER BY created_at DESC
        """, resource_id))
        return [self._row_to_link(row) for row in rows]

    async def delete(self, link_id: str) -> bool:
        result = await self.database.run("delete_link", lambda conn: conn.execute(
            "DELETE FROM preview_links WHERE id = $1", link_id
        ))
        return self._affected(result) > 0

    async def consume(self, link_id: str, now: datetime) -> Optional[PreviewLink]:
        """
        Increment ``use_count`` only while the link is unexpired and has uses left.

        The conditions are re-evaluated under the row lock, so two consumers
        racing for the last use cannot both succeed. Returns None when no row
        qualified.
        """
        row = await self.database.run("consume_link", lambda conn: conn.fetchrow(f"""
            UPDATE preview_links
            SET use_count = use_count + 1
            WHERE id = $1
              AND (expires_at IS NULL OR expires_at >= $2)
              AND (max_uses IS NULL OR use_count < max_uses)
            RETURNING {PREVIEW_LINK_COLUMNS}
        """, link_id, now))
        return self._row_to_link(row) if row else None

    async def delete_expired(self, now: datetime) -> int:
        result = await self.database.run("delete_expired", lambda conn: conn.execute(
            "DELETE FROM preview_links WHERE expires_at IS NOT NULL AND expires_at < $1", now
        ))
        return self._affected(result)

    def _affected(self, status: str) -> int:
        """Row count from an asyncpg command status such as ``DELETE 3``."""
        try:
            return int(str(status).rsplit(" ", 1)[-1])
        except ValueError:
            return 0

    def _row_to_link(self, row) -> PreviewLink:
        return PreviewLink(
            id=str(row["id"]),
            token=row["token"],
            resource_id=row["resource_id"],
            created_by=row["created_by"],
            expires_at=row["expires_at"],
            max_uses=row["max_uses"],
            use_count=row["use_count"],
            created_at=row["created_at"]
        )


class PostgresResourceDirectory:
    """Read-only view of media resources owned by the catalog service."""

    def __init__(self, database: PostgresDatabase):
        self.database = database

    async def get(self, resource_id: str) -> Optional[ResourceRecord]:
        row = await self.database.run("get_resource", lambda conn: conn.fetchrow("""
            SELECT resource_id, owner_id, payload, stream_keys
            FROM media_resources WHERE resource_id = $1
        """, resource_id))
        if not row:
            return None
        return ResourceRecord(
            resource_id=row["resource_id"],
            owner_id=row["owner_id"],
            payload=self._decode_json(row["payload"]),
            stream_keys=self._decode_json(row["stream_keys"])
        )

    def _decode_json(self, value) -> dict:
        if value is None:
            return {}
        if isinstance(value, str):
            return json.loads(value)
        return dict(value)
