"""
Unit tests for the PostgreSQL persistence layer.
"""

import json
from datetime import datetime, timezone

import pytest
from unittest.mock import AsyncMock, MagicMock

from access_shared.errors import StoreUnavailableError
from service_media_gate.app.models import PreviewLink
from service_media_gate.app.persistence.postgres import (
    PostgresDatabase, PostgresPreviewLinkStore, PostgresResourceDirectory
)


NOW = datetime(2024, 3, 14, 12, 0, tzinfo=timezone.utc)


def link_row(**overrides):
    row = {
        "id": "link-1",
        "token": "tok",
        "resource_id": "track-1",
        "created_by": "artist-1",
        "expires_at": None,
        "max_uses": 1,
        "use_count": 1,
        "created_at": NOW,
    }
    row.update(overrides)
    return row


class TestPostgresPersistence:
    """Test cases for the PostgreSQL repositories."""

    @pytest.fixture
    def mock_conn(self):
        """Mock asyncpg connection."""
        return AsyncMock()

    @pytest.fixture
    def database(self, mock_conn):
        """PostgresDatabase with a mocked pool."""
        database = PostgresDatabase("postgres://localhost/media", 1.0)
        pool = MagicMock()
        pool.acquire.return_value.__aenter__.return_value = mock_conn
        pool.acquire.return_value.__aexit__.return_value = False
        database.pool = pool
        return database

    @pytest.fixture
    def link_store(self, database):
        return PostgresPreviewLinkStore(database)

    @pytest.mark.asyncio
    async def test_consume_uses_conditional_update(self, link_store, mock_conn):
        """Test consume re-checks expiry and remaining uses in the UPDATE."""
        mock_conn.fetchrow.return_value = link_row()

        link = await link_store.consume("link-1", NOW)

        sql, link_id, now = mock_conn.fetchrow.call_args.args
        assert "UPDATE preview_links" in sql
        assert "use_count < max_uses" in sql
        assert "expires_at >= $2" in sql
        assert "RETURNING" in sql
        assert (link_id, now) == ("link-1", NOW)
        assert isinstance(link, PreviewLink)
        assert link.use_count == 1

    @pytest.mark.asyncio
    async def test_consume_no_row(self, link_store, mock_conn):
        """Test a non-qualifying row yields None."""
        mock_conn.fetchrow.return_value = None

        assert await link_store.consume("link-1", NOW) is None

    @pytest.mark.asyncio
    async def test_delete_expired_returns_count(self, link_store, mock_conn):
        """Test the command status is parsed into a row count."""
        mock_conn.execute.return_value = "DELETE 3"

        assert await link_store.delete_expired(NOW) == 3
        sql, now = mock_conn.execute.call_args.args
        assert "expires_at < $1" in sql
        assert now == NOW

    @pytest.mark.asyncio
    async def test_delete(self, link_store, mock_conn):
        """Test delete reports whether a row was removed."""
        mock_conn.execute.return_value = "DELETE 0"
        assert await link_store.delete("missing") is False

        mock_conn.execute.return_value = "DELETE 1"
        assert await link_store.delete("link-1") is True

    @pytest.mark.asyncio
    async def test_find_by_resource(self, link_store, mock_conn):
        """Test listings map every row."""
        mock_conn.fetch.return_value = [link_row(id="b"), link_row(id="a")]

        links = await link_store.find_by_resource("track-1")

        assert [link.id for link in links] == ["b", "a"]
        assert "ORDER BY created_at DESC" in mock_conn.fetch.call_args.args[0]

    @pytest.mark.asyncio
    async def test_postgres_error_maps_to_unavailable(self, link_store, mock_conn):
        """Test driver errors surface as StoreUnavailableError."""
        mock_conn.fetchrow.side_effect = ConnectionRefusedError("connection refused")

        with pytest.raises(StoreUnavailableError) as exc_info:
            await link_store.find_by_token("tok")
        assert exc_info.value.store == "postgres"

    @pytest.mark.asyncio
    async def test_run_before_start(self):
        """Test operations fail cleanly when the pool was never opened."""
        database = PostgresDatabase("postgres://localhost/media")

        with pytest.raises(StoreUnavailableError):
            await PostgresPreviewLinkStore(database).find_by_id("link-1")
        assert await database.health_check() is False

    @pytest.mark.asyncio
    async def test_resource_directory_decodes_json(self, database, mock_conn):
        """Test JSON columns are decoded whether returned as text or mapping."""
        mock_conn.fetchrow.return_value = {
            "resource_id": "track-1",
            "owner_id": "artist-1",
            "payload": json.dumps({"title": "Night Drive"}),
            "stream_keys": {"hls_opus": "a1b2c3"},
        }

        resource = await PostgresResourceDirectory(database).get("track-1")

        assert resource.owner_id == "artist-1"
        assert resource.payload == {"title": "Night Drive"}
        assert resource.stream_keys == {"hls_opus": "a1b2c3"}

    @pytest.mark.asyncio
    async def test_resource_directory_missing(self, database, mock_conn):
        """Test unknown resources resolve to None."""
        mock_conn.fetchrow.return_value = None

        assert await PostgresResourceDirectory(database).get("track-404") is None
