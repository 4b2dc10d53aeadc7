"""
Integration tests for the Media Gate access flow.
"""

from datetime import timedelta

import pytest
from fastapi.testclient import TestClient

from access_shared.config import get_config
from access_shared.test_helpers import (
    FrozenClock, InMemoryKeyValueStore, InMemoryLinkStore, InMemoryResourceDirectory
)
from service_media_gate.app.main import create_app
from service_media_gate.app.models import ResourceRecord


class TestMediaGateFlow:
    """Integration tests for uploads, playback and sharing."""

    @pytest.fixture
    def clock(self):
        return FrozenClock()

    @pytest.fixture
    def kv_store(self, clock):
        return InMemoryKeyValueStore(clock)

    @pytest.fixture
    def link_store(self):
        return InMemoryLinkStore()

    @pytest.fixture
    def app(self, clock, kv_store, link_store):
        """Application with the background sweeper running."""
        resources = InMemoryResourceDirectory([
            ResourceRecord(
                "track-1", "artist-1",
                {"id": "track-1", "title": "Night Drive", "duration": 184},
                {"hls_opus": "a1b2c3", "hls_aac": "d4e5f6"}
            ),
        ])
        config = get_config("media_gate", 8020, secure_link_secret="integration-secret")
        return create_app(
            config,
            kv_store=kv_store,
            link_store=link_store,
            resource_directory=resources,
            clock=clock
        )

    def test_upload_quota_resets_next_day(self, app, clock):
        """Test a day's quota is used up and restored after midnight."""
        headers = {"X-User-Id": "artist-1"}

        with TestClient(app) as client:
            statuses = [client.post("/api/v1/uploads/reserve", headers=headers).status_code for _ in range(11)]
            assert statuses == [200] * 10 + [429]

            clock.advance(12 * 60 * 60)
            response = client.post("/api/v1/uploads/reserve", headers=headers)

            assert response.status_code == 200
            assert response.json()["remaining"] == 9
            assert response.json()["reset_at"] == "2024-03-16T00:00:00Z"

    def test_share_preview_then_stream(self, app, clock, link_store):
        """Test an artist shares a preview that a listener redeems, then it expires and is swept."""
        artist = {"X-User-Id": "artist-1", "X-User-Tier": "elevated"}
        admin = {"X-User-Id": "ops-1", "X-User-Roles": "admin"}

        with TestClient(app) as client:
            link = client.post(
                "/api/v1/resources/track-1/preview-links",
                json={"expires_at": (clock.now + timedelta(minutes=10)).isoformat(), "max_uses": 3},
                headers=artist
            ).json()

            preview = client.get(f"/api/v1/preview/{link['token']}")
            assert preview.status_code == 200
            assert preview.json()["title"] == "Night Drive"

            stream = client.get(
                "/api/v1/resources/track-1/stream",
                params={"format": "hls_aac"},
                headers={"X-User-Id": "listener-1"}
            )
            assert stream.status_code == 200
            assert stream.json()["url"].startswith("/media/hls/d4e5f6/playlist.m3u8?")

            clock.advance(11 * 60)
            expired = client.get(f"/api/v1/preview/{link['token']}")
            assert expired.json()["code"] == "EXPIRED"

            swept = client.post("/api/v1/admin/preview-links/sweep", headers=admin)
            assert swept.json() == {"deleted": 1}
            assert link_store.links == {}

    def test_degraded_redis(self, app, kv_store):
        """Test reads and uploads keep working while Redis is down."""
        kv_store.unavailable = True
        headers = {"X-User-Id": "artist-1"}

        with TestClient(app) as client:
            assert client.get("/health").status_code == 503
            assert client.get("/api/v1/resources/track-1", headers=headers).status_code == 200
            assert client.post("/api/v1/uploads/reserve", headers=headers).status_code == 200
