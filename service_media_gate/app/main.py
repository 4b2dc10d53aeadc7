"""
Media Gate service for the access layer.

Gates uploads with per-tier daily quotas, serves idempotent resource
fetches through a caller-scoped cache and issues ephemeral access tokens
(signed delivery URLs and preview links).
"""

from datetime import datetime
from typing import Callable, Dict, Optional

from fastapi import Depends, Query, Request, Response

from access_shared.base_service import BaseService
from access_shared.config import ServiceConfig
from access_shared.errors import StoreUnavailableError

from .caching.response_cache import CachePolicy, CacheRequest, ResponseCache
from .domain.identity import CallerIdentity, TrustTier, get_admin_identity, get_caller_identity
from .domain.resources import require_resource
from .models import (
    PreviewLinkCreateRequest, PreviewLinkListResponse, PreviewLinkResponse,
    QuotaResponse, StreamUrlResponse, SweepResponse
)
from .persistence.postgres import PostgresDatabase, PostgresPreviewLinkStore, PostgresResourceDirectory
from .ratelimit.limiter import QuotaRateLimiter
from .ratelimit.quota import QuotaCounter, QuotaWindow, utcnow
from .stores.redis_store import RedisStore
from .tokens.preview_links import PreviewLinkService, PreviewLinkSweeper
from .tokens.signed_url import SignedUrlIssuer


UPLOAD_ACTION = "upload"
DEFAULT_STREAM_FORMAT = "hls_opus"


class MediaGateService(BaseService):
    """Media Gate service implementation."""

    def __init__(
        self,
        config: Optional[ServiceConfig] = None,
        *,
        kv_store=None,
        link_store=None,
        resource_directory=None,
        clock: Callable[[], datetime] = utcnow,
    ):
        super().__init__("media_gate", 8020, config)
        self.clock = clock

        # Store clients are created here and opened on startup
        self.kv_store = kv_store or RedisStore(
            self.config.redis_url,
            self.config.store_timeout_seconds,
            metrics=self.metrics
        )
        self.database: Optional[PostgresDatabase] = None
        if link_store is None or resource_directory is None:
            self.database = PostgresDatabase(self.config.postgres_dsn, self.config.store_timeout_seconds)
        self.link_store = link_store or PostgresPreviewLinkStore(self.database)
        self.resources = resource_directory or PostgresResourceDirectory(self.database)

        self.rate_limiter = QuotaRateLimiter(
            QuotaCounter(self.kv_store, QuotaWindow(self.config.quota_window_seconds), clock=clock),
            limits={
                UPLOAD_ACTION: {
                    TrustTier.STANDARD: self.config.upload_limit_standard,
                    TrustTier.ELEVATED: self.config.upload_limit_elevated,
                }
            },
            fail_open=self.config.quota_fail_open,
            metrics=self.metrics
        )
        self.response_cache = ResponseCache(self.kv_store, clock=clock, metrics=self.metrics)
        self.resource_cache_policy = CachePolicy(ttl_seconds=self.config.cache_default_ttl_seconds)
        self.url_issuer = SignedUrlIssuer(
            self.config.secure_link_secret,
            self.config.hls_token_ttl_seconds,
            path_prefix=self.config.media_path_prefix,
            clock=lambda: clock().timestamp(),
            metrics=self.metrics
        )
        self.preview_links = PreviewLinkService(
            self.link_store,
            self.resources,
            tombstones=self.kv_store,
            clock=clock,
            metrics=self.metrics
        )
        self.sweeper = PreviewLinkSweeper(self.preview_links, self.config.preview_sweep_interval_seconds)

        @self.app.on_event("startup")
        async def _startup():
            await self.start()

        @self.app.on_event("shutdown")
        async def _shutdown():
            await self.stop()

        self._setup_media_gate_routes()

        # Expose service instance via app state for introspection/testing
        self.app.state.media_gate_service = self

    def _setup_media_gate_routes(self):
        """Set up media-gate-specific routes."""

        @self.app.get("/")
        async def root():
            """Root endpoint."""
            return {
                "service": "media_gate",
                "message": "Media Gate Access Layer",
                "version": "1.0.0",
                "capabilities": ["upload_quota", "response_cache", "signed_urls", "preview_links"]
            }

        @self.app.post("/api/v1/uploads/reserve", response_model=QuotaResponse)
        async def reserve_upload(response: Response, identity: CallerIdentity = Depends(get_caller_identity)):
            """Consume one upload slot from the caller's daily quota."""
            decision = await self.rate_limiter.enforce(identity, UPLOAD_ACTION)
            self.rate_limiter.apply_headers(response, decision)
            return QuotaResponse(**decision.to_dict())

        @self.app.get("/api/v1/uploads/quota", response_model=QuotaResponse)
        async def get_upload_quota(response: Response, identity: CallerIdentity = Depends(get_caller_identity)):
            """Report the caller's upload quota without consuming it."""
            decision = await self.rate_limiter.get_status(identity, UPLOAD_ACTION)
            self.rate_limiter.apply_headers(response, decision)
            return QuotaResponse(**decision.to_dict())

        @self.app.get("/api/v1/resources/{resource_id}")
        async def get_resource(
            resource_id: str,
            request: Request,
            identity: CallerIdentity = Depends(get_caller_identity)
        ):
            """Fetch a resource representation through the response cache."""
            async def load():
                resource = await require_resource(self.resources, resource_id)
                return resource.payload

            return await self.response_cache.cached(
                CacheRequest.from_request(request, identity),
                self.resource_cache_policy,
                load
            )

        @self.app.get("/api/v1/resources/{resource_id}/stream", response_model=StreamUrlResponse)
        async def get_stream_url(
            resource_id: str,
            stream_format: str = Query(DEFAULT_STREAM_FORMAT, alias="format"),
            identity: CallerIdentity = Depends(get_caller_identity)
        ):
            """Issue a signed HLS playlist URL."""
            resource = await require_resource(self.resources, resource_id)
            signed = self.url_issuer.stream_url(resource, stream_format)
            return StreamUrlResponse(
                url=signed.url,
                expires_at=signed.expires_at,
                expires_in=self.url_issuer.default_ttl_seconds,
                format=stream_format
            )

        @self.app.post(
            "/api/v1/resources/{resource_id}/preview-links",
            response_model=PreviewLinkResponse,
            status_code=201
        )
        async def create_preview_link(
            resource_id: str,
            body: PreviewLinkCreateRequest,
            identity: CallerIdentity = Depends(get_caller_identity)
        ):
            """Create a preview link for a resource the caller owns."""
            link = await self.preview_links.create(
                resource_id,
                identity,
                expires_at=body.expires_at,
                max_uses=body.max_uses
            )
            return PreviewLinkResponse.from_link(link)

        @self.app.get("/api/v1/resources/{resource_id}/preview-links", response_model=PreviewLinkListResponse)
        async def list_preview_links(resource_id: str, identity: CallerIdentity = Depends(get_caller_identity)):
            """List preview links of a resource the caller owns."""
            links = await self.preview_links.list_for_resource(resource_id, identity)
            return PreviewLinkListResponse(
                links=[PreviewLinkResponse.from_link(link) for link in links],
                total=len(links)
            )

        @self.app.get("/api/v1/preview/{token}")
        async def access_via_preview(token: str):
            """Redeem a preview link. No caller identity is required."""
            resource = await self.preview_links.consume(token)
            return resource.payload

        @self.app.delete("/api/v1/preview-links/{link_id}")
        async def revoke_preview_link(link_id: str, identity: CallerIdentity = Depends(get_caller_identity)):
            """Revoke a preview link."""
            await self.preview_links.revoke(link_id, identity)
            return {"success": True}

        @self.app.post("/api/v1/admin/preview-links/sweep", response_model=SweepResponse)
        async def sweep_preview_links(identity: CallerIdentity = Depends(get_admin_identity)):
            """Delete expired preview links now. Admin only."""
            deleted = await self.preview_links.sweep_expired()
            self.logger.info("Manual preview link sweep", requested_by=identity.subject_id, deleted=deleted)
            return SweepResponse(deleted=deleted)

    async def _check_dependencies(self) -> Dict[str, str]:
        """Check media gate dependencies."""
        dependencies = {}

        try:
            await self.kv_store.ping()
            dependencies["redis"] = "ok"
        except StoreUnavailableError:
            dependencies["redis"] = "error"

        if self.database is not None:
            dependencies["postgres"] = "ok" if await self.database.health_check() else "error"

        return dependencies

    async def start(self):
        """Start media gate service components."""
        try:
            await self.kv_store.start()
        except StoreUnavailableError as e:
            # Cache falls through and quotas follow their failure policy until Redis returns
            self.logger.error("Redis unavailable at startup", error=str(e))

        if self.database is not None:
            await self.database.start()

        if self.config.enable_preview_sweeper:
            await self.sweeper.start()

        self.logger.info("Media gate service started")

    async def stop(self):
        """Stop media gate service components."""
        await self.sweeper.stop()
        if self.database is not None:
            await self.database.stop()
        await self.kv_store.stop()

        self.logger.info("Media gate service stopped")


def create_app(config: Optional[ServiceConfig] = None, **components):
    """Create media gate service application."""
    service = MediaGateService(config, **components)
    return service.app


if __name__ == "__main__":
    service = MediaGateService()
    service.run()
