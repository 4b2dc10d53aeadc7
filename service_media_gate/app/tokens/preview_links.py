"""
Preview links: revocable, optionally time- and use-limited access tokens.
"""

import asyncio
import secrets
import uuid
from datetime import datetime, timezone
from typing import Callable, List, Optional, TYPE_CHECKING

from access_shared.logging import get_logger
from access_shared.errors import (
    ExhaustedUsesError, ExpiredError, ForbiddenError, NotFoundError,
    StoreUnavailableError, ValidationError
)
from ..domain.identity import CallerIdentity
from ..domain.resources import require_resource
from ..models import PreviewLink, ResourceRecord

if TYPE_CHECKING:  # pragma: no cover - imported for typing only
    from access_shared.metrics import MetricsCollector


REVOCATION_TOMBSTONE_TTL = 24 * 60 * 60


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class PreviewLinkService:
    """
    Issues and redeems preview links.

    ``link_store`` holds the links and provides a conditional ``consume``
    that increments the use count only while the link is still valid.
    ``resources`` resolves resource ownership. ``tombstones`` (optional
    key-value store) remembers revoked ids so owners can repeat a
    revocation without getting NotFound.
    """

    def __init__(
        self,
        link_store,
        resources,
        *,
        tombstones=None,
        clock: Callable[[], datetime] = _utcnow,
        metrics: Optional["MetricsCollector"] = None,
        token_bytes: int = 32,
    ):
        self.link_store = link_store
        self.resources = resources
        self.tombstones = tombstones
        self.clock = clock
        self.metrics = metrics
        self.token_bytes = token_bytes
        self.logger = get_logger("media_gate.preview_links")

    async def create(
        self,
        resource_id: str,
        creator: CallerIdentity,
        expires_at: Optional[datetime] = None,
        max_uses: Optional[int] = None,
    ) -> PreviewLink:
        """Create a link for a resource owned by ``creator``."""
        resource = await require_resource(self.resources, resource_id)
        if resource.owner_id != creator.subject_id:
            raise ForbiddenError("Only the resource owner can create preview links")

        now = self.clock()
        if max_uses is not None and max_uses < 1:
            raise ValidationError("max_uses must be at least 1", {"max_uses": max_uses})
        if expires_at is not None:
            if expires_at.tzinfo is None:
                expires_at = expires_at.replace(tzinfo=timezone.utc)
            if expires_at <= now:
                raise ValidationError("expires_at must be in the future", {"expires_at": expires_at.isoformat()})

        link = PreviewLink(
            id=str(uuid.uuid4()),
            token=secrets.token_urlsafe(self.token_bytes),
            resource_id=resource_id,
            created_by=creator.subject_id,
            expires_at=expires_at,
            max_uses=max_uses,
            use_count=0,
            created_at=now
        )
        created = await self.link_store.create(link)

        self.logger.info(
            "Preview link created",
            link_id=created.id,
            resource_id=resource_id,
            expires_at=expires_at.isoformat() if expires_at else None,
            max_uses=max_uses
        )
        self._record("created")
        return created

    async def list_for_resource(self, resource_id: str, owner: CallerIdentity) -> List[PreviewLink]:
        """Links of a resource, newest first. Owner only."""
        resource = await require_resource(self.resources, resource_id)
        if resource.owner_id != owner.subject_id:
            raise ForbiddenError("Only the resource owner can view preview links")
        return await self.link_store.find_by_resource(resource_id)

    async def consume(self, token: str) -> ResourceRecord:
        """
        Redeem ``token`` and return the linked resource.

        Validity is checked up front for a precise error, then re-checked by
        the store's conditional increment, which is what actually grants the
        use.
        """
        now = self.clock()
        link = await self.link_store.find_by_token(token)
        if link is None:
            self._record("not_found")
            raise NotFoundError("Preview link not found")

        self._ensure_usable(link, now)

        consumed = await self.link_store.consume(link.id, now)
        if consumed is None:
            await self._raise_consume_failure(link, now)

        resource = await self.resources.get(consumed.resource_id)
        if resource is None:
            raise NotFoundError("Resource not found", {"resource_id": consumed.resource_id})

        self.logger.info(
            "Preview link consumed",
            link_id=consumed.id,
            resource_id=consumed.resource_id,
            use_count=consumed.use_count,
            max_uses=consumed.max_uses
        )
        self._record("consumed")
        return resource

    async def revoke(self, link_id: str, owner: CallerIdentity) -> None:
        """Delete a link. Only the owner of the linked resource may revoke it."""
        link = await self.link_store.find_by_id(link_id)
        if link is None:
            if await self._revoked_by(link_id) == owner.subject_id:
                return
            raise NotFoundError("Preview link not found")

        resource = await self.resources.get(link.resource_id)
        owner_id = resource.owner_id if resource else link.created_by
        if owner_id != owner.subject_id:
            raise ForbiddenError("Only the resource owner can revoke preview links")

        await self.link_store.delete(link.id)
        await self._remember_revocation(link.id, owner.subject_id)

        self.logger.info("Preview link revoked", link_id=link.id, resource_id=link.resource_id)
        self._record("revoked")

    async def sweep_expired(self) -> int:
        """Delete links whose expiry has passed. Returns the number removed."""
        deleted = await self.link_store.delete_expired(self.clock())
        if deleted:
            self.logger.info("Expired preview links swept", deleted=deleted)
        self._record("swept")
        return deleted

    def _ensure_usable(self, link: PreviewLink, now: datetime):
        if link.is_expired(now):
            self._record("expired")
            raise ExpiredError(
                "Preview link has expired",
                {"expires_at": link.expires_at.isoformat()}
            )
        if link.is_exhausted():
            self._record("exhausted")
            raise ExhaustedUsesError(
                "Preview link has reached maximum uses",
                {"max_uses": link.max_uses, "use_count": link.use_count}
            )

    async def _raise_consume_failure(self, link: PreviewLink, now: datetime):
        """Explain why the conditional increment matched no row."""
        current = await self.link_store.find_by_id(link.id)
        if current is None:
            # Removed in between: by the sweep if it had expired, else revoked
            if link.is_expired(self.clock()):
                self._record("expired")
                raise ExpiredError(
                    "Preview link has expired",
                    {"expires_at": link.expires_at.isoformat()}
                )
            self._record("not_found")
            raise NotFoundError("Preview link not found")

        self._ensure_usable(current, now)
        # Another consumer took the last use between our read and the update
        self._record("exhausted")
        raise ExhaustedUsesError(
            "Preview link has reached maximum uses",
            {"max_uses": current.max_uses, "use_count": current.use_count}
        )

    def _tombstone_key(self, link_id: str) -> str:
        return f"preview_link:revoked:{link_id}"

    async def _remember_revocation(self, link_id: str, owner_id: str):
        if self.tombstones is None:
            return
        try:
            await self.tombstones.set(self._tombstone_key(link_id), owner_id, REVOCATION_TOMBSTONE_TTL)
        except StoreUnavailableError as e:
            self.logger.warning("Failed to record revocation", link_id=link_id, error=str(e))

    async def _revoked_by(self, link_id: str) -> Optional[str]:
        if self.tombstones is None:
            return None
        try:
            return await self.tombstones.get(self._tombstone_key(link_id))
        except StoreUnavailableError as e:
            self.logger.warning("Failed to read revocation", link_id=link_id, error=str(e))
            return None

    def _record(self, event: str):
        if self.metrics:
            self.metrics.increment_counter("preview_link_events_total", event=event)


class PreviewLinkSweeper:
    """Background task deleting expired preview links on an interval."""

    def __init__(self, service: PreviewLinkService, interval_seconds: int = 3600):
        self.service = service
        self.interval_seconds = interval_seconds
        self.logger = get_logger("media_gate.preview_sweeper")
        self._task: Optional[asyncio.Task] = None
        self._running = False

    async def start(self) -> None:
        """Start the sweep loop."""
        if self._running:
            return
        self._running = True
        self._task = asyncio.create_task(self._sweep_loop())

    async def stop(self) -> None:
        """Stop the sweep loop."""
        if not self._running:
            return
        self._running = False
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None

    async def run_once(self) -> int:
        try:
            return await self.service.sweep_expired()
        except StoreUnavailableError as e:
            self.logger.error("Preview link sweep failed", error=str(e))
            return 0

    async def _sweep_loop(self) -> None:
        while self._running:
            try:
                await self.run_once()
            except Exception as e:
                self.logger.error("Error in preview sweep loop", error=str(e), exc_info=True)
            await asyncio.sleep(self.interval_seconds)
