"""
Read-through response cache for idempotent fetches.
"""

import hashlib
import json
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Optional, Tuple, TYPE_CHECKING
from urllib.parse import urlencode

from fastapi import Request
from fastapi.encoders import jsonable_encoder

from access_shared.logging import get_logger
from access_shared.errors import StoreUnavailableError
from ..domain.identity import CallerIdentity

if TYPE_CHECKING:  # pragma: no cover - imported for typing only
    from access_shared.metrics import MetricsCollector


CACHEABLE_METHODS = frozenset({"GET", "HEAD"})


@dataclass(frozen=True)
class CacheRequest:
    """The parts of a request that select a cached response."""
    method: str
    path: str
    subject_id: Optional[str] = None
    query: Tuple[Tuple[str, str], ...] = field(default_factory=tuple)

    @classmethod
    def from_request(cls, request: Request, identity: Optional[CallerIdentity]) -> "CacheRequest":
        return cls(
            method=request.method,
            path=request.url.path,
            subject_id=identity.subject_id if identity else None,
            query=tuple(request.query_params.multi_items())
        )


@dataclass(frozen=True)
class CachePolicy:
    """Per-operation cache declaration."""
    ttl_seconds: int
    key_fn: Optional[Callable[[CacheRequest], str]] = None


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ResponseCache:
    """
    Cache wrapper around handler computations.

    Store errors never fail a request: lookups fall through to ``compute``
    and populate errors are logged and dropped.
    """

    def __init__(
        self,
        store,
        *,
        key_prefix: str = "http:cache",
        clock: Callable[[], datetime] = _utcnow,
        metrics: Optional["MetricsCollector"] = None,
    ):
        self.store = store
        self.key_prefix = key_prefix
        self.clock = clock
        self.metrics = metrics
        self.logger = get_logger("media_gate.response_cache")

    def default_key(self, request: CacheRequest) -> str:
        """Key scoped to the caller, route and sorted query parameters."""
        subject = request.subject_id or "anonymous"
        query_string = urlencode(sorted(request.query))
        digest = hashlib.sha256(
            f"{request.method.upper()} {request.path}?{query_string}".encode("utf-8")
        ).hexdigest()
        return f"{self.key_prefix}:{subject}:{digest}"

    async def cached(
        self,
        request: CacheRequest,
        policy: CachePolicy,
        compute: Callable[[], Awaitable[Any]],
    ) -> Any:
        """Serve ``compute`` through the cache when the method is a read."""
        if request.method.upper() not in CACHEABLE_METHODS:
            self._record("bypass")
            return await compute()

        key = policy.key_fn(request) if policy.key_fn else self.default_key(request)
        return await self.wrap(key, policy.ttl_seconds, compute)

    async def wrap(self, key: str, ttl_seconds: int, compute: Callable[[], Awaitable[Any]]) -> Any:
        """Return the cached payload for ``key`` or compute and store it."""
        hit, payload = await self._lookup(key)
        if hit:
            self._record("hit")
            return payload

        self._record("miss")
        payload = jsonable_encoder(await compute())
        await self._populate(key, ttl_seconds, payload)
        return payload

    async def _lookup(self, key: str) -> Tuple[bool, Any]:
        try:
            cached_data = await self.store.get(key)
        except StoreUnavailableError as e:
            self.logger.warning("Cache lookup failed, computing live", key=key, error=str(e))
            self._record("error")
            return False, None

        if cached_data is None:
            return False, None

        try:
            entry = json.loads(cached_data)
            expires_at = float(entry["expires_at"])
            payload = entry["payload"]
        except (ValueError, KeyError, TypeError) as e:
            self.logger.warning("Discarding malformed cache entry", key=key, error=str(e))
            return False, None

        if expires_at <= self.clock().timestamp():
            return False, None
        return True, payload

    async def _populate(self, key: str, ttl_seconds: int, payload: Any):
        entry = {
            "expires_at": self.clock().timestamp() + ttl_seconds,
            "payload": payload,
        }
        try:
            await self.store.set(key, json.dumps(entry), ttl_seconds)
            self.logger.debug("Cached response", key=key, ttl=ttl_seconds)
        except (StoreUnavailableError, TypeError, ValueError) as e:
            self.logger.error("Cache write error", key=key, error=str(e))

    def _record(self, result: str):
        if self.metrics:
            self.metrics.increment_counter("cache_lookups_total", result=result)
