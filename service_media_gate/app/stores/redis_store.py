"""
Redis key-value store for quota counters, cached responses and tombstones.
"""

import asyncio
from typing import Any, Awaitable, Callable, Optional, TYPE_CHECKING

import redis.asyncio as redis
from redis.exceptions import RedisError

from access_shared.logging import get_logger
from access_shared.errors import StoreUnavailableError

if TYPE_CHECKING:  # pragma: no cover - imported for typing only
    from access_shared.metrics import MetricsCollector


class RedisStore:
    """
    Thin wrapper over redis.asyncio exposing single-command operations.

    Every call is bounded by ``timeout_seconds``. Connection failures and
    timeouts are raised as StoreUnavailableError; callers decide whether
    that fails open or closed.
    """

    def __init__(
        self,
        redis_url: str,
        timeout_seconds: float = 2.0,
        *,
        name: str = "redis",
        metrics: Optional["MetricsCollector"] = None,
        client: Optional[redis.Redis] = None,
    ):
        self.redis_url = redis_url
        self.timeout_seconds = timeout_seconds
        self.name = name
        self.metrics = metrics
        self.logger = get_logger("media_gate.store.redis")
        self._redis: Optional[redis.Redis] = client

    async def start(self):
        """Open the connection pool and verify the server answers."""
        await self._get_redis()
        await self.ping()
        self.logger.info("Redis store started", url=self.redis_url)

    async def stop(self):
        """Close the connection pool."""
        if self._redis is not None:
            await self._redis.aclose()
            self._redis = None
            self.logger.info("Redis store stopped")

    async def _get_redis(self) -> redis.Redis:
        """Get Redis connection."""
        if self._redis is None:
            self._redis = redis.from_url(
                self.redis_url,
                encoding="utf-8",
                decode_responses=True,
                socket_connect_timeout=self.timeout_seconds,
                socket_timeout=self.timeout_seconds,
                health_check_interval=30
            )
        return self._redis

    async def _call(self, operation: str, command: Callable[[redis.Redis], Awaitable[Any]]) -> Any:
        try:
            redis_client = await self._get_redis()
            return await asyncio.wait_for(command(redis_client), timeout=self.timeout_seconds)
        except asyncio.TimeoutError as e:
            self._record_error(operation, "timeout")
            raise StoreUnavailableError(self.name, f"{operation} timed out") from e
        except (RedisError, OSError) as e:
            self._record_error(operation, str(e))
            raise StoreUnavailableError(self.name, f"{operation} failed: {e}") from e

    def _record_error(self, operation: str, error: str):
        self.logger.error("Redis store error", operation=operation, error=error)
        if self.metrics:
            self.metrics.increment_counter("store_errors_total", store=self.name, operation=operation)

    async def ping(self) -> bool:
        return bool(await self._call("ping", lambda r: r.ping()))

    async def increment(self, key: str) -> int:
        """Atomically increment ``key`` and return the new value."""
        return int(await self._call("increment", lambda r: r.incr(key)))

    async def decrement(self, key: str) -> int:
        """Atomically decrement ``key`` and return the new value."""
        return int(await self._call("decrement", lambda r: r.decr(key)))

    async def get(self, key: str) -> Optional[str]:
        value = await self._call("get", lambda r: r.get(key))
        if isinstance(value, bytes):
            value = value.decode("utf-8")
        return value

    async def set(self, key: str, value: str, ttl_seconds: Optional[int] = None) -> None:
        await self._call("set", lambda r: r.set(key, value, ex=ttl_seconds))

    async def expire(self, key: str, ttl_seconds: int) -> bool:
        return bool(await self._call("expire", lambda r: r.expire(key, ttl_seconds)))

    async def ttl(self, key: str) -> Optional[int]:
        """Remaining lifetime in seconds, or None when absent or persistent."""
        remaining = await self._call("ttl", lambda r: r.ttl(key))
        if remaining is None or remaining < 0:
            return None
        return int(remaining)

    async def delete(self, key: str) -> int:
        return int(await self._call("delete", lambda r: r.delete(key)))
