"""
Fixed-window quota counter backed by an atomic key-value store.
"""

import math
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, Optional

from access_shared.logging import get_logger
from access_shared.errors import StoreUnavailableError


DAY_SECONDS = 24 * 60 * 60


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def isoformat_utc(value: datetime) -> str:
    """Render a timestamp as ISO-8601 UTC with a ``Z`` suffix."""
    return value.astimezone(timezone.utc).replace(microsecond=0).isoformat().replace("+00:00", "Z")


@dataclass(frozen=True)
class QuotaWindow:
    """Fixed window aligned to the Unix epoch (midnight UTC for daily windows)."""
    length_seconds: int = DAY_SECONDS

    def start(self, now: datetime) -> datetime:
        timestamp = int(now.timestamp())
        aligned = timestamp - (timestamp % self.length_seconds)
        return datetime.fromtimestamp(aligned, tz=timezone.utc)

    def reset_at(self, now: datetime) -> datetime:
        return self.start(now) + timedelta(seconds=self.length_seconds)

    def bucket(self, now: datetime) -> str:
        """Window label used in counter keys."""
        if self.length_seconds == DAY_SECONDS:
            return self.start(now).strftime("%Y-%m-%d")
        return str(int(now.timestamp()) // self.length_seconds)


@dataclass
class QuotaDecision:
    """Outcome of a quota check, returned on both allow and deny."""
    allowed: bool
    limit: int
    remaining: int
    reset_at: datetime
    count: int = 0
    error: Optional[str] = None

    @property
    def reset_at_iso(self) -> str:
        return isoformat_utc(self.reset_at)

    def headers(self) -> Dict[str, str]:
        return {
            "X-RateLimit-Limit": str(self.limit),
            "X-RateLimit-Remaining": str(self.remaining),
            "X-RateLimit-Reset": self.reset_at_iso,
        }

    def to_dict(self) -> Dict[str, Any]:
        result = {
            "allowed": self.allowed,
            "limit": self.limit,
            "remaining": self.remaining,
            "reset_at": self.reset_at_iso,
        }
        if self.error:
            result["error"] = self.error
        return result


class QuotaCounter:
    """Per-subject, per-window usage counter."""

    def __init__(
        self,
        store,
        window: Optional[QuotaWindow] = None,
        *,
        clock: Callable[[], datetime] = utcnow,
        key_prefix: str = "rate_limit",
    ):
        self.store = store
        self.window = window or QuotaWindow()
        self.clock = clock
        self.key_prefix = key_prefix
        self.logger = get_logger("media_gate.quota_counter")

    def _make_key(self, subject_id: str, action: str, now: datetime) -> str:
        """Generate the counter key for the window containing ``now``."""
        return f"{self.key_prefix}:{action}:{subject_id}:{self.window.bucket(now)}"

    async def check_and_consume(self, subject_id: str, action: str, limit: int) -> QuotaDecision:
        """
        Consume one unit of quota if the window still has room.

        The increment is the check: INCR returns a distinct value to every
        concurrent caller, so exactly ``limit`` of them observe a value within
        the limit. A denied increment is rolled back so the stored count
        settles at the limit.

        Raises StoreUnavailableError when the increment itself fails.
        """
        now = self.clock()
        key = self._make_key(subject_id, action, now)
        reset_at = self.window.reset_at(now)

        count = await self.store.increment(key)
        if count == 1:
            await self._attach_expiry(key, self._seconds_until(reset_at, now))

        if count > limit:
            await self._rollback(key)
            self.logger.warning(
                "Quota exceeded",
                subject_id=subject_id,
                action=action,
                limit=limit
            )
            return QuotaDecision(
                allowed=False,
                limit=limit,
                remaining=0,
                reset_at=reset_at,
                count=min(count - 1, limit)
            )

        return QuotaDecision(
            allowed=True,
            limit=limit,
            remaining=max(0, limit - count),
            reset_at=reset_at,
            count=count
        )

    async def peek(self, subject_id: str, action: str, limit: int) -> QuotaDecision:
        """Report the current window usage without consuming."""
        now = self.clock()
        value = await self.store.get(self._make_key(subject_id, action, now))
        count = int(value) if value is not None else 0
        return QuotaDecision(
            allowed=count < limit,
            limit=limit,
            remaining=max(0, limit - count),
            reset_at=self.window.reset_at(now),
            count=count
        )

    def _seconds_until(self, reset_at: datetime, now: datetime) -> int:
        return max(1, math.ceil((reset_at - now).total_seconds()))

    async def _attach_expiry(self, key: str, ttl_seconds: int):
        try:
            await self.store.expire(key, ttl_seconds)
        except StoreUnavailableError as e:
            # The bucket is dated, so a counter left without a TTL is never read again
            self.logger.warning("Failed to set quota expiry", key=key, error=str(e))

    async def _rollback(self, key: str):
        try:
            remaining = await self.store.decrement(key)
            if remaining < 0:
                # The counter expired before the DECR, which recreated it without a TTL
                await self.store.delete(key)
        except StoreUnavailableError as e:
            self.logger.warning("Failed to roll back denied increment", key=key, error=str(e))
