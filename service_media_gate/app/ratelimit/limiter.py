"""
Quota-based rate limiter for write-heavy operations such as uploads.
"""

from typing import Dict, Optional, TYPE_CHECKING

from fastapi import Response

from access_shared.logging import get_logger
from access_shared.errors import RateLimitError, StoreUnavailableError, ValidationError
from ..domain.identity import CallerIdentity, TrustTier
from .quota import DAY_SECONDS, QuotaCounter, QuotaDecision

if TYPE_CHECKING:  # pragma: no cover - imported for typing only
    from access_shared.metrics import MetricsCollector


TIER_LABELS = {
    TrustTier.STANDARD: "New users",
    TrustTier.ELEVATED: "Verified artists",
}


class QuotaRateLimiter:
    """
    Per-identity quota enforcement.

    Limits are keyed by action class and trust tier. The tier is read from
    the identity of every request, never remembered between requests.

    When the counter store is unreachable the limiter applies ``fail_open``:
    True lets the request through with a full ``remaining``, False denies it.
    """

    def __init__(
        self,
        counter: QuotaCounter,
        limits: Dict[str, Dict[TrustTier, int]],
        *,
        fail_open: bool = True,
        metrics: Optional["MetricsCollector"] = None,
    ):
        self.counter = counter
        self.limits = limits
        self.fail_open = fail_open
        self.metrics = metrics
        self.logger = get_logger("media_gate.rate_limiter")

    def limit_for(self, identity: CallerIdentity, action: str) -> int:
        """Return the limit for ``action`` at the caller's trust tier."""
        tiers = self.limits.get(action)
        if tiers is None:
            raise ValidationError(f"Unknown action class: {action}", {"action": action})
        return tiers.get(identity.trust_tier, tiers[TrustTier.STANDARD])

    async def check_and_consume(self, identity: CallerIdentity, action: str) -> QuotaDecision:
        """Consume a quota slot for the caller, applying the store failure policy."""
        limit = self.limit_for(identity, action)

        try:
            decision = await self.counter.check_and_consume(identity.subject_id, action, limit)
        except StoreUnavailableError as e:
            decision = self._fallback_decision(limit, str(e))
            self.logger.error(
                "Quota store unavailable",
                subject_id=identity.subject_id,
                action=action,
                fail_open=self.fail_open,
                error=str(e)
            )

        self._record(action, decision)
        return decision

    async def get_status(self, identity: CallerIdentity, action: str) -> QuotaDecision:
        """Current usage for the caller without consuming."""
        limit = self.limit_for(identity, action)
        try:
            return await self.counter.peek(identity.subject_id, action, limit)
        except StoreUnavailableError as e:
            self.logger.error("Quota status unavailable", action=action, error=str(e))
            return self._fallback_decision(limit, str(e))

    async def enforce(self, identity: CallerIdentity, action: str) -> QuotaDecision:
        """Consume a slot or raise RateLimitError carrying limit and reset time."""
        decision = await self.check_and_consume(identity, action)
        if not decision.allowed:
            if decision.error:
                message = f"{action.capitalize()} quota cannot be checked right now. Try again later."
            else:
                message = self.denial_message(identity, action, decision.limit)
            raise RateLimitError(
                message,
                limit=decision.limit,
                reset_at=decision.reset_at_iso,
                details={"action": action, "remaining": decision.remaining},
                headers=decision.headers()
            )
        return decision

    def denial_message(self, identity: CallerIdentity, action: str, limit: int) -> str:
        who = TIER_LABELS.get(identity.trust_tier, "Users")
        length = self.counter.window.length_seconds
        period = "day" if length == DAY_SECONDS else f"{length} seconds"
        return f"{action.capitalize()} limit reached. {who} can {action} {limit} times per {period}."

    def _fallback_decision(self, limit: int, error: str) -> QuotaDecision:
        reset_at = self.counter.window.reset_at(self.counter.clock())
        if self.fail_open:
            return QuotaDecision(allowed=True, limit=limit, remaining=limit, reset_at=reset_at, error=error)
        return QuotaDecision(allowed=False, limit=limit, remaining=0, reset_at=reset_at, error=error)

    def _record(self, action: str, decision: QuotaDecision):
        if not self.metrics:
            return
        if decision.error:
            outcome = "fail_open" if decision.allowed else "fail_closed"
        else:
            outcome = "allowed" if decision.allowed else "denied"
        self.metrics.increment_counter("quota_decisions_total", action=action, outcome=outcome)

    @staticmethod
    def apply_headers(response: Response, decision: QuotaDecision) -> None:
        """Propagate rate limiting metadata via standard headers."""
        for name, value in decision.headers().items():
            response.headers[name] = value
