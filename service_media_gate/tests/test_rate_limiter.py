"""
Unit tests for the upload Rate Limiter.
"""

import pytest
from unittest.mock import AsyncMock, MagicMock

from access_shared.errors import RateLimitError, StoreUnavailableError, ValidationError
from access_shared.metrics import MetricsCollector
from access_shared.test_helpers import FrozenClock, InMemoryKeyValueStore
from service_media_gate.app.domain.identity import CallerIdentity, TrustTier
from service_media_gate.app.ratelimit.limiter import QuotaRateLimiter
from service_media_gate.app.ratelimit.quota import QuotaCounter


LIMITS = {"upload": {TrustTier.STANDARD: 10, TrustTier.ELEVATED: 50}}


class TestQuotaRateLimiter:
    """Test cases for QuotaRateLimiter."""

    @pytest.fixture
    def clock(self):
        return FrozenClock()

    @pytest.fixture
    def store(self, clock):
        return InMemoryKeyValueStore(clock)

    @pytest.fixture
    def metrics(self):
        return MetricsCollector("media_gate_test")

    @pytest.fixture
    def rate_limiter(self, store, clock, metrics):
        """Create a fail-open QuotaRateLimiter."""
        return QuotaRateLimiter(QuotaCounter(store, clock=clock), LIMITS, metrics=metrics)

    @pytest.fixture
    def standard_user(self):
        return CallerIdentity("user-1", TrustTier.STANDARD)

    @pytest.fixture
    def verified_artist(self):
        return CallerIdentity("artist-1", TrustTier.ELEVATED)

    def _counter_value(self, metrics, **labels):
        return metrics.registry.get_sample_value("quota_decisions_total", labels)

    def test_limit_for_tiers(self, rate_limiter, standard_user, verified_artist):
        """Test the limit follows the caller's trust tier."""
        assert rate_limiter.limit_for(standard_user, "upload") == 10
        assert rate_limiter.limit_for(verified_artist, "upload") == 50

    def test_limit_for_unknown_action(self, rate_limiter, standard_user):
        """Test unknown action classes are rejected."""
        with pytest.raises(ValidationError):
            rate_limiter.limit_for(standard_user, "delete")

    @pytest.mark.asyncio
    async def test_standard_user_denied_after_ten(self, rate_limiter, standard_user, metrics):
        """Test a standard user gets ten uploads a day."""
        for _ in range(10):
            assert (await rate_limiter.check_and_consume(standard_user, "upload")).allowed

        decision = await rate_limiter.check_and_consume(standard_user, "upload")

        assert decision.allowed is False
        assert decision.remaining == 0
        assert self._counter_value(metrics, action="upload", outcome="allowed") == 10
        assert self._counter_value(metrics, action="upload", outcome="denied") == 1

    @pytest.mark.asyncio
    async def test_tier_read_per_request(self, rate_limiter, standard_user):
        """Test a promotion to the elevated tier takes effect on the next request."""
        for _ in range(10):
            await rate_limiter.check_and_consume(standard_user, "upload")
        assert (await rate_limiter.check_and_consume(standard_user, "upload")).allowed is False

        promoted = CallerIdentity(standard_user.subject_id, TrustTier.ELEVATED)
        decision = await rate_limiter.check_and_consume(promoted, "upload")

        assert decision.allowed is True
        assert decision.limit == 50
        assert decision.remaining == 39

    @pytest.mark.asyncio
    async def test_fail_open_when_store_down(self, rate_limiter, store, standard_user, metrics):
        """Test requests pass with full remaining when the store is down."""
        store.unavailable = True

        decision = await rate_limiter.check_and_consume(standard_user, "upload")

        assert decision.allowed is True
        assert decision.remaining == 10
        assert decision.error.startswith("memory:")
        assert self._counter_value(metrics, action="upload", outcome="fail_open") == 1

    @pytest.mark.asyncio
    async def test_fail_closed_when_configured(self, store, clock, standard_user, metrics):
        """Test fail-closed policy denies when the store is down."""
        rate_limiter = QuotaRateLimiter(
            QuotaCounter(store, clock=clock), LIMITS, fail_open=False, metrics=metrics
        )
        store.unavailable = True

        with pytest.raises(RateLimitError) as exc_info:
            await rate_limiter.enforce(standard_user, "upload")

        assert "cannot be checked" in exc_info.value.message
        assert self._counter_value(metrics, action="upload", outcome="fail_closed") == 1

    @pytest.mark.asyncio
    async def test_enforce_raises_with_headers(self, rate_limiter, standard_user):
        """Test enforce raises a 429 carrying limit, reset time and headers."""
        for _ in range(10):
            await rate_limiter.enforce(standard_user, "upload")

        with pytest.raises(RateLimitError) as exc_info:
            await rate_limiter.enforce(standard_user, "upload")

        error = exc_info.value
        assert error.status_code == 429
        assert error.limit == 10
        assert error.reset_at == "2024-03-15T00:00:00Z"
        assert error.message == "Upload limit reached. New users can upload 10 times per day."
        assert error.headers["X-RateLimit-Remaining"] == "0"
        assert error.headers["X-RateLimit-Reset"] == "2024-03-15T00:00:00Z"

        body = error.to_body()
        assert body["statusCode"] == 429
        assert body["limit"] == 10
        assert body["resetAt"] == "2024-03-15T00:00:00Z"

    @pytest.mark.asyncio
    async def test_elevated_denial_message(self, rate_limiter, verified_artist):
        """Test the denial message names the elevated tier."""
        message = rate_limiter.denial_message(verified_artist, "upload", 50)
        assert message == "Upload limit reached. Verified artists can upload 50 times per day."

    @pytest.mark.asyncio
    async def test_get_status_does_not_consume(self, rate_limiter, standard_user):
        """Test status reads leave the quota untouched."""
        await rate_limiter.check_and_consume(standard_user, "upload")

        status = await rate_limiter.get_status(standard_user, "upload")
        again = await rate_limiter.get_status(standard_user, "upload")

        assert status.remaining == again.remaining == 9

    @pytest.mark.asyncio
    async def test_get_status_store_down(self, clock, standard_user):
        """Test status falls back to the failure policy."""
        counter = QuotaCounter(AsyncMock(), clock=clock)
        counter.store.get.side_effect = StoreUnavailableError("redis", "get timed out")
        rate_limiter = QuotaRateLimiter(counter, LIMITS)

        status = await rate_limiter.get_status(standard_user, "upload")

        assert status.allowed is True
        assert status.error == "redis: get timed out"

    def test_apply_headers(self, rate_limiter):
        """Test headers are copied onto the response."""
        response = MagicMock()
        response.headers = {}
        decision = MagicMock()
        decision.headers.return_value = {"X-RateLimit-Limit": "10"}

        rate_limiter.apply_headers(response, decision)

        assert response.headers == {"X-RateLimit-Limit": "10"}
