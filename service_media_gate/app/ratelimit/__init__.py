"""
Rate limiting package for the Media Gate service.

Holds the fixed-window quota counter and the limiter that enforces
per-identity, per-tier budgets on write-heavy operations.
"""

from .quota import QuotaCounter, QuotaDecision, QuotaWindow
from .limiter import QuotaRateLimiter

__all__ = [
    "QuotaCounter",
    "QuotaDecision",
    "QuotaRateLimiter",
    "QuotaWindow",
]
