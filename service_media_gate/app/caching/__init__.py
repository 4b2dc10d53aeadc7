"""
Response caching package for the Media Gate service.

Wraps idempotent reads with a caller-scoped, TTL-bounded cache. Cache
failures always fall through to live computation.
"""

from .response_cache import CachePolicy, CacheRequest, ResponseCache

__all__ = ["CachePolicy", "CacheRequest", "ResponseCache"]
