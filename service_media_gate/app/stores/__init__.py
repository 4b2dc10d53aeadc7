"""
Store adapters for the Media Gate service.

Holds the Redis key-value store shared by the quota counter, the response
cache and preview-link revocation tombstones.
"""

from .redis_store import RedisStore

__all__ = ["RedisStore"]
