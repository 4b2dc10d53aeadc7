"""
Media Gate Service package for the access layer.

The service gates protected media and API resources:
- Upload quotas: fixed daily windows per identity and trust tier
- Response caching: caller-scoped read-through cache for idempotent fetches
- Signed delivery URLs: stateless, time-boxed URLs verified by the media edge
- Preview links: revocable, use-limited tokens for sharing unreleased media

Structure:
- app.main: FastAPI app, routes, and lifecycle wiring.
- app.stores: Redis key-value store.
- app.persistence: PostgreSQL repositories.
- app.ratelimit: Quota counter and limiter.
- app.caching: Response cache.
- app.tokens: Signed URLs and preview links.
- app.domain: Caller identity.
"""
