"""
Domain utilities for the Media Gate service.

Includes the caller identity handed over by the upstream authentication
layer, the FastAPI dependencies that resolve it and the shared resource
lookup.
"""

from .identity import CallerIdentity, TrustTier, get_admin_identity, get_caller_identity
from .resources import require_resource

__all__ = [
    "CallerIdentity",
    "TrustTier",
    "get_admin_identity",
    "get_caller_identity",
    "require_resource",
]
