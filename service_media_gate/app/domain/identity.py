"""
Caller identity as handed over by the upstream authentication layer.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, FrozenSet, Optional

from fastapi import Depends, Request

from access_shared.errors import ForbiddenError, UnauthorizedError


ADMIN_ROLE = "admin"


class TrustTier(str, Enum):
    """Caller classification selecting which quota limit applies."""
    STANDARD = "standard"
    ELEVATED = "elevated"


@dataclass(frozen=True)
class CallerIdentity:
    """Authenticated caller."""
    subject_id: str
    trust_tier: TrustTier = TrustTier.STANDARD
    roles: FrozenSet[str] = frozenset()

    def has_role(self, role: str) -> bool:
        return role in self.roles


def identity_from_user_info(user_info: Dict[str, Any]) -> Optional[CallerIdentity]:
    """Build an identity from the ``user_info`` mapping set by the gateway auth middleware."""
    subject_id = user_info.get("user_id") or user_info.get("sub")
    if not subject_id:
        return None

    tier = user_info.get("trust_tier")
    if tier is None:
        # Verified artists get the elevated tier
        tier = TrustTier.ELEVATED if user_info.get("is_verified") else TrustTier.STANDARD
    return CallerIdentity(
        subject_id=str(subject_id),
        trust_tier=_parse_tier(tier),
        roles=_parse_roles(user_info.get("roles") or [])
    )


def _parse_tier(value: Any) -> TrustTier:
    try:
        return TrustTier(str(getattr(value, "value", value)).lower())
    except ValueError:
        return TrustTier.STANDARD


def _parse_roles(value: Any) -> FrozenSet[str]:
    if isinstance(value, str):
        value = value.split(",")
    return frozenset(str(role).strip().lower() for role in value if str(role).strip())


def get_optional_identity(request: Request) -> Optional[CallerIdentity]:
    """Resolve the caller from request state or trusted forwarded headers."""
    user_info = getattr(request.state, "user_info", None)
    if isinstance(user_info, dict):
        return identity_from_user_info(user_info)

    subject_id = request.headers.get("X-User-Id")
    if not subject_id:
        return None
    return CallerIdentity(
        subject_id=subject_id,
        trust_tier=_parse_tier(request.headers.get("X-User-Tier", TrustTier.STANDARD.value)),
        roles=_parse_roles(request.headers.get("X-User-Roles", ""))
    )


def get_caller_identity(request: Request) -> CallerIdentity:
    """FastAPI dependency requiring an authenticated caller."""
    identity = get_optional_identity(request)
    if identity is None:
        raise UnauthorizedError("Authenticated identity required")
    return identity


def get_admin_identity(identity: CallerIdentity = Depends(get_caller_identity)) -> CallerIdentity:
    """FastAPI dependency requiring a caller with the admin role."""
    if not identity.has_role(ADMIN_ROLE):
        raise ForbiddenError("Admin role required", {"required_role": ADMIN_ROLE})
    return identity
