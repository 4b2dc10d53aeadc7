"""
Unit tests for caller identity resolution.
"""

import pytest
from unittest.mock import MagicMock

from access_shared.errors import ForbiddenError, UnauthorizedError
from service_media_gate.app.domain.identity import (
    CallerIdentity, TrustTier, get_admin_identity, get_caller_identity, get_optional_identity,
    identity_from_user_info
)


def make_request(user_info=None, headers=None):
    request = MagicMock()
    request.state = MagicMock(spec=[])
    if user_info is not None:
        request.state.user_info = user_info
    request.headers = headers or {}
    return request


class TestIdentity:
    """Test cases for identity resolution."""

    def test_from_user_info_verified(self):
        """Test verified artists resolve to the elevated tier."""
        identity = identity_from_user_info({"user_id": "artist-1", "is_verified": True})
        assert identity == CallerIdentity("artist-1", TrustTier.ELEVATED)

    def test_from_user_info_explicit_tier(self):
        """Test an explicit trust tier wins over verification."""
        identity = identity_from_user_info({"sub": "user-1", "trust_tier": "STANDARD", "is_verified": True})
        assert identity.trust_tier == TrustTier.STANDARD

    def test_from_user_info_missing_subject(self):
        """Test user info without a subject yields no identity."""
        assert identity_from_user_info({"is_verified": True}) is None

    def test_request_state_preferred(self):
        """Test request state set by the gateway takes precedence over headers."""
        request = make_request({"user_id": "artist-1"}, {"X-User-Id": "spoofed"})
        assert get_optional_identity(request).subject_id == "artist-1"

    def test_forwarded_headers(self):
        """Test trusted forwarded headers."""
        request = make_request(headers={"X-User-Id": "user-1", "X-User-Tier": "elevated"})
        assert get_optional_identity(request) == CallerIdentity("user-1", TrustTier.ELEVATED)

    def test_unknown_tier_falls_back_to_standard(self):
        """Test unrecognised tiers get the standard limits."""
        request = make_request(headers={"X-User-Id": "user-1", "X-User-Tier": "platinum"})
        assert get_optional_identity(request).trust_tier == TrustTier.STANDARD

    def test_caller_identity_required(self):
        """Test anonymous requests are unauthorized."""
        with pytest.raises(UnauthorizedError):
            get_caller_identity(make_request())

    def test_roles_from_user_info(self):
        """Test roles granted by the auth layer are carried on the identity."""
        identity = identity_from_user_info({"user_id": "ops-1", "roles": ["user", "Admin"]})
        assert identity.roles == frozenset({"user", "admin"})
        assert identity.has_role("admin") is True

    def test_roles_from_forwarded_header(self):
        """Test the comma-separated roles header."""
        request = make_request(headers={"X-User-Id": "ops-1", "X-User-Roles": "user, admin"})
        assert get_optional_identity(request).roles == frozenset({"user", "admin"})

    def test_no_roles_by_default(self):
        """Test callers without a roles claim hold no roles."""
        request = make_request(headers={"X-User-Id": "user-1"})
        assert get_optional_identity(request).roles == frozenset()

    def test_admin_identity_required(self):
        """Test the admin dependency rejects callers without the role."""
        admin = CallerIdentity("ops-1", roles=frozenset({"admin"}))

        assert get_admin_identity(admin) is admin
        with pytest.raises(ForbiddenError):
            get_admin_identity(CallerIdentity("artist-1", TrustTier.ELEVATED))
