"""
Data models for the Media Gate service.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field, field_validator


@dataclass
class ResourceRecord:
    """Protected media resource as seen through the entity store."""
    resource_id: str
    owner_id: str
    payload: Dict[str, Any] = field(default_factory=dict)
    stream_keys: Dict[str, str] = field(default_factory=dict)


@dataclass
class PreviewLink:
    """Revocable, optionally use-limited preview credential."""
    id: str
    token: str
    resource_id: str
    created_by: str
    expires_at: Optional[datetime] = None
    max_uses: Optional[int] = None
    use_count: int = 0
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def is_expired(self, now: datetime) -> bool:
        return self.expires_at is not None and now > self.expires_at

    def is_exhausted(self) -> bool:
        return self.max_uses is not None and self.use_count >= self.max_uses


class PreviewLinkCreateRequest(BaseModel):
    """Request model for preview link creation."""
    expires_at: Optional[datetime] = Field(None, description="Absolute expiry (ISO-8601)")
    max_uses: Optional[int] = Field(None, ge=1, description="Maximum number of consumptions")

    @field_validator("expires_at")
    @classmethod
    def _assume_utc(cls, value: Optional[datetime]) -> Optional[datetime]:
        if value is not None and value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value


class PreviewLinkResponse(BaseModel):
    """Response model for a preview link."""
    id: str
    token: str
    resource_id: str
    created_by: str
    expires_at: Optional[datetime] = None
    max_uses: Optional[int] = None
    use_count: int = 0
    created_at: datetime

    @classmethod
    def from_link(cls, link: PreviewLink) -> "PreviewLinkResponse":
        return cls(
            id=link.id,
            token=link.token,
            resource_id=link.resource_id,
            created_by=link.created_by,
            expires_at=link.expires_at,
            max_uses=link.max_uses,
            use_count=link.use_count,
            created_at=link.created_at
        )


class PreviewLinkListResponse(BaseModel):
    """Response model for preview link listings."""
    links: List[PreviewLinkResponse]
    total: int


class QuotaResponse(BaseModel):
    """Response model for quota checks."""
    allowed: bool
    limit: int
    remaining: int
    reset_at: str
    error: Optional[str] = None


class StreamUrlResponse(BaseModel):
    """Response model for signed delivery URLs."""
    url: str
    expires_at: int
    expires_in: int
    format: str


class SweepResponse(BaseModel):
    """Response model for the preview link expiry sweep."""
    deleted: int
