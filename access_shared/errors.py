"""
Shared error handling for the Media Gate access layer.
"""

from typing import Dict, Any, Optional
from pydantic import BaseModel, ConfigDict, Field


class ErrorResponse(BaseModel):
    """Standard error response format."""

    model_config = ConfigDict(populate_by_name=True)

    status_code: int = Field(..., alias="statusCode")
    code: str
    message: str
    details: Dict[str, Any] = {}
    limit: Optional[int] = None
    reset_at: Optional[str] = Field(default=None, alias="resetAt")


class AccessLayerException(Exception):
    """Base exception for access layer services."""

    status_code = 400

    def __init__(
        self,
        code: str,
        message: str,
        details: Optional[Dict[str, Any]] = None,
        headers: Optional[Dict[str, str]] = None
    ):
        self.code = code
        self.message = message
        self.details = details or {}
        self.headers = headers or {}
        super().__init__(message)

    def to_response(self) -> ErrorResponse:
        """Convert to error response."""
        return ErrorResponse(
            status_code=self.status_code,
            code=self.code,
            message=self.message,
            details=self.details
        )

    def to_body(self) -> Dict[str, Any]:
        """Serialize the error response for the wire."""
        return self.to_response().model_dump(by_alias=True, exclude_none=True)


class UnauthorizedError(AccessLayerException):
    """No caller identity was presented."""

    status_code = 401

    def __init__(self, message: str = "Unauthorized", details: Optional[Dict[str, Any]] = None):
        super().__init__("UNAUTHORIZED", message, details)


class ForbiddenError(AccessLayerException):
    """Caller identity lacks ownership or permission."""

    status_code = 403

    def __init__(self, message: str = "Forbidden", details: Optional[Dict[str, Any]] = None):
        super().__init__("FORBIDDEN", message, details)


class NotFoundError(AccessLayerException):
    """Unknown resource or token."""

    status_code = 404

    def __init__(self, message: str = "Not found", details: Optional[Dict[str, Any]] = None):
        super().__init__("NOT_FOUND", message, details)


class ExpiredError(AccessLayerException):
    """Credential is past its expiry."""

    def __init__(self, message: str = "Credential has expired", details: Optional[Dict[str, Any]] = None):
        super().__init__("EXPIRED", message, details)


class ExhaustedUsesError(AccessLayerException):
    """Credential has no remaining uses."""

    def __init__(self, message: str = "Credential has reached maximum uses", details: Optional[Dict[str, Any]] = None):
        super().__init__("EXHAUSTED_USES", message, details)


class ValidationError(AccessLayerException):
    """Validation-related errors."""

    def __init__(self, message: str = "Validation failed", details: Optional[Dict[str, Any]] = None):
        super().__init__("VALIDATION_ERROR", message, details)


class StoreUnavailableError(AccessLayerException):
    """Backing store could not be reached in time."""

    status_code = 503

    def __init__(self, store: str, message: str = "Store unavailable", details: Optional[Dict[str, Any]] = None):
        self.store = store
        super().__init__("STORE_UNAVAILABLE", f"{store}: {message}", details)


class RateLimitError(AccessLayerException):
    """Rate limiting errors."""

    status_code = 429

    def __init__(
        self,
        message: str = "Rate limit exceeded",
        limit: Optional[int] = None,
        reset_at: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
        headers: Optional[Dict[str, str]] = None
    ):
        self.limit = limit
        self.reset_at = reset_at
        super().__init__("RATE_LIMIT_ERROR", message, details, headers)

    def to_response(self) -> ErrorResponse:
        response = super().to_response()
        response.limit = self.limit
        response.reset_at = self.reset_at
        return response
