"""
Signed delivery URLs for the media edge server.

Format: ``<path>?md5=<base64url(md5(secret + path + expires))>&expires=<unix>``.
The edge recomputes the hash from its copy of the secret, so the byte layout
of the signed string must not change. No state is kept per URL; rotating the
secret invalidates every outstanding URL.
"""

import base64
import hashlib
import hmac
import time
from dataclasses import dataclass
from typing import Callable, Optional, TYPE_CHECKING
from urllib.parse import parse_qs, urlencode, urlsplit

from access_shared.logging import get_logger
from access_shared.errors import NotFoundError, ValidationError
from ..models import ResourceRecord

if TYPE_CHECKING:  # pragma: no cover - imported for typing only
    from access_shared.metrics import MetricsCollector


@dataclass(frozen=True)
class SignedUrl:
    url: str
    path: str
    signature: str
    expires_at: int


class SignedUrlIssuer:
    """Mints time-boxed delivery URLs trusted by the edge without lookups."""

    def __init__(
        self,
        secret: str,
        default_ttl_seconds: int = 3600,
        *,
        path_prefix: str = "/media/hls",
        clock: Callable[[], float] = time.time,
        metrics: Optional["MetricsCollector"] = None,
    ):
        if not secret:
            raise ValidationError("Signing secret must not be empty")
        self._secret = secret
        self.default_ttl_seconds = default_ttl_seconds
        self.path_prefix = "/" + path_prefix.strip("/")
        self.clock = clock
        self.metrics = metrics
        self.logger = get_logger("media_gate.signed_url")

    def signature(self, path: str, expires: int) -> str:
        digest = hashlib.md5(f"{self._secret}{path}{expires}".encode("utf-8")).digest()
        return base64.urlsafe_b64encode(digest).rstrip(b"=").decode("ascii")

    def sign(self, resource_path: str, ttl_seconds: Optional[int] = None) -> SignedUrl:
        """Sign ``resource_path`` for ``ttl_seconds`` (default TTL when omitted)."""
        if not resource_path.startswith("/"):
            raise ValidationError("Resource path must be absolute", {"path": resource_path})
        ttl = self.default_ttl_seconds if ttl_seconds is None else ttl_seconds
        if ttl <= 0:
            raise ValidationError("TTL must be positive", {"ttl_seconds": ttl})

        expires = int(self.clock()) + ttl
        signature = self.signature(resource_path, expires)
        url = f"{resource_path}?{urlencode({'md5': signature, 'expires': expires})}"

        if self.metrics:
            self.metrics.increment_counter("signed_urls_total")
        self.logger.debug("Signed delivery URL", path=resource_path, expires=expires)
        return SignedUrl(url=url, path=resource_path, signature=signature, expires_at=expires)

    def verify(self, path: str, signature: str, expires: int, now: Optional[float] = None) -> bool:
        """Check a presented signature the way the edge server does."""
        current = self.clock() if now is None else now
        if current > expires:
            return False
        return hmac.compare_digest(self.signature(path, expires), signature)

    def verify_url(self, url: str, now: Optional[float] = None) -> bool:
        parts = urlsplit(url)
        params = parse_qs(parts.query)
        try:
            signature = params["md5"][0]
            expires = int(params["expires"][0])
        except (KeyError, IndexError, ValueError):
            return False
        return self.verify(parts.path, signature, expires, now)

    def playlist_path(self, stream_key: str) -> str:
        return f"{self.path_prefix}/{stream_key.strip('/')}/playlist.m3u8"

    def stream_url(self, resource: ResourceRecord, stream_format: str) -> SignedUrl:
        """Signed HLS playlist URL for a ready rendition of ``resource``."""
        stream_key = resource.stream_keys.get(stream_format)
        if not stream_key:
            raise NotFoundError(
                f"Stream format {stream_format} not ready for resource {resource.resource_id}",
                {"resource_id": resource.resource_id, "format": stream_format}
            )
        return self.sign(self.playlist_path(stream_key))
