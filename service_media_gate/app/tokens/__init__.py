"""
Ephemeral access tokens for the Media Gate service.

- signed_url: stateless, time-boxed delivery URLs verified by the edge
- preview_links: revocable, use-limited preview credentials
"""

from .signed_url import SignedUrl, SignedUrlIssuer
from .preview_links import PreviewLinkService, PreviewLinkSweeper

__all__ = [
    "PreviewLinkService",
    "PreviewLinkSweeper",
    "SignedUrl",
    "SignedUrlIssuer",
]
