"""
Persistence package for the Media Gate service.

PostgreSQL repositories for preview links and the read-only resource
directory, sharing one asyncpg pool.
"""

from .postgres import PostgresDatabase, PostgresPreviewLinkStore, PostgresResourceDirectory

__all__ = [
    "PostgresDatabase",
    "PostgresPreviewLinkStore",
    "PostgresResourceDirectory",
]
