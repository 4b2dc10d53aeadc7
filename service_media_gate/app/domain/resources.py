"""
Resource lookups shared by the routes and the preview link service.
"""

from access_shared.errors import NotFoundError
from ..models import ResourceRecord


async def require_resource(directory, resource_id: str) -> ResourceRecord:
    """Fetch a resource from ``directory`` or raise NotFoundError."""
    resource = await directory.get(resource_id)
    if resource is None:
        raise NotFoundError(f"Resource with ID {resource_id} not found", {"resource_id": resource_id})
    return resource
