import logging

from core.entities import ResourceRecord
from core.errors import Unauthorized
from services.database import Database

logger = logging.getLogger(__name__)


class OwnershipGuard:
    """
    Confirms the caller owns a resource before anything else runs.
    Missing and foreign resources are indistinguishable to the caller.
    """

    def __init__(self, database: Database):
        self.db = database

    async def verify(self, resource_id: str, caller_tenant_id: str) -> ResourceRecord:
        resource = await self.db.get_resource(resource_id)
        if resource is None or resource.owner_tenant_id != caller_tenant_id:
            logger.warning(
                "Ownership check failed",
                extra={"resource_id": resource_id, "tenant_id": caller_tenant_id},
            )
            raise Unauthorized("Resource not found or unauthorized")
        return resource
