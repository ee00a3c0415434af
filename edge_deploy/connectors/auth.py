"""
Access control connector.

Permissions are granted as (permission, target) pairs. A grant whose target is
the null UUID applies to every object; callers that need a grant for one
specific object ask for an exact match.
"""

import logging

from edge_deploy.connectors.service_client import ServiceClient, UpstreamServiceError
from edge_deploy.core.uuids import NULL_UUID, Service

logger = logging.getLogger(__name__)


class AuthConnector:
    def __init__(self, client: ServiceClient):
        self.client = client

    async def fetch_acl(self, principal: str, permission: str) -> list[dict[str, str]]:
        response = await self.client.fetch(
            Service.AUTHORISATION,
            "GET",
            "/authz/acl",
            params={"principal": principal, "permission": permission},
        )
        if response.status_code == 404:
            logger.debug(f"No ACL for unknown principal {principal}")
            return []
        if response.status_code != 200:
            raise UpstreamServiceError(
                Service.AUTHORISATION, response.status_code, f"Can't fetch ACL for {principal}"
            )
        return response.json()

    async def check_acl(self, principal: str, permission: str, target: str, exact: bool) -> bool:
        """
        Check whether principal holds permission on target.

        Args:
            principal: The authenticated caller
            permission: Permission UUID
            target: Object UUID, or the null UUID for "any object"
            exact: If True only a grant on target itself counts; otherwise a
                wildcard (null UUID) grant is accepted as well

        Returns:
            True if access is allowed
        """
        acl = await self.fetch_acl(principal, permission)
        for ace in acl:
            if ace.get("permission") != permission:
                continue
            ace_target = ace.get("target")
            if ace_target == target or (not exact and ace_target == NULL_UUID):
                return True

        logger.info(f"Denied {principal} permission {permission} on {target}")
        return False
