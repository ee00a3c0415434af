import logging

from edge_deploy.connectors.service_client import ServiceClient, UpstreamServiceError
from edge_deploy.core.uuids import Service

logger = logging.getLogger(__name__)


class DirectoryConnector:
    """Service registration and discovery."""

    def __init__(self, client: ServiceClient):
        self.client = client

    async def service_url(self, service: str) -> str | None:
        return await self.client.service_url(service)

    async def register_service_url(self, service: str, url: str) -> None:
        """Advertise url as the base URL of service."""
        logger.info(f"Registering {url} for service {service}")
        response = await self.client.fetch(
            Service.DIRECTORY, "PUT", f"/v1/service/{service}/advertisment", json={"url": url}
        )
        if response.status_code not in (200, 201, 204):
            raise UpstreamServiceError(
                Service.DIRECTORY, response.status_code, f"Can't register service URL for {service}"
            )
