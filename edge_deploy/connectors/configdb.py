import logging
from typing import Any

from edge_deploy.connectors.service_client import ServiceClient, UpstreamServiceError
from edge_deploy.core.uuids import Service

logger = logging.getLogger(__name__)


class ConfigDBConnector:
    """Cluster registry: objects and their per-application config records."""

    def __init__(self, client: ServiceClient):
        self.client = client

    async def create_object(self, klass: str) -> str:
        """Create a new object of the given class and return its UUID."""
        response = await self.client.fetch(Service.CONFIGDB, "POST", "/v1/object", json={"class": klass})
        if response.status_code not in (200, 201):
            raise UpstreamServiceError(Service.CONFIGDB, response.status_code, f"Can't create object of class {klass}")
        return response.json()["uuid"]

    async def put_config(self, app: str, obj: str, value: dict[str, Any]) -> None:
        response = await self.client.fetch(Service.CONFIGDB, "PUT", f"/v1/app/{app}/object/{obj}", json=value)
        if response.status_code not in (200, 201, 204):
            raise UpstreamServiceError(Service.CONFIGDB, response.status_code, f"Can't write config {app} for {obj}")

    async def get_config(self, app: str, obj: str) -> dict[str, Any] | None:
        response = await self.client.fetch(Service.CONFIGDB, "GET", f"/v1/app/{app}/object/{obj}")
        if response.status_code == 404:
            return None
        if response.status_code != 200:
            raise UpstreamServiceError(Service.CONFIGDB, response.status_code, f"Can't read config {app} for {obj}")
        return response.json()
