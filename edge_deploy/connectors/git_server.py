import logging

from edge_deploy.connectors.service_client import ServiceClient, UpstreamServiceError
from edge_deploy.core.uuids import Service
from edge_deploy.models import Repository

logger = logging.getLogger(__name__)


class RepoCreationError(UpstreamServiceError):
    """The Git server refused to create a repository."""


class GitServerConnector:
    """Repository management on the platform Git server."""

    def __init__(self, client: ServiceClient):
        self.client = client

    async def base_url(self) -> str | None:
        """Base URL that repository paths are relative to."""
        url = await self.client.service_url(Service.GIT)
        return f"{url}/" if url else None

    async def create_repo(self, path: str) -> Repository:
        """
        Create an empty repository.

        Args:
            path: Repository path, as group/name

        Returns:
            The created repository

        Raises:
            RepoCreationError: If the Git server returns anything but 200
        """
        logger.info(f"Creating repo {path}")
        response = await self.client.fetch(Service.GIT, "POST", f"/git/{path}")
        if response.status_code != 200:
            raise RepoCreationError(
                Service.GIT, response.status_code, f"Git: can't create repo {path}: {response.status_code}"
            )
        return Repository.from_json(response.json())
