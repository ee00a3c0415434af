"""
Startup logic for the edge deployment service.

Builds the platform service connectors and the cluster manager, and
advertises our own URL in the service directory.
"""

import logging

import httpx
from fastapi import FastAPI
from tenacity import (
    after_log,
    before_sleep_log,
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from edge_deploy.connectors.auth import AuthConnector
from edge_deploy.connectors.configdb import ConfigDBConnector
from edge_deploy.connectors.directory import DirectoryConnector
from edge_deploy.connectors.git_server import GitServerConnector
from edge_deploy.connectors.kubeseal import KubesealConnector
from edge_deploy.connectors.service_client import ServiceClient, UpstreamServiceError
from edge_deploy.core.config import DeployDefaults, Settings
from edge_deploy.core.uuids import Service
from edge_deploy.handlers.sealed_secrets import SealedSecretHandler
from edge_deploy.manager.cluster_manager import ClusterManager

logger = logging.getLogger(__name__)


def create_service_client(settings: Settings) -> ServiceClient:
    return ServiceClient(
        directory_url=settings.DIRECTORY_URL,
        username=settings.SERVICE_USERNAME,
        password=settings.SERVICE_PASSWORD,
        timeout=settings.HTTP_TIMEOUT,
    )


def create_cluster_manager(client: ServiceClient, settings: Settings) -> ClusterManager:
    configdb = ConfigDBConnector(client)
    sealer = SealedSecretHandler(configdb, KubesealConnector(settings.KUBESEAL_BINARY))
    return ClusterManager(
        auth=AuthConnector(client),
        configdb=configdb,
        git_server=GitServerConnector(client),
        sealer=sealer,
        defaults=DeployDefaults.from_settings(settings),
    )


@retry(
    stop=stop_after_attempt(10),
    wait=wait_exponential(multiplier=2, min=4, max=60),
    retry=retry_if_exception_type(
        (
            httpx.ConnectError,
            httpx.TimeoutException,
            httpx.RemoteProtocolError,
            UpstreamServiceError,
        )
    ),
    before_sleep=before_sleep_log(logger, logging.WARNING),
    after=after_log(logger, logging.INFO),
)
async def register_service(directory: DirectoryConnector, url: str) -> None:
    """Advertise url as the edge deployment service, retrying until the directory answers."""
    await directory.register_service_url(Service.EDGE_DEPLOYMENT, url)
    logger.info(f"Registered service URL {url}")


async def run_startup_tasks(app: FastAPI, settings: Settings) -> None:
    """Create the collaborators on app.state unless they were injected already."""
    if getattr(app.state, "cluster_manager", None) is not None:
        logger.debug("Cluster manager supplied by caller, skipping connector setup")
        return

    client = create_service_client(settings)
    app.state.service_client = client
    app.state.cluster_manager = create_cluster_manager(client, settings)

    if settings.REGISTER_SERVICE:
        await register_service(DirectoryConnector(client), settings.HTTP_URL)
    else:
        logger.info("Service registration disabled")


async def run_shutdown_tasks(app: FastAPI) -> None:
    client = getattr(app.state, "service_client", None)
    if client is not None:
        await client.aclose()
        logger.info("Service client closed")
