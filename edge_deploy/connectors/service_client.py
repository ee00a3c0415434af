"""
HTTP client shared by all platform service connectors.

Other services are located through the service directory: a service UUID is
resolved to a base URL once and cached for the life of the process.
"""

import logging
from typing import Any

import httpx

from edge_deploy.core.uuids import Service

logger = logging.getLogger(__name__)


class UpstreamServiceError(Exception):
    """A platform service answered with a status we cannot handle."""

    def __init__(self, service: str, status_code: int | None, message: str):
        super().__init__(message)
        self.service = service
        self.status_code = status_code
        self.message = message

    def __str__(self) -> str:
        return f"{self.message} (service={self.service}, status={self.status_code})"


class ServiceClient:
    """Authenticated httpx client that addresses services by UUID."""

    def __init__(
        self,
        directory_url: str,
        username: str | None = None,
        password: str | None = None,
        timeout: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.directory_url = directory_url.rstrip("/")
        self.username = username
        self.password = password

        auth = httpx.BasicAuth(username, password or "") if username else None
        self._client = httpx.AsyncClient(auth=auth, timeout=timeout, transport=transport)
        self._urls: dict[str, str] = {Service.DIRECTORY: self.directory_url}

    async def service_url(self, service: str) -> str | None:
        """Look up the base URL of a service in the directory."""
        if service in self._urls:
            return self._urls[service]

        response = await self._client.get(f"{self.directory_url}/v1/service/{service}")
        if response.status_code == 404:
            logger.warning(f"Service {service} is not registered in the directory")
            return None
        if response.status_code != 200:
            raise UpstreamServiceError(Service.DIRECTORY, response.status_code, f"Can't look up service {service}")

        providers = response.json()
        urls = [p["url"] for p in providers if p.get("url")]
        if not urls:
            logger.warning(f"Service {service} has no advertised URL")
            return None

        url = urls[0].rstrip("/")
        logger.debug(f"Resolved service {service} to {url}")
        self._urls[service] = url
        return url

    async def fetch(self, service: str, method: str, path: str, **kwargs: Any) -> httpx.Response:
        """Make a request to path on the given service."""
        base = await self.service_url(service)
        if base is None:
            raise UpstreamServiceError(service, None, f"Can't find a URL for service {service}")

        url = f"{base}/{path.lstrip('/')}"
        logger.debug(f"{method} {url}")
        return await self._client.request(method, url, **kwargs)

    async def aclose(self) -> None:
        await self._client.aclose()
