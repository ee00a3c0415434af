"""
Service configuration.

Settings come from environment variables layered over env files. Later files
override earlier ones and the process environment overrides all of them:

    .env  <  .env.<ENVIRONMENT> (one per comma-separated entry)  <  ConfigMap .env  <  environment

ENVIRONMENT itself is only read from the process environment.
"""

import functools
import logging
import os
from dataclasses import dataclass

from pydantic_settings import BaseSettings

# Configure logging before settings loading starts reporting
from edge_deploy.core.early_logging import initialize_logging  # noqa: F401
from edge_deploy.utils.logging_config import setup_logging

logger = logging.getLogger(__name__)

PROJECT_NAME: str = "edge-deploy"
VERSION: str = "0.1.0"  # replaced at release time
PROJECT_DESCRIPTION: str = "Edge Deployment - GitOps provisioning for edge clusters"

# First existing path wins
CONFIGMAP_ENV_FILES = ("/etc/config/.env", "/app/config/.env")


def _environments() -> list[str]:
    return [env.strip() for env in os.environ.get("ENVIRONMENT", "local").split(",") if env.strip()]


def _configmap_env_file() -> str | None:
    candidates = [*CONFIGMAP_ENV_FILES, os.environ.get("CONFIG_ENV_FILE_PATH", "")]
    return next((path for path in candidates if path and os.path.exists(path)), None)


@functools.cache
def _get_env_files() -> list[str]:
    """The env files that exist, lowest precedence first. Resolved once per process."""
    candidates = [".env", *(f".env.{env}" for env in _environments())]
    env_files = [path for path in candidates if os.path.exists(path)]
    for path in sorted(set(candidates) - set(env_files)):
        logger.debug(f"No env file {path}")

    configmap = _configmap_env_file()
    if configmap:
        env_files.append(configmap)
        logger.info(f"Using ConfigMap env file {configmap}")

    logger.info(f"Env files, lowest precedence first: {env_files}")
    return env_files


class Settings(BaseSettings):
    model_config = {"env_file": _get_env_files(), "env_file_encoding": "utf-8", "extra": "ignore"}

    ENVIRONMENT: str = "local"
    DEBUG: bool = False
    PORT: int = 8080

    # Our own externally visible base URL, advertised in the service directory
    HTTP_URL: str = "http://edge-deployment.local"
    REGISTER_SERVICE: bool = True

    # Service directory, used to find every other collaborator
    DIRECTORY_URL: str = "http://directory.local"

    # Credentials this service presents to collaborators and the Git server
    SERVICE_USERNAME: str | None = None
    SERVICE_PASSWORD: str | None = None
    HTTP_TIMEOUT: float = 30.0

    # Header set by the fronting proxy once the caller has been authenticated
    PRINCIPAL_HEADER: str = "X-Auth-Principal"

    # Repositories are created as <REPO_GROUP>/<cluster name>
    REPO_GROUP: str = "shared"

    GIT_BRANCH: str = "main"
    GIT_USER_NAME: str = "Edge Deployment"
    GIT_USER_EMAIL: str = "edge-deployment@example.com"

    KUBESEAL_BINARY: str = "kubeseal"

    TEMP_DIR: str = "/tmp"

    LOG_TO_FILE: bool = False
    LOG_FILE_PATH: str = "edge-deploy.log"


@dataclass(frozen=True)
class DeployDefaults:
    """Fixed names the provisioning workflow writes into every cluster repository."""

    repo_group: str = "shared"
    flux_namespace: str = "flux-system"
    cluster_namespace: str = "fplus-edge"
    flux_secret_name: str = "op1flux-secrets"
    flux_secret_key: str = "username"
    flux_user_prefix: str = "op1flux"

    @classmethod
    def from_settings(cls, settings: Settings) -> "DeployDefaults":
        return cls(repo_group=settings.REPO_GROUP)


def _get_settings() -> Settings:
    settings = Settings()

    setup_logging(log_to_file=settings.LOG_TO_FILE, log_file_path=settings.LOG_FILE_PATH, debug=settings.DEBUG)

    logger.info(f"Service URL: {settings.HTTP_URL}")
    logger.info(f"Directory URL: {settings.DIRECTORY_URL}")
    logger.info(f"Service credentials: {'SET' if settings.SERVICE_USERNAME else 'NOT SET'}")
    if settings.SERVICE_USERNAME and not settings.SERVICE_PASSWORD:
        logger.warning("SERVICE_USERNAME is set without SERVICE_PASSWORD")

    return settings


settings = _get_settings()
