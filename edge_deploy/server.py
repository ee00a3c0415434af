import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from edge_deploy.api.router import api_router
from edge_deploy.connectors.service_client import UpstreamServiceError
from edge_deploy.core.config import PROJECT_DESCRIPTION, PROJECT_NAME, VERSION, settings
from edge_deploy.core.startup import run_shutdown_tasks, run_startup_tasks
from edge_deploy.manager.cluster_manager import ClusterManager
from edge_deploy.middleware.authentication import AuthenticationMiddleware

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    logger.info(f"Starting {PROJECT_NAME} version {VERSION}")

    await run_startup_tasks(app, settings)
    logger.info("Startup tasks completed")

    yield

    await run_shutdown_tasks(app)
    logger.info(f"Stopping {PROJECT_NAME} version {VERSION}")


async def upstream_error_handler(request: Request, exc: UpstreamServiceError) -> JSONResponse:
    logger.error(f"{request.method} {request.url.path} failed: {exc}")
    return JSONResponse(status_code=502, content={"detail": str(exc)})


def create_app(cluster_manager: ClusterManager | None = None) -> FastAPI:
    """
    Build the application.

    Args:
        cluster_manager: Use this manager instead of building connectors at startup
    """
    app = FastAPI(
        lifespan=lifespan,
        title="Edge Deployment API",
        description="Provisioning and readiness checks for GitOps-managed edge clusters",
        summary=PROJECT_DESCRIPTION,
        version=VERSION,
        debug=settings.DEBUG,
    )
    app.state.cluster_manager = cluster_manager

    app.add_middleware(AuthenticationMiddleware)
    app.add_exception_handler(UpstreamServiceError, upstream_error_handler)
    app.include_router(api_router)

    return app
