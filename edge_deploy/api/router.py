import logging

from fastapi import APIRouter, Request, Response
from fastapi.responses import JSONResponse

from edge_deploy.core.config import VERSION
from edge_deploy.manager.cluster_manager import ClusterManager, ClusterNotFound, Forbidden
from edge_deploy.middleware.authentication import get_principal
from edge_deploy.models import ClusterProvisioningRequest

logger = logging.getLogger(__name__)


api_router: APIRouter = APIRouter(
    tags=["clusters"],
    responses={403: {"description": "Forbidden"}},
)


def get_cluster_manager(request: Request) -> ClusterManager:
    return request.app.state.cluster_manager


@api_router.get("/ping", include_in_schema=False)
async def ping() -> JSONResponse:
    return JSONResponse(content={"status": "ok", "version": VERSION})


@api_router.post("/cluster")
async def create_cluster(request: Request, cluster_request: ClusterProvisioningRequest) -> Response:
    """
    Provision a new edge cluster.

    Creates the cluster's Flux repository, registers the cluster and pushes
    the initial manifests. Responds 201 with the new cluster UUID and the
    repository URL.

    Example:
    ```bash
    curl -X POST "http://localhost:8080/cluster" \\
      -H "Content-Type: application/json" \\
      -d '{"name": "cell1", "sources": ["shared/edge-agent"], "kubeseal_cert": "-----BEGIN CERTIFICATE-----..."}'
    ```
    """
    manager = get_cluster_manager(request)
    try:
        created = await manager.create_cluster(get_principal(request), cluster_request)
    except Forbidden:
        return Response(status_code=403)

    return JSONResponse(content={"uuid": created.uuid, "flux": created.flux}, status_code=201)


@api_router.get("/cluster/{cluster}/status")
async def cluster_status(request: Request, cluster: str) -> Response:
    """Report whether every Flux source of the cluster has credentials."""
    manager = get_cluster_manager(request)
    try:
        ready = await manager.cluster_status(get_principal(request), cluster)
    except Forbidden:
        return Response(status_code=403)
    except ClusterNotFound:
        return Response(status_code=404)

    return JSONResponse(content={"ready": ready}, status_code=200)


@api_router.put("/cluster/{cluster}/secret/{namespace}/{name}/{key}")
async def seal_secret(request: Request, cluster: str, namespace: str, name: str, key: str) -> Response:
    """
    Seal the request body as one key of a SealedSecret in the cluster's repository.

    With ``?dryrun`` the secret is sealed but not pushed.
    """
    manager = get_cluster_manager(request)
    try:
        status = await manager.seal_secret(
            get_principal(request),
            cluster,
            namespace,
            name,
            key,
            request.stream(),
            dryrun="dryrun" in request.query_params,
        )
    except Forbidden:
        return Response(status_code=403)

    return Response(status_code=status)


@api_router.delete("/cluster/{cluster}/secret/{namespace}/{name}/{key}")
async def delete_sealed_secret(request: Request, cluster: str, namespace: str, name: str, key: str) -> Response:
    """Remove one key from a SealedSecret in the cluster's repository."""
    manager = get_cluster_manager(request)
    try:
        status = await manager.delete_sealed_secret(
            get_principal(request),
            cluster,
            namespace,
            name,
            key,
            dryrun="dryrun" in request.query_params,
        )
    except Forbidden:
        return Response(status_code=403)

    return Response(status_code=status)
