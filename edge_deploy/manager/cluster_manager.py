"""
Edge cluster provisioning.

Creating a cluster is a fixed sequence of externally visible steps:

1. create the cluster's repository on the Git server
2. create the cluster object and write its Info and Cluster config records
3. seed the repository with a README, the Flux credentials secret and one
   GitRepository/Kustomization pair per requested source
4. push

Nothing is rolled back if a later step fails. Each step is logged so that a
half-created cluster can be found and finished or removed by hand.
"""

import logging
from dataclasses import dataclass
from urllib.parse import urljoin

from edge_deploy.connectors.auth import AuthConnector
from edge_deploy.connectors.configdb import ConfigDBConnector
from edge_deploy.connectors.git import Checkout
from edge_deploy.connectors.git_server import GitServerConnector
from edge_deploy.connectors.service_client import UpstreamServiceError
from edge_deploy.core.config import DeployDefaults
from edge_deploy.core.uuids import NULL_UUID, App, Class, Perm, Service
from edge_deploy.generation import manifests
from edge_deploy.handlers.sealed_secrets import SealedSecretHandler, SecretContent
from edge_deploy.models import (
    ClusterConfig,
    ClusterProvisioningRequest,
    GitRepositorySource,
    ManifestShapeError,
    Repository,
    SealedSecretView,
    match_credential,
)

logger = logging.getLogger(__name__)


class Forbidden(Exception):
    """The principal does not hold the permission the operation needs."""


class ClusterNotFound(Exception):
    """There is no Cluster config record for the requested cluster."""


@dataclass(frozen=True)
class ClusterCreated:
    uuid: str
    flux: str


class ClusterManager:
    def __init__(
        self,
        auth: AuthConnector,
        configdb: ConfigDBConnector,
        git_server: GitServerConnector,
        sealer: SealedSecretHandler,
        defaults: DeployDefaults | None = None,
        checkout_cls: type[Checkout] = Checkout,
    ):
        self.auth = auth
        self.configdb = configdb
        self.git_server = git_server
        self.sealer = sealer
        self.defaults = defaults or DeployDefaults()
        self.checkout_cls = checkout_cls

    async def _authorize(self, principal: str, permission: str, target: str, exact: bool) -> None:
        if not await self.auth.check_acl(principal, permission, target, exact):
            raise Forbidden(f"{principal} lacks {permission} on {target}")

    async def create_cluster(self, principal: str, request: ClusterProvisioningRequest) -> ClusterCreated:
        """
        Provision a new edge cluster.

        The permission is checked against the wildcard target since the
        cluster does not exist yet.

        Raises:
            Forbidden: If the principal may not create clusters
            RepoCreationError: If the Git server refuses the new repository
        """
        await self._authorize(principal, Perm.CLUSTERS, NULL_UUID, exact=False)

        repo = await self.create_repo(request.name)
        uuid = await self.create_cluster_objects(request, repo.url)
        await self.populate_cluster_repo(repo, request)

        logger.info(f"Provisioned edge cluster {request.name} as {uuid}")
        return ClusterCreated(uuid=uuid, flux=repo.url)

    async def create_repo(self, name: str) -> Repository:
        repo = await self.git_server.create_repo(f"{self.defaults.repo_group}/{name}")
        logger.info(f"Created repo {repo.path} at {repo.url}")
        return repo

    async def create_cluster_objects(self, request: ClusterProvisioningRequest, repo_url: str) -> str:
        """Create the cluster object and its two config records; returns the new UUID."""
        uuid = await self.configdb.create_object(Class.EDGE_CLUSTER)
        logger.info(f"Created Edge Cluster {uuid}")

        config = ClusterConfig(
            flux=repo_url,
            namespace=request.namespace or self.defaults.cluster_namespace,
            kubeseal_cert=request.kubeseal_cert,
        )
        await self.configdb.put_config(App.INFO, uuid, {"name": request.name})
        await self.configdb.put_config(App.CLUSTER, uuid, config.to_config())
        logger.info(f"Wrote config records for Edge Cluster {uuid}")

        return uuid

    async def populate_cluster_repo(self, repo: Repository, request: ClusterProvisioningRequest) -> None:
        logger.info(f"Performing initial cluster deployment to {repo.path}")
        async with await self.checkout_cls.init(repo.url) as checkout:
            await checkout.write_file("README.md", manifests.readme(request.name, request.sources))
            await checkout.commit("Add README.")
            logger.info(f"Committed README to {repo.path}")

            await self.setup_repo_links(checkout, request)

            await checkout.push()
            logger.info(f"Pushed initial commits to {repo.path}")

    async def setup_repo_links(self, checkout: Checkout, request: ClusterProvisioningRequest) -> None:
        """Write the Flux credentials secret and a source/kustomization pair per source."""
        if request.sources is None:
            return

        git_base = await self.git_server.base_url()
        if git_base is None:
            raise UpstreamServiceError(Service.GIT, None, "Can't find the Git server base URL")

        ns = self.defaults.flux_namespace
        await self.sealer.write_sealed_secret(
            checkout,
            request.kubeseal_cert,
            namespace=ns,
            name=self.defaults.flux_secret_name,
            key=self.defaults.flux_secret_key,
            content=f"{self.defaults.flux_user_prefix}/{request.name}",
        )

        for source in request.sources:
            name = source.replace("/", ".")
            url = urljoin(git_base, source)

            logger.info(f"Adding source {url}")
            await checkout.write_manifest(manifests.git_repo(ns, name, url, secret_ref=self.defaults.flux_secret_name))
            await checkout.write_manifest(manifests.flux_kust(ns, name, name))

        await checkout.commit("Written flux source manifests.")
        logger.info(f"Committed {len(request.sources)} flux source(s)")

    async def cluster_has_git_creds(self, checkout: Checkout) -> bool:
        """
        Check every GitRepository that names a secret has usable credentials.

        A source is usable when its SealedSecret exists and holds one of the
        accepted credential shapes. Malformed documents count as unusable.
        """
        ns = self.defaults.flux_namespace

        secret_names: list[str] = []
        for manifest in await checkout.list_manifests(ns, "GitRepository"):
            try:
                source = GitRepositorySource.from_manifest(await checkout.read_manifest(*manifest))
            except ManifestShapeError as e:
                logger.warning(f"Bad GitRepository {manifest[2]}: {e}")
                return False
            if source.secret_ref:
                secret_names.append(source.secret_ref)

        for sname in dict.fromkeys(secret_names):
            try:
                doc = await checkout.read_manifest(ns, "SealedSecret", sname)
                if doc is None:
                    logger.info(f"No sealed secret {sname}")
                    return False
                sealed = SealedSecretView.from_manifest(doc)
            except ManifestShapeError as e:
                logger.warning(f"Bad sealed secret {sname}: {e}")
                return False

            if match_credential(sealed.keys) is None:
                logger.info(f"Missing keys in secret {sname}, we have: {', '.join(sorted(sealed.keys))}")
                return False

        return True

    async def cluster_status(self, principal: str, cluster: str) -> bool:
        """
        Report whether a cluster's repository is ready for Flux.

        Raises:
            Forbidden: If the principal may not manage this cluster
            ClusterNotFound: If the cluster has no Cluster config record
        """
        await self._authorize(principal, Perm.CLUSTERS, cluster, exact=True)

        data = await self.configdb.get_config(App.CLUSTER, cluster)
        if not data:
            raise ClusterNotFound(cluster)
        config = ClusterConfig.from_config(data)

        async with await self.checkout_cls.clone(config.flux) as checkout:
            ready = await self.cluster_has_git_creds(checkout)

        logger.debug(f"Cluster {cluster} ready: {ready}")
        return ready

    async def seal_secret(
        self,
        principal: str,
        cluster: str,
        namespace: str,
        name: str,
        key: str,
        content: SecretContent,
        dryrun: bool = False,
    ) -> int:
        await self._authorize(principal, Perm.SECRETS, cluster, exact=True)
        return await self.sealer.seal_secret(cluster, namespace, name, key, content, dryrun=dryrun)

    async def delete_sealed_secret(
        self,
        principal: str,
        cluster: str,
        namespace: str,
        name: str,
        key: str,
        dryrun: bool = False,
    ) -> int:
        await self._authorize(principal, Perm.SECRETS, cluster, exact=True)
        return await self.sealer.delete_secret(cluster, namespace, name, key, dryrun=dryrun)
