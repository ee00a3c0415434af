"""
Sealed secret handling for cluster repositories.

Secret values never reach a repository in plaintext: each value is sealed with
the cluster's certificate and stored as one key of a SealedSecret manifest.
The HTTP-facing methods return a status code for the caller to relay.
"""

import logging
from collections.abc import AsyncIterable, Mapping
from typing import Any

from edge_deploy.connectors.git import Checkout
from edge_deploy.connectors.kubeseal import KubesealConnector
from edge_deploy.core.uuids import App
from edge_deploy.generation import manifests
from edge_deploy.models import ClusterConfig, ManifestShapeError, SealedSecretView

logger = logging.getLogger(__name__)

SecretContent = bytes | str | AsyncIterable[bytes]


async def read_content(content: SecretContent) -> bytes:
    """Drain a secret value supplied as bytes, text or an async byte stream."""
    if isinstance(content, bytes):
        return content
    if isinstance(content, str):
        return content.encode("utf-8")

    chunks = []
    async for chunk in content:
        chunks.append(chunk)
    return b"".join(chunks)


class SealedSecretHandler:
    def __init__(self, configdb: Any, kubeseal: KubesealConnector, checkout_cls: type[Checkout] = Checkout):
        self.configdb = configdb
        self.kubeseal = kubeseal
        self.checkout_cls = checkout_cls

    async def _cluster_config(self, cluster: str) -> ClusterConfig | None:
        data = await self.configdb.get_config(App.CLUSTER, cluster)
        if not data:
            logger.info(f"No cluster config for {cluster}")
            return None
        return ClusterConfig.from_config(data)

    async def write_sealed_secret(
        self,
        checkout: Checkout,
        cert: str,
        namespace: str,
        name: str,
        key: str,
        content: SecretContent,
    ) -> None:
        """
        Seal one value and store it under key in the named SealedSecret, creating it if needed.

        Raises:
            ManifestShapeError: If an existing SealedSecret of that name cannot be updated
        """
        doc = await checkout.read_manifest(namespace, "SealedSecret", name)
        if doc is None:
            doc = manifests.sealed_secret(namespace, name)

        spec = doc.get("spec") if isinstance(doc, Mapping) else None
        if not isinstance(spec, Mapping):
            raise ManifestShapeError(f"SealedSecret {namespace}/{name} has no spec mapping")
        if spec.get("encryptedData") is None:
            spec["encryptedData"] = {}
        elif not isinstance(spec["encryptedData"], Mapping):
            raise ManifestShapeError(f"SealedSecret {namespace}/{name} spec.encryptedData is not a mapping")

        value = await read_content(content)
        spec["encryptedData"][key] = await self.kubeseal.seal_raw(cert, namespace, name, value)

        await checkout.write_manifest(doc)
        logger.info(f"Wrote sealed secret {namespace}/{name} key {key}")

    async def seal_secret(
        self,
        cluster: str,
        namespace: str,
        name: str,
        key: str,
        content: SecretContent,
        dryrun: bool = False,
    ) -> int:
        """
        Seal a value into a cluster's repository.

        Returns:
            204 on success, 404 for an unknown cluster, 409 if the cluster
            has no sealing certificate or the existing secret is malformed
        """
        config = await self._cluster_config(cluster)
        if config is None:
            return 404
        if not config.kubeseal_cert:
            logger.warning(f"Cluster {cluster} has no sealing certificate")
            return 409

        async with await self.checkout_cls.clone(config.flux) as checkout:
            try:
                await self.write_sealed_secret(checkout, config.kubeseal_cert, namespace, name, key, content)
            except ManifestShapeError as e:
                logger.warning(f"Can't update sealed secret {namespace}/{name} for {cluster}: {e}")
                return 409
            if dryrun:
                logger.info(f"Dry run: not pushing sealed secret {namespace}/{name} for {cluster}")
            else:
                await checkout.commit(f"Update sealed secret {namespace}/{name}.")
                await checkout.push()

        return 204

    async def delete_secret(
        self,
        cluster: str,
        namespace: str,
        name: str,
        key: str,
        dryrun: bool = False,
    ) -> int:
        """
        Remove one key from a SealedSecret, deleting the manifest once it is empty.

        Returns:
            204 on success, 404 if the cluster, secret or key does not exist
        """
        config = await self._cluster_config(cluster)
        if config is None:
            return 404

        async with await self.checkout_cls.clone(config.flux) as checkout:
            try:
                doc = await checkout.read_manifest(namespace, "SealedSecret", name)
                keys = SealedSecretView.from_manifest(doc).keys if doc is not None else frozenset()
            except ManifestShapeError as e:
                logger.warning(f"Unusable sealed secret {namespace}/{name} for {cluster}: {e}")
                return 404
            if key not in keys:
                logger.info(f"No key {key} in sealed secret {namespace}/{name} for {cluster}")
                return 404

            encrypted = doc["spec"]["encryptedData"]
            del encrypted[key]
            if encrypted:
                await checkout.write_manifest(doc)
            else:
                await checkout.delete_manifest(namespace, "SealedSecret", name)

            if dryrun:
                logger.info(f"Dry run: not pushing removal of {namespace}/{name} key {key}")
            else:
                await checkout.commit(f"Remove key {key} from sealed secret {namespace}/{name}.")
                await checkout.push()

        return 204
