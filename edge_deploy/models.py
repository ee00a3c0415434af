"""
Typed entities for cluster provisioning.

Manifests read back from a cluster repository are untyped YAML. They are
converted into the views below as soon as they are read; a document of the
wrong shape raises ManifestShapeError rather than failing somewhere later.
"""

from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any, ClassVar

from pydantic import BaseModel, Field

from edge_deploy.connectors.service_client import UpstreamServiceError
from edge_deploy.core.uuids import Service


class ManifestShapeError(ValueError):
    """A manifest document does not have the structure its kind requires."""


class ClusterProvisioningRequest(BaseModel):
    """Body of POST /cluster."""

    name: str = Field(..., min_length=1, pattern=r"^[A-Za-z0-9_.-]+$", examples=["cell1"])
    namespace: str | None = Field(None, description="Namespace the edge agent runs in on the cluster")
    sources: list[str] | None = Field(None, description="Repositories Flux should pull, as 'group/repo'")
    kubeseal_cert: str = Field(..., description="PEM certificate of the cluster's sealed-secrets controller")

    model_config = {
        "json_schema_extra": {
            "example": {
                "name": "cell1",
                "sources": ["shared/edge-agent"],
                "kubeseal_cert": "-----BEGIN CERTIFICATE-----\n...",
            }
        }
    }


@dataclass(frozen=True)
class Repository:
    """A repository created on the Git server for one cluster."""

    path: str
    url: str

    @classmethod
    def from_json(cls, data: Mapping[str, Any]) -> "Repository":
        return cls(path=data["path"], url=data["url"])


@dataclass(frozen=True)
class ClusterConfig:
    """The Cluster application record kept in the configuration store."""

    flux: str
    namespace: str
    kubeseal_cert: str | None = None

    def to_config(self) -> dict[str, Any]:
        return {"flux": self.flux, "namespace": self.namespace, "kubeseal_cert": self.kubeseal_cert}

    @classmethod
    def from_config(cls, data: Mapping[str, Any]) -> "ClusterConfig":
        """
        Build from a Cluster config record.

        Raises:
            UpstreamServiceError: If the record names no flux repository
        """
        if not isinstance(data.get("flux"), str) or not data["flux"]:
            raise UpstreamServiceError(Service.CONFIGDB, None, "Cluster config record has no flux repository URL")
        return cls(
            flux=data["flux"],
            namespace=data.get("namespace", ""),
            kubeseal_cert=data.get("kubeseal_cert"),
        )


def _mapping(value: Any, where: str) -> Mapping[str, Any]:
    if not isinstance(value, Mapping):
        raise ManifestShapeError(f"{where} is not a mapping")
    return value


@dataclass(frozen=True)
class GitRepositorySource:
    """The parts of a Flux GitRepository that matter for credentials."""

    name: str
    url: str | None
    secret_ref: str | None

    @classmethod
    def from_manifest(cls, doc: Any) -> "GitRepositorySource":
        doc = _mapping(doc, "GitRepository")
        metadata = _mapping(doc.get("metadata", {}), "GitRepository metadata")
        spec = _mapping(doc.get("spec", {}), "GitRepository spec")

        secret_ref = None
        if spec.get("secretRef") is not None:
            ref = _mapping(spec["secretRef"], "GitRepository spec.secretRef")
            secret_ref = ref.get("name")
            if secret_ref is not None and not isinstance(secret_ref, str):
                raise ManifestShapeError("GitRepository spec.secretRef.name is not a string")

        return cls(name=str(metadata.get("name", "")), url=spec.get("url"), secret_ref=secret_ref)


@dataclass(frozen=True)
class SealedSecretView:
    """A SealedSecret reduced to the names of its encrypted keys."""

    name: str
    keys: frozenset[str]

    @classmethod
    def from_manifest(cls, doc: Any) -> "SealedSecretView":
        doc = _mapping(doc, "SealedSecret")
        metadata = _mapping(doc.get("metadata", {}), "SealedSecret metadata")
        spec = _mapping(doc.get("spec"), "SealedSecret spec")
        encrypted = _mapping(spec.get("encryptedData"), "SealedSecret spec.encryptedData")
        return cls(name=str(metadata.get("name", "")), keys=frozenset(encrypted.keys()))


@dataclass(frozen=True)
class BearerTokenCredential:
    required_keys: ClassVar[frozenset[str]] = frozenset({"bearerToken"})


@dataclass(frozen=True)
class BasicAuthCredential:
    required_keys: ClassVar[frozenset[str]] = frozenset({"username", "password"})


Credential = BearerTokenCredential | BasicAuthCredential

# Flux git credential shapes, in order of preference
CREDENTIAL_KINDS: tuple[type[BearerTokenCredential] | type[BasicAuthCredential], ...] = (
    BearerTokenCredential,
    BasicAuthCredential,
)


def match_credential(keys: frozenset[str] | set[str]) -> Credential | None:
    """Return the first credential kind whose keys are all present, or None."""
    for kind in CREDENTIAL_KINDS:
        if kind.required_keys <= keys:
            return kind()
    return None
