"""
Manifest templates for cluster repositories.

Every function here is pure: it takes names and URLs and returns the document
to be written into a checkout. Documents are plain dicts; the checkout takes
care of serialising them as YAML.
"""

import logging
from typing import Any

from jinja2 import BaseLoader, Environment

logger = logging.getLogger(__name__)

SOURCE_API_VERSION = "source.toolkit.fluxcd.io/v1"
KUSTOMIZE_API_VERSION = "kustomize.toolkit.fluxcd.io/v1"
SEALED_SECRET_API_VERSION = "bitnami.com/v1alpha1"

README_TEMPLATE = """\
# {{ cluster_name }}

This repository holds the desired state of the edge cluster
**{{ cluster_name }}**. Flux running on the cluster pulls it and applies
everything it finds.

Manifests are stored one per file as `<namespace>/<Kind>/<name>.yaml`.
{% if sources %}

## Sources

{% for source in sources %}
- `{{ source }}`
{% endfor %}
{% endif %}

Secrets must only be committed as SealedSecrets, encrypted with the
cluster's sealing certificate. Use the edge deployment service to add them.
"""

_env = Environment(loader=BaseLoader(), trim_blocks=True, lstrip_blocks=True, autoescape=False)


def readme(cluster_name: str, sources: list[str] | None = None) -> str:
    """Render the README committed as the first file of a new cluster repository."""
    template = _env.from_string(README_TEMPLATE)
    return template.render(cluster_name=cluster_name, sources=sources or [])


def git_repo(namespace: str, name: str, url: str, secret_ref: str | None = None) -> dict[str, Any]:
    """A Flux GitRepository pulling the main branch of url."""
    spec: dict[str, Any] = {
        "interval": "3m",
        "ref": {"branch": "main"},
        "timeout": "60s",
        "url": url,
    }
    if secret_ref:
        spec["secretRef"] = {"name": secret_ref}

    return {
        "apiVersion": SOURCE_API_VERSION,
        "kind": "GitRepository",
        "metadata": {"name": name, "namespace": namespace},
        "spec": spec,
    }


def flux_kust(namespace: str, name: str, source: str, path: str = "./") -> dict[str, Any]:
    """A Flux Kustomization applying path from the named GitRepository."""
    return {
        "apiVersion": KUSTOMIZE_API_VERSION,
        "kind": "Kustomization",
        "metadata": {"name": name, "namespace": namespace},
        "spec": {
            "interval": "10m",
            "path": path,
            "prune": True,
            "sourceRef": {"kind": "GitRepository", "name": source},
        },
    }


def sealed_secret(namespace: str, name: str) -> dict[str, Any]:
    """An empty SealedSecret, ready to have encrypted keys added."""
    return {
        "apiVersion": SEALED_SECRET_API_VERSION,
        "kind": "SealedSecret",
        "metadata": {"name": name, "namespace": namespace},
        "spec": {
            "encryptedData": {},
            "template": {
                "metadata": {"name": name, "namespace": namespace},
            },
        },
    }
