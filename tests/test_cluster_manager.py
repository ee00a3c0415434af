"""
Tests for cluster provisioning and the readiness check.
"""

import pytest

from edge_deploy.connectors.git import Checkout
from edge_deploy.connectors.git_server import RepoCreationError
from edge_deploy.connectors.service_client import UpstreamServiceError
from edge_deploy.core.uuids import NULL_UUID, App, Class, Perm, Service
from edge_deploy.manager.cluster_manager import ClusterNotFound, Forbidden
from edge_deploy.models import ClusterProvisioningRequest
from tests.fakes import GIT_BASE, git_repository, sealed_secret

CERT = "-----BEGIN CERTIFICATE-----\nMIIB...\n-----END CERTIFICATE-----\n"


def make_request(**kwargs) -> ClusterProvisioningRequest:
    body = {"name": "cell1", "sources": ["org/repoA"], "kubeseal_cert": CERT}
    body.update(kwargs)
    return ClusterProvisioningRequest(**body)


def step_names(calls: list) -> list[str]:
    return [call[0] for call in calls]


async def register_cluster(configdb, checkout_cls, files: dict) -> str:
    """Put a cluster with the given repository contents in place."""
    cluster = await configdb.create_object(Class.EDGE_CLUSTER)
    url = f"{GIT_BASE}git/edge/{cluster}"
    await configdb.put_config(App.CLUSTER, cluster, {"flux": url, "namespace": "fplus-edge", "kubeseal_cert": CERT})
    checkout_cls.remote[url] = files
    return cluster


def repo_files(*docs) -> dict:
    return {f"{d['metadata']['namespace']}/{d['kind']}/{d['metadata']['name']}.yaml": d for d in docs}


@pytest.mark.asyncio
async def test_create_cluster_returns_uuid_and_repo_url(manager, configdb):
    created = await manager.create_cluster("admin@REALM", make_request())

    assert created.flux == f"{GIT_BASE}git/edge/cell1"
    assert configdb.objects[created.uuid] == Class.EDGE_CLUSTER


@pytest.mark.asyncio
async def test_create_cluster_runs_steps_in_order(manager, calls):
    await manager.create_cluster("admin@REALM", make_request())

    steps = step_names(calls)
    order = [
        "auth.check_acl",
        "git_server.create_repo",
        "configdb.create_object",
        "configdb.put_config",
        "checkout.init",
        "checkout.push",
    ]
    positions = [steps.index(step) for step in order]
    assert positions == sorted(positions)

    # Both config records are written before the checkout is opened
    last_put = max(i for i, step in enumerate(steps) if step == "configdb.put_config")
    assert last_put < steps.index("checkout.init")
    # Every commit happens before the push, and the checkout is released after it
    last_commit = max(i for i, step in enumerate(steps) if step == "checkout.commit")
    assert last_commit < steps.index("checkout.push") < steps.index("checkout.dispose")


@pytest.mark.asyncio
async def test_create_cluster_checks_wildcard_permission(manager, calls):
    await manager.create_cluster("admin@REALM", make_request())

    assert calls[0] == ("auth.check_acl", "admin@REALM", Perm.CLUSTERS, NULL_UUID, False)


@pytest.mark.asyncio
async def test_create_cluster_pushes_expected_repository(manager, checkout_cls):
    created = await manager.create_cluster("admin@REALM", make_request())

    pushed = checkout_cls.remote[created.flux]
    assert "cell1" in pushed["README.md"]

    secret = pushed["flux-system/SealedSecret/op1flux-secrets.yaml"]
    assert secret["spec"]["encryptedData"] == {"username": "sealed[flux-system/op1flux-secrets]:op1flux/cell1"}

    source = pushed["flux-system/GitRepository/org.repoA.yaml"]
    assert source["spec"]["url"] == f"{GIT_BASE}org/repoA"
    assert source["spec"]["secretRef"] == {"name": "op1flux-secrets"}

    kust = pushed["flux-system/Kustomization/org.repoA.yaml"]
    assert kust["spec"]["sourceRef"] == {"kind": "GitRepository", "name": "org.repoA"}


@pytest.mark.asyncio
async def test_create_cluster_makes_two_commits(manager, checkout_cls):
    await manager.create_cluster("admin@REALM", make_request())

    (checkout,) = checkout_cls.instances
    assert checkout.commits == ["Add README.", "Written flux source manifests."]
    assert checkout.dispose_count == 1


@pytest.mark.asyncio
async def test_create_cluster_writes_config_records(manager, configdb):
    created = await manager.create_cluster("admin@REALM", make_request())

    assert configdb.configs[(App.INFO, created.uuid)] == {"name": "cell1"}
    assert configdb.configs[(App.CLUSTER, created.uuid)] == {
        "flux": created.flux,
        "namespace": "fplus-edge",
        "kubeseal_cert": CERT,
    }


@pytest.mark.asyncio
async def test_create_cluster_uses_requested_namespace(manager, configdb):
    created = await manager.create_cluster("admin@REALM", make_request(namespace="edge-agents"))

    assert configdb.configs[(App.CLUSTER, created.uuid)]["namespace"] == "edge-agents"


@pytest.mark.asyncio
async def test_create_cluster_without_sources_only_writes_readme(manager, checkout_cls):
    created = await manager.create_cluster("admin@REALM", make_request(sources=None))

    assert list(checkout_cls.remote[created.flux]) == ["README.md"]
    assert checkout_cls.instances[0].commits == ["Add README."]


@pytest.mark.asyncio
async def test_create_cluster_replaces_every_slash_in_source_names(manager, checkout_cls):
    created = await manager.create_cluster("admin@REALM", make_request(sources=["org/team/repo"]))

    assert "flux-system/GitRepository/org.team.repo.yaml" in checkout_cls.remote[created.flux]


@pytest.mark.asyncio
async def test_create_cluster_forbidden_has_no_side_effects(manager, auth, calls):
    auth.allowed = False

    with pytest.raises(Forbidden):
        await manager.create_cluster("nobody@REALM", make_request())

    assert step_names(calls) == ["auth.check_acl"]


@pytest.mark.asyncio
async def test_create_cluster_stops_when_repo_creation_fails(manager, git_server, calls):
    git_server.fail_status = 409

    with pytest.raises(RepoCreationError) as excinfo:
        await manager.create_cluster("admin@REALM", make_request())

    assert excinfo.value.status_code == 409
    assert step_names(calls) == ["auth.check_acl", "git_server.create_repo"]


@pytest.mark.asyncio
async def test_push_failure_leaves_registration_in_place(manager, configdb, checkout_cls):
    async def failing_push(self):
        raise RuntimeError("push rejected")

    checkout_cls.push = failing_push

    with pytest.raises(RuntimeError):
        await manager.create_cluster("admin@REALM", make_request())

    # The cluster object and both records stay behind for manual cleanup
    assert len(configdb.objects) == 1
    assert len(configdb.configs) == 2
    assert checkout_cls.instances[0].dispose_count == 1


@pytest.mark.asyncio
async def test_status_ready_with_no_sources(manager, configdb, checkout_cls):
    cluster = await register_cluster(configdb, checkout_cls, {})

    assert await manager.cluster_status("admin@REALM", cluster) is True


@pytest.mark.asyncio
async def test_status_ready_when_source_needs_no_secret(manager, configdb, checkout_cls):
    cluster = await register_cluster(configdb, checkout_cls, repo_files(git_repository("org.public")))

    assert await manager.cluster_status("admin@REALM", cluster) is True


@pytest.mark.asyncio
async def test_status_not_ready_when_sealed_secret_missing(manager, configdb, checkout_cls):
    cluster = await register_cluster(
        configdb, checkout_cls, repo_files(git_repository("org.repoA", secret_ref="op1flux-secrets"))
    )

    assert await manager.cluster_status("admin@REALM", cluster) is False


@pytest.mark.asyncio
async def test_status_accepts_bearer_token(manager, configdb, checkout_cls):
    files = repo_files(
        git_repository("org.repoA", secret_ref="creds"),
        sealed_secret("creds", {"bearerToken": "x"}),
    )
    cluster = await register_cluster(configdb, checkout_cls, files)

    assert await manager.cluster_status("admin@REALM", cluster) is True


@pytest.mark.asyncio
async def test_status_accepts_username_and_password(manager, configdb, checkout_cls):
    files = repo_files(
        git_repository("org.repoA", secret_ref="creds"),
        sealed_secret("creds", {"username": "u", "password": "p"}),
    )
    cluster = await register_cluster(configdb, checkout_cls, files)

    assert await manager.cluster_status("admin@REALM", cluster) is True


@pytest.mark.asyncio
async def test_status_rejects_username_without_password(manager, configdb, checkout_cls):
    files = repo_files(
        git_repository("org.repoA", secret_ref="creds"),
        sealed_secret("creds", {"username": "u"}),
    )
    cluster = await register_cluster(configdb, checkout_cls, files)

    assert await manager.cluster_status("admin@REALM", cluster) is False


@pytest.mark.asyncio
async def test_status_not_ready_if_any_source_lacks_credentials(manager, configdb, checkout_cls):
    files = repo_files(
        git_repository("org.a", secret_ref="good"),
        git_repository("org.b", secret_ref="bad"),
        sealed_secret("good", {"bearerToken": "x"}),
        sealed_secret("bad", {"token": "x"}),
    )
    cluster = await register_cluster(configdb, checkout_cls, files)

    assert await manager.cluster_status("admin@REALM", cluster) is False


@pytest.mark.asyncio
async def test_status_only_looks_at_flux_namespace(manager, configdb, checkout_cls):
    files = repo_files(git_repository("elsewhere", secret_ref="missing", namespace="default"))
    cluster = await register_cluster(configdb, checkout_cls, files)

    assert await manager.cluster_status("admin@REALM", cluster) is True


@pytest.mark.asyncio
async def test_status_malformed_documents_are_not_ready(manager, configdb, checkout_cls):
    broken_source = git_repository("org.repoA")
    broken_source["spec"]["secretRef"] = "creds"
    cluster = await register_cluster(configdb, checkout_cls, repo_files(broken_source))

    assert await manager.cluster_status("admin@REALM", cluster) is False

    broken_secret = sealed_secret("creds", {})
    del broken_secret["spec"]["encryptedData"]
    other = await register_cluster(
        configdb, checkout_cls, repo_files(git_repository("org.repoA", secret_ref="creds"), broken_secret)
    )

    assert await manager.cluster_status("admin@REALM", other) is False

SOURCE_YAML = """\
apiVersion: source.toolkit.fluxcd.io/v1
kind: GitRepository
metadata:
  name: org.repoA
  namespace: flux-system
spec:
  url: https://git.example/org/repoA
  secretRef:
    name: creds
"""


def seeded_checkout_cls(files: dict[str, str]) -> type[Checkout]:
    """A real Checkout whose clone starts from the given file contents instead of running git."""

    class SeededCheckout(Checkout):
        @classmethod
        async def clone(cls, url, **kwargs):
            checkout = cls(url, **kwargs)
            for path, content in files.items():
                await checkout.write_file(path, content)
            return checkout

    return SeededCheckout


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "files",
    [
        {"flux-system/GitRepository/bad.yaml": "spec: [unclosed\n"},
        {
            "flux-system/GitRepository/org.repoA.yaml": SOURCE_YAML,
            "flux-system/SealedSecret/creds.yaml": "spec: {encryptedData: [\n",
        },
    ],
)
async def test_status_unparsable_yaml_is_not_ready(manager, configdb, checkout_cls, files):
    cluster = await register_cluster(configdb, checkout_cls, {})
    manager.checkout_cls = seeded_checkout_cls(files)

    assert await manager.cluster_status("admin@REALM", cluster) is False


@pytest.mark.asyncio
async def test_status_parses_real_manifests(manager, configdb, checkout_cls):
    cluster = await register_cluster(configdb, checkout_cls, {})
    manager.checkout_cls = seeded_checkout_cls(
        {
            "flux-system/GitRepository/org.repoA.yaml": SOURCE_YAML,
            "flux-system/SealedSecret/creds.yaml": "kind: SealedSecret\nspec:\n  encryptedData:\n    bearerToken: x\n",
        }
    )

    assert await manager.cluster_status("admin@REALM", cluster) is True


@pytest.mark.asyncio
async def test_status_cluster_record_without_repo_url(manager, configdb, calls):
    cluster = await configdb.create_object(Class.EDGE_CLUSTER)
    await configdb.put_config(App.CLUSTER, cluster, {"namespace": "fplus-edge"})

    with pytest.raises(UpstreamServiceError) as excinfo:
        await manager.cluster_status("admin@REALM", cluster)

    assert excinfo.value.service == Service.CONFIGDB
    assert "checkout.clone" not in step_names(calls)


@pytest.mark.asyncio
async def test_status_after_provisioning_waits_for_password(manager, checkout_cls, configdb):
    created = await manager.create_cluster("admin@REALM", make_request())

    assert await manager.cluster_status("admin@REALM", created.uuid) is False

    status = await manager.seal_secret(
        "admin@REALM", created.uuid, "flux-system", "op1flux-secrets", "password", b"hunter2"
    )
    assert status == 204
    assert await manager.cluster_status("admin@REALM", created.uuid) is True


@pytest.mark.asyncio
async def test_status_is_idempotent_and_read_only(manager, configdb, checkout_cls, calls):
    files = repo_files(git_repository("org.repoA", secret_ref="creds"), sealed_secret("creds", {"bearerToken": "x"}))
    cluster = await register_cluster(configdb, checkout_cls, files)

    first = await manager.cluster_status("admin@REALM", cluster)
    second = await manager.cluster_status("admin@REALM", cluster)

    assert first == second
    steps = step_names(calls)
    assert "checkout.commit" not in steps
    assert "checkout.push" not in steps
    assert "checkout.write_manifest" not in steps


@pytest.mark.asyncio
async def test_status_checks_exact_permission(manager, configdb, checkout_cls, calls):
    cluster = await register_cluster(configdb, checkout_cls, {})
    calls.clear()

    await manager.cluster_status("admin@REALM", cluster)

    assert calls[0] == ("auth.check_acl", "admin@REALM", Perm.CLUSTERS, cluster, True)


@pytest.mark.asyncio
async def test_status_unknown_cluster_never_clones(manager, calls):
    with pytest.raises(ClusterNotFound):
        await manager.cluster_status("admin@REALM", "4b3e0a3c-2f6c-4c57-9d0a-5a6b1c2d3e4f")

    assert "checkout.clone" not in step_names(calls)


@pytest.mark.asyncio
async def test_status_forbidden_has_no_side_effects(manager, auth, configdb, checkout_cls, calls):
    cluster = await register_cluster(configdb, checkout_cls, {})
    calls.clear()
    auth.allowed = False

    with pytest.raises(Forbidden):
        await manager.cluster_status("nobody@REALM", cluster)

    assert step_names(calls) == ["auth.check_acl"]


@pytest.mark.asyncio
async def test_status_disposes_checkout_when_scan_fails(manager, configdb, checkout_cls):
    files = repo_files(git_repository("org.repoA", secret_ref="creds"))
    cluster = await register_cluster(configdb, checkout_cls, files)

    original_clone = checkout_cls.clone.__func__

    async def clone_failing_read(cls, url):
        checkout = await original_clone(cls, url)
        checkout.fail_on_read = "flux-system/GitRepository/org.repoA.yaml"
        return checkout

    checkout_cls.clone = classmethod(clone_failing_read)

    with pytest.raises(OSError):
        await manager.cluster_status("admin@REALM", cluster)

    (checkout,) = checkout_cls.instances
    assert checkout.dispose_count == 1


@pytest.mark.asyncio
async def test_secret_operations_check_secret_permission(manager, auth, calls):
    auth.allowed = False

    with pytest.raises(Forbidden):
        await manager.seal_secret("nobody@REALM", "c1", "default", "s", "k", b"v")
    with pytest.raises(Forbidden):
        await manager.delete_sealed_secret("nobody@REALM", "c1", "default", "s", "k")

    assert calls == [
        ("auth.check_acl", "nobody@REALM", Perm.SECRETS, "c1", True),
        ("auth.check_acl", "nobody@REALM", Perm.SECRETS, "c1", True),
    ]
