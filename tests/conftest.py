import pytest

from edge_deploy.core.config import DeployDefaults
from edge_deploy.handlers.sealed_secrets import SealedSecretHandler
from edge_deploy.manager.cluster_manager import ClusterManager
from tests.fakes import FakeAuth, FakeConfigDB, FakeGitServer, FakeKubeseal, make_checkout_cls


@pytest.fixture
def calls() -> list:
    return []


@pytest.fixture
def auth(calls):
    return FakeAuth(calls)


@pytest.fixture
def configdb(calls):
    return FakeConfigDB(calls)


@pytest.fixture
def git_server(calls):
    return FakeGitServer(calls)


@pytest.fixture
def kubeseal(calls):
    return FakeKubeseal(calls)


@pytest.fixture
def checkout_cls(calls):
    return make_checkout_cls(calls)


@pytest.fixture
def defaults() -> DeployDefaults:
    return DeployDefaults(repo_group="edge")


@pytest.fixture
def sealer(configdb, kubeseal, checkout_cls):
    return SealedSecretHandler(configdb, kubeseal, checkout_cls=checkout_cls)


@pytest.fixture
def manager(auth, configdb, git_server, sealer, defaults, checkout_cls):
    return ClusterManager(
        auth=auth,
        configdb=configdb,
        git_server=git_server,
        sealer=sealer,
        defaults=defaults,
        checkout_cls=checkout_cls,
    )
