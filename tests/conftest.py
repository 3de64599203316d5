"""Shared fixtures: an in-memory cluster seeded with the inputs test flavors need."""

import pytest

import testflow.store as store_module
from testflow.config import LockConfig, OperatorConfig
from testflow.contracts import ConfigRecord, ObjectMeta
from testflow.flavors.ansibletest import AnsibleTest
from testflow.flavors.tempest import Tempest
from testflow.flavors.tobiko import Tobiko
from testflow.store.inmemory import InMemoryClusterStore

NAMESPACE = "openstack"
IMAGE = "quay.io/podified-antelope-centos9/openstack-tempest-all:current-podified"


@pytest.fixture
def config():
    return OperatorConfig(lock=LockConfig(release_retries=3, release_backoff=0))


@pytest.fixture
def store():
    return InMemoryClusterStore()


@pytest.fixture(autouse=True)
def _isolated_environment(tmp_path, monkeypatch):
    monkeypatch.setenv("TESTFLOW_CONFIG", str(tmp_path / "absent.yaml"))
    monkeypatch.delenv("TESTFLOW_STORE", raising=False)
    monkeypatch.delenv("TESTFLOW_NAMESPACE", raising=False)
    monkeypatch.setattr(store_module, "_store_instance", None)


@pytest.fixture
def seed_inputs():
    """Create the config map and secrets every flavor validates."""

    async def seed(store, namespace=NAMESPACE):
        await store.apply_config_record(
            ConfigRecord(
                metadata=ObjectMeta(name="openstack-config", namespace=namespace),
                data={"clouds.yaml": "clouds: {default: {}}"},
            )
        )
        await store.add_secret(namespace, "openstack-config-secret")
        await store.add_secret(namespace, "dataplane-ansible-ssh-private-key-secret")

    return seed


@pytest.fixture
def make_tempest():
    def make(name="smoke", namespace=NAMESPACE, **spec):
        spec.setdefault("container_image", IMAGE)
        return Tempest(metadata=ObjectMeta(name=name, namespace=namespace), spec=spec)

    return make


@pytest.fixture
def make_tobiko():
    def make(name="tobiko", namespace=NAMESPACE, **spec):
        spec.setdefault("container_image", IMAGE)
        return Tobiko(metadata=ObjectMeta(name=name, namespace=namespace), spec=spec)

    return make


@pytest.fixture
def make_ansibletest():
    def make(name="playbook", namespace=NAMESPACE, **spec):
        spec.setdefault("container_image", IMAGE)
        return AnsibleTest(metadata=ObjectMeta(name=name, namespace=namespace), spec=spec)

    return make
