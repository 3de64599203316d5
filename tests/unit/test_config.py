"""Tests for configuration loading."""

import pytest
from pydantic import ValidationError

from testflow.config import load_config
from testflow.store import get_store
from testflow.store.inmemory import InMemoryClusterStore


def test_defaults_without_file():
    config = load_config()
    assert config.store.backend == "inmemory"
    assert config.lock.name == "test-operator-lock"
    assert config.lock.release_retries == 10
    assert config.requeue_after == 60.0
    assert config.network_requeue_after == 10.0
    assert config.namespace is None


def test_load_config_from_env(tmp_path, monkeypatch):
    config_path = tmp_path / "config.yaml"
    config_path.write_text(
        """
lock:
  name: tempest-lock
  release_retries: 4
controller:
  workers: 6
requeue_after: 30
operator_name: my-operator
"""
    )
    monkeypatch.setenv("TESTFLOW_CONFIG", str(config_path))

    config = load_config()
    assert config.lock.name == "tempest-lock"
    assert config.lock.release_retries == 4
    assert config.lock.owner_field == "owner"
    assert config.controller.workers == 6
    assert config.requeue_after == 30.0
    assert config.operator_name == "my-operator"


def test_explicit_path_and_env_overrides(tmp_path, monkeypatch):
    config_path = tmp_path / "testflow.yaml"
    config_path.write_text("namespace: first\nstore:\n  backend: inmemory\n")
    monkeypatch.setenv("TESTFLOW_NAMESPACE", "second")
    monkeypatch.setenv("TESTFLOW_STORE", "KUBERNETES")

    config = load_config(str(config_path))
    assert config.namespace == "second"
    assert config.store.backend == "kubernetes"


def test_get_store_defaults_to_shared_inmemory():
    store = get_store()
    assert isinstance(store, InMemoryClusterStore)
    assert get_store() is store


def test_get_store_rejects_unknown_backend():
    with pytest.raises(ValueError):
        get_store(backend="etcd")


def test_get_store_uses_kubernetes_config(tmp_path, monkeypatch):
    pytest.importorskip("kubernetes_asyncio")
    from testflow.store.kubernetes import KubernetesClusterStore

    config_path = tmp_path / "config.yaml"
    config_path.write_text(
        """
store:
  backend: kubernetes
  kubernetes:
    kubeconfig: /tmp/kubeconfig
    context: ci
"""
    )
    monkeypatch.setenv("TESTFLOW_CONFIG", str(config_path))

    store = get_store(config=load_config())
    assert isinstance(store, KubernetesClusterStore)
    assert store.kubeconfig == "/tmp/kubeconfig"
    assert store.context == "ci"


def test_lock_release_needs_at_least_one_check(tmp_path, monkeypatch):
    config_path = tmp_path / "config.yaml"
    config_path.write_text("lock:\n  release_retries: 0\n")
    monkeypatch.setenv("TESTFLOW_CONFIG", str(config_path))

    with pytest.raises(ValidationError):
        load_config()
