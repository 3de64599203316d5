"""Cluster store factory and initialization."""

from __future__ import annotations

import os
from typing import Optional

from ..config import OperatorConfig, load_config
from .base import ClusterStore, instance_kind
from .inmemory import InMemoryClusterStore

_store_instance: ClusterStore | None = None


def get_store(
    backend: Optional[str] = None, config: Optional[OperatorConfig] = None
) -> ClusterStore:
    """Factory function to get the configured cluster store.

    The in-memory store is shared process wide so the CLI and the controller
    see the same objects when no cluster is configured.
    """

    global _store_instance
    if _store_instance is not None and backend is None and config is None:
        return _store_instance

    config = config or load_config()
    backend = (
        backend
        or os.getenv("TESTFLOW_STORE")
        or config.store.backend
    ).lower()

    if backend == "inmemory":
        _store_instance = InMemoryClusterStore()
    elif backend == "kubernetes":
        from .kubernetes import KubernetesClusterStore

        kube_conf = config.store.kubernetes
        _store_instance = KubernetesClusterStore(
            kubeconfig=kube_conf.kubeconfig,
            context=kube_conf.context,
            in_cluster=kube_conf.in_cluster,
        )
    else:
        raise ValueError(f"Unsupported store backend: {backend}")
    return _store_instance


__all__ = ["ClusterStore", "InMemoryClusterStore", "get_store", "instance_kind"]
