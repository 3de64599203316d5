from __future__ import annotations

import os
from typing import Literal, Optional

import yaml
from pydantic import BaseModel, Field

from .constants import (
    DEFAULT_FINALIZER_DOMAIN,
    DEFAULT_LOCK_NAME,
    DEFAULT_LOCK_OWNER_FIELD,
    DEFAULT_LOCK_RELEASE_BACKOFF,
    DEFAULT_LOCK_RELEASE_RETRIES,
    DEFAULT_NETWORK_REQUEUE_AFTER,
    DEFAULT_OPERATOR_NAME,
    DEFAULT_REQUEUE_AFTER,
    DEFAULT_STORAGE_ACCESS_MODE,
    DEFAULT_STORAGE_SIZE,
)


class KubernetesConfig(BaseModel):
    """Connection settings for the Kubernetes store."""

    kubeconfig: Optional[str] = None
    context: Optional[str] = None
    in_cluster: bool = False


class StoreConfig(BaseModel):
    """Cluster store settings."""

    backend: Literal["inmemory", "kubernetes"] = "inmemory"
    kubernetes: KubernetesConfig = KubernetesConfig()


class LockConfig(BaseModel):
    """Execution lock record settings."""

    name: str = DEFAULT_LOCK_NAME
    owner_field: str = DEFAULT_LOCK_OWNER_FIELD
    release_retries: int = Field(default=DEFAULT_LOCK_RELEASE_RETRIES, ge=1)
    release_backoff: float = DEFAULT_LOCK_RELEASE_BACKOFF


class ControllerConfig(BaseModel):
    workers: int = 2
    max_backoff: float = 300.0


class StorageConfig(BaseModel):
    size: str = DEFAULT_STORAGE_SIZE
    access_mode: str = DEFAULT_STORAGE_ACCESS_MODE


class OperatorConfig(BaseModel):
    """Top-level configuration model."""

    store: StoreConfig = StoreConfig()
    lock: LockConfig = LockConfig()
    controller: ControllerConfig = ControllerConfig()
    storage: StorageConfig = StorageConfig()
    namespace: Optional[str] = None
    requeue_after: float = DEFAULT_REQUEUE_AFTER
    network_requeue_after: float = DEFAULT_NETWORK_REQUEUE_AFTER
    operator_name: str = DEFAULT_OPERATOR_NAME
    finalizer_domain: str = DEFAULT_FINALIZER_DOMAIN
    log_level: str = "INFO"


def load_config(path: Optional[str] = None) -> OperatorConfig:
    """Load configuration from YAML file.

    Args:
        path: Optional path to config file. Falls back to TESTFLOW_CONFIG env
            variable or 'testflow.yaml' in the current directory.
    """

    config_path = path or os.getenv("TESTFLOW_CONFIG", "testflow.yaml")
    if os.path.exists(config_path):
        with open(config_path) as f:
            data = yaml.safe_load(f) or {}
        config = OperatorConfig(**data)
    else:
        config = OperatorConfig()

    env_store = os.getenv("TESTFLOW_STORE")
    if env_store:
        config.store.backend = env_store.lower()
    env_namespace = os.getenv("TESTFLOW_NAMESPACE")
    if env_namespace:
        config.namespace = env_namespace
    return config
