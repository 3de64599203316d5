"""Create the per-step records an instance owns: storage, configuration and the artifact."""

from __future__ import annotations

import logging
from typing import Dict, Mapping, Optional

import yaml

from .config import StorageConfig
from .constants import CLOUDS_CONFIG_RECORD, DEFAULT_CLOUDS_PASSWORD
from .contracts import ConfigRecord, ObjectMeta, StepArtifact, StorageClaim, WorkloadInstance
from .errors import AlreadyExistsError, ConfigGenerationError, ConflictError, NotFoundError
from .store.base import ClusterStore

logger = logging.getLogger(__name__)


async def ensure_storage_claim(
    store: ClusterStore,
    instance: WorkloadInstance,
    name: str,
    labels: Dict[str, str],
    storage_class: Optional[str],
    config: Optional[StorageConfig] = None,
) -> bool:
    """Create the log storage claim unless it exists.

    Returns False when the platform reports a concurrent create or a
    conflicting update; the caller should retry later.
    """
    config = config or StorageConfig()
    try:
        await store.get_storage_claim(instance.namespace, name)
        return True
    except NotFoundError:
        pass

    claim = StorageClaim(
        metadata=ObjectMeta(
            name=name,
            namespace=instance.namespace,
            labels=dict(labels),
            owner_references=[instance.owner_reference()],
        ),
        storage_class=storage_class or None,
        size=config.size,
        access_modes=[config.access_mode],
    )
    try:
        await store.create_storage_claim(claim)
    except (AlreadyExistsError, ConflictError) as exc:
        logger.info(f"Storage claim {name} not ready yet: {exc}")
        return False
    logger.info(f"Created storage claim {name} for {instance.name}")
    return True


async def ensure_config_records(
    store: ClusterStore,
    instance: WorkloadInstance,
    records: Mapping[str, Mapping[str, str]],
    labels: Dict[str, str],
) -> None:
    """Create or update one configuration record per entry of ``records``."""
    for name, data in records.items():
        record = ConfigRecord(
            metadata=ObjectMeta(
                name=name,
                namespace=instance.namespace,
                labels=dict(labels),
                owner_references=[instance.owner_reference()],
            ),
            data=dict(data),
        )
        await store.apply_config_record(record)
        logger.debug(f"Applied config record {name}")


async def ensure_clouds_config(
    store: ClusterStore,
    instance: WorkloadInstance,
    source: str,
    labels: Dict[str, str],
) -> None:
    """Copy ``clouds.yaml`` from ``source`` into the shared clouds record.

    The default cloud gets a placeholder password when it has none. An
    existing clouds record is kept as is.
    """
    try:
        await store.get_config_record(instance.namespace, CLOUDS_CONFIG_RECORD)
        return
    except NotFoundError:
        pass

    record = await store.get_config_record(instance.namespace, source)
    try:
        clouds = yaml.safe_load(record.data.get("clouds.yaml", "")) or {}
        auth = clouds["clouds"]["default"].setdefault("auth", {})
    except (yaml.YAMLError, KeyError, TypeError, AttributeError) as exc:
        raise ConfigGenerationError(f"unusable clouds.yaml in {source}: {exc}") from exc
    if not isinstance(auth.get("password"), str):
        auth["password"] = DEFAULT_CLOUDS_PASSWORD

    await ensure_config_records(
        store,
        instance,
        {CLOUDS_CONFIG_RECORD: {"clouds.yaml": yaml.safe_dump(clouds, default_flow_style=False)}},
        labels,
    )
    logger.info(f"Created {CLOUDS_CONFIG_RECORD} from {source}")


async def create_artifact(
    store: ClusterStore, instance: WorkloadInstance, artifact: StepArtifact
) -> bool:
    """Create ``artifact`` owned by ``instance``.

    Returns False if an artifact with the same name already exists.
    """
    if not artifact.metadata.is_owned_by(instance.uid):
        artifact.metadata.owner_references.append(instance.owner_reference())
    try:
        await store.create_artifact(artifact)
    except AlreadyExistsError:
        logger.debug(f"{artifact.kind} {artifact.name} already exists")
        return False
    logger.info(f"Created {artifact.kind} {artifact.name}")
    return True
