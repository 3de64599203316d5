"""Base cluster store interface."""

from __future__ import annotations

import abc
from typing import AsyncIterator, Dict, Iterable, List, Optional, Type, TypeVar

from ..constants import DEFAULT_LOCK_OWNER_FIELD
from ..contracts import (
    ConfigRecord,
    LockRecord,
    NetworkAttachmentDefinition,
    ReconcileRequest,
    StepArtifact,
    StorageClaim,
    WorkloadInstance,
)

InstanceT = TypeVar("InstanceT", bound=WorkloadInstance)


def instance_kind(model: Type[WorkloadInstance]) -> str:
    return model.model_fields["kind"].default


class ClusterStore(metaclass=abc.ABCMeta):
    """Abstract access to the cluster objects a reconciliation pass reads and writes.

    Every lookup raises :class:`~testflow.errors.NotFoundError` for a missing
    object and every create raises
    :class:`~testflow.errors.AlreadyExistsError` when the name is taken.
    """

    async def connect(self) -> None:
        """Open connection to the cluster (no-op by default)."""
        pass

    async def disconnect(self) -> None:
        """Close connection to the cluster (no-op by default)."""
        pass

    # workload instances -------------------------------------------------
    @abc.abstractmethod
    async def get_instance(
        self, model: Type[InstanceT], namespace: str, name: str
    ) -> InstanceT:
        raise NotImplementedError

    @abc.abstractmethod
    async def list_instances(
        self, model: Type[InstanceT], namespace: Optional[str] = None
    ) -> List[InstanceT]:
        raise NotImplementedError

    @abc.abstractmethod
    async def patch_instance(self, instance: WorkloadInstance) -> None:
        """Persist finalizers and status; ``spec`` is never written."""
        raise NotImplementedError

    # step artifacts -----------------------------------------------------
    @abc.abstractmethod
    async def list_artifacts(
        self, namespace: str, labels: Dict[str, str], kind: str = "Pod"
    ) -> List[StepArtifact]:
        raise NotImplementedError

    @abc.abstractmethod
    async def get_artifact(self, kind: str, namespace: str, name: str) -> StepArtifact:
        raise NotImplementedError

    @abc.abstractmethod
    async def create_artifact(self, artifact: StepArtifact) -> StepArtifact:
        raise NotImplementedError

    # execution lock -----------------------------------------------------
    @abc.abstractmethod
    async def get_lock(
        self, namespace: str, name: str, owner_field: str = DEFAULT_LOCK_OWNER_FIELD
    ) -> LockRecord:
        raise NotImplementedError

    @abc.abstractmethod
    async def create_lock(self, record: LockRecord) -> LockRecord:
        raise NotImplementedError

    @abc.abstractmethod
    async def delete_lock(self, namespace: str, name: str) -> None:
        raise NotImplementedError

    # supporting records -------------------------------------------------
    @abc.abstractmethod
    async def get_storage_claim(self, namespace: str, name: str) -> StorageClaim:
        raise NotImplementedError

    @abc.abstractmethod
    async def create_storage_claim(self, claim: StorageClaim) -> StorageClaim:
        raise NotImplementedError

    @abc.abstractmethod
    async def get_config_record(self, namespace: str, name: str) -> ConfigRecord:
        raise NotImplementedError

    @abc.abstractmethod
    async def apply_config_record(self, record: ConfigRecord) -> ConfigRecord:
        """Create the record or replace its data."""
        raise NotImplementedError

    @abc.abstractmethod
    async def secret_exists(self, namespace: str, name: str) -> bool:
        raise NotImplementedError

    @abc.abstractmethod
    async def get_network_attachment(
        self, namespace: str, name: str
    ) -> NetworkAttachmentDefinition:
        raise NotImplementedError

    # events -------------------------------------------------------------
    @abc.abstractmethod
    async def watch(
        self,
        models: Iterable[Type[WorkloadInstance]],
        namespace: Optional[str] = None,
        lifespan: Optional[float] = None,
    ) -> AsyncIterator[ReconcileRequest]:
        """Yield a request whenever an instance or an object it owns changes.

        Args:
            models: Instance models to watch.
            namespace: Restrict events to one namespace; all when None.
            lifespan: Maximum time in seconds to keep watching. If None, runs indefinitely.
        """
        raise NotImplementedError
