"""In-memory cluster store for testing."""

from __future__ import annotations

import asyncio
import logging
import uuid
from typing import (
    AsyncIterator,
    Dict,
    Iterable,
    List,
    Optional,
    Set,
    Tuple,
    Type,
)

from ..constants import DEFAULT_LOCK_OWNER_FIELD
from ..contracts import (
    ArtifactPhase,
    ConfigRecord,
    LockRecord,
    NetworkAttachmentDefinition,
    ObjectMeta,
    ReconcileRequest,
    StepArtifact,
    StorageClaim,
    WorkloadInstance,
    utcnow,
)
from ..errors import AlreadyExistsError, NotFoundError
from .base import ClusterStore, InstanceT, instance_kind

logger = logging.getLogger(__name__)

Key = Tuple[str, str]


class _Subscriber:
    def __init__(self, kinds: Set[str], namespace: Optional[str]) -> None:
        self.kinds = kinds
        self.namespace = namespace
        self.queue: "asyncio.Queue[ReconcileRequest]" = asyncio.Queue()

    def wants(self, request: ReconcileRequest) -> bool:
        if request.kind not in self.kinds:
            return False
        return self.namespace is None or self.namespace == request.namespace


class InMemoryClusterStore(ClusterStore):
    """Process-local stand-in for the cluster API.

    Objects are stored as deep copies so callers never share state with the
    store. Creates are create-if-absent and every real change is published to
    the active watchers, mapped to the owning instance.
    """

    def __init__(self) -> None:
        self._instances: Dict[Tuple[str, str, str], WorkloadInstance] = {}
        self._artifacts: Dict[Tuple[str, str, str], StepArtifact] = {}
        self._locks: Dict[Key, LockRecord] = {}
        self._claims: Dict[Key, StorageClaim] = {}
        self._config_records: Dict[Key, ConfigRecord] = {}
        self._secrets: Set[Key] = set()
        self._network_attachments: Dict[Key, NetworkAttachmentDefinition] = {}
        self._subscribers: List[_Subscriber] = []
        self._lock = asyncio.Lock()
        self._version = 0

    # ------------------------------------------------------------------
    def _stamp(self, meta: ObjectMeta) -> None:
        self._version += 1
        if not meta.uid:
            meta.uid = str(uuid.uuid4())
        if meta.creation_timestamp is None:
            meta.creation_timestamp = utcnow()
        meta.resource_version = str(self._version)

    def _notify(self, request: ReconcileRequest) -> None:
        for sub in self._subscribers:
            if sub.wants(request):
                sub.queue.put_nowait(request)

    def _notify_owners(self, meta: ObjectMeta) -> None:
        for ref in meta.owner_references:
            self._notify(
                ReconcileRequest(kind=ref.kind, namespace=meta.namespace, name=ref.name)
            )

    def _collect_owned(self, uid: str) -> None:
        for store in (
            self._artifacts,
            self._locks,
            self._claims,
            self._config_records,
        ):
            for key in [k for k, obj in store.items() if obj.metadata.is_owned_by(uid)]:
                del store[key]

    # workload instances -------------------------------------------------
    async def add_instance(self, instance: WorkloadInstance) -> WorkloadInstance:
        async with self._lock:
            key = (instance.kind, instance.namespace, instance.name)
            if key in self._instances:
                raise AlreadyExistsError(*key)
            stored = instance.model_copy(deep=True)
            self._stamp(stored.metadata)
            if stored.metadata.generation is None:
                stored.metadata.generation = 1
            self._instances[key] = stored
            self._notify(ReconcileRequest(kind=key[0], namespace=key[1], name=key[2]))
            return stored.model_copy(deep=True)

    async def delete_instance(self, kind: str, namespace: str, name: str) -> None:
        """Request deletion; the record goes away once its finalizers are gone."""
        async with self._lock:
            key = (kind, namespace, name)
            stored = self._instances.get(key)
            if stored is None:
                raise NotFoundError(*key)
            if stored.metadata.finalizers:
                if stored.metadata.deletion_timestamp is None:
                    stored.metadata.deletion_timestamp = utcnow()
                    self._stamp(stored.metadata)
            else:
                del self._instances[key]
                self._collect_owned(stored.uid)
            self._notify(ReconcileRequest(kind=kind, namespace=namespace, name=name))

    async def get_instance(
        self, model: Type[InstanceT], namespace: str, name: str
    ) -> InstanceT:
        kind = instance_kind(model)
        async with self._lock:
            stored = self._instances.get((kind, namespace, name))
            if stored is None:
                raise NotFoundError(kind, namespace, name)
            if isinstance(stored, model):
                return stored.model_copy(deep=True)
            return model.model_validate(stored.model_dump())

    async def list_instances(
        self, model: Type[InstanceT], namespace: Optional[str] = None
    ) -> List[InstanceT]:
        kind = instance_kind(model)
        async with self._lock:
            return [
                obj.model_copy(deep=True)
                for (k, ns, _), obj in self._instances.items()
                if k == kind and (namespace is None or ns == namespace)
            ]

    async def patch_instance(self, instance: WorkloadInstance) -> None:
        key = (instance.kind, instance.namespace, instance.name)
        async with self._lock:
            stored = self._instances.get(key)
            if stored is None:
                raise NotFoundError(*key)
            finalizers = list(instance.metadata.finalizers)
            status = instance.status.model_copy(deep=True)
            changed = (
                stored.metadata.finalizers != finalizers
                or stored.status.model_dump() != status.model_dump()
            )
            if not changed:
                return
            stored.metadata.finalizers = finalizers
            stored.status = status
            self._stamp(stored.metadata)
            if stored.is_deleting and not finalizers:
                del self._instances[key]
                self._collect_owned(stored.uid)
            self._notify(ReconcileRequest(kind=key[0], namespace=key[1], name=key[2]))

    # step artifacts -----------------------------------------------------
    async def list_artifacts(
        self, namespace: str, labels: Dict[str, str], kind: str = "Pod"
    ) -> List[StepArtifact]:
        async with self._lock:
            return [
                obj.model_copy(deep=True)
                for (k, ns, _), obj in self._artifacts.items()
                if k == kind
                and ns == namespace
                and all(obj.metadata.labels.get(lk) == lv for lk, lv in labels.items())
            ]

    async def get_artifact(self, kind: str, namespace: str, name: str) -> StepArtifact:
        async with self._lock:
            stored = self._artifacts.get((kind, namespace, name))
            if stored is None:
                raise NotFoundError(kind, namespace, name)
            return stored.model_copy(deep=True)

    async def create_artifact(self, artifact: StepArtifact) -> StepArtifact:
        key = (artifact.kind, artifact.metadata.namespace, artifact.name)
        async with self._lock:
            if key in self._artifacts:
                raise AlreadyExistsError(*key)
            stored = artifact.model_copy(deep=True)
            self._stamp(stored.metadata)
            self._artifacts[key] = stored
            self._notify_owners(stored.metadata)
            return stored.model_copy(deep=True)

    async def set_artifact_phase(
        self,
        namespace: str,
        name: str,
        phase: ArtifactPhase,
        kind: str = "Pod",
        annotations: Optional[Dict[str, str]] = None,
    ) -> None:
        """Simulate the platform moving an artifact along its lifecycle."""
        async with self._lock:
            stored = self._artifacts.get((kind, namespace, name))
            if stored is None:
                raise NotFoundError(kind, namespace, name)
            stored.phase = phase
            if annotations:
                stored.metadata.annotations.update(annotations)
            self._stamp(stored.metadata)
            self._notify_owners(stored.metadata)

    # execution lock -----------------------------------------------------
    async def get_lock(
        self, namespace: str, name: str, owner_field: str = DEFAULT_LOCK_OWNER_FIELD
    ) -> LockRecord:
        async with self._lock:
            stored = self._locks.get((namespace, name))
            if stored is None:
                raise NotFoundError("ConfigMap", namespace, name)
            manifest = stored.to_manifest()
            return LockRecord.from_manifest(manifest, owner_field=owner_field)

    async def create_lock(self, record: LockRecord) -> LockRecord:
        key = (record.metadata.namespace, record.metadata.name)
        async with self._lock:
            if key in self._locks:
                raise AlreadyExistsError("ConfigMap", *key)
            stored = record.model_copy(deep=True)
            self._stamp(stored.metadata)
            self._locks[key] = stored
            return stored.model_copy(deep=True)

    async def put_lock(self, record: LockRecord) -> None:
        """Write a lock record unconditionally, malformed ones included."""
        async with self._lock:
            stored = record.model_copy(deep=True)
            self._stamp(stored.metadata)
            self._locks[(stored.metadata.namespace, stored.metadata.name)] = stored

    async def delete_lock(self, namespace: str, name: str) -> None:
        async with self._lock:
            if self._locks.pop((namespace, name), None) is None:
                raise NotFoundError("ConfigMap", namespace, name)

    # supporting records -------------------------------------------------
    async def get_storage_claim(self, namespace: str, name: str) -> StorageClaim:
        async with self._lock:
            stored = self._claims.get((namespace, name))
            if stored is None:
                raise NotFoundError("PersistentVolumeClaim", namespace, name)
            return stored.model_copy(deep=True)

    async def create_storage_claim(self, claim: StorageClaim) -> StorageClaim:
        key = (claim.metadata.namespace, claim.metadata.name)
        async with self._lock:
            if key in self._claims:
                raise AlreadyExistsError("PersistentVolumeClaim", *key)
            stored = claim.model_copy(deep=True)
            stored.phase = stored.phase or "Bound"
            self._stamp(stored.metadata)
            self._claims[key] = stored
            return stored.model_copy(deep=True)

    async def get_config_record(self, namespace: str, name: str) -> ConfigRecord:
        async with self._lock:
            stored = self._config_records.get((namespace, name))
            if stored is None:
                raise NotFoundError("ConfigMap", namespace, name)
            return stored.model_copy(deep=True)

    async def apply_config_record(self, record: ConfigRecord) -> ConfigRecord:
        key = (record.metadata.namespace, record.metadata.name)
        async with self._lock:
            stored = self._config_records.get(key)
            if stored is not None and stored.data == record.data:
                return stored.model_copy(deep=True)
            if stored is None:
                stored = record.model_copy(deep=True)
                self._config_records[key] = stored
            else:
                stored.data = dict(record.data)
            self._stamp(stored.metadata)
            return stored.model_copy(deep=True)

    async def add_secret(self, namespace: str, name: str) -> None:
        async with self._lock:
            self._secrets.add((namespace, name))

    async def secret_exists(self, namespace: str, name: str) -> bool:
        async with self._lock:
            return (namespace, name) in self._secrets

    async def add_network_attachment(
        self, namespace: str, name: str, config: str = ""
    ) -> None:
        async with self._lock:
            meta = ObjectMeta(name=name, namespace=namespace)
            self._stamp(meta)
            self._network_attachments[(namespace, name)] = NetworkAttachmentDefinition(
                metadata=meta, config=config
            )

    async def get_network_attachment(
        self, namespace: str, name: str
    ) -> NetworkAttachmentDefinition:
        async with self._lock:
            stored = self._network_attachments.get((namespace, name))
            if stored is None:
                raise NotFoundError("NetworkAttachmentDefinition", namespace, name)
            return stored.model_copy(deep=True)

    # events -------------------------------------------------------------
    async def watch(
        self,
        models: Iterable[Type[WorkloadInstance]],
        namespace: Optional[str] = None,
        lifespan: Optional[float] = None,
    ) -> AsyncIterator[ReconcileRequest]:
        """Yield change events until ``lifespan`` expires.

        Instances that already exist are replayed first, like an initial list.
        """
        sub = _Subscriber({instance_kind(m) for m in models}, namespace)
        async with self._lock:
            self._subscribers.append(sub)
            for kind, ns, name in self._instances:
                request = ReconcileRequest(kind=kind, namespace=ns, name=name)
                if sub.wants(request):
                    sub.queue.put_nowait(request)

        loop = asyncio.get_running_loop()
        deadline = loop.time() + lifespan if lifespan else None
        try:
            while True:
                timeout = None
                if deadline is not None:
                    timeout = deadline - loop.time()
                    if timeout <= 0:
                        break
                try:
                    request = await asyncio.wait_for(sub.queue.get(), timeout)
                except asyncio.TimeoutError:
                    break
                yield request
        finally:
            self._subscribers.remove(sub)
