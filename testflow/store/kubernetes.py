"""Kubernetes-backed cluster store."""

from __future__ import annotations

import asyncio
import logging
from typing import (
    Any,
    AsyncIterator,
    Awaitable,
    Callable,
    Dict,
    Iterable,
    List,
    Optional,
    Type,
)

try:
    from kubernetes_asyncio import client, watch
    from kubernetes_asyncio import config as kube_config
    from kubernetes_asyncio.client.rest import ApiException
except ImportError:
    client = None
    watch = None
    kube_config = None
    ApiException = None

from ..constants import DEFAULT_LOCK_OWNER_FIELD
from ..contracts import (
    ConfigRecord,
    LockRecord,
    NetworkAttachmentDefinition,
    ObjectMeta,
    ReconcileRequest,
    StepArtifact,
    StorageClaim,
    WorkloadInstance,
)
from ..errors import AlreadyExistsError, ConflictError, NotFoundError
from .base import ClusterStore, InstanceT, instance_kind

logger = logging.getLogger(__name__)

NAD_GROUP = "k8s.cni.cncf.io"
NAD_VERSION = "v1"
NAD_PLURAL = "network-attachment-definitions"
MERGE_PATCH = "application/merge-patch+json"


def _translate(exc: "ApiException", kind: str, namespace: str, name: str) -> Exception:
    if exc.status == 404:
        return NotFoundError(kind, namespace, name)
    if exc.status == 409:
        return AlreadyExistsError(kind, namespace, name)
    return exc


def _selector(labels: Dict[str, str]) -> str:
    return ",".join(f"{k}={v}" for k, v in sorted(labels.items()))


class KubernetesClusterStore(ClusterStore):
    """Cluster store talking to the Kubernetes API through kubernetes_asyncio."""

    def __init__(
        self,
        kubeconfig: Optional[str] = None,
        context: Optional[str] = None,
        in_cluster: bool = False,
    ) -> None:
        if client is None:
            raise ImportError(
                "kubernetes_asyncio package is required for KubernetesClusterStore"
            )

        self.kubeconfig = kubeconfig
        self.context = context
        self.in_cluster = in_cluster
        self._api: Optional[Any] = None
        self._core: Optional[Any] = None
        self._batch: Optional[Any] = None
        self._custom: Optional[Any] = None

    async def connect(self) -> None:
        """Load credentials and build the API clients."""
        if self.in_cluster:
            kube_config.load_incluster_config()
        else:
            await kube_config.load_kube_config(
                config_file=self.kubeconfig, context=self.context
            )
        self._api = client.ApiClient()
        self._core = client.CoreV1Api(self._api)
        self._batch = client.BatchV1Api(self._api)
        self._custom = client.CustomObjectsApi(self._api)

    async def disconnect(self) -> None:
        if self._api:
            await self._api.close()
            self._api = None

    async def _ensure(self) -> None:
        if not self._api:
            await self.connect()

    def _to_dict(self, obj: Any) -> Dict[str, Any]:
        if isinstance(obj, dict):
            return obj
        return self._api.sanitize_for_serialization(obj)

    # workload instances -------------------------------------------------
    async def get_instance(
        self, model: Type[InstanceT], namespace: str, name: str
    ) -> InstanceT:
        await self._ensure()
        try:
            obj = await self._custom.get_namespaced_custom_object(
                model.group, model.version, namespace, model.plural, name
            )
        except ApiException as exc:
            raise _translate(exc, instance_kind(model), namespace, name) from exc
        return model.model_validate(obj)

    async def list_instances(
        self, model: Type[InstanceT], namespace: Optional[str] = None
    ) -> List[InstanceT]:
        await self._ensure()
        if namespace is None:
            result = await self._custom.list_cluster_custom_object(
                model.group, model.version, model.plural
            )
        else:
            result = await self._custom.list_namespaced_custom_object(
                model.group, model.version, namespace, model.plural
            )
        return [model.model_validate(item) for item in result.get("items", [])]

    async def patch_instance(self, instance: WorkloadInstance) -> None:
        await self._ensure()
        model = type(instance)
        args = (model.group, model.version, instance.namespace, model.plural, instance.name)
        try:
            await self._custom.patch_namespaced_custom_object_status(
                *args,
                {"status": instance.status.to_wire()},
                _content_type=MERGE_PATCH,
            )
            await self._custom.patch_namespaced_custom_object(
                *args,
                {"metadata": {"finalizers": instance.metadata.finalizers}},
                _content_type=MERGE_PATCH,
            )
        except ApiException as exc:
            if exc.status == 409:
                raise ConflictError(
                    f"{instance.kind} {instance.namespace}/{instance.name} was modified"
                ) from exc
            raise _translate(exc, instance.kind, instance.namespace, instance.name) from exc

    # step artifacts -----------------------------------------------------
    async def list_artifacts(
        self, namespace: str, labels: Dict[str, str], kind: str = "Pod"
    ) -> List[StepArtifact]:
        await self._ensure()
        selector = _selector(labels)
        if kind == "Job":
            result = await self._batch.list_namespaced_job(namespace, label_selector=selector)
        else:
            result = await self._core.list_namespaced_pod(namespace, label_selector=selector)
        artifacts = []
        for item in result.items:
            data = self._to_dict(item)
            data["kind"] = kind
            artifacts.append(StepArtifact.from_manifest(data))
        return artifacts

    async def get_artifact(self, kind: str, namespace: str, name: str) -> StepArtifact:
        await self._ensure()
        try:
            if kind == "Job":
                obj = await self._batch.read_namespaced_job(name, namespace)
            else:
                obj = await self._core.read_namespaced_pod(name, namespace)
        except ApiException as exc:
            raise _translate(exc, kind, namespace, name) from exc
        data = self._to_dict(obj)
        data["kind"] = kind
        return StepArtifact.from_manifest(data)

    async def create_artifact(self, artifact: StepArtifact) -> StepArtifact:
        await self._ensure()
        namespace = artifact.metadata.namespace
        try:
            if artifact.kind == "Job":
                obj = await self._batch.create_namespaced_job(
                    namespace, artifact.to_manifest()
                )
            else:
                obj = await self._core.create_namespaced_pod(
                    namespace, artifact.to_manifest()
                )
        except ApiException as exc:
            raise _translate(exc, artifact.kind, namespace, artifact.name) from exc
        data = self._to_dict(obj)
        data["kind"] = artifact.kind
        return StepArtifact.from_manifest(data)

    # execution lock -----------------------------------------------------
    async def get_lock(
        self, namespace: str, name: str, owner_field: str = DEFAULT_LOCK_OWNER_FIELD
    ) -> LockRecord:
        await self._ensure()
        try:
            obj = await self._core.read_namespaced_config_map(name, namespace)
        except ApiException as exc:
            raise _translate(exc, "ConfigMap", namespace, name) from exc
        return LockRecord.from_manifest(self._to_dict(obj), owner_field=owner_field)

    async def create_lock(self, record: LockRecord) -> LockRecord:
        await self._ensure()
        namespace = record.metadata.namespace
        try:
            obj = await self._core.create_namespaced_config_map(
                namespace, record.to_manifest()
            )
        except ApiException as exc:
            raise _translate(exc, "ConfigMap", namespace, record.metadata.name) from exc
        return LockRecord.from_manifest(self._to_dict(obj), owner_field=record.owner_field)

    async def delete_lock(self, namespace: str, name: str) -> None:
        await self._ensure()
        try:
            await self._core.delete_namespaced_config_map(name, namespace)
        except ApiException as exc:
            raise _translate(exc, "ConfigMap", namespace, name) from exc

    # supporting records -------------------------------------------------
    async def get_storage_claim(self, namespace: str, name: str) -> StorageClaim:
        await self._ensure()
        try:
            obj = await self._core.read_namespaced_persistent_volume_claim(name, namespace)
        except ApiException as exc:
            raise _translate(exc, "PersistentVolumeClaim", namespace, name) from exc
        return StorageClaim.from_manifest(self._to_dict(obj))

    async def create_storage_claim(self, claim: StorageClaim) -> StorageClaim:
        await self._ensure()
        namespace = claim.metadata.namespace
        try:
            obj = await self._core.create_namespaced_persistent_volume_claim(
                namespace, claim.to_manifest()
            )
        except ApiException as exc:
            raise _translate(
                exc, "PersistentVolumeClaim", namespace, claim.metadata.name
            ) from exc
        return StorageClaim.from_manifest(self._to_dict(obj))

    async def get_config_record(self, namespace: str, name: str) -> ConfigRecord:
        await self._ensure()
        try:
            obj = await self._core.read_namespaced_config_map(name, namespace)
        except ApiException as exc:
            raise _translate(exc, "ConfigMap", namespace, name) from exc
        return ConfigRecord.from_manifest(self._to_dict(obj))

    async def apply_config_record(self, record: ConfigRecord) -> ConfigRecord:
        await self._ensure()
        namespace = record.metadata.namespace
        name = record.metadata.name
        try:
            obj = await self._core.create_namespaced_config_map(
                namespace, record.to_manifest()
            )
        except ApiException as exc:
            if exc.status != 409:
                raise _translate(exc, "ConfigMap", namespace, name) from exc
            obj = await self._core.patch_namespaced_config_map(
                name, namespace, {"data": record.data}, _content_type=MERGE_PATCH
            )
        return ConfigRecord.from_manifest(self._to_dict(obj))

    async def secret_exists(self, namespace: str, name: str) -> bool:
        await self._ensure()
        try:
            await self._core.read_namespaced_secret(name, namespace)
        except ApiException as exc:
            if exc.status == 404:
                return False
            raise
        return True

    async def get_network_attachment(
        self, namespace: str, name: str
    ) -> NetworkAttachmentDefinition:
        await self._ensure()
        try:
            obj = await self._custom.get_namespaced_custom_object(
                NAD_GROUP, NAD_VERSION, namespace, NAD_PLURAL, name
            )
        except ApiException as exc:
            raise _translate(exc, "NetworkAttachmentDefinition", namespace, name) from exc
        return NetworkAttachmentDefinition(
            metadata=ObjectMeta.model_validate(obj.get("metadata") or {}),
            config=(obj.get("spec") or {}).get("config", ""),
        )

    # events -------------------------------------------------------------
    async def _pump(
        self,
        queue: "asyncio.Queue[ReconcileRequest]",
        list_call: Callable[..., Awaitable[Any]],
        to_requests: Callable[[Dict[str, Any]], List[ReconcileRequest]],
        *args: Any,
        **kwargs: Any,
    ) -> None:
        while True:
            stream = watch.Watch()
            try:
                async for event in stream.stream(list_call, *args, **kwargs):
                    for request in to_requests(self._to_dict(event["object"])):
                        queue.put_nowait(request)
            except ApiException as exc:
                logger.warning(f"Watch on {list_call.__name__} failed: {exc.reason}")
                await asyncio.sleep(1)
            finally:
                stream.stop()

    async def watch(
        self,
        models: Iterable[Type[WorkloadInstance]],
        namespace: Optional[str] = None,
        lifespan: Optional[float] = None,
    ) -> AsyncIterator[ReconcileRequest]:
        """Merge watches on the instance kinds and the Pods and Jobs they own."""
        await self._ensure()
        models = list(models)
        kinds = {instance_kind(m) for m in models}
        queue: "asyncio.Queue[ReconcileRequest]" = asyncio.Queue()

        def instance_request(kind: str) -> Callable[[Dict[str, Any]], List[ReconcileRequest]]:
            def convert(data: Dict[str, Any]) -> List[ReconcileRequest]:
                meta = data.get("metadata") or {}
                return [
                    ReconcileRequest(
                        kind=kind, namespace=meta.get("namespace", ""), name=meta["name"]
                    )
                ]

            return convert

        def owner_requests(data: Dict[str, Any]) -> List[ReconcileRequest]:
            meta = data.get("metadata") or {}
            return [
                ReconcileRequest(
                    kind=ref["kind"], namespace=meta.get("namespace", ""), name=ref["name"]
                )
                for ref in meta.get("ownerReferences") or []
                if ref.get("kind") in kinds
            ]

        tasks = []
        for model in models:
            if namespace is None:
                call, args = self._custom.list_cluster_custom_object, (
                    model.group, model.version, model.plural,
                )
            else:
                call, args = self._custom.list_namespaced_custom_object, (
                    model.group, model.version, namespace, model.plural,
                )
            tasks.append(
                asyncio.create_task(
                    self._pump(queue, call, instance_request(instance_kind(model)), *args)
                )
            )
        if namespace is None:
            owned_calls = [
                (self._core.list_pod_for_all_namespaces, ()),
                (self._batch.list_job_for_all_namespaces, ()),
            ]
        else:
            owned_calls = [
                (self._core.list_namespaced_pod, (namespace,)),
                (self._batch.list_namespaced_job, (namespace,)),
            ]
        for call, args in owned_calls:
            tasks.append(asyncio.create_task(self._pump(queue, call, owner_requests, *args)))

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
                    request = await asyncio.wait_for(queue.get(), timeout)
                except asyncio.TimeoutError:
                    break
                yield request
        finally:
            for task in tasks:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)
