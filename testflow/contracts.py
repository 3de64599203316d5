"""Core records exchanged between the engine, the flavors and the cluster store."""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from enum import Enum
from typing import Any, ClassVar, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from .constants import DEFAULT_GROUP, DEFAULT_LOCK_OWNER_FIELD, DEFAULT_VERSION

logger = logging.getLogger(__name__)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class KubeModel(BaseModel):
    """Base model that speaks camelCase on the wire."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_wire(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True, mode="json")


class OwnerReference(KubeModel):
    api_version: str
    kind: str
    name: str
    uid: str
    controller: bool = True
    block_owner_deletion: bool = True


class ObjectMeta(KubeModel):
    name: str
    namespace: str = "default"
    uid: Optional[str] = None
    generation: Optional[int] = None
    resource_version: Optional[str] = None
    creation_timestamp: Optional[datetime] = None
    deletion_timestamp: Optional[datetime] = None
    labels: Dict[str, str] = Field(default_factory=dict)
    annotations: Dict[str, str] = Field(default_factory=dict)
    finalizers: List[str] = Field(default_factory=list)
    owner_references: List[OwnerReference] = Field(default_factory=list)

    def is_owned_by(self, uid: str) -> bool:
        return any(ref.uid == uid for ref in self.owner_references)


class ConditionStatus(str, Enum):
    TRUE = "True"
    FALSE = "False"
    UNKNOWN = "Unknown"


class Severity(str, Enum):
    ERROR = "Error"
    WARNING = "Warning"
    INFO = "Info"
    NONE = ""


class Condition(KubeModel):
    """A single observed condition of a workload instance."""

    type: str
    status: ConditionStatus = ConditionStatus.UNKNOWN
    reason: str = ""
    severity: Severity = Severity.NONE
    message: str = ""
    last_transition_time: datetime = Field(default_factory=utcnow)

    def same_state(self, other: "Condition") -> bool:
        return (
            self.type == other.type
            and self.status == other.status
            and self.reason == other.reason
            and self.severity == other.severity
            and self.message == other.message
        )


class InstanceStatus(KubeModel):
    conditions: List[Condition] = Field(default_factory=list)
    network_attachments: Optional[Dict[str, List[str]]] = None
    observed_generation: Optional[int] = None
    hash: Dict[str, str] = Field(default_factory=dict)


class WorkloadInstance(KubeModel):
    """A user-declared test execution; flavors narrow ``spec``."""

    group: ClassVar[str] = DEFAULT_GROUP
    version: ClassVar[str] = DEFAULT_VERSION
    plural: ClassVar[str] = ""

    api_version: str = f"{DEFAULT_GROUP}/{DEFAULT_VERSION}"
    kind: str = ""
    metadata: ObjectMeta
    spec: Any = None
    status: InstanceStatus = Field(default_factory=InstanceStatus)

    @property
    def name(self) -> str:
        return self.metadata.name

    @property
    def namespace(self) -> str:
        return self.metadata.namespace

    @property
    def uid(self) -> str:
        return self.metadata.uid or ""

    @property
    def is_deleting(self) -> bool:
        return self.metadata.deletion_timestamp is not None

    def owner_reference(self) -> OwnerReference:
        return OwnerReference(
            api_version=self.api_version,
            kind=self.kind,
            name=self.name,
            uid=self.uid,
        )


class WorkflowStep(KubeModel):
    """A named overlay record for one stage of a multi-step instance."""

    step_name: str = Field(default="", max_length=100, pattern=r"^[a-z0-9-]*$")


class ArtifactPhase(str, Enum):
    PENDING = "Pending"
    RUNNING = "Running"
    SUCCEEDED = "Succeeded"
    FAILED = "Failed"
    UNKNOWN = "Unknown"


TERMINAL_PHASES = frozenset({ArtifactPhase.SUCCEEDED, ArtifactPhase.FAILED})


class StepArtifact(KubeModel):
    """Platform execution unit (Pod or Job) created for one workflow step."""

    api_version: str = "v1"
    kind: Literal["Pod", "Job"] = "Pod"
    metadata: ObjectMeta
    spec: Dict[str, Any] = Field(default_factory=dict)
    phase: ArtifactPhase = ArtifactPhase.PENDING

    @property
    def name(self) -> str:
        return self.metadata.name

    @property
    def is_terminal(self) -> bool:
        return self.phase in TERMINAL_PHASES

    def to_manifest(self) -> Dict[str, Any]:
        return {
            "apiVersion": self.api_version,
            "kind": self.kind,
            "metadata": self.metadata.to_wire(),
            "spec": self.spec,
        }

    @classmethod
    def from_manifest(cls, data: Dict[str, Any]) -> "StepArtifact":
        kind = data.get("kind") or "Pod"
        status = data.get("status") or {}
        if kind == "Job":
            phase = _job_phase(status)
        else:
            try:
                phase = ArtifactPhase(status.get("phase") or "Pending")
            except ValueError:
                phase = ArtifactPhase.UNKNOWN
        return cls(
            api_version=data.get("apiVersion") or ("batch/v1" if kind == "Job" else "v1"),
            kind=kind,
            metadata=ObjectMeta.model_validate(data.get("metadata") or {}),
            spec=data.get("spec") or {},
            phase=phase,
        )


def _job_phase(status: Dict[str, Any]) -> ArtifactPhase:
    for cond in status.get("conditions") or []:
        if cond.get("status") != "True":
            continue
        if cond.get("type") == "Complete":
            return ArtifactPhase.SUCCEEDED
        if cond.get("type") == "Failed":
            return ArtifactPhase.FAILED
    if status.get("active"):
        return ArtifactPhase.RUNNING
    return ArtifactPhase.PENDING


class LockRecord(KubeModel):
    """The namespace-wide execution lock; ``owner`` is the holder's UID."""

    metadata: ObjectMeta
    owner: Optional[str] = None
    owner_field: str = DEFAULT_LOCK_OWNER_FIELD

    def to_manifest(self) -> Dict[str, Any]:
        data = {self.owner_field: self.owner} if self.owner is not None else {}
        return {
            "apiVersion": "v1",
            "kind": "ConfigMap",
            "metadata": self.metadata.to_wire(),
            "data": data,
        }

    @classmethod
    def from_manifest(
        cls, data: Dict[str, Any], owner_field: str = DEFAULT_LOCK_OWNER_FIELD
    ) -> "LockRecord":
        return cls(
            metadata=ObjectMeta.model_validate(data.get("metadata") or {}),
            owner=(data.get("data") or {}).get(owner_field),
            owner_field=owner_field,
        )


class StorageClaim(KubeModel):
    """Persistent volume claim holding the logs of one workflow step."""

    metadata: ObjectMeta
    storage_class: Optional[str] = None
    size: str = "1Gi"
    access_modes: List[str] = Field(default_factory=lambda: ["ReadWriteOnce"])
    phase: Optional[str] = None

    def to_manifest(self) -> Dict[str, Any]:
        spec: Dict[str, Any] = {
            "accessModes": self.access_modes,
            "resources": {"requests": {"storage": self.size}},
        }
        if self.storage_class:
            spec["storageClassName"] = self.storage_class
        return {
            "apiVersion": "v1",
            "kind": "PersistentVolumeClaim",
            "metadata": self.metadata.to_wire(),
            "spec": spec,
        }

    @classmethod
    def from_manifest(cls, data: Dict[str, Any]) -> "StorageClaim":
        spec = data.get("spec") or {}
        requests = (spec.get("resources") or {}).get("requests") or {}
        return cls(
            metadata=ObjectMeta.model_validate(data.get("metadata") or {}),
            storage_class=spec.get("storageClassName"),
            size=requests.get("storage") or "1Gi",
            access_modes=spec.get("accessModes") or ["ReadWriteOnce"],
            phase=(data.get("status") or {}).get("phase"),
        )


class ConfigRecord(KubeModel):
    """Generated configuration (a ConfigMap) consumed by a step artifact."""

    metadata: ObjectMeta
    data: Dict[str, str] = Field(default_factory=dict)

    def to_manifest(self) -> Dict[str, Any]:
        return {
            "apiVersion": "v1",
            "kind": "ConfigMap",
            "metadata": self.metadata.to_wire(),
            "data": self.data,
        }

    @classmethod
    def from_manifest(cls, data: Dict[str, Any]) -> "ConfigRecord":
        return cls(
            metadata=ObjectMeta.model_validate(data.get("metadata") or {}),
            data=data.get("data") or {},
        )


class NetworkAttachmentDefinition(KubeModel):
    metadata: ObjectMeta
    config: str = ""


class ReconcileRequest(BaseModel):
    """Identifies the instance a reconciliation pass works on."""

    model_config = ConfigDict(frozen=True)

    kind: str
    namespace: str
    name: str

    def __str__(self) -> str:
        return f"{self.kind}/{self.namespace}/{self.name}"


class ReconcileResult(BaseModel):
    """Outcome of one pass; ``requeue_after`` schedules the next one."""

    requeue_after: Optional[float] = None

    @property
    def requeue(self) -> bool:
        return self.requeue_after is not None
