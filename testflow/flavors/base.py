"""Workload flavor interface shared by every test framework."""

from __future__ import annotations

import abc
import logging
from typing import Any, Dict, List, Optional, Type

from pydantic import Field, field_validator

from ..conditions import (
    DEPLOYMENT_READY,
    INPUT_READY,
    NETWORK_ATTACHMENTS_READY,
    SERVICE_CONFIG_READY,
)
from ..config import OperatorConfig
from ..constants import DEFAULT_STORAGE_CLASS
from ..contracts import KubeModel, StepArtifact, WorkflowStep, WorkloadInstance
from ..errors import InputValidationError, NotFoundError
from ..naming import artifact_name, storage_name
from ..overlay import OverlayTable, merge_overlay
from ..store.base import ClusterStore

logger = logging.getLogger(__name__)

COMMON_OVERLAY_FIELDS = (
    "privileged",
    "storage_class",
    "selinux_level",
    "container_image",
    "backoff_limit",
    "node_selector",
    "tolerations",
    "parallel",
)


class CommonOptions(KubeModel):
    """Options every flavor accepts on its base spec."""

    privileged: bool = False
    storage_class: str = DEFAULT_STORAGE_CLASS
    selinux_level: str = Field(default="", alias="SELinuxLevel")
    container_image: str = ""
    backoff_limit: Optional[int] = None
    node_selector: Dict[str, str] = Field(default_factory=dict)
    tolerations: List[Dict[str, Any]] = Field(default_factory=list)
    parallel: bool = False


class WorkflowCommonOptions(WorkflowStep):
    """Step overrides for :class:`CommonOptions`; None inherits."""

    privileged: Optional[bool] = None
    storage_class: Optional[str] = None
    selinux_level: Optional[str] = Field(default=None, alias="SELinuxLevel")
    container_image: Optional[str] = None
    backoff_limit: Optional[int] = None
    node_selector: Optional[Dict[str, str]] = None
    tolerations: Optional[List[Dict[str, Any]]] = None
    parallel: Optional[bool] = None


class WorkflowSpec(CommonOptions):
    workflow: List[WorkflowCommonOptions] = Field(default_factory=list)

    @field_validator("workflow")
    @classmethod
    def _unique_step_names(cls, steps: List[WorkflowStep]) -> List[WorkflowStep]:
        seen = set()
        for step in steps:
            if not step.step_name:
                continue
            if step.step_name in seen:
                raise ValueError(f"duplicate workflow step name: {step.step_name}")
            seen.add(step.step_name)
        return steps


class FlavorContext:
    """What a flavor callback may touch besides the instance."""

    def __init__(self, store: ClusterStore, config: OperatorConfig) -> None:
        self.store = store
        self.config = config


class WorkloadFlavor(metaclass=abc.ABCMeta):
    """Capability set the reconciliation engine drives for one instance kind."""

    kind: str = ""
    service_name: str = ""
    model: Type[WorkloadInstance] = WorkloadInstance
    artifact_kind: str = "Pod"
    needs_network_attachments: bool = False
    needs_config: bool = False
    needs_finalizer: bool = False
    needs_input_validation: bool = True
    supports_workflow: bool = True
    overlay_table: OverlayTable = OverlayTable()

    def initial_conditions(self) -> List[str]:
        types = []
        if self.needs_input_validation:
            types.append(INPUT_READY)
        if self.needs_config:
            types.append(SERVICE_CONFIG_READY)
        types.append(DEPLOYMENT_READY)
        if self.needs_network_attachments:
            types.append(NETWORK_ATTACHMENTS_READY)
        return types

    # callbacks ----------------------------------------------------------
    async def validate_inputs(self, ctx: FlavorContext, instance: WorkloadInstance) -> None:
        """Raise InputValidationError when a referenced input is missing."""
        return None

    async def generate_config(
        self, ctx: FlavorContext, instance: WorkloadInstance, step_index: int
    ) -> None:
        return None

    @abc.abstractmethod
    async def build_artifact(
        self,
        ctx: FlavorContext,
        instance: WorkloadInstance,
        labels: Dict[str, str],
        annotations: Dict[str, str],
        step_index: int,
        storage_name: str,
    ) -> StepArtifact:
        raise NotImplementedError

    # accessors ----------------------------------------------------------
    def parallel(self, instance: WorkloadInstance) -> bool:
        return bool(getattr(instance.spec, "parallel", False))

    def storage_class(self, instance: WorkloadInstance) -> str:
        return getattr(instance.spec, "storage_class", "") or ""

    def network_attachments(self, instance: WorkloadInstance) -> List[str]:
        return list(getattr(instance.spec, "network_attachments", None) or [])

    def workflow_length(self, instance: WorkloadInstance) -> int:
        if not self.supports_workflow:
            return 0
        return len(getattr(instance.spec, "workflow", None) or [])

    def get_step(self, instance: WorkloadInstance, step_index: int) -> Optional[WorkflowStep]:
        if 0 <= step_index < self.workflow_length(instance):
            return instance.spec.workflow[step_index]
        return None

    def resolve_step(self, instance: WorkloadInstance, step_index: int) -> WorkloadInstance:
        """Shallow copy of ``instance`` with the step overrides merged into its spec.

        Metadata and status stay shared with ``instance``.
        """
        step = self.get_step(instance, step_index)
        if step is None:
            return instance
        merged = merge_overlay(instance.spec, step, self.overlay_table)
        return instance.model_copy(update={"spec": merged})

    # names --------------------------------------------------------------
    def artifact_name(self, instance: WorkloadInstance, step_index: int) -> str:
        step = self.get_step(instance, step_index)
        return artifact_name(
            instance.name,
            step_index,
            step.step_name if step is not None else None,
            self.workflow_length(instance),
        )

    def storage_name(self, instance: WorkloadInstance, step_index: int) -> str:
        return storage_name(instance.name, step_index, instance.metadata.creation_timestamp)

    # shared input checks ------------------------------------------------
    async def require_config_record(
        self, ctx: FlavorContext, instance: WorkloadInstance, name: str
    ) -> None:
        try:
            await ctx.store.get_config_record(instance.namespace, name)
        except NotFoundError as exc:
            raise InputValidationError(f"config map {name} not found") from exc

    async def require_secret(
        self, ctx: FlavorContext, instance: WorkloadInstance, name: str
    ) -> None:
        if not await ctx.store.secret_exists(instance.namespace, name):
            raise InputValidationError(f"secret {name} not found")
