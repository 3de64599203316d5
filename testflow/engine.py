"""One reconciliation pass over a workload instance."""

from __future__ import annotations

import logging
from typing import Optional

from .actions import ActionResolver, NextAction, Resolution
from .conditions import (
    DEPLOYMENT_READY,
    INPUT_READY,
    NETWORK_ATTACHMENTS_READY,
    READY,
    REASON_ERROR,
    SERVICE_CONFIG_READY,
    ConditionList,
)
from .config import OperatorConfig
from .contracts import (
    ArtifactPhase,
    ReconcileRequest,
    ReconcileResult,
    Severity,
    WorkloadInstance,
)
from .errors import (
    ConfigGenerationError,
    InputValidationError,
    NetworkAttachmentsMismatchError,
    NotFoundError,
    TestflowError,
    UnexpectedActionError,
)
from .flavors.base import FlavorContext, WorkloadFlavor
from .lock import ExecutionLock
from .naming import artifact_labels, finalizer_name
from .network import NetworkAttachmentResolver
from .progress import ProgressTracker
from .resources import create_artifact, ensure_storage_claim
from .store.base import ClusterStore

logger = logging.getLogger(__name__)


class Reconciler:
    """Drives instances of one flavor through their workflow.

    Every pass starts from the persisted state: the instance, the artifacts
    labelled with its name and the namespace lock. The instance status is the
    only thing the pass reports through.
    """

    def __init__(
        self,
        store: ClusterStore,
        flavor: WorkloadFlavor,
        config: Optional[OperatorConfig] = None,
    ) -> None:
        self.store = store
        self.flavor = flavor
        self.config = config or OperatorConfig()
        self.lock = ExecutionLock(store, self.config.lock)
        self.resolver = ActionResolver(ProgressTracker(store))
        self.networks = NetworkAttachmentResolver(store)
        self.ctx = FlavorContext(store, self.config)

    @property
    def finalizer(self) -> str:
        return finalizer_name(self.config.finalizer_domain, self.flavor.kind)

    def _requeue(self, delay: Optional[float] = None) -> ReconcileResult:
        return ReconcileResult(
            requeue_after=self.config.requeue_after if delay is None else delay
        )

    async def reconcile(self, request: ReconcileRequest) -> ReconcileResult:
        try:
            instance = await self.store.get_instance(
                self.flavor.model, request.namespace, request.name
            )
        except NotFoundError:
            logger.debug(f"{request} is gone, nothing to do")
            return ReconcileResult()

        conditions = ConditionList(instance.status.conditions)
        saved = conditions.snapshot()
        try:
            return await self._reconcile(instance, conditions)
        finally:
            conditions.restore_last_transition_times(saved)
            if conditions.is_unknown(READY):
                conditions.set(conditions.mirror(READY))
            await self._persist(instance)

    async def _persist(self, instance: WorkloadInstance) -> None:
        try:
            await self.store.patch_instance(instance)
        except NotFoundError:
            logger.debug(f"{instance.kind} {instance.name} was removed before the status update")

    async def _reconcile(
        self, instance: WorkloadInstance, conditions: ConditionList
    ) -> ReconcileResult:
        flavor = self.flavor

        if not len(conditions):
            conditions.init(flavor.initial_conditions())
            logger.info(f"Initialized conditions of {instance.kind} {instance.name}")
            return ReconcileResult()

        instance.status.observed_generation = instance.metadata.generation

        finalizers = instance.metadata.finalizers
        if flavor.needs_finalizer and not instance.is_deleting and self.finalizer not in finalizers:
            finalizers.append(self.finalizer)
            return ReconcileResult()

        if flavor.needs_network_attachments and instance.status.network_attachments is None:
            instance.status.network_attachments = {}

        if instance.is_deleting:
            if self.finalizer in finalizers:
                finalizers.remove(self.finalizer)
            logger.info(f"Reconciled {instance.kind} {instance.name} delete successfully")
            return ReconcileResult()

        workflow_length = flavor.workflow_length(instance)
        resolution = await self.resolver.resolve(
            instance, workflow_length, flavor.artifact_kind
        )
        step = resolution.step_index
        step_instance = instance
        if step < workflow_length:
            step_instance = flavor.resolve_step(instance, step)

        result = await self._apply_action(step_instance, conditions, resolution)
        if result is not None:
            return result

        return await self._create_step(step_instance, conditions, step)

    async def _apply_action(
        self,
        instance: WorkloadInstance,
        conditions: ConditionList,
        resolution: Resolution,
    ) -> Optional[ReconcileResult]:
        """Handle the resolved action; None means go on and create the step."""
        action = resolution.action
        lock_name = self.lock.name

        if action == NextAction.FAILURE:
            raise resolution.error or UnexpectedActionError("failure without an error")

        if action == NextAction.WAIT:
            if self.flavor.needs_network_attachments:
                await self._verify_networks(
                    instance,
                    conditions,
                    self.flavor.artifact_name(instance, resolution.step_index),
                    self.flavor.network_attachments(instance),
                )
            logger.info("Waiting on either pod to finish or release of the lock.")
            return self._requeue()

        if action == NextAction.END_TESTING:
            try:
                released = await self.lock.release(instance)
            except TestflowError as exc:
                logger.warning(f"{exc}")
                released = False
            if not released:
                logger.info(f"Can not release {lock_name} lock.")
                return self._requeue()

            conditions.mark_true(DEPLOYMENT_READY)
            if conditions.all_sub_conditions_true():
                conditions.mark_true(READY)
            logger.info("Testing completed. All pods spawned by the test-operator finished.")
            return ReconcileResult()

        if action == NextAction.CREATE_FIRST_POD:
            if not await self.lock.acquire(instance, self.flavor.parallel(instance)):
                logger.info(f"Can not acquire {lock_name} lock.")
                return self._requeue()
            logger.info(f"Creating first test pod (workflow step {resolution.step_index}).")
            return None

        if action == NextAction.CREATE_NEXT_POD:
            if not await self.lock.acquire(instance, self.flavor.parallel(instance)):
                logger.error(f"can not confirm ownership of {lock_name} lock")
                return self._requeue()
            logger.info(f"Creating next test pod (workflow step {resolution.step_index}).")
            return None

        raise UnexpectedActionError(f"unexpected action {action!r}")

    async def _create_step(
        self, instance: WorkloadInstance, conditions: ConditionList, step: int
    ) -> ReconcileResult:
        flavor = self.flavor
        labels = artifact_labels(
            flavor.service_name, step, instance.name, self.config.operator_name
        )

        if flavor.needs_input_validation:
            try:
                await flavor.validate_inputs(self.ctx, instance)
            except InputValidationError as exc:
                conditions.mark_false(
                    INPUT_READY, REASON_ERROR, Severity.ERROR, f"Input data error occurred {exc}"
                )
                raise
            conditions.mark_true(INPUT_READY)

        storage = flavor.storage_name(instance, step)
        if not await ensure_storage_claim(
            self.store,
            instance,
            storage,
            labels,
            flavor.storage_class(instance),
            self.config.storage,
        ):
            return self._requeue()

        if flavor.needs_config:
            try:
                await flavor.generate_config(self.ctx, instance, step)
            except ConfigGenerationError as exc:
                conditions.mark_false(
                    SERVICE_CONFIG_READY,
                    REASON_ERROR,
                    Severity.WARNING,
                    f"Service config create error occurred {exc}",
                )
                raise
            conditions.mark_true(SERVICE_CONFIG_READY)

        annotations = {}
        networks = flavor.network_attachments(instance)
        if flavor.needs_network_attachments:
            try:
                annotations = await self.networks.ensure_annotations(networks, instance.namespace)
            except NotFoundError as exc:
                logger.info(f"network-attachment-definition {exc.name} not found")
                conditions.mark_false(
                    NETWORK_ATTACHMENTS_READY,
                    REASON_ERROR,
                    Severity.WARNING,
                    f"NetworkAttachment resources missing: {exc.name}",
                )
                return self._requeue(self.config.network_requeue_after)
            conditions.mark_true(NETWORK_ATTACHMENTS_READY)

        name = flavor.artifact_name(instance, step)
        try:
            artifact = await flavor.build_artifact(
                self.ctx, instance, labels, annotations, step, storage
            )
            await create_artifact(self.store, instance, artifact)
        except Exception as exc:
            conditions.mark_false(
                DEPLOYMENT_READY,
                REASON_ERROR,
                Severity.WARNING,
                f"Deployment error occurred {exc}",
            )
            try:
                released = await self.lock.release(instance)
            except TestflowError as release_exc:
                logger.error(f"Can not release {self.lock.name} lock: {release_exc}")
                released = False
            if released:
                logger.info(f"Failed to create {name}, lock released: {exc}")
                return self._requeue()
            raise

        if flavor.needs_network_attachments:
            await self._verify_networks(instance, conditions, name, networks)

        if conditions.all_sub_conditions_true():
            conditions.mark_true(READY)
        logger.info(f"Reconciled {instance.kind} {instance.name} step {step} successfully")
        return ReconcileResult()

    async def _verify_networks(
        self,
        instance: WorkloadInstance,
        conditions: ConditionList,
        name: str,
        networks: list,
    ) -> None:
        try:
            artifact = await self.store.get_artifact(
                self.flavor.artifact_kind, instance.namespace, name
            )
        except NotFoundError:
            return
        # network status is only reported once the artifact is scheduled
        if artifact.phase == ArtifactPhase.PENDING:
            return

        ready, status = self.networks.verify(artifact, networks, instance.namespace)
        instance.status.network_attachments = status
        if ready:
            conditions.mark_true(NETWORK_ATTACHMENTS_READY)
            return

        error = NetworkAttachmentsMismatchError(
            f"not all pods have interfaces with ips as configured in NetworkAttachments: {networks}"
        )
        conditions.mark_false(
            NETWORK_ATTACHMENTS_READY,
            REASON_ERROR,
            Severity.WARNING,
            f"NetworkAttachments error occurred {error}",
        )
        raise error
