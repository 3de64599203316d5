from __future__ import annotations

import logging
from typing import Any, ClassVar, Dict, List, Literal, Optional

from pydantic import Field

from ..constants import (
    APP_LABEL,
    CA_BUNDLE_SECRET,
    INSTANCE_NAME_LABEL,
    OPERATOR_BASE_DIR,
    OPERATOR_NAME_LABEL,
)
from ..contracts import KubeModel, StepArtifact, WorkloadInstance
from ..errors import ConfigGenerationError
from ..overlay import OverlayTable
from ..resources import ensure_config_records
from .base import (
    COMMON_OVERLAY_FIELDS,
    FlavorContext,
    WorkflowCommonOptions,
    WorkflowSpec,
    WorkloadFlavor,
)
from .pods import (
    CA_CERTS_VOLUME,
    LOGS_VOLUME,
    OPENSTACK_CONFIG_SECRET_VOLUME,
    OPENSTACK_CONFIG_VOLUME,
    TMP_VOLUME,
    WORKDIR_VOLUME,
    build_test_pod,
    config_map_volume,
    ephemeral_volumes,
    logs_volume,
    resolve_container_image,
    secret_present,
    secret_volume,
    volume_mount,
)

logger = logging.getLogger(__name__)

SERVICE_NAME = "tobiko"
RUN_AS_USER = 42495
CAPABILITIES = ("NET_ADMIN", "NET_RAW")

CONFIG_SUFFIX = "tobiko-config"
PRIVATE_KEY_SUFFIX = "tobiko-private-key"
PUBLIC_KEY_SUFFIX = "tobiko-public-key"
KUBECONFIG_VOLUME = "kubeconfig"


class TobikoPatch(KubeModel):
    repository: str = ""
    refspec: str = ""


class TobikoWorkflowStep(WorkflowCommonOptions):
    testenv: Optional[str] = None
    version: Optional[str] = None
    pytest_addopts: Optional[str] = None
    prevent_create: Optional[bool] = None
    num_processes: Optional[int] = None
    config: Optional[str] = None
    private_key: Optional[str] = None
    public_key: Optional[str] = None
    network_attachments: Optional[List[str]] = None
    patch: Optional[TobikoPatch] = None


class TobikoSpec(WorkflowSpec):
    open_stack_config_map: str = "openstack-config"
    open_stack_config_secret: str = "openstack-config-secret"
    debug: bool = False
    testenv: str = "py3"
    version: str = "master"
    pytest_addopts: str = ""
    prevent_create: bool = False
    num_processes: int = 0
    config: str = ""
    private_key: str = ""
    public_key: str = ""
    kubeconfig_secret_name: str = ""
    network_attachments: List[str] = Field(default_factory=list)
    patch: TobikoPatch = Field(default_factory=TobikoPatch)
    workflow: List[TobikoWorkflowStep] = Field(default_factory=list)


class Tobiko(WorkloadInstance):
    plural: ClassVar[str] = "tobikoes"

    kind: Literal["Tobiko"] = "Tobiko"
    spec: TobikoSpec = Field(default_factory=TobikoSpec)


TOBIKO_OVERLAY = OverlayTable(
    fields=COMMON_OVERLAY_FIELDS
    + (
        "testenv",
        "version",
        "pytest_addopts",
        "prevent_create",
        "num_processes",
        "config",
        "private_key",
        "public_key",
        "network_attachments",
        "patch",
    )
)


def tobiko_env(spec: TobikoSpec, logs_dir_name: str) -> Dict[str, str]:
    env = {
        "TOBIKO_DEBUG_MODE": "true" if spec.debug else "false",
        "TOBIKO_PREVENT_CREATE": "True" if spec.prevent_create else "",
        "USE_EXTERNAL_FILES": "True",
        "TOBIKO_LOGS_DIR_NAME": logs_dir_name,
        "TOBIKO_TESTENV": spec.testenv,
        "TOBIKO_VERSION": spec.version,
        "TOBIKO_PYTEST_ADDOPTS": spec.pytest_addopts,
        "TOBIKO_KEYS_FOLDER": OPERATOR_BASE_DIR.rstrip("/"),
    }
    if spec.num_processes > 0:
        env["TOX_NUM_PROCESSES"] = str(spec.num_processes)
    if spec.patch.repository or spec.patch.refspec:
        env["TOBIKO_PATCH_REPOSITORY"] = spec.patch.repository
        env["TOBIKO_PATCH_REFSPEC"] = spec.patch.refspec
    return env


class TobikoFlavor(WorkloadFlavor):
    kind = "Tobiko"
    service_name = SERVICE_NAME
    model = Tobiko
    needs_network_attachments = True
    needs_config = True
    overlay_table = TOBIKO_OVERLAY

    async def validate_inputs(self, ctx: FlavorContext, instance: WorkloadInstance) -> None:
        spec: TobikoSpec = instance.spec
        if spec.kubeconfig_secret_name:
            await self.require_secret(ctx, instance, spec.kubeconfig_secret_name)

    async def generate_config(
        self, ctx: FlavorContext, instance: WorkloadInstance, step_index: int
    ) -> None:
        spec: TobikoSpec = instance.spec
        labels = {
            APP_LABEL: SERVICE_NAME,
            INSTANCE_NAME_LABEL: instance.name,
            OPERATOR_NAME_LABEL: ctx.config.operator_name,
        }
        try:
            await ensure_config_records(
                ctx.store,
                instance,
                {
                    instance.name + CONFIG_SUFFIX: {"tobiko.conf": spec.config},
                    instance.name + PRIVATE_KEY_SUFFIX: {"id_ecdsa": spec.private_key},
                    instance.name + PUBLIC_KEY_SUFFIX: {"id_ecdsa.pub": spec.public_key},
                },
                labels,
            )
        except Exception as exc:
            raise ConfigGenerationError(
                f"failed to write tobiko config for step {step_index}: {exc}"
            ) from exc

    async def build_artifact(
        self,
        ctx: FlavorContext,
        instance: WorkloadInstance,
        labels: Dict[str, str],
        annotations: Dict[str, str],
        step_index: int,
        storage_name: str,
    ) -> StepArtifact:
        spec: TobikoSpec = instance.spec
        mount_certs = await secret_present(ctx, instance, CA_BUNDLE_SECRET)
        mount_keys = bool(spec.private_key and spec.public_key)
        if not mount_keys:
            logger.info(
                "Both values privateKey and publicKey need to be specified. Keys not mounted."
            )
        name = self.artifact_name(instance, step_index)

        volumes: List[Dict[str, Any]] = [
            config_map_volume(CONFIG_SUFFIX, instance.name + CONFIG_SUFFIX),
            config_map_volume(OPENSTACK_CONFIG_VOLUME, spec.open_stack_config_map, 0o644),
            secret_volume(OPENSTACK_CONFIG_SECRET_VOLUME, spec.open_stack_config_secret),
            logs_volume(storage_name),
        ] + ephemeral_volumes()
        mounts: List[Dict[str, Any]] = [
            volume_mount(WORKDIR_VOLUME, "/var/lib/tobiko"),
            volume_mount(TMP_VOLUME, "/tmp"),
            volume_mount(LOGS_VOLUME, "/var/lib/tobiko/external_files"),
            volume_mount(
                OPENSTACK_CONFIG_VOLUME,
                "/var/lib/tobiko/.config/openstack/clouds.yaml",
                "clouds.yaml",
                True,
            ),
            volume_mount(OPENSTACK_CONFIG_VOLUME, "/etc/openstack/clouds.yaml", "clouds.yaml", True),
            volume_mount(OPENSTACK_CONFIG_SECRET_VOLUME, "/etc/openstack/secure.yaml", "secure.yaml", True),
            volume_mount(CONFIG_SUFFIX, "/etc/tobiko/tobiko.conf", "tobiko.conf"),
        ]
        if mount_certs:
            volumes.append(secret_volume(CA_CERTS_VOLUME, CA_BUNDLE_SECRET))
            for path in (
                "/etc/pki/ca-trust/extracted/pem/tls-ca-bundle.pem",
                "/etc/pki/tls/certs/ca-bundle.trust.crt",
            ):
                mounts.append(volume_mount(CA_CERTS_VOLUME, path, "tls-ca-bundle.pem", True))
        if mount_keys:
            volumes.append(
                config_map_volume(PRIVATE_KEY_SUFFIX, instance.name + PRIVATE_KEY_SUFFIX, 0o600)
            )
            volumes.append(
                config_map_volume(PUBLIC_KEY_SUFFIX, instance.name + PUBLIC_KEY_SUFFIX, 0o644)
            )
            mounts.append(
                volume_mount(PRIVATE_KEY_SUFFIX, OPERATOR_BASE_DIR + "id_ecdsa", "id_ecdsa", True)
            )
            mounts.append(
                volume_mount(PUBLIC_KEY_SUFFIX, OPERATOR_BASE_DIR + "id_ecdsa.pub", "id_ecdsa.pub", True)
            )
        if spec.kubeconfig_secret_name:
            volumes.append(secret_volume(KUBECONFIG_VOLUME, spec.kubeconfig_secret_name))
            mounts.append(volume_mount(KUBECONFIG_VOLUME, "/var/lib/tobiko/.kube/config", "config", True))

        return build_test_pod(
            instance,
            name=name,
            labels=labels,
            annotations=annotations,
            container_image=await resolve_container_image(ctx, instance),
            container_name=name,
            run_as_user=RUN_AS_USER,
            capabilities=CAPABILITIES,
            env=tobiko_env(spec, name),
            volumes=volumes,
            volume_mounts=mounts,
        )
