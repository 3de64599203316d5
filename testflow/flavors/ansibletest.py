"""AnsibleTest: run a playbook from a git repository against the cloud."""

from __future__ import annotations

import logging
from typing import Any, ClassVar, Dict, List, Literal, Optional

from pydantic import Field

from ..constants import CA_BUNDLE_SECRET
from ..contracts import StepArtifact, WorkloadInstance
from ..overlay import OverlayTable
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

SERVICE_NAME = "ansibleTest"
RUN_AS_USER = 227
CAPABILITIES = ("NET_ADMIN", "NET_RAW")

COMPUTE_SSH_VOLUME = "compute-ssh-secret"
WORKLOAD_SSH_VOLUME = "workload-ssh-secret"


class AnsibleTestWorkflowStep(WorkflowCommonOptions):
    compute_ssh_key_secret_name: Optional[str] = Field(
        default=None, alias="computeSSHKeySecretName"
    )
    workload_ssh_key_secret_name: Optional[str] = Field(
        default=None, alias="workloadSSHKeySecretName"
    )
    ansible_git_repo: Optional[str] = None
    ansible_git_branch: Optional[str] = None
    ansible_playbook_path: Optional[str] = None
    ansible_collections: Optional[str] = None
    ansible_var_files: Optional[str] = None
    ansible_extra_vars: Optional[str] = None
    ansible_inventory: Optional[str] = None
    debug: Optional[bool] = None


class AnsibleTestSpec(WorkflowSpec):
    open_stack_config_map: str = "openstack-config"
    open_stack_config_secret: str = "openstack-config-secret"
    compute_ssh_key_secret_name: str = Field(
        default="dataplane-ansible-ssh-private-key-secret",
        alias="computeSSHKeySecretName",
    )
    workload_ssh_key_secret_name: str = Field(default="", alias="workloadSSHKeySecretName")
    ansible_git_repo: str = ""
    ansible_git_branch: str = ""
    ansible_playbook_path: str = ""
    ansible_collections: str = ""
    ansible_var_files: str = ""
    ansible_extra_vars: str = ""
    ansible_inventory: str = ""
    debug: bool = False
    workflow: List[AnsibleTestWorkflowStep] = Field(default_factory=list)


class AnsibleTest(WorkloadInstance):
    plural: ClassVar[str] = "ansibletests"

    kind: Literal["AnsibleTest"] = "AnsibleTest"
    spec: AnsibleTestSpec = Field(default_factory=AnsibleTestSpec)


ANSIBLETEST_OVERLAY = OverlayTable(
    fields=COMMON_OVERLAY_FIELDS
    + (
        "compute_ssh_key_secret_name",
        "workload_ssh_key_secret_name",
        "ansible_git_repo",
        "ansible_git_branch",
        "ansible_playbook_path",
        "ansible_collections",
        "ansible_var_files",
        "ansible_extra_vars",
        "ansible_inventory",
        "debug",
    )
)


def ansible_env(spec: AnsibleTestSpec) -> Dict[str, str]:
    return {
        "POD_DEBUG": "true" if spec.debug else "false",
        "POD_ANSIBLE_EXTRA_VARS": spec.ansible_extra_vars,
        "POD_ANSIBLE_FILE_EXTRA_VARS": spec.ansible_var_files,
        "POD_ANSIBLE_INVENTORY": spec.ansible_inventory,
        "POD_ANSIBLE_GIT_REPO": spec.ansible_git_repo,
        "POD_ANSIBLE_GIT_BRANCH": spec.ansible_git_branch,
        "POD_ANSIBLE_PLAYBOOK": spec.ansible_playbook_path,
        "POD_INSTALL_COLLECTIONS": spec.ansible_collections,
    }


class AnsibleTestFlavor(WorkloadFlavor):
    kind = "AnsibleTest"
    service_name = SERVICE_NAME
    model = AnsibleTest
    overlay_table = ANSIBLETEST_OVERLAY

    def parallel(self, instance: WorkloadInstance) -> bool:
        # playbooks always run under the namespace lock
        return False

    async def validate_inputs(self, ctx: FlavorContext, instance: WorkloadInstance) -> None:
        spec: AnsibleTestSpec = instance.spec
        await self.require_secret(ctx, instance, spec.compute_ssh_key_secret_name)
        if spec.workload_ssh_key_secret_name:
            await self.require_secret(ctx, instance, spec.workload_ssh_key_secret_name)

    async def build_artifact(
        self,
        ctx: FlavorContext,
        instance: WorkloadInstance,
        labels: Dict[str, str],
        annotations: Dict[str, str],
        step_index: int,
        storage_name: str,
    ) -> StepArtifact:
        spec: AnsibleTestSpec = instance.spec
        name = self.artifact_name(instance, step_index)

        volumes: List[Dict[str, Any]] = [
            config_map_volume(OPENSTACK_CONFIG_VOLUME, spec.open_stack_config_map, 0o644),
            secret_volume(OPENSTACK_CONFIG_SECRET_VOLUME, spec.open_stack_config_secret),
            logs_volume(storage_name),
        ] + ephemeral_volumes()
        mounts: List[Dict[str, Any]] = [
            volume_mount(WORKDIR_VOLUME, "/var/lib/ansible"),
            volume_mount(TMP_VOLUME, "/tmp"),
            volume_mount(LOGS_VOLUME, "/var/lib/AnsibleTests/external_files"),
            volume_mount(OPENSTACK_CONFIG_VOLUME, "/etc/openstack/clouds.yaml", "clouds.yaml", True),
            volume_mount(
                OPENSTACK_CONFIG_VOLUME,
                "/var/lib/ansible/.config/openstack/clouds.yaml",
                "clouds.yaml",
                True,
            ),
            volume_mount(
                OPENSTACK_CONFIG_SECRET_VOLUME,
                "/var/lib/ansible/.config/openstack/secure.yaml",
                "secure.yaml",
                True,
            ),
        ]
        if await secret_present(ctx, instance, CA_BUNDLE_SECRET):
            volumes.append(secret_volume(CA_CERTS_VOLUME, CA_BUNDLE_SECRET))
            for path in (
                "/etc/pki/ca-trust/extracted/pem/tls-ca-bundle.pem",
                "/etc/pki/tls/certs/ca-bundle.trust.crt",
            ):
                mounts.append(volume_mount(CA_CERTS_VOLUME, path, "tls-ca-bundle.pem", True))

        volumes.append(secret_volume(COMPUTE_SSH_VOLUME, spec.compute_ssh_key_secret_name))
        mounts.append(
            volume_mount(COMPUTE_SSH_VOLUME, "/var/lib/ansible/.ssh/compute_id", "ssh-privatekey", True)
        )
        if spec.workload_ssh_key_secret_name:
            volumes.append(secret_volume(WORKLOAD_SSH_VOLUME, spec.workload_ssh_key_secret_name))
            mounts.append(
                volume_mount(
                    WORKLOAD_SSH_VOLUME, "/var/lib/ansible/test_keypair.key", "ssh-privatekey", True
                )
            )

        return build_test_pod(
            instance,
            name=name,
            labels=labels,
            annotations=annotations,
            container_image=await resolve_container_image(ctx, instance),
            container_name=name,
            run_as_user=RUN_AS_USER,
            capabilities=CAPABILITIES,
            env=ansible_env(spec),
            volumes=volumes,
            volume_mounts=mounts,
        )
