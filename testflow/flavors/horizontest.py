"""HorizonTest: drive the Horizon dashboard integration tests in a single pod."""

from __future__ import annotations

from typing import Any, ClassVar, Dict, List, Literal

from pydantic import Field

from ..constants import (
    APP_LABEL,
    CA_BUNDLE_SECRET,
    CLOUDS_CONFIG_RECORD,
    INSTANCE_NAME_LABEL,
    OPERATOR_BASE_DIR,
    OPERATOR_NAME_LABEL,
)
from ..contracts import StepArtifact, WorkloadInstance
from ..resources import ensure_clouds_config
from .base import CommonOptions, FlavorContext, WorkloadFlavor
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

SERVICE_NAME = "horizontest"
RUN_AS_USER = 42455
CAPABILITIES = ("NET_ADMIN", "NET_RAW")

HOME_DIR = "/var/lib/horizontest"
CIRROS_IMAGE = "cirros-0.6.2-x86_64-disk"
KUBECONFIG_VOLUME = "kubeconfig"


class HorizonTestSpec(CommonOptions):
    open_stack_config_map: str = "openstack-config"
    open_stack_config_secret: str = "openstack-config-secret"
    debug: bool = False
    extra_flag: str = ""
    project_name_xpath: str = ""
    admin_username: str = ""
    admin_password: str = ""
    dashboard_url: str = ""
    auth_url: str = ""
    repo_url: str = ""
    horizon_repo_branch: str = ""
    image_url: str = f"http://download.cirros-cloud.net/0.6.2/{CIRROS_IMAGE}.img"
    project_name: str = "horizontest"
    user: str = "horizontest"
    password: str = "horizontest"
    flavor_name: str = "m1.tiny"
    logs_directory_name: str = "horizon"
    horizon_test_dir: str = HOME_DIR
    kubeconfig_secret_name: str = ""


class HorizonTest(WorkloadInstance):
    plural: ClassVar[str] = "horizontests"

    kind: Literal["HorizonTest"] = "HorizonTest"
    spec: HorizonTestSpec = Field(default_factory=HorizonTestSpec)


def horizontest_env(spec: HorizonTestSpec) -> Dict[str, str]:
    return {
        "HORIZONTEST_DEBUG_MODE": "true" if spec.debug else "false",
        "USE_EXTERNAL_FILES": "True",
        "HORIZON_LOGS_DIR_NAME": spec.logs_directory_name,
        "ADMIN_USERNAME": spec.admin_username,
        "ADMIN_PASSWORD": spec.admin_password,
        "DASHBOARD_URL": spec.dashboard_url,
        "AUTH_URL": spec.auth_url,
        "REPO_URL": spec.repo_url,
        "HORIZON_REPO_BRANCH": spec.horizon_repo_branch,
        "IMAGE_FILE": f"{spec.horizon_test_dir}/{CIRROS_IMAGE}.img",
        "IMAGE_FILE_NAME": CIRROS_IMAGE,
        "IMAGE_URL": spec.image_url,
        "PROJECT_NAME": spec.project_name,
        "USER_NAME": spec.user,
        "PASSWORD": spec.password,
        "FLAVOR_NAME": spec.flavor_name,
        "HORIZON_KEYS_FOLDER": OPERATOR_BASE_DIR.rstrip("/"),
        "EXTRA_FLAG": spec.extra_flag,
        "PROJECT_NAME_XPATH": spec.project_name_xpath,
    }


class HorizonTestFlavor(WorkloadFlavor):
    """Single pod, no generated config and no input checks.

    The pod reads ``clouds.yaml`` from the shared clouds record, which is
    derived from the OpenStack config map on first use.
    """

    kind = "HorizonTest"
    service_name = SERVICE_NAME
    model = HorizonTest
    needs_input_validation = False
    supports_workflow = False

    async def build_artifact(
        self,
        ctx: FlavorContext,
        instance: WorkloadInstance,
        labels: Dict[str, str],
        annotations: Dict[str, str],
        step_index: int,
        storage_name: str,
    ) -> StepArtifact:
        spec: HorizonTestSpec = instance.spec
        await ensure_clouds_config(
            ctx.store,
            instance,
            spec.open_stack_config_map,
            {
                APP_LABEL: SERVICE_NAME,
                INSTANCE_NAME_LABEL: instance.name,
                OPERATOR_NAME_LABEL: ctx.config.operator_name,
            },
        )
        name = self.artifact_name(instance, step_index)

        volumes: List[Dict[str, Any]] = [
            config_map_volume(OPENSTACK_CONFIG_VOLUME, CLOUDS_CONFIG_RECORD, 0o644),
            secret_volume(OPENSTACK_CONFIG_SECRET_VOLUME, spec.open_stack_config_secret),
            logs_volume(storage_name),
        ] + ephemeral_volumes()
        mounts: List[Dict[str, Any]] = [
            volume_mount(WORKDIR_VOLUME, HOME_DIR),
            volume_mount(TMP_VOLUME, "/tmp"),
            volume_mount(LOGS_VOLUME, f"{HOME_DIR}/external_files"),
            volume_mount(
                OPENSTACK_CONFIG_VOLUME,
                f"{HOME_DIR}/.config/openstack/clouds.yaml",
                "clouds.yaml",
                True,
            ),
            volume_mount(OPENSTACK_CONFIG_VOLUME, "/etc/openstack/clouds.yaml", "clouds.yaml", True),
            volume_mount(OPENSTACK_CONFIG_SECRET_VOLUME, "/etc/openstack/secure.yaml", "secure.yaml", True),
        ]
        if await secret_present(ctx, instance, CA_BUNDLE_SECRET):
            volumes.append(secret_volume(CA_CERTS_VOLUME, CA_BUNDLE_SECRET))
            for path in (
                "/etc/pki/ca-trust/extracted/pem/tls-ca-bundle.pem",
                "/etc/pki/tls/certs/ca-bundle.trust.crt",
            ):
                mounts.append(volume_mount(CA_CERTS_VOLUME, path, "tls-ca-bundle.pem", True))
        if spec.kubeconfig_secret_name:
            volumes.append(secret_volume(KUBECONFIG_VOLUME, spec.kubeconfig_secret_name))
            mounts.append(volume_mount(KUBECONFIG_VOLUME, f"{HOME_DIR}/.kube/config", "config", True))

        return build_test_pod(
            instance,
            name=name,
            labels=labels,
            annotations=annotations,
            container_image=await resolve_container_image(ctx, instance),
            container_name=name,
            run_as_user=RUN_AS_USER,
            capabilities=CAPABILITIES,
            env=horizontest_env(spec),
            volumes=volumes,
            volume_mounts=mounts,
        )
