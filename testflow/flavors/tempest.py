"""Tempest: OpenStack API tests run by tempest and python-tempestconf."""

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
from ..naming import custom_data_record_name, env_vars_record_name
from ..overlay import GroupOverlay, OverlayTable
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

SERVICE_NAME = "tempest"
RUN_AS_USER = 42480
CONFIG_DATA_VOLUME = "config-data"


class ExternalPlugin(KubeModel):
    repository: str = ""
    change_repository: str = ""
    change_refspec: str = ""


class ExtraImageFlavor(KubeModel):
    name: str = ""
    ram: int = Field(default=0, alias="RAM")
    disk: int = 0
    vcpus: int = 0
    id: str = Field(default="", alias="ID")
    os_cloud: str = ""


class ExtraImage(KubeModel):
    url: str = Field(default="", alias="URL")
    name: str = ""
    os_cloud: str = ""
    container_format: str = ""
    disk_format: str = ""
    id: str = Field(default="", alias="ID")
    image_creation_timeout: int = 0
    flavor: ExtraImageFlavor = Field(default_factory=ExtraImageFlavor)


class TempestRunSpec(KubeModel):
    include_list: str = "tempest.api.identity.v3"
    exclude_list: str = ""
    expected_failures_list: str = ""
    concurrency: int = 0
    smoke: bool = False
    parallel: bool = True
    serial: bool = False
    worker_file: str = ""
    external_plugin: List[ExternalPlugin] = Field(default_factory=list)
    extra_images: List[ExtraImage] = Field(default_factory=list)
    extra_rpms: List[str] = Field(default_factory=list, alias="extraRPMs")


class TempestconfRunSpec(KubeModel):
    create: bool = True
    collect_timing: bool = False
    insecure: bool = False
    no_default_deployer: bool = False
    debug: bool = False
    verbose: bool = False
    non_admin: bool = False
    retry_image: bool = False
    convert_to_raw: bool = False
    out: str = ""
    deployer_input: str = ""
    test_accounts: str = ""
    create_accounts_file: str = ""
    profile: str = ""
    generate_profile: str = ""
    image_disk_format: str = ""
    image: str = ""
    flavor_min_mem: int = 0
    flavor_min_disk: int = 0
    network_id: str = Field(default="", alias="networkID")
    append: str = ""
    remove: str = ""
    overrides: str = ""
    timeout: int = 0


class WorkflowTempestRunSpec(KubeModel):
    include_list: Optional[str] = None
    exclude_list: Optional[str] = None
    expected_failures_list: Optional[str] = None
    concurrency: Optional[int] = None
    smoke: Optional[bool] = None
    parallel: Optional[bool] = None
    serial: Optional[bool] = None
    worker_file: Optional[str] = None
    external_plugin: Optional[List[ExternalPlugin]] = None
    extra_images: Optional[List[ExtraImage]] = None
    extra_rpms: Optional[List[str]] = Field(default=None, alias="extraRPMs")


class WorkflowTempestconfRunSpec(KubeModel):
    create: Optional[bool] = None
    collect_timing: Optional[bool] = None
    insecure: Optional[bool] = None
    no_default_deployer: Optional[bool] = None
    debug: Optional[bool] = None
    verbose: Optional[bool] = None
    non_admin: Optional[bool] = None
    retry_image: Optional[bool] = None
    convert_to_raw: Optional[bool] = None
    out: Optional[str] = None
    deployer_input: Optional[str] = None
    test_accounts: Optional[str] = None
    create_accounts_file: Optional[str] = None
    profile: Optional[str] = None
    generate_profile: Optional[str] = None
    image_disk_format: Optional[str] = None
    image: Optional[str] = None
    flavor_min_mem: Optional[int] = None
    flavor_min_disk: Optional[int] = None
    network_id: Optional[str] = Field(default=None, alias="networkID")
    append: Optional[str] = None
    remove: Optional[str] = None
    overrides: Optional[str] = None
    timeout: Optional[int] = None


class TempestWorkflowStep(WorkflowCommonOptions):
    open_stack_config_map: Optional[str] = None
    open_stack_config_secret: Optional[str] = None
    network_attachments: Optional[List[str]] = None
    ssh_key_secret_name: Optional[str] = Field(default=None, alias="SSHKeySecretName")
    config_overwrite: Optional[Dict[str, str]] = None
    tempest_run: WorkflowTempestRunSpec = Field(default_factory=WorkflowTempestRunSpec)
    tempestconf_run: WorkflowTempestconfRunSpec = Field(
        default_factory=WorkflowTempestconfRunSpec
    )


class TempestSpec(WorkflowSpec):
    open_stack_config_map: str = "openstack-config"
    open_stack_config_secret: str = "openstack-config-secret"
    network_attachments: List[str] = Field(default_factory=list)
    debug: bool = False
    cleanup: bool = False
    rerun_failed_tests: bool = False
    rerun_override_status: bool = False
    timing_data_url: str = ""
    ssh_key_secret_name: str = Field(default="", alias="SSHKeySecretName")
    config_overwrite: Dict[str, str] = Field(default_factory=dict)
    tempest_run: TempestRunSpec = Field(default_factory=TempestRunSpec)
    tempestconf_run: TempestconfRunSpec = Field(default_factory=TempestconfRunSpec)
    workflow: List[TempestWorkflowStep] = Field(default_factory=list)


class Tempest(WorkloadInstance):
    plural: ClassVar[str] = "tempests"

    kind: Literal["Tempest"] = "Tempest"
    spec: TempestSpec = Field(default_factory=TempestSpec)


TEMPEST_OVERLAY = OverlayTable(
    fields=COMMON_OVERLAY_FIELDS
    + (
        "open_stack_config_map",
        "open_stack_config_secret",
        "network_attachments",
        "ssh_key_secret_name",
        "config_overwrite",
    ),
    groups={
        "tempest_run": GroupOverlay(
            source="tempest_run",
            table=OverlayTable(fields=tuple(WorkflowTempestRunSpec.model_fields)),
        ),
        "tempestconf_run": GroupOverlay(
            source="tempestconf_run",
            table=OverlayTable(fields=tuple(WorkflowTempestconfRunSpec.model_fields)),
        ),
    },
)


def _flag(value: bool) -> str:
    return "true" if value else "false"


def _int_or(value: int, placeholder: str) -> str:
    return str(value) if value > 0 else placeholder


def _set_file(
    custom_data: Dict[str, str], env: Dict[str, str], content: str, filename: str, var: str
) -> None:
    if not content:
        return
    custom_data[filename] = content
    env[var] = OPERATOR_BASE_DIR + filename


def _append_dict(env: Dict[str, str], fields: Dict[str, str]) -> None:
    for key, value in fields.items():
        env[key] = env.get(key, "") + value + ","


def tempest_env(spec: TempestSpec, step_dir_name: str) -> Dict[str, Dict[str, str]]:
    """Render the env-vars and custom-data payloads for one step."""
    env: Dict[str, str] = {}
    custom_data: Dict[str, str] = {}
    run = spec.tempest_run

    _set_file(custom_data, env, run.worker_file, "worker_file.yaml", "TEMPEST_WORKER_FILE")
    _set_file(custom_data, env, run.include_list, "include.txt", "TEMPEST_INCLUDE_LIST")
    _set_file(custom_data, env, run.exclude_list, "exclude.txt", "TEMPEST_EXCLUDE_LIST")
    _set_file(
        custom_data,
        env,
        run.expected_failures_list,
        "expected_failures.txt",
        "TEMPEST_EXPECTED_FAILURES_LIST",
    )
    env["TEMPEST_SERIAL"] = _flag(run.serial)
    env["TEMPEST_PARALLEL"] = _flag(run.parallel)
    env["TEMPEST_SMOKE"] = _flag(run.smoke)
    env["USE_EXTERNAL_FILES"] = "true"
    if run.concurrency > 0:
        env["TEMPEST_CONCURRENCY"] = str(run.concurrency)
    for plugin in run.external_plugin:
        _append_dict(
            env,
            {
                "TEMPEST_EXTERNAL_PLUGIN_GIT_URL": plugin.repository,
                "TEMPEST_EXTERNAL_PLUGIN_CHANGE_URL": plugin.change_repository or "-",
                "TEMPEST_EXTERNAL_PLUGIN_REFSPEC": plugin.change_refspec or "-",
            },
        )
    env["TEMPEST_WORKFLOW_STEP_DIR_NAME"] = step_dir_name
    for img in run.extra_images:
        _append_dict(
            env,
            {
                "TEMPEST_EXTRA_IMAGES_URL": img.url,
                "TEMPEST_EXTRA_IMAGES_OS_CLOUD": img.os_cloud,
                "TEMPEST_EXTRA_IMAGES_CONTAINER_FORMAT": img.container_format,
                "TEMPEST_EXTRA_IMAGES_ID": img.id,
                "TEMPEST_EXTRA_IMAGES_NAME": img.name,
                "TEMPEST_EXTRA_IMAGES_DISK_FORMAT": img.disk_format,
                "TEMPEST_EXTRA_IMAGES_CREATE_TIMEOUT": _int_or(img.image_creation_timeout, ""),
                "TEMPEST_EXTRA_IMAGES_FLAVOR_ID": img.flavor.id,
                "TEMPEST_EXTRA_IMAGES_FLAVOR_NAME": img.flavor.name,
                "TEMPEST_EXTRA_IMAGES_FLAVOR_OS_CLOUD": img.flavor.os_cloud,
                "TEMPEST_EXTRA_IMAGES_FLAVOR_RAM": _int_or(img.flavor.ram, "-"),
                "TEMPEST_EXTRA_IMAGES_FLAVOR_DISK": _int_or(img.flavor.disk, "-"),
                "TEMPEST_EXTRA_IMAGES_FLAVOR_VCPUS": _int_or(img.flavor.vcpus, "-"),
            },
        )
    for rpm in run.extra_rpms:
        _append_dict(env, {"TEMPEST_EXTRA_RPMS": rpm})

    conf = spec.tempestconf_run
    _set_file(custom_data, env, conf.deployer_input, "deployer_input.ini", "TEMPESTCONF_DEPLOYER_INPUT")
    _set_file(custom_data, env, conf.test_accounts, "accounts.yaml", "TEMPESTCONF_TEST_ACCOUNTS")
    _set_file(custom_data, env, conf.profile, "profile.yaml", "TEMPESTCONF_PROFILE")
    for var, value in (
        ("TEMPESTCONF_CREATE", conf.create),
        ("TEMPESTCONF_COLLECT_TIMING", conf.collect_timing),
        ("TEMPESTCONF_INSECURE", conf.insecure),
        ("TEMPESTCONF_NO_DEFAULT_DEPLOYER", conf.no_default_deployer),
        ("TEMPESTCONF_DEBUG", conf.debug),
        ("TEMPESTCONF_VERBOSE", conf.verbose),
        ("TEMPESTCONF_NON_ADMIN", conf.non_admin),
        ("TEMPESTCONF_RETRY_IMAGE", conf.retry_image),
        ("TEMPESTCONF_CONVERT_TO_RAW", conf.convert_to_raw),
    ):
        env[var] = _flag(value)
    env["TEMPESTCONF_TIMEOUT"] = _int_or(conf.timeout, "")
    env["TEMPESTCONF_FLAVOR_MIN_MEM"] = _int_or(conf.flavor_min_mem, "")
    env["TEMPESTCONF_FLAVOR_MIN_DISK"] = _int_or(conf.flavor_min_disk, "")
    env["TEMPESTCONF_OUT"] = conf.out
    env["TEMPESTCONF_CREATE_ACCOUNTS_FILE"] = conf.create_accounts_file
    env["TEMPESTCONF_GENERATE_PROFILE"] = conf.generate_profile
    env["TEMPESTCONF_IMAGE_DISK_FORMAT"] = conf.image_disk_format
    env["TEMPESTCONF_IMAGE"] = conf.image
    env["TEMPESTCONF_NETWORK_ID"] = conf.network_id
    env["TEMPESTCONF_APPEND"] = conf.append
    env["TEMPESTCONF_REMOVE"] = conf.remove
    env["TEMPESTCONF_OVERRIDES"] = conf.overrides

    custom_data.update(spec.config_overwrite)

    env["TEMPEST_DEBUG_MODE"] = _flag(spec.debug)
    env["TEMPEST_CLEANUP"] = _flag(spec.cleanup)
    env["TEMPEST_RERUN_FAILED_TESTS"] = _flag(spec.rerun_failed_tests)
    env["TEMPEST_RERUN_OVERRIDE_STATUS"] = _flag(spec.rerun_override_status)
    env["TEMPEST_TIMING_DATA_URL"] = spec.timing_data_url
    return {"env": env, "custom_data": custom_data}


class TempestFlavor(WorkloadFlavor):
    kind = "Tempest"
    service_name = SERVICE_NAME
    model = Tempest
    needs_network_attachments = True
    needs_config = True
    needs_finalizer = True
    overlay_table = TEMPEST_OVERLAY

    async def validate_inputs(self, ctx: FlavorContext, instance: WorkloadInstance) -> None:
        spec: TempestSpec = instance.spec
        await self.require_config_record(ctx, instance, spec.open_stack_config_map)
        await self.require_secret(ctx, instance, spec.open_stack_config_secret)
        if spec.ssh_key_secret_name:
            await self.require_secret(ctx, instance, spec.ssh_key_secret_name)

    async def generate_config(
        self, ctx: FlavorContext, instance: WorkloadInstance, step_index: int
    ) -> None:
        payloads = tempest_env(instance.spec, self.artifact_name(instance, step_index))
        logger.debug(
            f"Rendered {len(payloads['env'])} env vars and "
            f"{len(payloads['custom_data'])} custom data entries for {instance.name}"
        )
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
                    custom_data_record_name(instance.name, step_index): payloads["custom_data"],
                    env_vars_record_name(instance.name, step_index): payloads["env"],
                },
                labels,
            )
        except Exception as exc:
            raise ConfigGenerationError(
                f"failed to write tempest config for step {step_index}: {exc}"
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
        spec: TempestSpec = instance.spec
        custom_data = custom_data_record_name(instance.name, step_index)
        mount_certs = await secret_present(ctx, instance, CA_BUNDLE_SECRET)
        mount_ssh_key = bool(spec.ssh_key_secret_name)

        volumes: List[Dict[str, Any]] = [
            config_map_volume(CONFIG_DATA_VOLUME, custom_data),
            config_map_volume(OPENSTACK_CONFIG_VOLUME, spec.open_stack_config_map, 0o644),
            secret_volume(OPENSTACK_CONFIG_SECRET_VOLUME, spec.open_stack_config_secret),
            logs_volume(storage_name),
        ] + ephemeral_volumes()
        mounts: List[Dict[str, Any]] = [
            volume_mount(CONFIG_DATA_VOLUME, "/etc/test_operator"),
            volume_mount(WORKDIR_VOLUME, "/var/lib/tempest"),
            volume_mount(TMP_VOLUME, "/tmp"),
            volume_mount(LOGS_VOLUME, "/var/lib/tempest/external_files"),
            volume_mount(OPENSTACK_CONFIG_VOLUME, "/etc/openstack/clouds.yaml", "clouds.yaml", True),
            volume_mount(
                OPENSTACK_CONFIG_VOLUME,
                "/var/lib/tempest/.config/openstack/clouds.yaml",
                "clouds.yaml",
                True,
            ),
            volume_mount(OPENSTACK_CONFIG_SECRET_VOLUME, "/etc/openstack/secure.yaml", "secure.yaml", True),
        ]
        if mount_certs:
            volumes.append(secret_volume(CA_CERTS_VOLUME, CA_BUNDLE_SECRET))
            mounts.append(
                volume_mount(
                    CA_CERTS_VOLUME,
                    "/etc/pki/ca-trust/extracted/pem/tls-ca-bundle.pem",
                    "tls-ca-bundle.pem",
                    True,
                )
            )
        if mount_ssh_key:
            volumes.append(
                secret_volume(
                    "ssh-key",
                    spec.ssh_key_secret_name,
                    [{"key": "ssh-privatekey", "path": "ssh_key"}],
                )
            )
            mounts.append(volume_mount("ssh-key", "/var/lib/tempest/id_ecdsa", "ssh_key"))

        return build_test_pod(
            instance,
            name=self.artifact_name(instance, step_index),
            labels=labels,
            annotations=annotations,
            container_image=await resolve_container_image(ctx, instance),
            container_name=f"{instance.name}-tests-runner",
            run_as_user=RUN_AS_USER,
            env_from_config_maps=[
                custom_data,
                env_vars_record_name(instance.name, step_index),
            ],
            volumes=volumes,
            volume_mounts=mounts,
        )
