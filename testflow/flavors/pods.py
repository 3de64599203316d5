"""Pod templates shared by the test flavors."""

from __future__ import annotations

import os
from typing import Any, Dict, List, Optional, Sequence

from ..constants import OPERATOR_CONFIG_RECORD
from ..contracts import ObjectMeta, StepArtifact, WorkloadInstance
from .base import FlavorContext

LOGS_VOLUME = "test-operator-logs"
WORKDIR_VOLUME = "test-operator-ephemeral-workdir"
TMP_VOLUME = "test-operator-ephemeral-temporary"
CA_CERTS_VOLUME = "ca-certs"
OPENSTACK_CONFIG_VOLUME = "openstack-config"
OPENSTACK_CONFIG_SECRET_VOLUME = "openstack-config-secret"
SCRIPTS_DEFAULT_MODE = 0o755


async def resolve_container_image(ctx: FlavorContext, instance: WorkloadInstance) -> str:
    """Resolve the container image for ``instance``.

    ``spec.container_image`` wins over the ``<kind>-image`` entry of the operator config
    record, which wins over the environment default. The record itself
    must exist.
    """
    image = getattr(instance.spec, "container_image", "") or ""
    if image:
        return image

    record = await ctx.store.get_config_record(instance.namespace, OPERATOR_CONFIG_RECORD)
    image = record.data.get(f"{instance.kind.lower()}-image", "")
    if image:
        return image

    return os.getenv(f"RELATED_IMAGE_TEST_{instance.kind.upper()}_IMAGE_URL_DEFAULT", "")


async def secret_present(ctx: FlavorContext, instance: WorkloadInstance, name: str) -> bool:
    if not name:
        return False
    return await ctx.store.secret_exists(instance.namespace, name)


def security_context(
    run_as_user: int, capabilities: Sequence[str], privileged: bool
) -> Dict[str, Any]:
    context: Dict[str, Any] = {
        "runAsUser": run_as_user,
        "runAsGroup": run_as_user,
        "readOnlyRootFilesystem": True,
        "runAsNonRoot": True,
        "allowPrivilegeEscalation": False,
        "capabilities": {},
        "seccompProfile": {"type": "RuntimeDefault"},
    }
    if privileged:
        context["runAsNonRoot"] = False
        context["allowPrivilegeEscalation"] = True
        context["readOnlyRootFilesystem"] = False
        context["capabilities"]["add"] = list(capabilities)
    else:
        context["capabilities"]["drop"] = ["ALL"]
    return context


def config_map_volume(name: str, config_map: str, mode: int = SCRIPTS_DEFAULT_MODE) -> Dict[str, Any]:
    return {"name": name, "configMap": {"name": config_map, "defaultMode": mode}}


def secret_volume(name: str, secret: str, items: Optional[List[Dict[str, str]]] = None) -> Dict[str, Any]:
    source: Dict[str, Any] = {"secretName": secret}
    if items:
        source["items"] = items
    return {"name": name, "secret": source}


def logs_volume(claim_name: str) -> Dict[str, Any]:
    return {"name": LOGS_VOLUME, "persistentVolumeClaim": {"claimName": claim_name}}


def ephemeral_volumes() -> List[Dict[str, Any]]:
    return [
        {"name": WORKDIR_VOLUME, "emptyDir": {}},
        {"name": TMP_VOLUME, "emptyDir": {}},
    ]


def volume_mount(name: str, path: str, sub_path: str = "", read_only: bool = False) -> Dict[str, Any]:
    mount: Dict[str, Any] = {"name": name, "mountPath": path, "readOnly": read_only}
    if sub_path:
        mount["subPath"] = sub_path
    return mount


def build_test_pod(
    instance: WorkloadInstance,
    name: str,
    labels: Dict[str, str],
    annotations: Dict[str, str],
    container_image: str,
    container_name: str,
    run_as_user: int,
    capabilities: Sequence[str] = (),
    env: Optional[Dict[str, str]] = None,
    env_from_config_maps: Sequence[str] = (),
    volumes: Optional[List[Dict[str, Any]]] = None,
    volume_mounts: Optional[List[Dict[str, Any]]] = None,
) -> StepArtifact:
    """Assemble the Pod that runs one step of ``instance``.

    Scheduling and security options come from the (already step-merged) spec.
    """
    spec = instance.spec
    privileged = bool(getattr(spec, "privileged", False))
    container: Dict[str, Any] = {
        "name": container_name,
        "image": container_image,
        "args": [],
        "env": [{"name": k, "value": v} for k, v in sorted((env or {}).items())],
        "envFrom": [{"configMapRef": {"name": cm}} for cm in env_from_config_maps],
        "volumeMounts": volume_mounts or [],
        "securityContext": security_context(run_as_user, capabilities, privileged),
    }
    pod_security: Dict[str, Any] = {
        "runAsUser": run_as_user,
        "runAsGroup": run_as_user,
        "fsGroup": run_as_user,
    }
    selinux_level = getattr(spec, "selinux_level", "")
    if selinux_level:
        pod_security["seLinuxOptions"] = {"level": selinux_level}

    pod_spec: Dict[str, Any] = {
        "automountServiceAccountToken": privileged,
        "restartPolicy": "Never",
        "securityContext": pod_security,
        "containers": [container],
        "volumes": volumes or [],
    }
    node_selector = getattr(spec, "node_selector", None)
    if node_selector:
        pod_spec["nodeSelector"] = dict(node_selector)
    tolerations = getattr(spec, "tolerations", None)
    if tolerations:
        pod_spec["tolerations"] = list(tolerations)

    return StepArtifact(
        kind="Pod",
        api_version="v1",
        metadata=ObjectMeta(
            name=name,
            namespace=instance.namespace,
            labels=dict(labels),
            annotations=dict(annotations),
        ),
        spec=pod_spec,
    )

