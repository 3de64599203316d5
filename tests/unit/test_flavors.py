"""Per-framework configuration rendering and pod templates."""

import pytest
import yaml
from pydantic import ValidationError

from testflow.config import OperatorConfig
from testflow.contracts import ConfigRecord, ObjectMeta
from testflow.errors import ConfigGenerationError, InputValidationError, NotFoundError
from testflow.flavors import FlavorContext, get_flavor
from testflow.flavors.ansibletest import AnsibleTestFlavor
from testflow.flavors.horizontest import HorizonTest, HorizonTestFlavor, horizontest_env
from testflow.flavors.pods import resolve_container_image
from testflow.flavors.tempest import Tempest, TempestFlavor, TempestSpec, tempest_env
from testflow.flavors.tobiko import TobikoFlavor, TobikoSpec, tobiko_env

NAMESPACE = "openstack"


def _ctx(store):
    return FlavorContext(store, OperatorConfig())


def _env_dict(container):
    return {item["name"]: item["value"] for item in container["env"]}


def test_tempest_env_writes_lists_as_files():
    spec = TempestSpec(
        tempest_run={
            "include_list": "tempest.api.compute\n",
            "exclude_list": "tempest.api.compute.admin\n",
            "concurrency": 8,
            "smoke": True,
        },
        config_overwrite={"extra.conf": "[DEFAULT]\n"},
    )
    payloads = tempest_env(spec, "smoke")
    env, data = payloads["env"], payloads["custom_data"]

    assert env["TEMPEST_INCLUDE_LIST"] == "/etc/test_operator/include.txt"
    assert data["include.txt"] == "tempest.api.compute\n"
    assert data["exclude.txt"] == "tempest.api.compute.admin\n"
    assert "TEMPEST_EXPECTED_FAILURES_LIST" not in env
    assert env["TEMPEST_CONCURRENCY"] == "8"
    assert env["TEMPEST_SMOKE"] == "true"
    assert env["TEMPEST_SERIAL"] == "false"
    assert env["TEMPESTCONF_CREATE"] == "true"
    assert env["TEMPEST_WORKFLOW_STEP_DIR_NAME"] == "smoke"
    assert data["extra.conf"] == "[DEFAULT]\n"


def test_tempest_env_plugin_placeholders():
    spec = TempestSpec(
        tempest_run={
            "external_plugin": [
                {"repository": "https://opendev.org/openstack/barbican-tempest-plugin"},
                {
                    "repository": "https://opendev.org/openstack/neutron-tempest-plugin",
                    "change_repository": "https://review.opendev.org/neutron-tempest-plugin",
                    "change_refspec": "refs/changes/97/1/1",
                },
            ],
            "concurrency": 0,
        }
    )
    env = tempest_env(spec, "smoke")["env"]
    assert env["TEMPEST_EXTERNAL_PLUGIN_CHANGE_URL"] == (
        "-,https://review.opendev.org/neutron-tempest-plugin,"
    )
    assert env["TEMPEST_EXTERNAL_PLUGIN_REFSPEC"] == "-,refs/changes/97/1/1,"
    assert "TEMPEST_CONCURRENCY" not in env


def test_tempest_wire_aliases():
    instance = Tempest.model_validate(
        {
            "metadata": {"name": "smoke", "namespace": NAMESPACE},
            "spec": {
                "SSHKeySecretName": "compute-key",
                "tempestconfRun": {"networkID": "net-1"},
                "tempestRun": {"extraRPMs": ["a.rpm"]},
            },
        }
    )
    assert instance.spec.ssh_key_secret_name == "compute-key"
    assert instance.spec.tempestconf_run.network_id == "net-1"
    assert tempest_env(instance.spec, "smoke")["env"]["TEMPEST_EXTRA_RPMS"] == "a.rpm,"


def test_duplicate_step_names_are_rejected(make_tempest):
    with pytest.raises(ValidationError):
        make_tempest(workflow=[{"step_name": "api"}, {"step_name": "api"}])


def test_resolve_step_merges_nested_groups(make_tempest):
    flavor = TempestFlavor()
    instance = make_tempest(
        tempest_run={"include_list": "tempest.api", "concurrency": 2},
        workflow=[
            {"step_name": "api"},
            {"step_name": "scenario", "tempest_run": {"concurrency": 4}},
        ],
    )
    merged = flavor.resolve_step(instance, 1)
    assert merged.spec.tempest_run.concurrency == 4
    assert merged.spec.tempest_run.include_list == "tempest.api"
    assert instance.spec.tempest_run.concurrency == 2
    assert merged.metadata is instance.metadata
    assert flavor.artifact_name(instance, 1) == "smoke-s01-scenario"
    assert flavor.artifact_name(make_tempest(), 0) == "smoke"


def test_tobiko_env_flags():
    env = tobiko_env(TobikoSpec(prevent_create=True, num_processes=3), "tobiko")
    assert env["TOBIKO_PREVENT_CREATE"] == "True"
    assert env["TOX_NUM_PROCESSES"] == "3"
    assert env["TOBIKO_TESTENV"] == "py3"

    env = tobiko_env(TobikoSpec(), "tobiko")
    assert env["TOBIKO_PREVENT_CREATE"] == ""
    assert "TOX_NUM_PROCESSES" not in env
    assert "TOBIKO_PATCH_REPOSITORY" not in env


def test_get_flavor_ignores_case():
    assert isinstance(get_flavor("tempest"), TempestFlavor)
    assert isinstance(get_flavor("TOBIKO"), TobikoFlavor)
    assert isinstance(get_flavor("horizontest"), HorizonTestFlavor)
    with pytest.raises(ValueError):
        get_flavor("rally")


def test_condition_sets_per_flavor():
    assert TempestFlavor().initial_conditions() == [
        "InputReady",
        "ServiceConfigReady",
        "DeploymentReady",
        "NetworkAttachmentsReady",
    ]
    assert AnsibleTestFlavor().initial_conditions() == ["InputReady", "DeploymentReady"]
    assert HorizonTestFlavor().initial_conditions() == ["DeploymentReady"]


def test_ansibletest_never_runs_in_parallel(make_ansibletest):
    assert AnsibleTestFlavor().parallel(make_ansibletest(parallel=True)) is False


@pytest.mark.asyncio
async def test_tempest_inputs_must_exist(store, seed_inputs, make_tempest):
    flavor = TempestFlavor()
    instance = make_tempest()
    with pytest.raises(InputValidationError) as excinfo:
        await flavor.validate_inputs(_ctx(store), instance)
    assert "openstack-config" in str(excinfo.value)

    await seed_inputs(store)
    await flavor.validate_inputs(_ctx(store), instance)

    with pytest.raises(InputValidationError):
        await flavor.validate_inputs(_ctx(store), make_tempest(ssh_key_secret_name="missing"))


@pytest.mark.asyncio
async def test_ansibletest_checks_workload_secret(store, seed_inputs, make_ansibletest):
    await seed_inputs(store)
    flavor = AnsibleTestFlavor()
    await flavor.validate_inputs(_ctx(store), make_ansibletest())
    with pytest.raises(InputValidationError):
        await flavor.validate_inputs(
            _ctx(store), make_ansibletest(workload_ssh_key_secret_name="workload-key")
        )


@pytest.mark.asyncio
async def test_container_image_resolution_order(store, make_tempest, monkeypatch):
    ctx = _ctx(store)
    assert await resolve_container_image(ctx, make_tempest(container_image="custom:1")) == "custom:1"

    with pytest.raises(NotFoundError):
        await resolve_container_image(ctx, make_tempest(container_image=""))

    await store.apply_config_record(
        ConfigRecord(
            metadata=ObjectMeta(name="test-operator-config", namespace=NAMESPACE),
            data={"tempest-image": "from-record:1"},
        )
    )
    assert await resolve_container_image(ctx, make_tempest(container_image="")) == "from-record:1"

    monkeypatch.setenv("RELATED_IMAGE_TEST_TOBIKO_IMAGE_URL_DEFAULT", "from-env:1")
    tobiko = TobikoFlavor().model(
        metadata=ObjectMeta(name="tobiko", namespace=NAMESPACE), spec={}
    )
    assert await resolve_container_image(ctx, tobiko) == "from-env:1"


@pytest.mark.asyncio
async def test_tempest_pod_template(store, make_tempest):
    await store.add_secret(NAMESPACE, "combined-ca-bundle")
    flavor = TempestFlavor()
    instance = make_tempest(ssh_key_secret_name="compute-key", node_selector={"zone": "a"})

    pod = await flavor.build_artifact(
        _ctx(store), instance, {"app": "tempest"}, {}, 0, "smoke-0-abcde"
    )
    container = pod.spec["containers"][0]
    assert pod.name == "smoke"
    assert container["name"] == "smoke-tests-runner"
    assert container["securityContext"]["runAsUser"] == 42480
    assert container["securityContext"]["capabilities"] == {"drop": ["ALL"]}
    assert [ref["configMapRef"]["name"] for ref in container["envFrom"]] == [
        "smoke-custom-data-s0",
        "smoke-env-vars-s0",
    ]
    volumes = {volume["name"]: volume for volume in pod.spec["volumes"]}
    assert volumes["test-operator-logs"]["persistentVolumeClaim"]["claimName"] == "smoke-0-abcde"
    assert "ca-certs" in volumes
    assert volumes["ssh-key"]["secret"]["secretName"] == "compute-key"
    assert pod.spec["nodeSelector"] == {"zone": "a"}
    assert pod.spec["restartPolicy"] == "Never"


@pytest.mark.asyncio
async def test_tobiko_pod_is_privileged_on_request(store, make_tobiko):
    flavor = TobikoFlavor()
    instance = make_tobiko(privileged=True, private_key="priv", public_key="pub", num_processes=2)

    pod = await flavor.build_artifact(_ctx(store), instance, {}, {}, 0, "tobiko-0-abcde")
    container = pod.spec["containers"][0]
    assert container["securityContext"]["capabilities"] == {"add": ["NET_ADMIN", "NET_RAW"]}
    assert container["securityContext"]["allowPrivilegeEscalation"] is True
    assert _env_dict(container)["TOX_NUM_PROCESSES"] == "2"
    names = [volume["name"] for volume in pod.spec["volumes"]]
    assert "tobiko-private-key" in names
    assert "ca-certs" not in names


@pytest.mark.asyncio
async def test_tobiko_config_records(store, config, make_tobiko):
    instance = await store.add_instance(make_tobiko(config="[DEFAULT]\n", private_key="k"))
    await TobikoFlavor().generate_config(FlavorContext(store, config), instance, 0)

    record = await store.get_config_record(NAMESPACE, "tobikotobiko-config")
    assert record.data == {"tobiko.conf": "[DEFAULT]\n"}
    assert record.metadata.owner_references[0].uid == instance.uid
    private = await store.get_config_record(NAMESPACE, "tobikotobiko-private-key")
    assert private.data == {"id_ecdsa": "k"}


def _horizontest(**spec):
    spec.setdefault("container_image", "quay.io/podified-antelope-centos9/openstack-horizontest:current")
    return HorizonTest(metadata=ObjectMeta(name="horizon", namespace=NAMESPACE), spec=spec)


def test_horizontest_env_defaults_and_wire_names():
    instance = HorizonTest.model_validate(
        {
            "metadata": {"name": "horizon", "namespace": NAMESPACE},
            "spec": {
                "dashboardUrl": "https://horizon.example.com/",
                "horizonRepoBranch": "master",
                "projectNameXpath": "//span[@class='rcueicon rcueicon-folder-open']",
                "debug": True,
            },
        }
    )
    env = horizontest_env(instance.spec)
    assert env["DASHBOARD_URL"] == "https://horizon.example.com/"
    assert env["HORIZON_REPO_BRANCH"] == "master"
    assert env["PROJECT_NAME_XPATH"].startswith("//span")
    assert env["HORIZONTEST_DEBUG_MODE"] == "true"
    assert env["IMAGE_FILE"] == "/var/lib/horizontest/cirros-0.6.2-x86_64-disk.img"
    assert env["FLAVOR_NAME"] == "m1.tiny"
    assert env["HORIZON_LOGS_DIR_NAME"] == "horizon"
    assert HorizonTestFlavor().workflow_length(instance) == 0


@pytest.mark.asyncio
async def test_horizontest_pod_uses_clouds_record_with_password(store, config):
    await store.apply_config_record(
        ConfigRecord(
            metadata=ObjectMeta(name="openstack-config", namespace=NAMESPACE),
            data={"clouds.yaml": "clouds:\n  default:\n    auth:\n      username: admin\n"},
        )
    )
    instance = await store.add_instance(_horizontest(kubeconfig_secret_name="kube"))

    pod = await HorizonTestFlavor().build_artifact(
        FlavorContext(store, config), instance, {}, {}, 0, "horizon-0-abcde"
    )

    record = await store.get_config_record(NAMESPACE, "test-operator-clouds-config")
    auth = yaml.safe_load(record.data["clouds.yaml"])["clouds"]["default"]["auth"]
    assert auth == {"username": "admin", "password": "12345678"}
    assert record.metadata.owner_references[0].uid == instance.uid

    container = pod.spec["containers"][0]
    assert pod.name == "horizon"
    assert container["securityContext"]["runAsUser"] == 42455
    volumes = {volume["name"]: volume for volume in pod.spec["volumes"]}
    assert volumes["openstack-config"]["configMap"]["name"] == "test-operator-clouds-config"
    assert volumes["kubeconfig"]["secret"]["secretName"] == "kube"
    mounts = {mount["mountPath"] for mount in container["volumeMounts"]}
    assert "/var/lib/horizontest/.config/openstack/clouds.yaml" in mounts
    assert "/var/lib/horizontest/.kube/config" in mounts


@pytest.mark.asyncio
async def test_existing_clouds_record_is_kept(store, config):
    await store.apply_config_record(
        ConfigRecord(
            metadata=ObjectMeta(name="test-operator-clouds-config", namespace=NAMESPACE),
            data={"clouds.yaml": "clouds: {default: {auth: {password: secret}}}"},
        )
    )
    instance = await store.add_instance(_horizontest())

    await HorizonTestFlavor().build_artifact(
        FlavorContext(store, config), instance, {}, {}, 0, "horizon-0-abcde"
    )

    record = await store.get_config_record(NAMESPACE, "test-operator-clouds-config")
    assert record.data == {"clouds.yaml": "clouds: {default: {auth: {password: secret}}}"}


@pytest.mark.asyncio
async def test_clouds_yaml_without_default_cloud_is_rejected(store, config):
    await store.apply_config_record(
        ConfigRecord(
            metadata=ObjectMeta(name="openstack-config", namespace=NAMESPACE),
            data={"clouds.yaml": "clouds:\n  overcloud: {}\n"},
        )
    )
    instance = await store.add_instance(_horizontest())

    with pytest.raises(ConfigGenerationError):
        await HorizonTestFlavor().build_artifact(
            FlavorContext(store, config), instance, {}, {}, 0, "horizon-0-abcde"
        )
