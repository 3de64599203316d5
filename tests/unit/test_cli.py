import asyncio

from typer.testing import CliRunner

import testflow.store as store_module
from testflow.cli import app
from testflow.conditions import ConditionList, INPUT_READY, REASON_ERROR
from testflow.contracts import ArtifactPhase, LockRecord, ObjectMeta, Severity, StepArtifact
from testflow.flavors.tempest import Tempest
from testflow.store.inmemory import InMemoryClusterStore

NAMESPACE = "openstack"


def _setup_store() -> InMemoryClusterStore:
    store = InMemoryClusterStore()
    store_module._store_instance = store
    return store


def test_flavors_lists_every_kind():
    runner = CliRunner()
    result = runner.invoke(app, ["flavors"])
    assert result.exit_code == 0, f"Output: {result.stdout}"
    assert "Tempest\ttempests" in result.stdout
    assert "Tobiko\ttobikoes" in result.stdout
    assert "AnsibleTest\tansibletests" in result.stdout
    assert "HorizonTest\thorizontests" in result.stdout


def test_lock_show_reports_holder():
    store = _setup_store()
    runner = CliRunner()

    result = runner.invoke(app, ["lock", "show", "--namespace", NAMESPACE])
    assert result.exit_code == 0, f"Output: {result.stdout}"
    assert "No lock held" in result.stdout

    asyncio.run(
        store.create_lock(
            LockRecord(
                metadata=ObjectMeta(name="test-operator-lock", namespace=NAMESPACE),
                owner="uid-1",
            )
        )
    )
    result = runner.invoke(app, ["lock", "show", "--namespace", NAMESPACE])
    assert result.exit_code == 0, f"Output: {result.stdout}"
    assert "test-operator-lock in openstack held by uid-1" in result.stdout


def test_lock_show_rejects_malformed_record():
    store = _setup_store()
    asyncio.run(
        store.put_lock(
            LockRecord(metadata=ObjectMeta(name="test-operator-lock", namespace=NAMESPACE))
        )
    )

    result = CliRunner().invoke(app, ["lock", "show", "--namespace", NAMESPACE])
    assert result.exit_code == 1
    assert "Malformed lock record" in result.stdout


def test_instance_show_prints_conditions_and_latest_step():
    store = _setup_store()

    async def seed():
        instance = await store.add_instance(
            Tempest(
                metadata=ObjectMeta(name="smoke", namespace=NAMESPACE),
                spec={"workflow": [{"step_name": "api"}, {"step_name": "scenario"}]},
            )
        )
        conditions = ConditionList(instance.status.conditions)
        conditions.init([INPUT_READY])
        conditions.mark_false(INPUT_READY, REASON_ERROR, Severity.ERROR, "secret missing")
        await store.patch_instance(instance)
        for index, name in enumerate(["smoke-s00-api", "smoke-s01-scenario"]):
            await store.create_artifact(
                StepArtifact(
                    metadata=ObjectMeta(
                        name=name,
                        namespace=NAMESPACE,
                        labels={"instanceName": "smoke", "workflowStep": str(index)},
                    ),
                    phase=ArtifactPhase.RUNNING,
                )
            )

    asyncio.run(seed())

    result = CliRunner().invoke(
        app, ["instance", "show", "tempest", "smoke", "--namespace", NAMESPACE]
    )
    assert result.exit_code == 0, f"Output: {result.stdout}"
    assert "Tempest openstack/smoke" in result.stdout
    assert "- InputReady: False (Error) secret missing" in result.stdout
    assert "Latest step: smoke-s01-scenario (step 1, Running)" in result.stdout


def test_instance_show_missing_and_unknown_kind():
    _setup_store()
    runner = CliRunner()

    result = runner.invoke(app, ["instance", "show", "tempest", "absent", "--namespace", NAMESPACE])
    assert result.exit_code == 1
    assert "Instance not found" in result.stdout

    result = runner.invoke(app, ["instance", "show", "rally", "smoke"])
    assert result.exit_code == 1
    assert "Unknown workload kind" in result.stdout


def test_run_stops_after_lifespan():
    _setup_store()
    result = CliRunner().invoke(
        app, ["run", "--namespace", NAMESPACE, "--lifespan", "0.1", "--workers", "1"]
    )
    assert result.exit_code == 0, f"Output: {result.stdout}"
    assert "Starting controller (namespace: openstack)" in result.stdout
