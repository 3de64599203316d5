"""In-memory cluster store behaviour."""

import pytest

from testflow.contracts import (
    ArtifactPhase,
    ConfigRecord,
    ObjectMeta,
    ReconcileRequest,
    StepArtifact,
)
from testflow.errors import AlreadyExistsError, NotFoundError
from testflow.flavors.tempest import Tempest

NAMESPACE = "openstack"


def _owned_pod(owner, name="smoke"):
    return StepArtifact(
        metadata=ObjectMeta(
            name=name,
            namespace=NAMESPACE,
            labels={"instanceName": owner.name, "workflowStep": "0"},
            owner_references=[owner.owner_reference()],
        )
    )


@pytest.mark.asyncio
async def test_add_instance_stamps_metadata(store, make_tempest):
    stored = await store.add_instance(make_tempest())
    assert stored.uid
    assert stored.metadata.creation_timestamp is not None
    assert stored.metadata.generation == 1
    with pytest.raises(AlreadyExistsError):
        await store.add_instance(make_tempest())


@pytest.mark.asyncio
async def test_returned_objects_are_copies(store, make_tempest):
    await store.add_instance(make_tempest())
    fetched = await store.get_instance(Tempest, NAMESPACE, "smoke")
    fetched.metadata.labels["mutated"] = "yes"
    again = await store.get_instance(Tempest, NAMESPACE, "smoke")
    assert "mutated" not in again.metadata.labels


@pytest.mark.asyncio
async def test_patch_persists_status_and_finalizers_only(store, make_tempest):
    await store.add_instance(make_tempest())
    instance = await store.get_instance(Tempest, NAMESPACE, "smoke")
    instance.status.observed_generation = 1
    instance.metadata.finalizers.append("openstack.org/tempest")
    instance.metadata.labels["ignored"] = "yes"
    await store.patch_instance(instance)

    stored = await store.get_instance(Tempest, NAMESPACE, "smoke")
    assert stored.status.observed_generation == 1
    assert stored.metadata.finalizers == ["openstack.org/tempest"]
    assert "ignored" not in stored.metadata.labels


@pytest.mark.asyncio
async def test_create_artifact_is_create_if_absent(store, make_tempest):
    owner = await store.add_instance(make_tempest())
    await store.create_artifact(_owned_pod(owner))
    with pytest.raises(AlreadyExistsError):
        await store.create_artifact(_owned_pod(owner))

    await store.set_artifact_phase(NAMESPACE, "smoke", ArtifactPhase.SUCCEEDED)
    pod = await store.get_artifact("Pod", NAMESPACE, "smoke")
    assert pod.is_terminal


@pytest.mark.asyncio
async def test_delete_with_finalizer_waits_for_its_removal(store, make_tempest):
    await store.add_instance(make_tempest())
    instance = await store.get_instance(Tempest, NAMESPACE, "smoke")
    instance.metadata.finalizers.append("openstack.org/tempest")
    await store.patch_instance(instance)
    await store.create_artifact(_owned_pod(instance))

    await store.delete_instance("Tempest", NAMESPACE, "smoke")
    deleting = await store.get_instance(Tempest, NAMESPACE, "smoke")
    assert deleting.is_deleting

    deleting.metadata.finalizers.clear()
    await store.patch_instance(deleting)
    with pytest.raises(NotFoundError):
        await store.get_instance(Tempest, NAMESPACE, "smoke")
    with pytest.raises(NotFoundError):
        await store.get_artifact("Pod", NAMESPACE, "smoke")


@pytest.mark.asyncio
async def test_apply_config_record_updates_in_place(store):
    record = ConfigRecord(
        metadata=ObjectMeta(name="smoke-env-vars-s0", namespace=NAMESPACE),
        data={"A": "1"},
    )
    await store.apply_config_record(record)
    await store.apply_config_record(record.model_copy(update={"data": {"A": "2"}}))
    stored = await store.get_config_record(NAMESPACE, "smoke-env-vars-s0")
    assert stored.data == {"A": "2"}


@pytest.mark.asyncio
async def test_watch_replays_and_maps_owned_changes(store, make_tempest):
    owner = await store.add_instance(make_tempest())
    request = ReconcileRequest(kind="Tempest", namespace=NAMESPACE, name="smoke")

    events = []
    async for event in store.watch([Tempest], lifespan=0.2):
        events.append(event)
        if len(events) == 1:
            await store.create_artifact(_owned_pod(owner))
        if len(events) == 2:
            break

    assert events == [request, request]


@pytest.mark.asyncio
async def test_watch_filters_namespace_and_stops_after_lifespan(store, make_tempest):
    await store.add_instance(make_tempest(namespace="elsewhere"))
    events = [event async for event in store.watch([Tempest], NAMESPACE, lifespan=0.05)]
    assert events == []
