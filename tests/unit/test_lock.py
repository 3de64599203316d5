"""Execution lock: acquisition, ownership and release."""

import asyncio

import pytest

from testflow.config import LockConfig
from testflow.contracts import LockRecord, ObjectMeta
from testflow.errors import LockFieldMissingError, LockNotDeletedError, NotFoundError
from testflow.lock import ExecutionLock

NAMESPACE = "openstack"
LOCK_NAME = "test-operator-lock"


def _lock(store, **overrides):
    settings = {"release_retries": 3, "release_backoff": 0}
    settings.update(overrides)
    return ExecutionLock(store, LockConfig(**settings))


@pytest.mark.asyncio
async def test_acquire_creates_record_with_owner(store, make_tempest):
    instance = await store.add_instance(make_tempest())
    lock = _lock(store)

    assert await lock.acquire(instance)
    record = await store.get_lock(NAMESPACE, LOCK_NAME)
    assert record.owner == instance.uid
    assert record.metadata.is_owned_by(instance.uid)
    assert await lock.owner(NAMESPACE) == instance.uid


@pytest.mark.asyncio
async def test_acquire_twice_is_idempotent(store, make_tempest):
    instance = await store.add_instance(make_tempest())
    lock = _lock(store)

    assert await lock.acquire(instance)
    before = await store.get_lock(NAMESPACE, LOCK_NAME)
    assert await lock.acquire(instance)
    after = await store.get_lock(NAMESPACE, LOCK_NAME)
    assert after.metadata.resource_version == before.metadata.resource_version


@pytest.mark.asyncio
async def test_second_instance_is_refused(store, make_tempest):
    first = await store.add_instance(make_tempest("first"))
    second = await store.add_instance(make_tempest("second"))
    lock = _lock(store)

    assert await lock.acquire(first)
    assert not await lock.acquire(second)
    assert await lock.owner(NAMESPACE) == first.uid


@pytest.mark.asyncio
async def test_parallel_acquire_never_touches_record(store, make_tempest):
    instance = await store.add_instance(make_tempest())
    lock = _lock(store)

    assert await lock.acquire(instance, parallel=True)
    with pytest.raises(NotFoundError):
        await store.get_lock(NAMESPACE, LOCK_NAME)


@pytest.mark.asyncio
async def test_concurrent_acquire_has_one_winner(store, make_tempest):
    first = await store.add_instance(make_tempest("first"))
    second = await store.add_instance(make_tempest("second"))
    lock = _lock(store)

    results = await asyncio.gather(lock.acquire(first), lock.acquire(second))
    assert sorted(results) == [False, True]
    winner = first if results[0] else second
    assert await lock.owner(NAMESPACE) == winner.uid


@pytest.mark.asyncio
async def test_release_by_owner_deletes_record(store, make_tempest):
    instance = await store.add_instance(make_tempest())
    lock = _lock(store)
    await lock.acquire(instance)

    assert await lock.release(instance)
    assert await lock.owner(NAMESPACE) is None


@pytest.mark.asyncio
async def test_release_without_record_counts_as_released(store, make_tempest):
    instance = await store.add_instance(make_tempest())
    assert await _lock(store).release(instance)


@pytest.mark.asyncio
async def test_release_by_non_owner_is_refused(store, make_tempest):
    owner = await store.add_instance(make_tempest("owner"))
    intruder = await store.add_instance(make_tempest("intruder"))
    lock = _lock(store)
    await lock.acquire(owner)

    deleted = []
    original = store.delete_lock

    async def tracking_delete(namespace, name):
        deleted.append(name)
        await original(namespace, name)

    store.delete_lock = tracking_delete

    assert not await lock.release(intruder)
    assert deleted == []
    assert await lock.owner(NAMESPACE) == owner.uid


@pytest.mark.asyncio
async def test_release_raises_when_record_never_disappears(store, make_tempest):
    instance = await store.add_instance(make_tempest())
    lock = _lock(store, release_retries=2)
    await lock.acquire(instance)

    async def ignore_delete(namespace, name):
        return None

    store.delete_lock = ignore_delete

    with pytest.raises(LockNotDeletedError):
        await lock.release(instance)


@pytest.mark.asyncio
async def test_record_without_owner_field_is_surfaced(store, make_tempest):
    instance = await store.add_instance(make_tempest())
    await store.put_lock(
        LockRecord(metadata=ObjectMeta(name=LOCK_NAME, namespace=NAMESPACE))
    )
    lock = _lock(store)

    with pytest.raises(LockFieldMissingError):
        await lock.acquire(instance)
    with pytest.raises(LockFieldMissingError):
        await lock.release(instance)


@pytest.mark.asyncio
async def test_custom_lock_name_and_field(store, make_tempest):
    instance = await store.add_instance(make_tempest())
    lock = _lock(store, name="tempest-lock", owner_field="holder")

    assert await lock.acquire(instance)
    record = await store.get_lock(NAMESPACE, "tempest-lock", owner_field="holder")
    assert record.to_manifest()["data"] == {"holder": instance.uid}
