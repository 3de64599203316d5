"""Namespace-wide execution lock built on a single well-known record.

Acquisition relies on the store's create-if-absent semantics; ownership is
decided by comparing the stored UID with the caller's UID. This is not an
atomic compare-and-swap, so only the create call may settle a race.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Optional

from .config import LockConfig
from .contracts import LockRecord, ObjectMeta, WorkloadInstance
from .errors import (
    AlreadyExistsError,
    LockFieldMissingError,
    LockNotDeletedError,
    NotFoundError,
)
from .store.base import ClusterStore

logger = logging.getLogger(__name__)


class ExecutionLock:
    def __init__(self, store: ClusterStore, config: Optional[LockConfig] = None) -> None:
        self.store = store
        self.config = config or LockConfig()

    @property
    def name(self) -> str:
        return self.config.name

    async def _read(self, namespace: str) -> LockRecord:
        record = await self.store.get_lock(
            namespace, self.config.name, owner_field=self.config.owner_field
        )
        if record.owner is None:
            raise LockFieldMissingError(
                f"{self.config.name} in {namespace} has no "
                f"'{self.config.owner_field}' field"
            )
        return record

    async def owner(self, namespace: str) -> Optional[str]:
        """UID of the current holder, or None when the lock is free."""
        try:
            record = await self._read(namespace)
        except NotFoundError:
            return None
        return record.owner

    async def acquire(self, instance: WorkloadInstance, parallel: bool = False) -> bool:
        """Take the lock for ``instance`` or confirm it already holds it.

        Parallel instances never touch the record. Returns False when another
        instance holds the lock or won the create race.
        """
        if parallel:
            return True

        try:
            record = await self._read(instance.namespace)
        except NotFoundError:
            record = LockRecord(
                metadata=ObjectMeta(
                    name=self.config.name,
                    namespace=instance.namespace,
                    owner_references=[instance.owner_reference()],
                ),
                owner=instance.uid,
                owner_field=self.config.owner_field,
            )
            try:
                await self.store.create_lock(record)
            except AlreadyExistsError:
                logger.info(f"{instance.name} lost the race for {self.config.name}")
                return False
            logger.info(f"{instance.name} acquired {self.config.name}")
            return True

        return record.owner == instance.uid

    async def release(self, instance: WorkloadInstance) -> bool:
        """Delete the lock if ``instance`` owns it and wait for the deletion.

        Returns False without touching the record when someone else owns it.
        Raises :class:`LockNotDeletedError` if the record is still visible
        after every check.
        """
        namespace = instance.namespace
        try:
            record = await self._read(namespace)
        except NotFoundError:
            return True

        if record.owner != instance.uid:
            return False

        try:
            await self.store.delete_lock(namespace, self.config.name)
        except NotFoundError:
            return True

        for _ in range(self.config.release_retries):
            try:
                await self.store.get_lock(
                    namespace, self.config.name, owner_field=self.config.owner_field
                )
            except NotFoundError:
                logger.info(f"{instance.name} released {self.config.name}")
                return True
            await asyncio.sleep(self.config.release_backoff)
            logger.info(f"Waiting for the {self.config.name} deletion!")

        raise LockNotDeletedError(
            f"{self.config.name} in {namespace} still exists after "
            f"{self.config.release_retries} checks"
        )
