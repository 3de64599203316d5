"""Work queue that feeds store events to the reconcilers."""

from __future__ import annotations

import asyncio
import logging
from typing import Dict, Iterable, Optional, Set

from .config import OperatorConfig
from .contracts import ReconcileRequest, ReconcileResult
from .engine import Reconciler
from .flavors.base import WorkloadFlavor
from .store.base import ClusterStore
from .utils import compute_backoff

logger = logging.getLogger(__name__)


class Controller:
    """Runs reconciliation passes on a pool of workers.

    A request waits in the queue at most once. A request that arrives while
    its previous pass is still running is parked and queued again when that
    pass finishes, so passes for one instance never overlap.
    """

    def __init__(
        self,
        store: ClusterStore,
        flavors: Iterable[WorkloadFlavor],
        config: Optional[OperatorConfig] = None,
    ) -> None:
        self.store = store
        self.config = config or OperatorConfig()
        self.flavors = {flavor.kind: flavor for flavor in flavors}
        self.reconcilers: Dict[str, Reconciler] = {
            kind: Reconciler(store, flavor, self.config)
            for kind, flavor in self.flavors.items()
        }
        self._queue: "asyncio.Queue[ReconcileRequest]" = asyncio.Queue()
        self._queued: Set[ReconcileRequest] = set()
        self._processing: Set[ReconcileRequest] = set()
        self._dirty: Set[ReconcileRequest] = set()
        self._failures: Dict[ReconcileRequest, int] = {}
        self._timers: Dict[ReconcileRequest, asyncio.TimerHandle] = {}

    def enqueue(self, request: ReconcileRequest) -> None:
        if request.kind not in self.reconcilers:
            logger.debug(f"Ignoring event for unknown kind: {request}")
            return
        if request in self._processing:
            self._dirty.add(request)
            return
        if request in self._queued:
            return
        self._queued.add(request)
        self._queue.put_nowait(request)

    def enqueue_after(self, request: ReconcileRequest, delay: float) -> None:
        """Queue ``request`` after ``delay`` seconds; an earlier timer wins."""
        loop = asyncio.get_running_loop()
        existing = self._timers.get(request)
        if existing is not None:
            if existing.when() <= loop.time() + delay:
                return
            existing.cancel()
        self._timers[request] = loop.call_later(delay, self._fire, request)

    def _fire(self, request: ReconcileRequest) -> None:
        self._timers.pop(request, None)
        self.enqueue(request)

    async def process(self, request: ReconcileRequest) -> Optional[ReconcileResult]:
        """Run one pass for ``request`` and schedule its follow-up."""
        reconciler = self.reconcilers[request.kind]
        try:
            result = await reconciler.reconcile(request)
        except Exception as exc:
            attempt = self._failures.get(request, 0)
            self._failures[request] = attempt + 1
            delay = compute_backoff(attempt, cap=self.config.controller.max_backoff)
            logger.error(f"Reconcile of {request} failed: {exc}. Retrying in {delay:.1f}s")
            self.enqueue_after(request, delay)
            return None

        self._failures.pop(request, None)
        if result.requeue:
            self.enqueue_after(request, result.requeue_after)
        return result

    async def _worker(self) -> None:
        while True:
            request = await self._queue.get()
            self._queued.discard(request)
            self._processing.add(request)
            try:
                await self.process(request)
            finally:
                self._processing.discard(request)
                if request in self._dirty:
                    self._dirty.discard(request)
                    self.enqueue(request)
                self._queue.task_done()

    async def start(self, lifespan: Optional[float] = None, workers: Optional[int] = None) -> None:
        """Watch the store and reconcile until ``lifespan`` expires.

        Queued passes are drained before the workers stop.
        """
        count = workers or self.config.controller.workers
        models = [flavor.model for flavor in self.flavors.values()]
        await self.store.connect()
        tasks = [asyncio.create_task(self._worker()) for _ in range(count)]
        logger.info(
            f"Controller started for {sorted(self.flavors)} with {count} workers"
        )
        try:
            async for request in self.store.watch(
                models, namespace=self.config.namespace, lifespan=lifespan
            ):
                self.enqueue(request)
            await self._queue.join()
        finally:
            for task in tasks:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)
            for handle in self._timers.values():
                handle.cancel()
            self._timers.clear()
            await self.store.disconnect()
            logger.info("Controller stopped")
