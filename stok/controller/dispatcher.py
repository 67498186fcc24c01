"""Event dispatcher: turns cluster watch events into reconciliations.

Each subscription watches one kind and maps every event to the identity of
the workspace it concerns.  Identities go through a deduplicating work
queue drained by a fixed pool of workers:

- an identity is queued at most once, however many events arrive for it
- an identity is never reconciled by two workers at once; events arriving
  while it is being reconciled mark it dirty and it is re-queued afterwards
- a failed reconciliation is retried after ``min(base * 2**n, max)``
  seconds, ``n`` being the number of consecutive failures for that identity
- every workspace is re-queued every ``resync_period`` seconds
- a watch that fails for any reason is restarted after ``backoff_base``
  seconds; it never takes the workers down with it
"""

from __future__ import annotations

import asyncio
import contextlib
from collections.abc import Awaitable, Callable
from dataclasses import dataclass

from loguru import logger

from stok.cluster import Cluster, ClusterError
from stok.models import WORKSPACE_LABEL, ObjectKey, Resource, Workspace

Mapper = Callable[[Resource], ObjectKey | None]
ReconcileFunc = Callable[[ObjectKey], Awaitable[None]]


def workspace_key_for(obj: Resource) -> ObjectKey | None:
    """Identity of the workspace an object belongs to, if any."""
    if isinstance(obj, Workspace):
        return obj.key
    name = obj.metadata.labels.get(WORKSPACE_LABEL)
    if name:
        return ObjectKey(obj.namespace, name)
    owner = obj.owner_of_kind(Workspace.kind)
    if owner is not None:
        return ObjectKey(obj.namespace, owner.name)
    return None


@dataclass(frozen=True)
class Subscription:
    model: type[Resource]
    mapper: Mapper


class Dispatcher:
    """Watch-driven work queue calling ``reconcile`` once per dirty identity."""

    def __init__(
        self,
        cluster: Cluster,
        reconcile: ReconcileFunc,
        *,
        namespace: str | None = None,
        workers: int = 4,
        resync_period: float | None = 300.0,
        backoff_base: float = 0.5,
        backoff_max: float = 60.0,
    ) -> None:
        self._cluster = cluster
        self._reconcile = reconcile
        self._namespace = namespace
        self._workers = workers
        self._resync_period = resync_period
        self._backoff_base = backoff_base
        self._backoff_max = backoff_max

        self._subscriptions: list[Subscription] = []
        self._queue: asyncio.Queue[ObjectKey] = asyncio.Queue()
        self._dirty: set[ObjectKey] = set()
        self._processing: set[ObjectKey] = set()
        self._failures: dict[ObjectKey, int] = {}
        self._retries: dict[ObjectKey, asyncio.TimerHandle] = {}
        self._running = False

    # -- Registration ----------------------------------------------------------

    def subscribe(self, model: type[Resource], mapper: Mapper = workspace_key_for) -> None:
        self._subscriptions.append(Subscription(model, mapper))

    # -- Queue -----------------------------------------------------------------

    def enqueue(self, key: ObjectKey) -> None:
        if key in self._dirty:
            return
        self._dirty.add(key)
        if key not in self._processing:
            self._queue.put_nowait(key)

    def backoff(self, failures: int) -> float:
        """Delay before the retry following ``failures`` consecutive failures."""
        return min(self._backoff_base * 2 ** (failures - 1), self._backoff_max)

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def pending(self) -> int:
        return len(self._dirty) + len(self._processing) + len(self._retries)

    # -- Lifecycle -------------------------------------------------------------

    async def run(self) -> None:
        """Run watches, workers and the resync loop until cancelled."""
        logger.info(
            "Dispatcher starting (kinds={}, workers={}, namespace={})",
            [s.model.kind for s in self._subscriptions],
            self._workers,
            self._namespace or "*",
        )
        self._running = True
        try:
            async with asyncio.TaskGroup() as tg:
                for subscription in self._subscriptions:
                    tg.create_task(self._watch(subscription))
                for _ in range(self._workers):
                    tg.create_task(self._worker())
                if self._resync_period:
                    tg.create_task(self._resync())
        finally:
            self._running = False
            for handle in self._retries.values():
                handle.cancel()
            self._retries.clear()
            logger.info("Dispatcher stopped")

    # -- Tasks -----------------------------------------------------------------

    async def _watch(self, subscription: Subscription) -> None:
        kind = subscription.model.kind
        while True:
            try:
                async with contextlib.aclosing(self._cluster.watch(subscription.model, self._namespace)) as events:
                    async for event in events:
                        key = subscription.mapper(event.object)
                        if key is not None:
                            self.enqueue(key)
            except ClusterError as exc:
                logger.warning("Watch on {} failed: {}; restarting in {}s", kind, exc, self._backoff_base)
            except Exception as exc:
                logger.opt(exception=exc).error("Watch on {} crashed; restarting in {}s", kind, self._backoff_base)
            await asyncio.sleep(self._backoff_base)

    async def _worker(self) -> None:
        while True:
            key = await self._queue.get()
            self._dirty.discard(key)
            self._processing.add(key)
            try:
                await self._reconcile(key)
            except Exception as exc:
                failures = self._failures.get(key, 0) + 1
                self._failures[key] = failures
                delay = self.backoff(failures)
                logger.opt(exception=exc).error(
                    "Reconcile of {} failed (attempt {}), retrying in {}s", key, failures, delay
                )
                self._schedule_retry(key, delay)
            else:
                self._failures.pop(key, None)
            finally:
                self._processing.discard(key)
                if key in self._dirty:
                    self._queue.put_nowait(key)
                self._queue.task_done()

    async def _resync(self) -> None:
        assert self._resync_period is not None
        while True:
            await asyncio.sleep(self._resync_period)
            try:
                workspaces = await self._cluster.list(Workspace, self._namespace)
            except ClusterError as exc:
                logger.warning("Resync failed: {}", exc)
                continue
            except Exception as exc:
                logger.opt(exception=exc).error("Resync crashed")
                continue
            logger.debug("Resync: re-queueing {} workspaces", len(workspaces))
            for workspace in workspaces:
                self.enqueue(workspace.key)

    def _schedule_retry(self, key: ObjectKey, delay: float) -> None:
        previous = self._retries.pop(key, None)
        if previous is not None:
            previous.cancel()

        def fire() -> None:
            self._retries.pop(key, None)
            self.enqueue(key)

        self._retries[key] = asyncio.get_running_loop().call_later(delay, fire)
