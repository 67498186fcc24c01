"""Waiting on cluster state from the client.

A waiter consumes a watch stream until a predicate holds, under its own
timeout.  ``join`` runs several waiters together: the first failure cancels
the rest, and the caller sees that failure rather than an exception group.

Predicates receive every watch event and return ``True`` once satisfied;
they may raise to fail the wait outright (e.g. a failed restore).
"""

from __future__ import annotations

import asyncio
import contextlib
from collections.abc import AsyncIterator, Awaitable, Callable
from typing import Any, TextIO, TypeVar

from loguru import logger

from stok.cluster import Cluster, ClusterError, WatchEvent
from stok.client.errors import RestoreFailedError, WorkspaceNotFoundError
from stok.models import ConditionStatus, ConditionType, EventType, Pod, Resource, Workspace

R = TypeVar("R", bound=Resource)
T = TypeVar("T")

Predicate = Callable[[WatchEvent[Any]], bool]


async def wait_until(events: AsyncIterator[WatchEvent[R]], predicate: Predicate) -> R:
    """Consume ``events`` until ``predicate`` holds; return that event's object."""
    async for event in events:
        if predicate(event):
            return event.object
    msg = "watch ended before the condition was met"
    raise ClusterError(msg)


async def wait_for(
    cluster: Cluster,
    model: type[R],
    namespace: str,
    name: str,
    predicate: Predicate,
    *,
    timeout: float | None,
    error: Callable[[], Exception],
) -> R:
    """Watch one object until ``predicate`` holds, raising ``error()`` after ``timeout`` seconds.

    ``timeout=None`` waits without a deadline.
    """
    try:
        async with asyncio.timeout(timeout):
            async with contextlib.aclosing(cluster.watch(model, namespace, name=name)) as events:
                return await wait_until(events, predicate)
    except TimeoutError:
        raise error() from None


async def join(*waiters: Awaitable[T]) -> list[T]:
    """Run waiters concurrently; all must succeed.

    On the first failure the remaining waiters are cancelled and awaited
    (so their watches are closed) before the failure is re-raised.  If the
    caller itself is cancelled, every waiter is cancelled too.
    """
    tasks = [asyncio.ensure_future(waiter) for waiter in waiters]
    try:
        done, pending = await asyncio.wait(tasks, return_when=asyncio.FIRST_EXCEPTION)
    finally:
        for task in tasks:
            if not task.done():
                task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)

    if pending:
        for task in tasks:
            if task in done and not task.cancelled() and task.exception() is not None:
                raise task.exception()  # type: ignore[misc]
    return [task.result() for task in tasks]


# -- Predicates --------------------------------------------------------------


def _not_deleted(event: WatchEvent[Any]) -> None:
    if event.type == EventType.DELETED:
        raise WorkspaceNotFoundError(event.object.namespace, event.object.name)


def workspace_reconciled(event: WatchEvent[Workspace]) -> bool:
    """The controller has processed the workspace's current generation."""
    _not_deleted(event)
    return event.object.reconciled


def run_queued(run: str) -> Predicate:
    """The controller has observed ``run`` and placed it in the workspace queue."""

    def predicate(event: WatchEvent[Workspace]) -> bool:
        _not_deleted(event)
        return event.object.reconciled and run in event.object.status.queue

    return predicate


def run_at_head(run: str, out: TextIO | None = None) -> Predicate:
    """``run`` is at the head of the workspace queue (its pod is due).

    Each change of position while it waits behind other runs is written to
    ``out``.
    """
    last_position: int | None = None

    def predicate(event: WatchEvent[Workspace]) -> bool:
        nonlocal last_position
        _not_deleted(event)
        queue = event.object.status.queue
        if run not in queue:
            return False
        position = queue.index(run)
        if position and position != last_position and out is not None:
            out.write(f"Queued: {position} run(s) ahead of {run}\n")
        last_position = position
        return position == 0

    return predicate


def container_ready(container: str) -> Predicate:
    """``container`` is ready, running, or has already finished (its logs can be read)."""

    def predicate(event: WatchEvent[Pod]) -> bool:
        if event.type == EventType.DELETED:
            return False
        status = event.object.container_status(container)
        if status is None:
            return False
        return status.ready or status.state.running is not None or status.state.terminated is not None

    return predicate


def restore_completed(out: TextIO | None = None) -> Predicate:
    """The controller has reported the outcome of the state restore.

    ``RestoreFailure=True`` fails the wait; ``False`` means it either
    succeeded or there was nothing to restore, and its message is written
    to ``out``.
    """

    def predicate(event: WatchEvent[Workspace]) -> bool:
        _not_deleted(event)
        condition = event.object.status.conditions.get(ConditionType.RESTORE_FAILURE)
        if condition is None or condition.status == ConditionStatus.UNKNOWN:
            return False
        if condition.is_true:
            raise RestoreFailedError(condition.message)
        if out is not None:
            out.write(f"{condition.message}\n")
        else:
            logger.info(condition.message)
        return True

    return predicate


# -- Pod handoff -------------------------------------------------------------


async def wait_for_pod(
    cluster: Cluster,
    namespace: str,
    name: str,
    container: str,
    handoff: asyncio.Queue[Pod],
    *,
    timeout: float,
    error: Callable[[], Exception],
) -> None:
    """Wait for ``container`` in pod ``name`` and hand the pod over through ``handoff``."""
    pod = await wait_for(cluster, Pod, namespace, name, container_ready(container), timeout=timeout, error=error)
    await handoff.put(pod)
