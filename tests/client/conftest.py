"""A controller running against the in-memory cluster, for end-to-end client tests."""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator, Callable

import pytest

from stok.backup import BackupStore
from stok.cluster import InMemoryCluster
from stok.controller.dispatcher import Dispatcher
from stok.controller.reconciler import WorkspaceReconciler
from stok.models import ConfigMap, PersistentVolumeClaim, Pod, Run, Workspace

IMAGE = "stok:test"


@pytest.fixture
async def controller(cluster: InMemoryCluster) -> AsyncIterator[Callable[..., Dispatcher]]:
    """Start the controller: ``controller(backup_store=None)``."""
    tasks: list[asyncio.Task[None]] = []

    def _start(backup_store: BackupStore | None = None) -> Dispatcher:
        reconciler = WorkspaceReconciler(cluster, IMAGE, backup_store)
        dispatcher = Dispatcher(cluster, reconciler.reconcile, resync_period=None, backoff_base=0.01)
        for model in (Workspace, Run, Pod, PersistentVolumeClaim, ConfigMap):
            dispatcher.subscribe(model)
        tasks.append(asyncio.create_task(dispatcher.run()))
        return dispatcher

    yield _start

    for task in tasks:
        task.cancel()
    await asyncio.gather(*tasks, return_exceptions=True)
