"""Unit tests for state restore from a backup bucket."""

from __future__ import annotations

from unittest.mock import AsyncMock

import pytest

from stok.backup import LocalBackupStore
from stok.cluster import InMemoryCluster
from stok.controller.reconciler import WorkspaceReconciler
from stok.controller.restore import restore_state
from stok.models import ConditionType, ObjectKey, ObjectMeta, Secret, Workspace


@pytest.fixture
def store(tmp_path) -> LocalBackupStore:
    store = LocalBackupStore(tmp_path)
    store.create_bucket("backups")
    return store


async def _restore(cluster: InMemoryCluster, store, workspace: Workspace) -> Workspace:
    workspace = await cluster.create(workspace)
    await restore_state(cluster, store, workspace)
    return workspace


async def test_restores_state_file(cluster, store, make_workspace) -> None:
    await store.write("backups", "default/ws-1.tfstate", b'{"version": 4}')

    ws = await _restore(cluster, store, make_workspace(backup_bucket="backups"))

    condition = ws.status.conditions.get(ConditionType.RESTORE_FAILURE)
    assert condition.is_false
    assert condition.reason == "RestoreSucceeded"
    secret = await cluster.get(Secret, "default", "workspace-ws-1-state")
    assert secret.string_data == {"terraform.tfstate": '{"version": 4}'}
    assert secret.owned_by(ws)


async def test_missing_bucket_is_a_failure(cluster, store, make_workspace) -> None:
    ws = await _restore(cluster, store, make_workspace(backup_bucket="nope"))

    condition = ws.status.conditions.get(ConditionType.RESTORE_FAILURE)
    assert condition.is_true
    assert condition.reason == "BucketNotFound"


async def test_missing_object_is_nothing_to_restore(cluster, store, make_workspace) -> None:
    ws = await _restore(cluster, store, make_workspace(backup_bucket="backups"))

    condition = ws.status.conditions.get(ConditionType.RESTORE_FAILURE)
    assert condition.is_false
    assert condition.reason == "NothingToRestore"
    assert cluster.count("create", Secret) == 0


async def test_existing_state_secret_not_overwritten(cluster, store, make_workspace) -> None:
    await store.write("backups", "default/ws-1.tfstate", b"backup")
    await cluster.create(Secret(metadata=ObjectMeta(name="workspace-ws-1-state"), string_data={"x": "live"}))

    ws = await _restore(cluster, store, make_workspace(backup_bucket="backups"))

    assert ws.status.conditions.get(ConditionType.RESTORE_FAILURE).reason == "StateAlreadyPresent"
    secret = await cluster.get(Secret, "default", "workspace-ws-1-state")
    assert secret.string_data == {"x": "live"}


async def test_skipped_without_bucket(cluster, make_workspace) -> None:
    store = AsyncMock()
    ws = await _restore(cluster, store, make_workspace())

    store.read.assert_not_called()
    assert ConditionType.RESTORE_FAILURE not in ws.status.conditions


async def test_runs_once(cluster, make_workspace) -> None:
    store = AsyncMock()
    store.read.side_effect = FileNotFoundError
    ws = await _restore(cluster, store, make_workspace(backup_bucket="backups"))

    assert await restore_state(cluster, store, ws) is False
    store.read.assert_awaited_once()


async def test_store_errors_propagate(cluster, make_workspace) -> None:
    store = AsyncMock()
    store.read.side_effect = OSError("disk on fire")

    with pytest.raises(OSError, match="disk on fire"):
        await _restore(cluster, store, make_workspace(backup_bucket="backups"))


async def test_reconciler_records_outcome(cluster, store, make_workspace) -> None:
    await store.write("backups", "default/ws-1.tfstate", b"{}")
    await cluster.create(make_workspace(backup_bucket="backups"))
    reconciler = WorkspaceReconciler(cluster, "stok:test", backup_store=store)

    await reconciler.reconcile(ObjectKey("default", "ws-1"))

    ws = await cluster.get(Workspace, "default", "ws-1")
    assert ws.status.conditions.get(ConditionType.RESTORE_FAILURE).reason == "RestoreSucceeded"
    assert ws.reconciled
