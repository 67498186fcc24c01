"""Unit tests for WorkspaceReconciler against the in-memory cluster."""

from __future__ import annotations

import pytest

from stok.cluster import AlreadyExistsError, ClusterError, InMemoryCluster, NotFoundError
from stok.controller.reconciler import WorkspaceReconciler
from stok.models import (
    ConditionType,
    ConfigMap,
    ObjectKey,
    ObjectMeta,
    PersistentVolumeClaim,
    Pod,
    Run,
    Secret,
    ServiceAccount,
    Workspace,
)

KEY = ObjectKey("default", "ws-1")


@pytest.fixture
def reconciler(cluster: InMemoryCluster) -> WorkspaceReconciler:
    return WorkspaceReconciler(cluster, image="stok:test")


async def _get(cluster: InMemoryCluster) -> Workspace:
    return await cluster.get(Workspace, "default", "ws-1")


async def test_missing_workspace_is_not_an_error(cluster, reconciler) -> None:
    await reconciler.reconcile(KEY)
    assert cluster.count("create") == 0


async def test_creates_dependent_resources(cluster, reconciler, make_workspace) -> None:
    await cluster.create(make_workspace())
    await reconciler.reconcile(KEY)

    ws = await _get(cluster)
    for model in (ConfigMap, PersistentVolumeClaim, Pod):
        obj = await cluster.get(model, "default", "workspace-ws-1")
        assert obj.owned_by(ws)


async def test_marks_reconciled(cluster, reconciler, make_workspace) -> None:
    await cluster.create(make_workspace())
    await reconciler.reconcile(KEY)

    ws = await _get(cluster)
    assert ws.status.conditions.is_true(ConditionType.RECONCILED)
    assert ws.status.observed_generation == 1
    assert ws.reconciled


async def test_second_pass_is_a_no_op(cluster, reconciler, make_workspace, make_run) -> None:
    await cluster.create(make_workspace())
    await cluster.create(make_run("plan-1"))
    await reconciler.reconcile(KEY)
    first = await _get(cluster)
    creates = cluster.count("create")
    status_updates = cluster.count("update_status")

    await reconciler.reconcile(KEY)

    assert cluster.count("create") == creates
    assert cluster.count("update_status") == status_updates
    assert (await _get(cluster)).status == first.status


async def test_existing_resources_left_untouched(cluster, reconciler, make_workspace) -> None:
    ws = await cluster.create(make_workspace())
    await cluster.create(Pod(metadata=ObjectMeta(name="workspace-ws-1", labels={"hand": "made"})))

    await reconciler.reconcile(KEY)

    pod = await cluster.get(Pod, "default", "workspace-ws-1")
    assert pod.metadata.labels == {"hand": "made"}
    assert not pod.owned_by(ws)
    assert cluster.count("create", Pod) == 1


async def test_create_race_treated_as_success(cluster, reconciler, make_workspace) -> None:
    await cluster.create(make_workspace())
    cluster.inject_error("create", Pod, AlreadyExistsError("Pod", "default", "workspace-ws-1"))

    await reconciler.reconcile(KEY)

    assert (await _get(cluster)).reconciled


async def test_transient_error_propagates(cluster, reconciler, make_workspace) -> None:
    await cluster.create(make_workspace())
    cluster.inject_error("create", PersistentVolumeClaim, ClusterError("connection reset"))

    with pytest.raises(ClusterError, match="connection reset"):
        await reconciler.reconcile(KEY)

    # The next pass converges.
    await reconciler.reconcile(KEY)
    await cluster.get(PersistentVolumeClaim, "default", "workspace-ws-1")


# -- Health ------------------------------------------------------------------


async def test_healthy_without_references(cluster, reconciler, make_workspace) -> None:
    await cluster.create(make_workspace())
    await reconciler.reconcile(KEY)

    assert (await _get(cluster)).status.conditions.is_true(ConditionType.HEALTHY)


async def test_missing_secret_is_unhealthy_but_converges(cluster, reconciler, make_workspace) -> None:
    await cluster.create(make_workspace(secret_name="missing"))
    await reconciler.reconcile(KEY)

    healthy = (await _get(cluster)).status.conditions.get(ConditionType.HEALTHY)
    assert healthy.is_false
    assert healthy.reason == "SecretNotFound"
    await cluster.get(Pod, "default", "workspace-ws-1")


async def test_missing_service_account_is_unhealthy(cluster, reconciler, make_workspace) -> None:
    await cluster.create(make_workspace(service_account_name="missing"))
    await reconciler.reconcile(KEY)

    healthy = (await _get(cluster)).status.conditions.get(ConditionType.HEALTHY)
    assert healthy.is_false
    assert healthy.reason == "ServiceAccountNotFound"


async def test_health_recovers_when_secret_appears(cluster, reconciler, make_workspace) -> None:
    await cluster.create(make_workspace(secret_name="creds", service_account_name="stok"))
    await cluster.create(ServiceAccount(metadata=ObjectMeta(name="stok")))
    await reconciler.reconcile(KEY)
    assert (await _get(cluster)).status.conditions.is_false(ConditionType.HEALTHY)

    await cluster.create(Secret(metadata=ObjectMeta(name="creds")))
    await reconciler.reconcile(KEY)
    assert (await _get(cluster)).status.conditions.is_true(ConditionType.HEALTHY)


# -- Queue and runs ----------------------------------------------------------


async def test_queue_from_labelled_runs(cluster, reconciler, make_workspace, make_run) -> None:
    await cluster.create(make_workspace())
    await cluster.create(make_run("plan-2", age=5))
    await cluster.create(make_run("plan-1", age=1))
    await cluster.create(make_run("other", "ws-2"))
    await cluster.create(make_run("done", completed=True))

    await reconciler.reconcile(KEY)

    assert (await _get(cluster)).status.queue == ["plan-1", "plan-2"]


async def test_only_head_of_queue_gets_a_pod(cluster, reconciler, make_workspace, make_run) -> None:
    await cluster.create(make_workspace())
    head = await cluster.create(make_run("plan-1", age=1))
    await cluster.create(make_run("plan-2", age=2))

    await reconciler.reconcile(KEY)

    pod = await cluster.get(Pod, "default", "run-plan-1")
    assert pod.owned_by(head)
    assert [p.name for p in await cluster.list(Pod)] == ["run-plan-1", "workspace-ws-1"]


async def test_completed_head_promotes_next_run(cluster, reconciler, make_workspace, make_run) -> None:
    await cluster.create(make_workspace())
    await cluster.create(make_run("plan-1", age=1))
    await cluster.create(make_run("plan-2", age=2))
    await reconciler.reconcile(KEY)
    with pytest.raises(NotFoundError):
        await cluster.get(Pod, "default", "run-plan-2")

    head = await cluster.get(Run, "default", "plan-1")
    head.status.conditions.set(ConditionType.COMPLETED, True, reason="RunComplete")
    await cluster.replace(head)
    await reconciler.reconcile(KEY)

    assert (await _get(cluster)).status.queue == ["plan-2"]
    await cluster.get(Pod, "default", "run-plan-2")


async def test_unapproved_privileged_run_waits(cluster, reconciler, make_workspace, make_run) -> None:
    await cluster.create(make_workspace(privileged_commands=["apply"]))
    await cluster.create(make_run("apply-1", command="apply"))

    await reconciler.reconcile(KEY)

    assert (await _get(cluster)).status.queue == ["apply-1"]
    assert [p.name for p in await cluster.list(Pod)] == ["workspace-ws-1"]


async def test_approved_privileged_run_starts(cluster, reconciler, make_workspace, make_run) -> None:
    await cluster.create(make_workspace(privileged_commands=["apply"]))
    await cluster.create(make_run("apply-1", command="apply", privileged=True))

    await reconciler.reconcile(KEY)

    await cluster.get(Pod, "default", "run-apply-1")


async def test_runs_are_never_written(cluster, reconciler, make_workspace, make_run) -> None:
    await cluster.create(make_workspace())
    await cluster.create(make_run("plan-1"))

    await reconciler.reconcile(KEY)

    assert cluster.count("update_status", Run) == 0
