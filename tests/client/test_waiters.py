"""Unit tests for the client waiters and the readiness join."""

from __future__ import annotations

import asyncio
import io

import pytest

from stok.cluster import InMemoryCluster, WatchEvent
from stok.client.errors import (
    PodTimeoutError,
    ReconcileTimeoutError,
    RestoreFailedError,
    RestoreTimeoutError,
    WorkspaceNotFoundError,
)
from stok.client.waiters import (
    container_ready,
    join,
    restore_completed,
    run_at_head,
    run_queued,
    wait_for,
    wait_for_pod,
    workspace_reconciled,
)
from stok.models import (
    ConditionType,
    ContainerState,
    ContainerStatus,
    EventType,
    ObjectMeta,
    Pod,
    PodStatus,
    Workspace,
)

# -- join --------------------------------------------------------------------


async def test_join_returns_results_in_order() -> None:
    async def value(v: int, delay: float) -> int:
        await asyncio.sleep(delay)
        return v

    assert await join(value(1, 0.02), value(2, 0.0), value(3, 0.01)) == [1, 2, 3]


async def test_first_failure_cancels_siblings() -> None:
    cancelled: list[str] = []

    async def slow(name: str) -> None:
        try:
            await asyncio.sleep(10)
        except asyncio.CancelledError:
            cancelled.append(name)
            raise

    async def fail() -> None:
        await asyncio.sleep(0.01)
        raise PodTimeoutError

    loop = asyncio.get_running_loop()
    started = loop.time()
    with pytest.raises(PodTimeoutError):
        await join(slow("reconcile"), fail(), slow("restore"))

    assert sorted(cancelled) == ["reconcile", "restore"]
    assert loop.time() - started < 1


async def test_join_cancelled_from_outside_cancels_waiters() -> None:
    cancelled: list[str] = []

    async def slow(name: str) -> None:
        try:
            await asyncio.sleep(10)
        except asyncio.CancelledError:
            cancelled.append(name)
            raise

    task = asyncio.create_task(join(slow("a"), slow("b")))
    await asyncio.sleep(0.01)
    task.cancel()
    with pytest.raises(asyncio.CancelledError):
        await task
    assert sorted(cancelled) == ["a", "b"]


# -- wait_for ----------------------------------------------------------------


async def test_wait_for_times_out_with_named_error(cluster: InMemoryCluster, make_workspace) -> None:
    await cluster.create(make_workspace())

    with pytest.raises(ReconcileTimeoutError, match="timed out waiting for workspace to be reconciled"):
        await wait_for(
            cluster,
            Workspace,
            "default",
            "ws-1",
            workspace_reconciled,
            timeout=0.02,
            error=ReconcileTimeoutError,
        )
    assert cluster.active_watches == 0


async def test_wait_for_returns_matching_object(cluster: InMemoryCluster, make_workspace) -> None:
    ws = await cluster.create(make_workspace())

    async def reconcile_later() -> None:
        await asyncio.sleep(0.01)
        ws.status.conditions.set(ConditionType.RECONCILED, True)
        ws.status.observed_generation = 1
        await cluster.update_status(ws)

    updater = asyncio.create_task(reconcile_later())
    result = await wait_for(
        cluster, Workspace, "default", "ws-1", workspace_reconciled, timeout=1, error=ReconcileTimeoutError
    )
    await updater

    assert result.reconciled
    assert cluster.active_watches == 0


async def test_pod_failure_cancels_other_watches(cluster: InMemoryCluster, make_workspace) -> None:
    await cluster.create(make_workspace())
    handoff: asyncio.Queue[Pod] = asyncio.Queue(maxsize=1)

    with pytest.raises(PodTimeoutError):
        await join(
            wait_for_pod(
                cluster, "default", "workspace-ws-1", "installer", handoff, timeout=0.02, error=PodTimeoutError
            ),
            wait_for(
                cluster, Workspace, "default", "ws-1", workspace_reconciled, timeout=10, error=ReconcileTimeoutError
            ),
            wait_for(
                cluster, Workspace, "default", "ws-1", restore_completed(), timeout=10, error=RestoreTimeoutError
            ),
        )

    assert cluster.active_watches == 0
    assert handoff.empty()


async def test_pod_handoff(cluster: InMemoryCluster) -> None:
    pod = Pod(
        metadata=ObjectMeta(name="p"),
        status=PodStatus(container_statuses=[ContainerStatus(name="runner", ready=True)]),
    )
    await cluster.create(pod)
    handoff: asyncio.Queue[Pod] = asyncio.Queue(maxsize=1)

    await wait_for_pod(cluster, "default", "p", "runner", handoff, timeout=1, error=PodTimeoutError)

    assert handoff.get_nowait().name == "p"


# -- Predicates --------------------------------------------------------------


def _ws_event(make_workspace, event_type: EventType = EventType.MODIFIED, **conditions: bool) -> WatchEvent:
    ws = make_workspace()
    for type_, status in conditions.items():
        ws.status.conditions.set(type_, status, message=f"{type_} message")
    return WatchEvent(event_type, ws)


def test_restore_completed(make_workspace) -> None:
    out = io.StringIO()
    predicate = restore_completed(out)

    assert predicate(_ws_event(make_workspace)) is False
    assert predicate(_ws_event(make_workspace, RestoreFailure=False)) is True
    assert out.getvalue() == "RestoreFailure message\n"
    with pytest.raises(RestoreFailedError, match="RestoreFailure message"):
        predicate(_ws_event(make_workspace, RestoreFailure=True))


def test_deleted_workspace_fails_wait(make_workspace) -> None:
    with pytest.raises(WorkspaceNotFoundError):
        workspace_reconciled(_ws_event(make_workspace, EventType.DELETED))


def test_reconciled_requires_current_generation(make_workspace) -> None:
    event = _ws_event(make_workspace, Reconciled=True)
    assert workspace_reconciled(event) is False  # observed_generation unset

    event.object.status.observed_generation = 1
    assert workspace_reconciled(event) is True


def test_run_queued(make_workspace) -> None:
    event = _ws_event(make_workspace, Reconciled=True)
    event.object.status.observed_generation = 1
    predicate = run_queued("plan-1")

    assert predicate(event) is False
    event.object.status.queue = ["plan-0", "plan-1"]
    assert predicate(event) is True


def test_run_at_head_reports_position(make_workspace) -> None:
    out = io.StringIO()
    predicate = run_at_head("plan-2", out)
    event = _ws_event(make_workspace)

    assert predicate(event) is False
    for queue in (["plan-0", "plan-1", "plan-2"], ["plan-0", "plan-1", "plan-2"], ["plan-1", "plan-2"]):
        event.object.status.queue = queue
        assert predicate(event) is False
    event.object.status.queue = ["plan-2"]
    assert predicate(event) is True

    assert out.getvalue() == "Queued: 2 run(s) ahead of plan-2\nQueued: 1 run(s) ahead of plan-2\n"


@pytest.mark.parametrize(
    ("status", "expected"),
    [
        (None, False),
        (ContainerStatus(name="installer"), False),
        (ContainerStatus(name="installer", ready=True), True),
        (ContainerStatus(name="installer", state=ContainerState(running={})), True),
        (ContainerStatus(name="installer", state=ContainerState(waiting={"reason": "Pulling"})), False),
    ],
)
def test_container_ready(status: ContainerStatus | None, expected: bool) -> None:
    pod = Pod(metadata=ObjectMeta(name="p"))
    if status is not None:
        pod.status.init_container_statuses = [status]
    assert container_ready("installer")(WatchEvent(EventType.MODIFIED, pod)) is expected
