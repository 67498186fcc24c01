"""Shared fixtures: in-memory cluster, object factories and a fake kubelet.

Unit tests run against ``InMemoryCluster``; nothing here needs Docker.
Tests that need a real API server are marked ``@pytest.mark.integration``
and start their own K3s container.
"""

from __future__ import annotations

import asyncio
import contextlib
from collections.abc import AsyncIterator, Awaitable, Callable
from datetime import UTC, datetime, timedelta

import pytest

from stok.cluster import InMemoryCluster
from stok.models import (
    WORKSPACE_LABEL,
    ConditionType,
    ContainerState,
    ContainerStateTerminated,
    ContainerStatus,
    EventType,
    ObjectMeta,
    Pod,
    PodPhase,
    PodStatus,
    Run,
    RunSpec,
    Workspace,
    WorkspaceSpec,
)
from stok.settings import get_settings

BASE_TIME = datetime(2024, 1, 1, tzinfo=UTC)


@pytest.fixture(autouse=True)
def _clear_settings_cache() -> None:
    get_settings.cache_clear()


@pytest.fixture
def cluster() -> InMemoryCluster:
    return InMemoryCluster()


# ---------------------------------------------------------------------------
# Object factories
# ---------------------------------------------------------------------------


@pytest.fixture
def make_workspace() -> Callable[..., Workspace]:
    def _make(name: str = "ws-1", namespace: str = "default", **spec: object) -> Workspace:
        return Workspace(
            metadata=ObjectMeta(name=name, namespace=namespace, uid=f"uid-{name}", generation=1),
            spec=WorkspaceSpec(**spec),
        )

    return _make


@pytest.fixture
def make_run() -> Callable[..., Run]:
    def _make(
        name: str,
        workspace: str = "ws-1",
        *,
        namespace: str = "default",
        age: int = 0,
        completed: bool = False,
        command: str = "plan",
        privileged: bool = False,
    ) -> Run:
        """A run created ``age`` seconds after ``BASE_TIME``."""
        run = Run(
            metadata=ObjectMeta(
                name=name,
                namespace=namespace,
                uid=f"uid-{name}",
                labels={WORKSPACE_LABEL: workspace},
                creation_timestamp=BASE_TIME + timedelta(seconds=age),
            ),
            spec=RunSpec(command=command, privileged=privileged),
        )
        if completed:
            run.status.conditions.set(ConditionType.COMPLETED, True, reason="RunComplete")
        return run

    return _make


# ---------------------------------------------------------------------------
# Fake kubelet
# ---------------------------------------------------------------------------


async def _kubelet(cluster: InMemoryCluster, container: str, output: str, exit_code: int) -> None:
    """Run ``container`` in every pod that has it: running, output, terminated."""
    async with contextlib.aclosing(cluster.watch(Pod)) as events:
        async for event in events:
            pod = event.object
            if event.type != EventType.ADDED or pod.container(container) is None:
                continue
            is_init = any(c.name == container for c in pod.spec.init_containers)

            def status(state: ContainerState, phase: PodPhase, *, is_init: bool = is_init) -> PodStatus:
                statuses = [ContainerStatus(name=container, state=state)]
                if is_init:
                    return PodStatus(phase=phase, init_container_statuses=statuses)
                return PodStatus(phase=phase, container_statuses=statuses)

            pod.status = status(ContainerState(running={"startedAt": "now"}), PodPhase.RUNNING)
            await cluster.replace(pod)
            cluster.write_log(pod.namespace, pod.name, container, output, close=True)
            pod.status = status(
                ContainerState(terminated=ContainerStateTerminated(exit_code=exit_code)),
                PodPhase.SUCCEEDED if exit_code == 0 else PodPhase.FAILED,
            )
            await cluster.replace(pod)


@pytest.fixture
async def kubelet(cluster: InMemoryCluster) -> AsyncIterator[Callable[..., None]]:
    """Start a fake kubelet: ``kubelet("installer", output="...", exit_code=0)``."""
    tasks: list[asyncio.Task[None]] = []

    def _start(container: str, *, output: str = "", exit_code: int = 0) -> None:
        tasks.append(asyncio.create_task(_kubelet(cluster, container, output, exit_code)))

    yield _start

    for task in tasks:
        task.cancel()
    await asyncio.gather(*tasks, return_exceptions=True)


async def eventually(check: Callable[[], bool | Awaitable[bool]], timeout: float = 2.0) -> None:
    """Poll ``check`` until it holds or ``timeout`` expires."""
    async with asyncio.timeout(timeout):
        while True:
            result = check()
            if not isinstance(result, bool):
                result = await result
            if result:
                return
            await asyncio.sleep(0.01)


@pytest.fixture
def wait_until() -> Callable[..., Awaitable[None]]:
    return eventually
