"""Following a container after the readiness join: logs and exit code."""

from __future__ import annotations

import asyncio
import contextlib
from collections.abc import Callable
from typing import TextIO

from loguru import logger

from stok.cluster import Cluster
from stok.client.errors import ContainerExitError, ExitCodeTimeoutError
from stok.models import EventType, Pod


async def _watch_exit_code(cluster: Cluster, namespace: str, pod: str, container: str) -> int:
    async with contextlib.aclosing(cluster.watch(Pod, namespace, name=pod)) as events:
        async for event in events:
            if event.type == EventType.DELETED:
                continue
            status = event.object.container_status(container)
            if status is not None and status.state.terminated is not None:
                return status.state.terminated.exit_code
    msg = f"watch on pod {namespace}/{pod} ended before container {container} terminated"
    raise RuntimeError(msg)


def start_exit_monitor(cluster: Cluster, namespace: str, pod: str, container: str) -> asyncio.Task[int]:
    """Watch ``container`` in the background until it terminates; the task yields its exit code."""
    return asyncio.create_task(
        _watch_exit_code(cluster, namespace, pod, container),
        name=f"exit-monitor:{namespace}/{pod}/{container}",
    )


async def wait_exit_code(monitor: asyncio.Task[int], timeout: float) -> int:
    """Result of an exit monitor, allowing ``timeout`` more seconds for it to arrive."""
    try:
        return await asyncio.wait_for(monitor, timeout)
    except TimeoutError:
        raise ExitCodeTimeoutError from None


async def stream_logs(cluster: Cluster, namespace: str, pod: str, container: str, out: TextIO) -> None:
    """Copy the container's output to ``out`` until the container terminates."""
    logger.debug("Streaming logs of {}/{} container {}", namespace, pod, container)
    async with contextlib.aclosing(cluster.stream_logs(namespace, pod, container)) as chunks:
        async for chunk in chunks:
            out.write(chunk)
            out.flush()


async def follow(
    cluster: Cluster,
    pod: Pod,
    container: str,
    out: TextIO,
    *,
    exit_code_timeout: float,
    on_streamed: Callable[[], object] | None = None,
) -> None:
    """Stream ``container``'s output, then require a zero exit code.

    The exit monitor starts before streaming so a container that finishes
    quickly is not missed.  ``on_streamed`` runs once the output is complete.
    """
    monitor = start_exit_monitor(cluster, pod.namespace, pod.name, container)
    try:
        await stream_logs(cluster, pod.namespace, pod.name, container, out)
        if on_streamed is not None:
            on_streamed()
        code = await wait_exit_code(monitor, exit_code_timeout)
    finally:
        if not monitor.done():
            monitor.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await monitor
    if code != 0:
        raise ContainerExitError(code)
