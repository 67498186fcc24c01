"""``stok run``: queue a Terraform command in a workspace and follow it.

The run is created labelled for (and owned by) its workspace.  The client
then waits for the controller to place it in the workspace queue and for
its pod to come up, the two waits joined like ``workspace new``'s, before
streaming the output and returning the command's exit code.

Only the run at the head of the queue gets a pod, so the pod timeout is
armed once the run reaches the head; until then the client reports its
position and waits.
"""

from __future__ import annotations

import asyncio
import secrets
import sys
from typing import TextIO

from loguru import logger
from pydantic import BaseModel, Field

from stok.client.cleanup import cleanup
from stok.client.env import StokEnv
from stok.client.errors import MissingArgumentError, PodTimeoutError, ReconcileTimeoutError, WorkspaceNotFoundError
from stok.client.monitor import follow
from stok.client.waiters import join, run_at_head, run_queued, wait_for, wait_for_pod
from stok.cluster import Cluster, NotFoundError
from stok.controller.builder import RUNNER_CONTAINER
from stok.models import (
    WORKSPACE_LABEL,
    ObjectMeta,
    Pod,
    Run,
    RunSpec,
    Workspace,
    owner_reference,
)


class RunOptions(BaseModel):
    command: str = ""
    args: list[str] = Field(default_factory=list)

    workspace: str | None = None
    """Target workspace; read from the environment file when unset."""
    namespace: str | None = None
    path: str = "."

    name: str | None = None
    """Run name; generated from the command when unset."""
    privileged: bool = False

    reconcile_timeout: float = 10.0
    pod_timeout: float = 60.0
    exit_code_timeout: float = 10.0

    cleanup: bool = True


def generate_run_name(command: str) -> str:
    return f"{command.lower().replace('_', '-')}-{secrets.token_hex(3)}"


async def run_command(cluster: Cluster, options: RunOptions, out: TextIO | None = None) -> Run:
    """Create a run and follow it to completion.

    Raises ``ContainerExitError`` if the command exited non-zero.
    """
    if not options.command:
        raise MissingArgumentError("command")

    out = out or sys.stdout
    env = StokEnv.load(options.path)
    namespace = options.namespace or env.namespace
    workspace_name = options.workspace or env.workspace

    try:
        workspace = await cluster.get(Workspace, namespace, workspace_name)
    except NotFoundError:
        raise WorkspaceNotFoundError(namespace, workspace_name) from None

    run = await cluster.create(
        Run(
            metadata=ObjectMeta(
                name=options.name or generate_run_name(options.command),
                namespace=namespace,
                labels={"app": "stok", "component": "run", WORKSPACE_LABEL: workspace.name},
                owner_references=[owner_reference(workspace)],
            ),
            spec=RunSpec(command=options.command, args=options.args, privileged=options.privileged),
        )
    )
    logger.debug("Created run {} in workspace {}", run.key, workspace.key)

    try:
        await _follow_run(cluster, options, workspace, run, out)
    except (Exception, asyncio.CancelledError):
        if options.cleanup:
            await cleanup(cluster, [run])
        raise
    return run


async def _follow_run(cluster: Cluster, options: RunOptions, workspace: Workspace, run: Run, out: TextIO) -> None:
    handoff: asyncio.Queue[Pod] = asyncio.Queue(maxsize=1)
    await join(
        wait_for(
            cluster,
            Workspace,
            workspace.namespace,
            workspace.name,
            run_queued(run.name),
            timeout=options.reconcile_timeout,
            error=lambda: ReconcileTimeoutError("run"),
        ),
        _wait_for_run_pod(cluster, options, workspace, run, handoff, out),
    )
    pod = handoff.get_nowait()
    await follow(cluster, pod, RUNNER_CONTAINER, out, exit_code_timeout=options.exit_code_timeout)


async def _wait_for_run_pod(
    cluster: Cluster,
    options: RunOptions,
    workspace: Workspace,
    run: Run,
    handoff: asyncio.Queue[Pod],
    out: TextIO,
) -> None:
    """Wait, without a deadline, for the run to reach the head of the queue, then for its pod.

    Only the head run gets a pod, so the pod timeout starts once the runs
    ahead of this one have completed.
    """
    await wait_for(
        cluster,
        Workspace,
        workspace.namespace,
        workspace.name,
        run_at_head(run.name, out),
        timeout=None,
        error=PodTimeoutError,
    )
    await wait_for_pod(
        cluster,
        run.namespace,
        run.pod_name,
        RUNNER_CONTAINER,
        handoff,
        timeout=options.pod_timeout,
        error=PodTimeoutError,
    )
