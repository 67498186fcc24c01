"""``stok workspace new``: create a workspace and wait for it to initialise.

1. Create the service account and secret the workspace references, unless
   they already exist (either step can be disabled).
2. Create the workspace.
3. Join the readiness waiters: the installer container is up, the controller
   has reconciled the workspace and, with a backup bucket, the restore
   outcome is known.  The first failure (or timeout) cancels the others.
4. Stream the installer's output, write the environment file and return
   once the installer's exit code is known.

On any failure the resources created by this invocation are deleted again
(newest first) unless cleanup is disabled.
"""

from __future__ import annotations

import asyncio
import sys
from typing import TextIO

from pydantic import BaseModel, Field

from stok.client.cleanup import cleanup
from stok.client.env import StokEnv
from stok.client.errors import (
    MissingArgumentError,
    PodTimeoutError,
    ReconcileTimeoutError,
    RestoreTimeoutError,
)
from stok.client.monitor import follow
from stok.client.waiters import join, restore_completed, wait_for, wait_for_pod, workspace_reconciled
from stok.cluster import Cluster, NotFoundError
from stok.controller.builder import INSTALLER_CONTAINER
from stok.models import (
    WORKSPACE_LABEL,
    ObjectMeta,
    Pod,
    Resource,
    Secret,
    ServiceAccount,
    Variable,
    Workspace,
    WorkspaceSpec,
)

DEFAULT_SECRET_NAME = "stok"
DEFAULT_SERVICE_ACCOUNT_NAME = "stok"


def _default_spec() -> WorkspaceSpec:
    return WorkspaceSpec(secret_name=DEFAULT_SECRET_NAME, service_account_name=DEFAULT_SERVICE_ACCOUNT_NAME)


class NewWorkspaceOptions(BaseModel):
    """Everything ``new_workspace`` needs; the CLI translates its flags into this."""

    name: str = ""
    namespace: str = "default"
    path: str = "."

    spec: WorkspaceSpec = Field(default_factory=_default_spec)
    variables: dict[str, str] = Field(default_factory=dict, description="Terraform variables")
    environment_variables: dict[str, str] = Field(default_factory=dict)

    create_secret: bool = True
    create_service_account: bool = True
    service_account_annotations: dict[str, str] = Field(default_factory=dict)

    reconcile_timeout: float = 10.0
    pod_timeout: float = 60.0
    restore_timeout: float = 60.0
    exit_code_timeout: float = 10.0

    cleanup: bool = True


def client_labels(workspace: str) -> dict[str, str]:
    return {"app": "stok", "component": "workspace", WORKSPACE_LABEL: workspace}


async def new_workspace(cluster: Cluster, options: NewWorkspaceOptions, out: TextIO | None = None) -> Workspace:
    """Create the workspace and follow its installer to completion.

    Raises a ``StokError`` subclass on failure; ``ContainerExitError`` if the
    installer exited non-zero.
    """
    if not options.name:
        raise MissingArgumentError("workspace name")

    out = out or sys.stdout
    created: list[Resource] = []
    try:
        return await _new_workspace(cluster, options, out, created)
    except (Exception, asyncio.CancelledError):
        if options.cleanup:
            await cleanup(cluster, created)
        raise


async def _new_workspace(
    cluster: Cluster,
    options: NewWorkspaceOptions,
    out: TextIO,
    created: list[Resource],
) -> Workspace:
    namespace = options.namespace
    spec = options.spec.model_copy(deep=True)

    if options.create_service_account and spec.service_account_name:
        account = ServiceAccount(
            metadata=ObjectMeta(
                name=spec.service_account_name,
                namespace=namespace,
                labels=client_labels(options.name),
                annotations=options.service_account_annotations,
            )
        )
        if await _create_if_missing(cluster, account):
            created.append(account)

    if options.create_secret and spec.secret_name:
        secret = Secret(
            metadata=ObjectMeta(name=spec.secret_name, namespace=namespace, labels=client_labels(options.name))
        )
        if await _create_if_missing(cluster, secret):
            created.append(secret)

    spec.variables.extend(Variable(key=key, value=value) for key, value in sorted(options.variables.items()))
    spec.variables.extend(
        Variable(key=key, value=value, environment_variable=True)
        for key, value in sorted(options.environment_variables.items())
    )

    workspace = await cluster.create(
        Workspace(
            metadata=ObjectMeta(name=options.name, namespace=namespace, labels=client_labels(options.name)),
            spec=spec,
        )
    )
    created.append(workspace)
    out.write(f"Created workspace {workspace.key}\n")

    handoff: asyncio.Queue[Pod] = asyncio.Queue(maxsize=1)
    waiters = [
        wait_for_pod(
            cluster,
            namespace,
            workspace.pod_name,
            INSTALLER_CONTAINER,
            handoff,
            timeout=options.pod_timeout,
            error=PodTimeoutError,
        ),
        wait_for(
            cluster,
            Workspace,
            namespace,
            workspace.name,
            workspace_reconciled,
            timeout=options.reconcile_timeout,
            error=ReconcileTimeoutError,
        ),
    ]
    if spec.backup_bucket:
        waiters.append(
            wait_for(
                cluster,
                Workspace,
                namespace,
                workspace.name,
                restore_completed(out),
                timeout=options.restore_timeout,
                error=RestoreTimeoutError,
            )
        )

    out.write("Waiting for workspace pod to be ready...\n")
    await join(*waiters)
    pod = handoff.get_nowait()

    env = StokEnv(namespace, workspace.name)
    await follow(
        cluster,
        pod,
        INSTALLER_CONTAINER,
        out,
        exit_code_timeout=options.exit_code_timeout,
        on_streamed=lambda: env.write(options.path),
    )
    return workspace


async def _create_if_missing(cluster: Cluster, obj: Resource) -> bool:
    """Create ``obj`` unless it exists.  Returns ``True`` if this call created it."""
    try:
        await cluster.get(type(obj), obj.namespace, obj.name)
    except NotFoundError:
        await cluster.create(obj)
        return True
    return False
