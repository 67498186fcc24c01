"""Workspace reconciliation.

``WorkspaceReconciler.reconcile`` drives one workspace's dependent resources
toward its spec and recomputes its status.  It keeps no state between calls:
everything it needs is re-read from the cluster, so a pass is safe to repeat
from a cold start or right after another pass.

Errors other than "not found" propagate to the caller (the dispatcher), which
retries with backoff.  A missing secret or service account is not an error;
it is reported through the ``Healthy`` condition.
"""

from __future__ import annotations

from loguru import logger

from stok.backup import BackupStore
from stok.cluster import AlreadyExistsError, Cluster, NotFoundError
from stok.controller.builder import build_config_map, build_pvc, build_run_pod, build_workspace_pod
from stok.controller.queue import build_queue
from stok.controller.restore import restore_state
from stok.models import (
    WORKSPACE_LABEL,
    ConditionType,
    ObjectKey,
    Resource,
    Run,
    Secret,
    ServiceAccount,
    Workspace,
)


class WorkspaceReconciler:
    """Converges a single workspace per call; safe to run concurrently for distinct workspaces."""

    def __init__(self, cluster: Cluster, image: str, backup_store: BackupStore | None = None) -> None:
        self.cluster = cluster
        self.image = image
        self.backup_store = backup_store

    async def reconcile(self, key: ObjectKey) -> None:
        logger.info("Reconciling workspace {}", key)

        try:
            workspace = await self.cluster.get(Workspace, key.namespace, key.name)
        except NotFoundError:
            # Deleted; owned resources go with it.
            logger.debug("Workspace {} not found, nothing to do", key)
            return

        previous_status = workspace.status.model_dump(mode="json")

        secret = await self._check_health(workspace)

        if self.backup_store is not None:
            await restore_state(self.cluster, self.backup_store, workspace)

        await self._ensure(build_config_map(workspace))
        await self._ensure(build_pvc(workspace))
        await self._ensure(build_workspace_pod(workspace, self.image, secret))

        runs = await self.cluster.list(Run, workspace.namespace, labels={WORKSPACE_LABEL: workspace.name})
        workspace.status.queue = build_queue(workspace.status.queue, runs, workspace.name)
        await self._ensure_head_run(workspace, {run.name: run for run in runs}, secret)

        workspace.status.conditions.set(
            ConditionType.RECONCILED,
            True,
            reason="ReconcileSucceeded",
            message="Dependent resources are in place",
        )
        workspace.status.observed_generation = workspace.metadata.generation

        if workspace.status.model_dump(mode="json") != previous_status:
            await self.cluster.update_status(workspace)
            logger.debug("Updated status of {}: queue={}", key, workspace.status.queue)

    # -- Steps -----------------------------------------------------------------

    async def _check_health(self, workspace: Workspace) -> Secret | None:
        """Set the ``Healthy`` condition; return the referenced secret if it exists."""
        spec = workspace.spec
        conditions = workspace.status.conditions
        problems: list[tuple[str, str]] = []

        secret: Secret | None = None
        if spec.secret_name:
            try:
                secret = await self.cluster.get(Secret, workspace.namespace, spec.secret_name)
            except NotFoundError:
                problems.append(("SecretNotFound", f"Secret {spec.secret_name} not found"))

        if spec.service_account_name:
            try:
                await self.cluster.get(ServiceAccount, workspace.namespace, spec.service_account_name)
            except NotFoundError:
                problems.append(
                    ("ServiceAccountNotFound", f"Service account {spec.service_account_name} not found")
                )

        if problems:
            reason, _ = problems[0]
            message = "; ".join(message for _, message in problems)
            if conditions.set(ConditionType.HEALTHY, False, reason=reason, message=message):
                logger.warning("Workspace {} unhealthy: {}", workspace.key, message)
        else:
            conditions.set(
                ConditionType.HEALTHY, True, reason="ResourcesFound", message="All referenced resources found"
            )
        return secret

    async def _ensure(self, desired: Resource) -> bool:
        """Create ``desired`` unless an object with its name exists.  Returns ``True`` if created."""
        try:
            await self.cluster.get(type(desired), desired.namespace, desired.name)
        except NotFoundError:
            pass
        else:
            return False

        try:
            await self.cluster.create(desired)
        except AlreadyExistsError:
            # Created by someone else between the get and the create.
            return False
        logger.info("Created {} {}", desired.kind, desired.key)
        return True

    async def _ensure_head_run(self, workspace: Workspace, runs: dict[str, Run], secret: Secret | None) -> None:
        """Only the run at the head of the queue gets a pod."""
        if not workspace.status.queue:
            return
        run = runs[workspace.status.queue[0]]
        if run.spec.command in workspace.spec.privileged_commands and not run.spec.privileged:
            logger.info(
                "Run {} ({}) requires approval for privileged command, not starting",
                run.key,
                run.spec.command,
            )
            return
        await self._ensure(build_run_pod(workspace, run, self.image, secret))
