"""Restore a workspace's Terraform state from its backup bucket.

Runs once per workspace: the outcome is recorded as the ``RestoreFailure``
condition and a workspace that already carries it is skipped.  The client's
restore waiter watches for that condition.
"""

from __future__ import annotations

from loguru import logger

from stok.backup import BackupStore, BucketNotFoundError, backup_key
from stok.cluster import AlreadyExistsError, Cluster, NotFoundError
from stok.models import ConditionType, ObjectMeta, Secret, Workspace, owner_reference, state_secret_name

STATE_FILE_KEY = "terraform.tfstate"


async def restore_state(cluster: Cluster, store: BackupStore, workspace: Workspace) -> bool:
    """Attempt the restore, updating ``workspace.status.conditions`` in place.

    Returns ``True`` if a restore outcome was recorded.  Store errors other
    than a missing bucket or object propagate so the reconciliation is
    retried.
    """
    bucket = workspace.spec.backup_bucket
    conditions = workspace.status.conditions
    if not bucket or ConditionType.RESTORE_FAILURE in conditions:
        return False

    secret_name = state_secret_name(workspace.name)
    key = backup_key(workspace.namespace, workspace.name)

    try:
        await cluster.get(Secret, workspace.namespace, secret_name)
    except NotFoundError:
        pass
    else:
        conditions.set(
            ConditionType.RESTORE_FAILURE,
            False,
            reason="StateAlreadyPresent",
            message=f"State secret {secret_name} already exists; not restoring",
        )
        return True

    try:
        data = await store.read(bucket, key)
    except BucketNotFoundError:
        logger.warning("Restore for {}: bucket {} not found", workspace.key, bucket)
        conditions.set(
            ConditionType.RESTORE_FAILURE,
            True,
            reason="BucketNotFound",
            message=f"Backup bucket {bucket} not found",
        )
        return True
    except FileNotFoundError:
        conditions.set(
            ConditionType.RESTORE_FAILURE,
            False,
            reason="NothingToRestore",
            message=f"There is no state file {key} in bucket {bucket} to restore",
        )
        return True

    try:
        await cluster.create(
            Secret(
                metadata=ObjectMeta(
                    name=secret_name,
                    namespace=workspace.namespace,
                    owner_references=[owner_reference(workspace)],
                ),
                string_data={STATE_FILE_KEY: data.decode("utf-8")},
            )
        )
    except AlreadyExistsError:
        conditions.set(
            ConditionType.RESTORE_FAILURE,
            False,
            reason="StateAlreadyPresent",
            message=f"State secret {secret_name} already exists; not restoring",
        )
        return True
    logger.info("Restored state for {} from {}/{}", workspace.key, bucket, key)
    conditions.set(
        ConditionType.RESTORE_FAILURE,
        False,
        reason="RestoreSucceeded",
        message=f"Restored state file {key} from bucket {bucket}",
    )
    return True
