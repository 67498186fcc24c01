"""Best-effort removal of resources created by a failed client command."""

from __future__ import annotations

from collections.abc import Sequence

from loguru import logger

from stok.cluster import Cluster, ClusterError
from stok.models import Resource


async def cleanup(cluster: Cluster, created: Sequence[Resource]) -> None:
    """Delete ``created`` in reverse creation order.

    Failures are logged and skipped; the error that triggered the cleanup
    is the one the user should see.
    """
    for obj in reversed(created):
        try:
            await cluster.delete(type(obj), obj.namespace, obj.name)
        except ClusterError as exc:
            logger.warning("Cleanup: could not delete {} {}: {}", obj.kind, obj.key, exc)
        else:
            logger.debug("Cleanup: deleted {} {}", obj.kind, obj.key)
