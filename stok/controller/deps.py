"""FastAPI dependency injection for the cluster connection.

Usage in route handlers::

    @router.get("/things")
    async def list_things(cluster: ClusterClient) -> list[Thing]:
        ...

Raises HTTP 503 until the lifespan has connected to the cluster.
"""

from __future__ import annotations

from typing import Annotated

from fastapi import Depends, HTTPException, Request, status

from stok.cluster import Cluster


async def get_cluster(request: Request) -> Cluster:
    cluster: Cluster | None = getattr(request.app.state, "cluster", None)
    if cluster is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Cluster connection not initialised.",
        )
    return cluster


ClusterClient = Annotated[Cluster, Depends(get_cluster)]
"""Annotated dependency: the controller's cluster connection."""
