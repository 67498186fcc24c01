"""Read-only workspace endpoints."""

from __future__ import annotations

from fastapi import APIRouter, HTTPException, status
from pydantic import BaseModel

from stok.cluster import NotFoundError
from stok.controller.deps import ClusterClient
from stok.models import Condition, Workspace

router = APIRouter(prefix="/workspaces", tags=["workspaces"])


class QueueResponse(BaseModel):
    namespace: str
    name: str
    queue: list[str]
    conditions: list[Condition]


@router.get("/{namespace}/{name}/queue", response_model=QueueResponse)
async def get_queue(namespace: str, name: str, cluster: ClusterClient) -> QueueResponse:
    """Current run queue of a workspace; the head is the active run."""
    try:
        workspace = await cluster.get(Workspace, namespace, name)
    except NotFoundError:
        raise HTTPException(status.HTTP_404_NOT_FOUND, detail=f"Workspace '{namespace}/{name}' not found.") from None
    return QueueResponse(
        namespace=namespace,
        name=name,
        queue=workspace.status.queue,
        conditions=list(workspace.status.conditions),
    )
