"""Controller process: FastAPI app whose lifespan runs the dispatcher.

The HTTP surface is small (health and a read-only queue view); the real
work happens in the background dispatcher task started at startup and
cancelled at shutdown.
"""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, Response, status
from fastapi.routing import APIRouter
from loguru import logger

from stok.backup import BackupStore, LocalBackupStore
from stok.cluster import Cluster, InMemoryCluster
from stok.controller.dispatcher import Dispatcher
from stok.controller.reconciler import WorkspaceReconciler
from stok.log import setup_logging
from stok.models import ConfigMap, PersistentVolumeClaim, Pod, Run, Workspace
from stok.settings import StokSettings, get_settings


def create_backup_store(settings: StokSettings) -> BackupStore:
    """Create the backup store backend based on configuration."""
    if settings.backup_store == "s3":
        from stok.backup.s3 import S3BackupStore

        return S3BackupStore(
            endpoint_url=settings.s3_endpoint,
            access_key=settings.s3_access_key,
            secret_key=settings.s3_secret_key.get_secret_value() if settings.s3_secret_key else None,
            region=settings.s3_region,
            path_style=settings.s3_path_style,
        )
    return LocalBackupStore(settings.backup_root)


async def create_cluster(settings: StokSettings) -> Cluster:
    if settings.cluster == "memory":
        logger.warning("Using in-memory cluster -- state is lost on exit")
        return InMemoryCluster()

    from stok.cluster.kube import KubeCluster

    return await KubeCluster.connect(settings.kube_context)


def create_dispatcher(cluster: Cluster, reconciler: WorkspaceReconciler, settings: StokSettings) -> Dispatcher:
    dispatcher = Dispatcher(
        cluster,
        reconciler.reconcile,
        namespace=settings.namespace or None,
        workers=settings.workers,
        resync_period=settings.resync_period,
        backoff_base=settings.backoff_base,
        backoff_max=settings.backoff_max,
    )
    for model in (Workspace, Run, Pod, PersistentVolumeClaim, ConfigMap):
        dispatcher.subscribe(model)
    return dispatcher


def _log_dispatcher_exit(task: asyncio.Task[None]) -> None:
    if not task.cancelled() and task.exception() is not None:
        logger.opt(exception=task.exception()).critical("Dispatcher exited unexpectedly")


@asynccontextmanager
async def lifespan(_app: FastAPI) -> AsyncIterator[None]:
    # -- Startup ---------------------------------------------------------------
    settings = get_settings()
    setup_logging(settings.log_level)
    logger.info(
        "Controller starting (cluster={}, namespace={}, backups={})",
        settings.cluster,
        settings.namespace,
        settings.backup_store,
    )

    cluster = await create_cluster(settings)
    reconciler = WorkspaceReconciler(cluster, settings.image, backup_store=create_backup_store(settings))
    dispatcher = create_dispatcher(cluster, reconciler, settings)

    _app.state.cluster = cluster
    _app.state.dispatcher = dispatcher
    task = asyncio.create_task(dispatcher.run(), name="dispatcher")
    task.add_done_callback(_log_dispatcher_exit)

    yield

    # -- Shutdown --------------------------------------------------------------
    logger.info("Controller shutting down (pending={})", dispatcher.pending)
    task.cancel()
    # A crashed dispatcher has already been logged by the done callback.
    await asyncio.gather(task, return_exceptions=True)

    close = getattr(cluster, "close", None)
    if close is not None:
        await close()
        logger.info("Cluster connection closed")


app = FastAPI(title="stok controller", lifespan=lifespan)

# ---------------------------------------------------------------------------
# API router -- all endpoints live under /api
# ---------------------------------------------------------------------------
api = APIRouter(prefix="/api")


@api.get("/health")
async def health(request: Request, response: Response) -> dict[str, str]:
    dispatcher: Dispatcher | None = getattr(request.app.state, "dispatcher", None)
    if dispatcher is None or not dispatcher.is_running:
        response.status_code = status.HTTP_503_SERVICE_UNAVAILABLE
        return {"status": "unavailable", "dispatcher": "stopped"}
    return {"status": "ok", "dispatcher": "running"}


from stok.controller.routers.workspaces import router as workspaces_router  # noqa: E402

api.include_router(workspaces_router)

app.include_router(api)
