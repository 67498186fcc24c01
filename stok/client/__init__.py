"""Client side: create workspaces and runs, then wait on and follow them."""

from stok.client.env import StokEnv
from stok.client.errors import (
    ContainerExitError,
    ExitCodeTimeoutError,
    MissingArgumentError,
    PodTimeoutError,
    ReconcileTimeoutError,
    RestoreFailedError,
    RestoreTimeoutError,
    StokError,
    WorkspaceNotFoundError,
)
from stok.client.run import RunOptions, run_command
from stok.client.workspace import NewWorkspaceOptions, new_workspace

__all__ = [
    "ContainerExitError",
    "ExitCodeTimeoutError",
    "MissingArgumentError",
    "NewWorkspaceOptions",
    "PodTimeoutError",
    "ReconcileTimeoutError",
    "RestoreFailedError",
    "RestoreTimeoutError",
    "RunOptions",
    "StokError",
    "StokEnv",
    "WorkspaceNotFoundError",
    "new_workspace",
    "run_command",
]
