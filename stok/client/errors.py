"""Errors surfaced to the user by the client commands.

Each failure mode has its own class and message so the user can tell which
step stalled; the CLI prints the message and exits non-zero.
"""

from __future__ import annotations


class StokError(Exception):
    """Base class for user-facing client errors."""


class PodTimeoutError(StokError):
    def __init__(self) -> None:
        super().__init__("timed out waiting for pod to be ready")


class ReconcileTimeoutError(StokError):
    def __init__(self, kind: str = "workspace") -> None:
        super().__init__(f"timed out waiting for {kind} to be reconciled")


class RestoreTimeoutError(StokError):
    def __init__(self) -> None:
        super().__init__("timed out waiting for workspace to provide status of restore")


class ExitCodeTimeoutError(StokError):
    def __init__(self) -> None:
        super().__init__("timed out waiting for exit code")


class MissingArgumentError(StokError):
    def __init__(self, argument: str) -> None:
        super().__init__(f"missing required argument: {argument}")
        self.argument = argument


class RestoreFailedError(StokError):
    def __init__(self, message: str) -> None:
        super().__init__(f"restore failed: {message}")


class WorkspaceNotFoundError(StokError, LookupError):
    def __init__(self, namespace: str, name: str) -> None:
        super().__init__(f"workspace {namespace}/{name} not found")
        self.namespace = namespace
        self.name = name


class ContainerExitError(StokError):
    """The remote process exited non-zero; the CLI exits with the same code."""

    def __init__(self, code: int) -> None:
        super().__init__(f"command exited with code {code}")
        self.code = code
