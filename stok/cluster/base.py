"""Cluster interface used by the controller and the client.

The cluster is the single source of truth: workspaces, runs and every
dependent resource live there, and both the controller and the client talk
to it through this async protocol.  Two implementations exist:

- ``InMemoryCluster``: process-local object store (tests, local development)
- ``KubeCluster``: a real Kubernetes API server via kubernetes_asyncio

Backends translate their native failures into the exceptions below so that
callers can tell "not found" (expected, handled locally) from transient
errors (returned to the caller for retry).
"""

from __future__ import annotations

from collections.abc import AsyncIterator, Mapping
from dataclasses import dataclass
from typing import Generic, Protocol, TypeVar, runtime_checkable

from stok.models.base import Resource
from stok.models.enums import EventType

R = TypeVar("R", bound=Resource)

# ---------------------------------------------------------------------------
# Errors
# ---------------------------------------------------------------------------


class ClusterError(RuntimeError):
    """Base class for cluster API failures."""


class NotFoundError(ClusterError, LookupError):
    """The requested object does not exist."""

    def __init__(self, kind: str, namespace: str, name: str) -> None:
        super().__init__(f"{kind} '{namespace}/{name}' not found")
        self.kind = kind
        self.namespace = namespace
        self.name = name


class AlreadyExistsError(ClusterError):
    """An object with the same kind, namespace and name already exists."""

    def __init__(self, kind: str, namespace: str, name: str) -> None:
        super().__init__(f"{kind} '{namespace}/{name}' already exists")
        self.kind = kind
        self.namespace = namespace
        self.name = name


class ConflictError(ClusterError):
    """Write rejected because the object changed since it was read."""


# ---------------------------------------------------------------------------
# Watch events
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class WatchEvent(Generic[R]):
    type: EventType
    object: R


# ---------------------------------------------------------------------------
# Protocol
# ---------------------------------------------------------------------------


@runtime_checkable
class Cluster(Protocol):
    """Async access to namespaced cluster objects."""

    async def get(self, model: type[R], namespace: str, name: str) -> R:
        """Fetch one object.  Raises ``NotFoundError`` if missing."""
        ...

    async def list(
        self,
        model: type[R],
        namespace: str | None = None,
        *,
        labels: Mapping[str, str] | None = None,
    ) -> list[R]:
        """List objects, optionally restricted to a namespace and label selector."""
        ...

    async def create(self, obj: R) -> R:
        """Create an object.  Raises ``AlreadyExistsError`` if the name is taken."""
        ...

    async def update_status(self, obj: R) -> R:
        """Replace the status of an existing object (full rewrite)."""
        ...

    async def delete(self, model: type[R], namespace: str, name: str) -> None:
        """Delete an object and, through owner references, its dependents."""
        ...

    def watch(
        self,
        model: type[R],
        namespace: str | None = None,
        *,
        name: str | None = None,
    ) -> AsyncIterator[WatchEvent[R]]:
        """Lazy event stream: ADDED for current matches, then live changes.

        The stream ends only when the consumer stops iterating (or is
        cancelled); close it with ``contextlib.aclosing``.
        """
        ...

    def stream_logs(self, namespace: str, pod: str, container: str) -> AsyncIterator[str]:
        """Follow a container's output until the container terminates."""
        ...


def matches_labels(labels: Mapping[str, str], selector: Mapping[str, str] | None) -> bool:
    """Equality-based label selector match."""
    if not selector:
        return True
    return all(labels.get(key) == value for key, value in selector.items())


def label_selector(selector: Mapping[str, str] | None) -> str | None:
    """Render a selector in the ``k=v,k2=v2`` form the Kubernetes API expects."""
    if not selector:
        return None
    return ",".join(f"{key}={value}" for key, value in sorted(selector.items()))
