"""In-memory cluster.

A process-local object store that behaves like the parts of the Kubernetes
API server stok relies on:

- uid, creation timestamp, generation and resource version are assigned on
  create; objects are copied in and out so callers never share state
- ``watch`` delivers ADDED events for existing objects followed by live
  ADDED / MODIFIED / DELETED notifications
- ``delete`` cascades through owner references, standing in for the
  Kubernetes garbage collector

Used as the ``memory`` cluster backend and as the test double for the
controller and the client.  Per-verb call counters and one-shot error
injection make idempotence and failure paths observable in tests.
"""

from __future__ import annotations

import asyncio
import uuid
from collections import Counter
from collections.abc import AsyncIterator, Mapping
from dataclasses import dataclass, field
from datetime import UTC, datetime

from loguru import logger

from stok.cluster.base import (
    AlreadyExistsError,
    NotFoundError,
    R,
    WatchEvent,
    matches_labels,
)
from stok.models.base import Resource
from stok.models.enums import EventType


@dataclass
class _Watcher:
    kind: str
    namespace: str | None
    name: str | None
    queue: asyncio.Queue[WatchEvent] = field(default_factory=asyncio.Queue)

    def wants(self, obj: Resource) -> bool:
        if obj.kind != self.kind:
            return False
        if self.namespace is not None and obj.namespace != self.namespace:
            return False
        return self.name is None or obj.name == self.name


@dataclass
class _LogBuffer:
    chunks: list[str] = field(default_factory=list)
    closed: bool = False
    changed: asyncio.Event = field(default_factory=asyncio.Event)


class InMemoryCluster:
    """Process-local implementation of the ``Cluster`` protocol."""

    def __init__(self, objects: list[Resource] | None = None) -> None:
        self._objects: dict[tuple[str, str, str], Resource] = {}
        self._watchers: list[_Watcher] = []
        self._logs: dict[tuple[str, str, str], _LogBuffer] = {}
        self._errors: dict[tuple[str, str], Exception] = {}
        self._version = 0
        self.calls: Counter[tuple[str, str]] = Counter()
        for obj in objects or []:
            self._store(self._admit(obj), EventType.ADDED)

    # -- Introspection (tests) -------------------------------------------------

    @property
    def active_watches(self) -> int:
        return len(self._watchers)

    def count(self, verb: str, model: type[Resource] | None = None) -> int:
        """Number of calls made for ``verb`` (optionally for one kind)."""
        if model is not None:
            return self.calls[(verb, model.kind)]
        return sum(n for (v, _), n in self.calls.items() if v == verb)

    def inject_error(self, verb: str, model: type[Resource], exc: Exception) -> None:
        """Make the next ``verb`` call for ``model`` raise ``exc``."""
        self._errors[(verb, model.kind)] = exc

    # -- Protocol --------------------------------------------------------------

    async def get(self, model: type[R], namespace: str, name: str) -> R:
        self._record("get", model.kind)
        obj = self._objects.get((model.kind, namespace, name))
        if obj is None:
            raise NotFoundError(model.kind, namespace, name)
        return obj.model_copy(deep=True)  # type: ignore[return-value]

    async def list(
        self,
        model: type[R],
        namespace: str | None = None,
        *,
        labels: Mapping[str, str] | None = None,
    ) -> list[R]:
        self._record("list", model.kind)
        return [
            obj.model_copy(deep=True)  # type: ignore[misc]
            for (kind, ns, _), obj in sorted(self._objects.items())
            if kind == model.kind
            and (namespace is None or ns == namespace)
            and matches_labels(obj.metadata.labels, labels)
        ]

    async def create(self, obj: R) -> R:
        self._record("create", obj.kind)
        key = (obj.kind, obj.namespace, obj.name)
        if key in self._objects:
            raise AlreadyExistsError(*key)

        return self._store(self._admit(obj), EventType.ADDED)

    async def update_status(self, obj: R) -> R:
        self._record("update_status", obj.kind)
        current = self._objects.get((obj.kind, obj.namespace, obj.name))
        if current is None:
            raise NotFoundError(obj.kind, obj.namespace, obj.name)
        updated = current.model_copy(update={"status": obj.status.model_copy(deep=True)})  # type: ignore[attr-defined]
        return self._store(updated, EventType.MODIFIED)

    async def delete(self, model: type[R], namespace: str, name: str) -> None:
        self._record("delete", model.kind)
        obj = self._objects.get((model.kind, namespace, name))
        if obj is None:
            raise NotFoundError(model.kind, namespace, name)
        self._delete_cascade(obj)

    async def watch(
        self,
        model: type[R],
        namespace: str | None = None,
        *,
        name: str | None = None,
    ) -> AsyncIterator[WatchEvent[R]]:
        self._record("watch", model.kind)
        watcher = _Watcher(kind=model.kind, namespace=namespace, name=name)
        self._watchers.append(watcher)
        try:
            for obj in list(self._objects.values()):
                if watcher.wants(obj):
                    yield WatchEvent(EventType.ADDED, obj.model_copy(deep=True))  # type: ignore[arg-type]
            while True:
                yield await watcher.queue.get()
        finally:
            self._watchers.remove(watcher)

    async def stream_logs(self, namespace: str, pod: str, container: str) -> AsyncIterator[str]:
        if ("Pod", namespace, pod) not in self._objects:
            raise NotFoundError("Pod", namespace, pod)
        buffer = self._logs.setdefault((namespace, pod, container), _LogBuffer())
        sent = 0
        while True:
            while sent < len(buffer.chunks):
                yield buffer.chunks[sent]
                sent += 1
            if buffer.closed:
                return
            buffer.changed.clear()
            await buffer.changed.wait()

    # -- Out-of-band mutation (stands in for kubelet / runner) -----------------

    async def replace(self, obj: R) -> R:
        """Overwrite an existing object wholesale (spec and status)."""
        current = self._objects.get((obj.kind, obj.namespace, obj.name))
        if current is None:
            raise NotFoundError(obj.kind, obj.namespace, obj.name)
        obj = obj.model_copy(deep=True)
        obj.metadata = current.metadata.model_copy(deep=True)
        return self._store(obj, EventType.MODIFIED)

    def write_log(self, namespace: str, pod: str, container: str, text: str, *, close: bool = False) -> None:
        buffer = self._logs.setdefault((namespace, pod, container), _LogBuffer())
        buffer.chunks.append(text)
        buffer.closed = buffer.closed or close
        buffer.changed.set()

    # -- Internals -------------------------------------------------------------

    def _record(self, verb: str, kind: str) -> None:
        self.calls[(verb, kind)] += 1
        exc = self._errors.pop((verb, kind), None)
        if exc is not None:
            raise exc

    @staticmethod
    def _admit(obj: R) -> R:
        obj = obj.model_copy(deep=True)
        obj.metadata.uid = obj.metadata.uid or str(uuid.uuid4())
        if obj.metadata.creation_timestamp is None:
            obj.metadata.creation_timestamp = datetime.now(tz=UTC)
        obj.metadata.generation = obj.metadata.generation or 1
        return obj

    def _store(self, obj: R, event: EventType) -> R:
        self._version += 1
        obj.metadata.resource_version = str(self._version)
        self._objects[(obj.kind, obj.namespace, obj.name)] = obj
        self._notify(event, obj)
        return obj.model_copy(deep=True)

    def _notify(self, event: EventType, obj: Resource) -> None:
        for watcher in self._watchers:
            if watcher.wants(obj):
                watcher.queue.put_nowait(WatchEvent(event, obj.model_copy(deep=True)))

    def _delete_cascade(self, obj: Resource) -> None:
        if self._objects.pop((obj.kind, obj.namespace, obj.name), None) is None:
            return
        self._notify(EventType.DELETED, obj)
        dependents = [
            other
            for other in self._objects.values()
            if other.namespace == obj.namespace and other.owned_by(obj)
        ]
        for dependent in dependents:
            logger.debug("Garbage collecting {} {} (owner {} {})", dependent.kind, dependent.key, obj.kind, obj.key)
            self._delete_cascade(dependent)
