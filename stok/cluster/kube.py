"""Kubernetes cluster backend (kubernetes_asyncio).

Core kinds (pods, claims, config maps, secrets, service accounts) go through
``CoreV1Api``; the stok custom resources (workspaces, runs) go through
``CustomObjectsApi``.  Every response is normalised to its JSON form with
``ApiClient.sanitize_for_serialization`` and validated into the stok models,
so both API families share one code path.

API failures are translated to the ``stok.cluster.base`` exceptions:
404 -> ``NotFoundError``, 409 -> ``AlreadyExistsError`` (create) or
``ConflictError`` (update), anything else -> ``ClusterError``.  Transport
failures (aiohttp errors, timeouts) become ``ClusterError`` as well.
"""

from __future__ import annotations

import codecs
import logging
from collections.abc import AsyncIterator, Mapping
from typing import Any

import aiohttp
from kubernetes_asyncio import client, config, watch
from kubernetes_asyncio.client.exceptions import ApiException

from stok.cluster.base import (
    AlreadyExistsError,
    ClusterError,
    ConflictError,
    NotFoundError,
    R,
    WatchEvent,
    label_selector,
)
from stok.models.enums import EventType
from stok.models.workspace import API_GROUP

logger = logging.getLogger(__name__)

CUSTOM_VERSION = "v1alpha1"

# Kind -> snake_case suffix of the CoreV1Api method names.
_CORE_KINDS: dict[str, str] = {
    "Pod": "pod",
    "PersistentVolumeClaim": "persistent_volume_claim",
    "ConfigMap": "config_map",
    "Secret": "secret",
    "ServiceAccount": "service_account",
}

# Kind -> plural of the stok custom resources.
_CUSTOM_KINDS: dict[str, str] = {
    "Workspace": "workspaces",
    "Run": "runs",
}

_HTTP_NOT_FOUND = 404
_HTTP_CONFLICT = 409
_HTTP_GONE = 410


def _translate(exc: ApiException, kind: str, namespace: str, name: str, *, creating: bool = False) -> ClusterError:
    if exc.status == _HTTP_NOT_FOUND:
        return NotFoundError(kind, namespace, name)
    if exc.status == _HTTP_CONFLICT:
        if creating:
            return AlreadyExistsError(kind, namespace, name)
        return ConflictError(f"{kind} '{namespace}/{name}' was modified concurrently")
    return ClusterError(f"{kind} '{namespace}/{name}': {exc.status} {exc.reason}")


_TRANSPORT_ERRORS = (aiohttp.ClientError, TimeoutError)


def _transport(exc: Exception, kind: str, namespace: str, name: str) -> ClusterError:
    return ClusterError(f"{kind} '{namespace}/{name}': {type(exc).__name__}: {exc}")


class KubeCluster:
    """``Cluster`` implementation backed by a Kubernetes API server."""

    def __init__(self, api_client: client.ApiClient) -> None:
        self._api = api_client
        self._core = client.CoreV1Api(api_client)
        self._custom = client.CustomObjectsApi(api_client)

    @classmethod
    async def connect(cls, context: str | None = None) -> KubeCluster:
        """Load in-cluster config if available, else the local kubeconfig."""
        try:
            config.load_incluster_config()
        except config.ConfigException:
            await config.load_kube_config(context=context)
        return cls(client.ApiClient())

    async def close(self) -> None:
        await self._api.close()

    # -- Helpers ---------------------------------------------------------------

    def _to_model(self, model: type[R], data: Any) -> R:
        return model.model_validate(self._api.sanitize_for_serialization(data))

    def _core_method(self, verb: str, kind: str, suffix: str = "") -> Any:
        return getattr(self._core, f"{verb}_namespaced_{_CORE_KINDS[kind]}{suffix}")

    def _list_call(self, kind: str, namespace: str | None) -> tuple[Any, tuple[Any, ...]]:
        """The list function (and positional args) for a kind, as used by ``watch.Watch``."""
        if kind in _CUSTOM_KINDS:
            plural = _CUSTOM_KINDS[kind]
            if namespace is None:
                return self._custom.list_cluster_custom_object, (API_GROUP, CUSTOM_VERSION, plural)
            return self._custom.list_namespaced_custom_object, (API_GROUP, CUSTOM_VERSION, namespace, plural)
        suffix = _CORE_KINDS[kind]
        if namespace is None:
            return getattr(self._core, f"list_{suffix}_for_all_namespaces"), ()
        return getattr(self._core, f"list_namespaced_{suffix}"), (namespace,)

    # -- Protocol --------------------------------------------------------------

    async def get(self, model: type[R], namespace: str, name: str) -> R:
        try:
            if model.kind in _CUSTOM_KINDS:
                data = await self._custom.get_namespaced_custom_object(
                    API_GROUP, CUSTOM_VERSION, namespace, _CUSTOM_KINDS[model.kind], name
                )
            else:
                data = await self._core_method("read", model.kind)(name, namespace)
        except ApiException as exc:
            raise _translate(exc, model.kind, namespace, name) from exc
        except _TRANSPORT_ERRORS as exc:
            raise _transport(exc, model.kind, namespace, name) from exc
        return self._to_model(model, data)

    async def list(
        self,
        model: type[R],
        namespace: str | None = None,
        *,
        labels: Mapping[str, str] | None = None,
    ) -> list[R]:
        items, _ = await self._list_raw(model.kind, namespace, labels=labels)
        return [model.model_validate(item) for item in items]

    async def _list_raw(
        self,
        kind: str,
        namespace: str | None,
        *,
        labels: Mapping[str, str] | None = None,
        field_selector: str | None = None,
    ) -> tuple[list[dict[str, Any]], str | None]:
        func, args = self._list_call(kind, namespace)
        try:
            result = await func(*args, label_selector=label_selector(labels), field_selector=field_selector)
        except ApiException as exc:
            raise _translate(exc, kind, namespace or "*", "*") from exc
        except _TRANSPORT_ERRORS as exc:
            raise _transport(exc, kind, namespace or "*", "*") from exc
        data = self._api.sanitize_for_serialization(result)
        return data.get("items") or [], (data.get("metadata") or {}).get("resourceVersion")

    async def create(self, obj: R) -> R:
        body = obj.to_dict()
        try:
            if obj.kind in _CUSTOM_KINDS:
                data = await self._custom.create_namespaced_custom_object(
                    API_GROUP, CUSTOM_VERSION, obj.namespace, _CUSTOM_KINDS[obj.kind], body
                )
            else:
                data = await self._core_method("create", obj.kind)(obj.namespace, body)
        except ApiException as exc:
            raise _translate(exc, obj.kind, obj.namespace, obj.name, creating=True) from exc
        except _TRANSPORT_ERRORS as exc:
            raise _transport(exc, obj.kind, obj.namespace, obj.name) from exc
        return self._to_model(type(obj), data)

    async def update_status(self, obj: R) -> R:
        body = obj.to_dict()
        try:
            if obj.kind in _CUSTOM_KINDS:
                data = await self._custom.replace_namespaced_custom_object_status(
                    API_GROUP, CUSTOM_VERSION, obj.namespace, _CUSTOM_KINDS[obj.kind], obj.name, body
                )
            else:
                data = await self._core_method("replace", obj.kind, "_status")(obj.name, obj.namespace, body)
        except ApiException as exc:
            raise _translate(exc, obj.kind, obj.namespace, obj.name) from exc
        except _TRANSPORT_ERRORS as exc:
            raise _transport(exc, obj.kind, obj.namespace, obj.name) from exc
        return self._to_model(type(obj), data)

    async def delete(self, model: type[R], namespace: str, name: str) -> None:
        try:
            if model.kind in _CUSTOM_KINDS:
                await self._custom.delete_namespaced_custom_object(
                    API_GROUP,
                    CUSTOM_VERSION,
                    namespace,
                    _CUSTOM_KINDS[model.kind],
                    name,
                    propagation_policy="Background",
                )
            else:
                await self._core_method("delete", model.kind)(name, namespace, propagation_policy="Background")
        except ApiException as exc:
            raise _translate(exc, model.kind, namespace, name) from exc
        except _TRANSPORT_ERRORS as exc:
            raise _transport(exc, model.kind, namespace, name) from exc

    async def watch(
        self,
        model: type[R],
        namespace: str | None = None,
        *,
        name: str | None = None,
    ) -> AsyncIterator[WatchEvent[R]]:
        field_selector = f"metadata.name={name}" if name else None
        func, args = self._list_call(model.kind, namespace)

        while True:
            # List, then watch from the list's resource version.  A 410 (the
            # version expired) restarts from a fresh list.
            items, resource_version = await self._list_raw(model.kind, namespace, field_selector=field_selector)
            for item in items:
                yield WatchEvent(EventType.ADDED, model.model_validate(item))

            expired = False
            stream = watch.Watch()
            try:
                while not expired:
                    async for event in stream.stream(
                        func,
                        *args,
                        field_selector=field_selector,
                        resource_version=resource_version,
                    ):
                        raw = self._api.sanitize_for_serialization(event["object"])
                        if event["type"] == "ERROR":
                            if raw.get("code") == _HTTP_GONE:
                                logger.debug("Watch on %s expired, re-listing", model.kind)
                                expired = True
                                break
                            msg = f"Watch on {model.kind} failed: {raw.get('message')}"
                            raise ClusterError(msg)
                        resource_version = (raw.get("metadata") or {}).get("resourceVersion", resource_version)
                        yield WatchEvent(EventType(event["type"]), model.model_validate(raw))
            except ApiException as exc:
                raise _translate(exc, model.kind, namespace or "*", name or "*") from exc
            except _TRANSPORT_ERRORS as exc:
                raise _transport(exc, model.kind, namespace or "*", name or "*") from exc
            finally:
                stream.stop()
                await stream.close()

    async def stream_logs(self, namespace: str, pod: str, container: str) -> AsyncIterator[str]:
        try:
            response = await self._core.read_namespaced_pod_log(
                pod,
                namespace,
                container=container,
                follow=True,
                _preload_content=False,
            )
        except ApiException as exc:
            raise _translate(exc, "Pod", namespace, pod) from exc
        except _TRANSPORT_ERRORS as exc:
            raise _transport(exc, "Pod", namespace, pod) from exc
        # Chunks follow network framing, so a multi-byte character may be split.
        decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        try:
            async for chunk in response.content.iter_any():
                text = decoder.decode(chunk)
                if text:
                    yield text
            tail = decoder.decode(b"", final=True)
            if tail:
                yield tail
        except _TRANSPORT_ERRORS as exc:
            raise _transport(exc, "Pod", namespace, pod) from exc
        finally:
            response.release()
