"""Common object model shared by every cluster resource.

Field names are snake_case in Python and camelCase on the wire, so a model
validates straight from a Kubernetes API payload and ``to_dict`` produces a
payload the API server accepts.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Any, ClassVar

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class KubeModel(BaseModel):
    """Base model: camelCase aliases, construction by field name allowed."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


@dataclass(frozen=True, order=True)
class ObjectKey:
    """Namespaced identity of a cluster object."""

    namespace: str
    name: str

    def __str__(self) -> str:
        return f"{self.namespace}/{self.name}"


class OwnerReference(KubeModel):
    api_version: str
    kind: str
    name: str
    uid: str
    controller: bool | None = None
    block_owner_deletion: bool | None = None


class ObjectMeta(KubeModel):
    name: str
    namespace: str = "default"
    uid: str | None = None
    labels: dict[str, str] = Field(default_factory=dict)
    annotations: dict[str, str] = Field(default_factory=dict)
    owner_references: list[OwnerReference] = Field(default_factory=list)
    creation_timestamp: datetime | None = None
    generation: int | None = None
    resource_version: str | None = None


class Resource(KubeModel):
    """A named, namespaced cluster object of a fixed kind."""

    kind: ClassVar[str]
    api_version: ClassVar[str] = "v1"

    metadata: ObjectMeta

    @property
    def name(self) -> str:
        return self.metadata.name

    @property
    def namespace(self) -> str:
        return self.metadata.namespace

    @property
    def key(self) -> ObjectKey:
        return ObjectKey(self.metadata.namespace, self.metadata.name)

    def owned_by(self, owner: Resource) -> bool:
        """Whether ``owner`` appears among this object's owner references."""
        return any(ref.uid == owner.metadata.uid for ref in self.metadata.owner_references)

    def owner_of_kind(self, kind: str) -> OwnerReference | None:
        for ref in self.metadata.owner_references:
            if ref.kind == kind:
                return ref
        return None

    def to_dict(self) -> dict[str, Any]:
        """Serialize to a Kubernetes API payload (unset fields omitted)."""
        body = self.model_dump(by_alias=True, exclude_none=True, mode="json")
        return {"apiVersion": self.api_version, "kind": self.kind, **body}


def owner_reference(owner: Resource) -> OwnerReference:
    """Controller owner reference pointing at ``owner``.

    The owner must have been read back from the cluster (it needs a uid).
    """
    if not owner.metadata.uid:
        msg = f"{owner.kind} {owner.key} has no uid; fetch it from the cluster first"
        raise ValueError(msg)
    return OwnerReference(
        api_version=owner.api_version,
        kind=owner.kind,
        name=owner.name,
        uid=owner.metadata.uid,
        controller=True,
        block_owner_deletion=True,
    )
