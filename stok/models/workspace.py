"""Workspace custom resource.

A workspace is a named execution context with its own cache volume, backend
configuration and identity.  Runs against a workspace execute one at a time,
in the order recorded in ``status.queue``.
"""

from __future__ import annotations

from pydantic import Field

from stok.models.base import KubeModel, Resource
from stok.models.conditions import ConditionSet
from stok.models.enums import ConditionType

API_GROUP = "stok.goalspike.com"
API_VERSION = f"{API_GROUP}/v1alpha1"

DEFAULT_CACHE_SIZE = "1Gi"
DEFAULT_CLIENT_TIMEOUT = "10s"


class CacheSpec(KubeModel):
    """Persistent volume backing the ``.terraform`` cache."""

    size: str | None = Field(default=None, description=f"Requested size; {DEFAULT_CACHE_SIZE} when unset")
    storage_class: str | None = Field(
        default=None,
        description="None = cluster default class, '' = no class, otherwise the named class",
    )


class BackendSpec(KubeModel):
    type: str = "local"
    config: dict[str, str] = Field(default_factory=dict)


class Variable(KubeModel):
    key: str
    value: str = ""
    environment_variable: bool = False
    """True for a process environment variable, False for a Terraform variable."""


class WorkspaceSpec(KubeModel):
    secret_name: str | None = None
    service_account_name: str | None = None
    cache: CacheSpec = Field(default_factory=CacheSpec)
    backend: BackendSpec = Field(default_factory=BackendSpec)
    variables: list[Variable] = Field(default_factory=list)
    privileged_commands: list[str] = Field(default_factory=list)
    timeout_client: str = DEFAULT_CLIENT_TIMEOUT
    verbosity: int = 0
    backup_bucket: str | None = None
    terraform_version: str | None = None


class WorkspaceStatus(KubeModel):
    queue: list[str] = Field(default_factory=list, description="Non-terminal run names, head = active")
    conditions: ConditionSet = Field(default_factory=ConditionSet)
    observed_generation: int | None = None


class Workspace(Resource):
    kind = "Workspace"
    api_version = API_VERSION

    spec: WorkspaceSpec = Field(default_factory=WorkspaceSpec)
    status: WorkspaceStatus = Field(default_factory=WorkspaceStatus)

    @property
    def pod_name(self) -> str:
        return workspace_resource_name(self.name)

    @property
    def reconciled(self) -> bool:
        """Whether the controller has processed the current generation at least once."""
        if not self.status.conditions.is_true(ConditionType.RECONCILED):
            return False
        generation = self.metadata.generation
        return generation is None or (self.status.observed_generation or 0) >= generation


def workspace_resource_name(workspace: str) -> str:
    """Deterministic name shared by a workspace's pod, cache claim and config map."""
    return f"workspace-{workspace}"


def state_secret_name(workspace: str) -> str:
    """Secret holding the state file restored from a backup bucket."""
    return f"workspace-{workspace}-state"
