"""Core Kubernetes resources the controller creates or reads.

Only the fields stok reads or writes are modelled; anything else in an API
payload is ignored on validation.
"""

from __future__ import annotations

from typing import Any

from pydantic import Field

from stok.models.base import KubeModel, Resource
from stok.models.enums import PodPhase

# -- Credentials -------------------------------------------------------------


class Secret(Resource):
    kind = "Secret"

    data: dict[str, str] = Field(default_factory=dict, description="Base64-encoded values")
    string_data: dict[str, str] = Field(default_factory=dict)

    @property
    def keys(self) -> list[str]:
        """All keys, whether supplied encoded or as plain strings."""
        return sorted(set(self.data) | set(self.string_data))


class ServiceAccount(Resource):
    kind = "ServiceAccount"


# -- Storage -----------------------------------------------------------------


class ResourceRequirements(KubeModel):
    requests: dict[str, str] = Field(default_factory=dict)


class PersistentVolumeClaimSpec(KubeModel):
    access_modes: list[str] = Field(default_factory=lambda: ["ReadWriteOnce"])
    resources: ResourceRequirements = Field(default_factory=ResourceRequirements)
    storage_class_name: str | None = None
    """``None`` selects the cluster's default class; ``""`` disables dynamic provisioning."""


class PersistentVolumeClaim(Resource):
    kind = "PersistentVolumeClaim"

    spec: PersistentVolumeClaimSpec = Field(default_factory=PersistentVolumeClaimSpec)


class ConfigMap(Resource):
    kind = "ConfigMap"

    data: dict[str, str] = Field(default_factory=dict)


# -- Pods --------------------------------------------------------------------


class EnvVar(KubeModel):
    name: str
    value: str = ""


class SecretEnvSource(KubeModel):
    name: str
    optional: bool | None = None


class EnvFromSource(KubeModel):
    secret_ref: SecretEnvSource | None = None


class VolumeMount(KubeModel):
    name: str
    mount_path: str
    sub_path: str | None = None


class Container(KubeModel):
    name: str
    image: str
    command: list[str] | None = None
    args: list[str] = Field(default_factory=list)
    working_dir: str | None = None
    env: list[EnvVar] = Field(default_factory=list)
    env_from: list[EnvFromSource] = Field(default_factory=list)
    volume_mounts: list[VolumeMount] = Field(default_factory=list)
    stdin: bool | None = None
    tty: bool | None = None


class KeyToPath(KubeModel):
    key: str
    path: str


class PersistentVolumeClaimVolumeSource(KubeModel):
    claim_name: str


class ConfigMapVolumeSource(KubeModel):
    name: str


class SecretVolumeSource(KubeModel):
    secret_name: str
    items: list[KeyToPath] | None = None


class Volume(KubeModel):
    name: str
    persistent_volume_claim: PersistentVolumeClaimVolumeSource | None = None
    config_map: ConfigMapVolumeSource | None = None
    secret: SecretVolumeSource | None = None


class PodSpec(KubeModel):
    service_account_name: str | None = None
    restart_policy: str = "Never"
    init_containers: list[Container] = Field(default_factory=list)
    containers: list[Container] = Field(default_factory=list)
    volumes: list[Volume] = Field(default_factory=list)


class ContainerStateTerminated(KubeModel):
    exit_code: int
    reason: str | None = None


class ContainerState(KubeModel):
    waiting: dict[str, Any] | None = None
    running: dict[str, Any] | None = None
    terminated: ContainerStateTerminated | None = None


class ContainerStatus(KubeModel):
    name: str
    ready: bool = False
    state: ContainerState = Field(default_factory=ContainerState)


class PodStatus(KubeModel):
    phase: PodPhase = PodPhase.PENDING
    init_container_statuses: list[ContainerStatus] = Field(default_factory=list)
    container_statuses: list[ContainerStatus] = Field(default_factory=list)


class Pod(Resource):
    kind = "Pod"

    spec: PodSpec = Field(default_factory=PodSpec)
    status: PodStatus = Field(default_factory=PodStatus)

    def container_status(self, name: str) -> ContainerStatus | None:
        """Status of a container (init or regular) by name."""
        for status in (*self.status.init_container_statuses, *self.status.container_statuses):
            if status.name == name:
                return status
        return None

    def container(self, name: str) -> Container | None:
        for container in (*self.spec.init_containers, *self.spec.containers):
            if container.name == name:
                return container
        return None
