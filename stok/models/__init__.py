"""Data models for workspaces, runs and the cluster resources they own."""

from stok.models.base import KubeModel, ObjectKey, ObjectMeta, OwnerReference, Resource, owner_reference
from stok.models.conditions import Condition, ConditionSet
from stok.models.enums import ConditionStatus, ConditionType, EventType, PodPhase
from stok.models.resources import (
    ConfigMap,
    ConfigMapVolumeSource,
    Container,
    ContainerState,
    ContainerStateTerminated,
    ContainerStatus,
    EnvFromSource,
    EnvVar,
    KeyToPath,
    PersistentVolumeClaim,
    PersistentVolumeClaimSpec,
    PersistentVolumeClaimVolumeSource,
    Pod,
    PodSpec,
    PodStatus,
    ResourceRequirements,
    Secret,
    SecretEnvSource,
    SecretVolumeSource,
    ServiceAccount,
    Volume,
    VolumeMount,
)
from stok.models.run import WORKSPACE_LABEL, Run, RunSpec, RunStatus, run_pod_name
from stok.models.workspace import (
    API_GROUP,
    API_VERSION,
    DEFAULT_CACHE_SIZE,
    DEFAULT_CLIENT_TIMEOUT,
    BackendSpec,
    CacheSpec,
    Variable,
    Workspace,
    WorkspaceSpec,
    WorkspaceStatus,
    state_secret_name,
    workspace_resource_name,
)

__all__ = [
    "API_GROUP",
    "API_VERSION",
    "DEFAULT_CACHE_SIZE",
    "DEFAULT_CLIENT_TIMEOUT",
    "WORKSPACE_LABEL",
    "BackendSpec",
    "CacheSpec",
    # Conditions
    "Condition",
    "ConditionSet",
    "ConditionStatus",
    "ConditionType",
    # Core resources
    "ConfigMap",
    "ConfigMapVolumeSource",
    "Container",
    "ContainerState",
    "ContainerStateTerminated",
    "ContainerStatus",
    "EnvFromSource",
    "EnvVar",
    "EventType",
    "KeyToPath",
    # Base
    "KubeModel",
    "ObjectKey",
    "ObjectMeta",
    "OwnerReference",
    "PersistentVolumeClaim",
    "PersistentVolumeClaimSpec",
    "PersistentVolumeClaimVolumeSource",
    "Pod",
    "PodPhase",
    "PodSpec",
    "PodStatus",
    "Resource",
    "ResourceRequirements",
    # Stok resources
    "Run",
    "RunSpec",
    "RunStatus",
    "Secret",
    "SecretEnvSource",
    "SecretVolumeSource",
    "ServiceAccount",
    "Variable",
    "Volume",
    "VolumeMount",
    "Workspace",
    "WorkspaceSpec",
    "WorkspaceStatus",
    "owner_reference",
    "run_pod_name",
    "state_secret_name",
    "workspace_resource_name",
]
