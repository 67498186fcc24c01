"""Run custom resource: one requested invocation of Terraform in a workspace."""

from __future__ import annotations

from pydantic import Field

from stok.models.base import KubeModel, Resource
from stok.models.conditions import ConditionSet
from stok.models.enums import ConditionType
from stok.models.workspace import API_VERSION

WORKSPACE_LABEL = "stok.goalspike.com/workspace"
"""Label linking a run to the workspace it executes in."""


class RunSpec(KubeModel):
    command: str = "plan"
    args: list[str] = Field(default_factory=list)
    privileged: bool = False


class RunStatus(KubeModel):
    conditions: ConditionSet = Field(default_factory=ConditionSet)


class Run(Resource):
    kind = "Run"
    api_version = API_VERSION

    spec: RunSpec = Field(default_factory=RunSpec)
    status: RunStatus = Field(default_factory=RunStatus)

    @property
    def workspace(self) -> str | None:
        return self.metadata.labels.get(WORKSPACE_LABEL)

    @property
    def completed(self) -> bool:
        return self.status.conditions.is_true(ConditionType.COMPLETED)

    @property
    def pod_name(self) -> str:
        return run_pod_name(self.name)


def run_pod_name(run: str) -> str:
    return f"run-{run}"
