"""The local environment file binding a working directory to a workspace.

``.terraform/environment`` holds ``<namespace>/<workspace>``; Terraform
itself reads the same file for its workspace name, which is why it lives
there.
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

ENVIRONMENT_FILE = Path(".terraform") / "environment"

DEFAULT_NAMESPACE = "default"
DEFAULT_WORKSPACE = "default"


@dataclass(frozen=True)
class StokEnv:
    namespace: str = DEFAULT_NAMESPACE
    workspace: str = DEFAULT_WORKSPACE

    def __str__(self) -> str:
        return f"{self.namespace}/{self.workspace}"

    @classmethod
    def parse(cls, text: str) -> StokEnv:
        """Parse ``namespace/workspace``; a bare name is a workspace in the default namespace."""
        text = text.strip()
        if not text:
            return cls()
        namespace, sep, workspace = text.partition("/")
        if not sep:
            return cls(workspace=namespace)
        if not namespace or not workspace:
            msg = f"Invalid environment {text!r}: expected <namespace>/<workspace>"
            raise ValueError(msg)
        return cls(namespace=namespace, workspace=workspace)

    @classmethod
    def load(cls, path: str | Path = ".") -> StokEnv:
        """Read the environment file under ``path``, or the defaults if there is none."""
        file = Path(path) / ENVIRONMENT_FILE
        if not file.is_file():
            return cls()
        return cls.parse(file.read_text(encoding="utf-8"))

    def write(self, path: str | Path = ".") -> Path:
        file = Path(path) / ENVIRONMENT_FILE
        file.parent.mkdir(parents=True, exist_ok=True)
        file.write_text(f"{self}\n", encoding="utf-8")
        return file
