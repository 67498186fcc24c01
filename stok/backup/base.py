"""Backup store interface for Terraform state files.

A workspace configured with a backup bucket has its state file copied there
by the runner after each run; on (re)creation the controller restores it.
The interface is async to support both a local directory tree and a remote
(S3-compatible) object store.
"""

from __future__ import annotations

from typing import Protocol, runtime_checkable


class BucketNotFoundError(LookupError):
    """The configured backup bucket does not exist."""

    def __init__(self, bucket: str) -> None:
        super().__init__(f"Backup bucket '{bucket}' not found")
        self.bucket = bucket


@runtime_checkable
class BackupStore(Protocol):
    """Async protocol for reading and writing state file backups.

    Object layout (per bucket)::

        {namespace}/{workspace}.tfstate
    """

    async def read(self, bucket: str, key: str) -> bytes:
        """Read an object.

        Raises ``BucketNotFoundError`` if the bucket is missing and
        ``FileNotFoundError`` if the object is missing.
        """
        ...

    async def write(self, bucket: str, key: str, data: bytes) -> None:
        """Write an object, replacing any previous version."""
        ...


def backup_key(namespace: str, workspace: str) -> str:
    return f"{namespace}/{workspace}.tfstate"
