"""Local filesystem backup store.

Each bucket is a directory under a root path::

    {root}/{bucket}/{namespace}/{workspace}.tfstate

Uses ``anyio.to_thread.run_sync`` for non-blocking file I/O.  Writes are
atomic (temp file + rename) so a reader never sees a partial state file.
"""

from __future__ import annotations

import contextlib
import os
import tempfile
from functools import partial
from pathlib import Path

from anyio import to_thread

from stok.backup.base import BucketNotFoundError


class LocalBackupStore:
    """Local filesystem implementation of the BackupStore protocol.

    Buckets must exist (as directories) before they can be read or written,
    mirroring object-store semantics.
    """

    def __init__(self, root: str | Path) -> None:
        self._root = Path(root)

    def _bucket_dir(self, bucket: str) -> Path:
        return self._root / bucket

    def create_bucket(self, bucket: str) -> None:
        self._bucket_dir(bucket).mkdir(parents=True, exist_ok=True)

    async def read(self, bucket: str, key: str) -> bytes:
        return await to_thread.run_sync(partial(self._read, bucket, key))

    async def write(self, bucket: str, key: str, data: bytes) -> None:
        await to_thread.run_sync(partial(self._write, bucket, key, data))

    # -- Sync helpers (run in thread pool) -------------------------------------

    def _read(self, bucket: str, key: str) -> bytes:
        bucket_dir = self._bucket_dir(bucket)
        if not bucket_dir.is_dir():
            raise BucketNotFoundError(bucket)
        return (bucket_dir / key).read_bytes()

    def _write(self, bucket: str, key: str, data: bytes) -> None:
        bucket_dir = self._bucket_dir(bucket)
        if not bucket_dir.is_dir():
            raise BucketNotFoundError(bucket)
        path = bucket_dir / key
        path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_path = tempfile.mkstemp(dir=path.parent, suffix=".tmp")
        try:
            with os.fdopen(fd, "wb") as f:
                f.write(data)
            os.rename(tmp_path, path)
        except BaseException:
            with contextlib.suppress(OSError):
                os.unlink(tmp_path)
            raise
