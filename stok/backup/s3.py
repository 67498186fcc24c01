"""S3 backup store.

Reads and writes state file backups in S3 (or any S3-compatible service)::

    s3://{bucket}/{namespace}/{workspace}.tfstate

Uses ``anyio.to_thread.run_sync`` to run boto3 calls in the thread pool,
matching the async pattern of LocalBackupStore.
"""

from __future__ import annotations

from functools import partial
from typing import Any

import boto3
from anyio import to_thread
from botocore.config import Config
from botocore.exceptions import ClientError

from stok.backup.base import BucketNotFoundError


def _create_s3_client(
    endpoint_url: str | None,
    access_key: str | None,
    secret_key: str | None,
    region: str | None = None,
    path_style: bool = False,
) -> Any:
    """Create a boto3 S3 client.

    Args:
        endpoint_url: S3 endpoint URL (None for AWS).
        access_key: AWS access key ID (None to use the default credential chain).
        secret_key: AWS secret access key.
        region: AWS region name (optional, some endpoints require it).
        path_style: Use path-style addressing instead of virtual-hosted.
            Required by MinIO and some S3-compatible services.
    """
    config = Config(
        request_checksum_calculation="when_required",
        response_checksum_validation="when_required",
        s3={"addressing_style": "path" if path_style else "auto"},
    )

    return boto3.client(
        "s3",
        endpoint_url=endpoint_url,
        aws_access_key_id=access_key,
        aws_secret_access_key=secret_key,
        region_name=region,
        config=config,
    )


class S3BackupStore:
    """S3 implementation of the BackupStore protocol."""

    def __init__(
        self,
        endpoint_url: str | None = None,
        access_key: str | None = None,
        secret_key: str | None = None,
        region: str | None = None,
        path_style: bool = False,
    ) -> None:
        self._client = _create_s3_client(endpoint_url, access_key, secret_key, region=region, path_style=path_style)

    async def read(self, bucket: str, key: str) -> bytes:
        return await to_thread.run_sync(partial(self._get_object_body, bucket, key))

    def _get_object_body(self, bucket: str, key: str) -> bytes:
        """Get object and read body in the same thread.

        Reading the streaming body must happen in the same thread as
        get_object to avoid issues with chunked transfer encoding.
        """
        try:
            resp = self._client.get_object(Bucket=bucket, Key=key)
        except ClientError as e:
            code = e.response["Error"]["Code"]
            if code == "NoSuchBucket":
                raise BucketNotFoundError(bucket) from None
            if code in ("NoSuchKey", "404"):
                msg = f"Backup not found: s3://{bucket}/{key}"
                raise FileNotFoundError(msg) from None
            raise
        return resp["Body"].read()

    async def write(self, bucket: str, key: str, data: bytes) -> None:
        try:
            await to_thread.run_sync(
                partial(
                    self._client.put_object,
                    Bucket=bucket,
                    Key=key,
                    Body=data,
                    ContentType="application/json",
                )
            )
        except ClientError as e:
            if e.response["Error"]["Code"] == "NoSuchBucket":
                raise BucketNotFoundError(bucket) from None
            raise
