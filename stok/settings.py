"""Configuration loaded from STOK_* environment variables."""

from __future__ import annotations

from functools import lru_cache
from typing import Literal

from pydantic import SecretStr
from pydantic_settings import BaseSettings, SettingsConfigDict


class StokSettings(BaseSettings):
    """stok controller and client settings.

    All fields are read from environment variables with the ``STOK_`` prefix.
    For example, ``STOK_LOG_LEVEL=DEBUG`` maps to ``log_level``.

    Cloud credentials consumed by Terraform itself (GOOGLE_APPLICATION_CREDENTIALS,
    AWS_* ...) are **not** managed here -- they reach the runner through the
    workspace secret.
    """

    model_config = SettingsConfigDict(
        env_prefix="STOK_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )

    # -- Logging ---------------------------------------------------------------
    log_level: str = "INFO"

    # -- Cluster ---------------------------------------------------------------
    cluster: Literal["kube", "memory"] = "kube"
    """``memory`` runs against a process-local object store (development only)."""

    kube_context: str | None = None
    namespace: str = "default"  # empty: all namespaces

    image: str = "leg100/stok:latest"
    """Runner image used for workspace and run pods."""

    # -- Controller ------------------------------------------------------------
    host: str = "0.0.0.0"  # noqa: S104
    port: int = 8000
    workers: int = 4
    """Reconciliations running concurrently (always for distinct workspaces)."""

    resync_period: float = 300.0
    """Seconds between full re-enqueues of every known workspace."""

    backoff_base: float = 0.5
    backoff_max: float = 60.0

    # -- Backups ---------------------------------------------------------------
    backup_store: Literal["local", "s3"] = "s3"
    backup_root: str = "./data/backups"
    """Root directory holding one subdirectory per bucket (local store only)."""

    # S3 (only when backup_store = "s3")
    s3_endpoint: str | None = None
    s3_region: str | None = None
    s3_access_key: str | None = None
    s3_secret_key: SecretStr | None = None
    s3_path_style: bool = False
    """Use path-style addressing (required by MinIO and some S3-compatible services)."""

    # -- Client timeouts (seconds) ---------------------------------------------
    reconcile_timeout: float = 10.0
    pod_timeout: float = 60.0
    restore_timeout: float = 60.0
    exit_code_timeout: float = 10.0


def get_settings() -> StokSettings:
    """Return a cached settings instance.

    Call ``get_settings.cache_clear()`` in tests to force a re-read after
    overriding env vars.
    """
    return _get_settings_cached()


@lru_cache(maxsize=1)
def _get_settings_cached() -> StokSettings:
    return StokSettings()


get_settings.cache_clear = _get_settings_cached.cache_clear  # type: ignore[attr-defined]
