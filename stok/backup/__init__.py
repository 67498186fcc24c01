"""Backup store implementations for Terraform state files."""

from stok.backup.base import BackupStore, BucketNotFoundError, backup_key
from stok.backup.local import LocalBackupStore

__all__ = ["BackupStore", "BucketNotFoundError", "LocalBackupStore", "backup_key"]
