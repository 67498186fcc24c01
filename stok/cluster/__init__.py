"""Cluster access: protocol, errors and backends."""

from stok.cluster.base import (
    AlreadyExistsError,
    Cluster,
    ClusterError,
    ConflictError,
    NotFoundError,
    WatchEvent,
)
from stok.cluster.memory import InMemoryCluster

__all__ = [
    "AlreadyExistsError",
    "Cluster",
    "ClusterError",
    "ConflictError",
    "InMemoryCluster",
    "NotFoundError",
    "WatchEvent",
]
