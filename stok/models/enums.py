"""Shared enumerations used across the controller and the client."""

from __future__ import annotations

from enum import StrEnum

# -- Conditions --------------------------------------------------------------


class ConditionStatus(StrEnum):
    """Tri-state condition status (Kubernetes convention)."""

    TRUE = "True"
    FALSE = "False"
    UNKNOWN = "Unknown"


class ConditionType(StrEnum):
    HEALTHY = "Healthy"
    RECONCILED = "Reconciled"
    COMPLETED = "Completed"
    RESTORE_FAILURE = "RestoreFailure"


# -- Watch -------------------------------------------------------------------


class EventType(StrEnum):
    """Watch event types emitted by a cluster event stream."""

    ADDED = "ADDED"
    MODIFIED = "MODIFIED"
    DELETED = "DELETED"


# -- Pods --------------------------------------------------------------------


class PodPhase(StrEnum):
    PENDING = "Pending"
    RUNNING = "Running"
    SUCCEEDED = "Succeeded"
    FAILED = "Failed"
    UNKNOWN = "Unknown"
