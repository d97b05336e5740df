"""Data types for interacting with Kubernetes."""

from __future__ import annotations

from enum import Enum, StrEnum

__all__ = [
    "PodPhase",
    "WatchEventType",
]


class PodPhase(StrEnum):
    """One of the valid phases reported in the status section of a Pod."""

    PENDING = "Pending"
    RUNNING = "Running"
    SUCCEEDED = "Succeeded"
    FAILED = "Failed"
    UNKNOWN = "Unknown"


class WatchEventType(Enum):
    """Possible values of the ``type`` field of Kubernetes watch events."""

    ADDED = "ADDED"
    MODIFIED = "MODIFIED"
    DELETED = "DELETED"
