"""Outcome of a membership sync."""

from __future__ import annotations

from dataclasses import dataclass
from enum import StrEnum

from .etcd import Member

__all__ = [
    "SyncAction",
    "SyncResult",
]


class SyncAction(StrEnum):
    """What a membership sync did."""

    NO_CANDIDATE = "no_candidate"
    MEMBERS_UNHEALTHY = "members_unhealthy"
    CANDIDATE_VANISHED = "candidate_vanished"
    ALREADY_MEMBER = "already_member"
    ADDED = "added"


@dataclass(frozen=True, slots=True)
class SyncResult:
    """Result of one successful membership sync.

    Failed syncs raise an exception instead. Every action other than
    ``added`` means the cluster was left unchanged.
    """

    action: SyncAction
    """What the sync did."""

    candidate: str | None = None
    """Name of the pod that was chosen, if any."""

    peer_url: str | None = None
    """Peer URL of the chosen pod, if one was derived."""

    member: Member | None = None
    """Member created by the sync, if one was added."""

    @property
    def added(self) -> bool:
        """Whether a member was added."""
        return self.action == SyncAction.ADDED
