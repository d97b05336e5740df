"""API-visible models for cluster membership status."""

from __future__ import annotations

from typing import Annotated

from pydantic import BaseModel, Field

from ..domain.etcd import Member
from ..domain.kubernetes import PodPhase
from ..domain.sync import SyncResult

__all__ = [
    "LastSync",
    "MemberStatus",
    "MembershipStatus",
    "PodEligibility",
]


class MemberStatus(BaseModel):
    """One member of the consensus cluster."""

    id: Annotated[str, Field(title="Member ID", examples=["1234567890"])]

    name: Annotated[
        str,
        Field(
            title="Member name",
            description="Empty if the member has not started yet",
            examples=["etcd-master-0"],
        ),
    ]

    peer_urls: Annotated[
        list[str],
        Field(title="Peer URLs", examples=[["https://10.0.0.4:2380"]]),
    ]

    started: Annotated[
        bool, Field(title="Whether the member process has started")
    ]

    is_learner: Annotated[bool, Field(title="Whether a non-voting learner")]

    @classmethod
    def from_member(cls, member: Member) -> MemberStatus:
        """Convert a cluster member to its API representation."""
        return cls(
            id=member.id,
            name=member.name,
            peer_urls=member.peer_urls,
            started=member.started,
            is_learner=member.is_learner,
        )


class PodEligibility(BaseModel):
    """Whether an observed pod may be added to the cluster."""

    name: Annotated[str, Field(title="Pod name", examples=["etcd-master-1"])]

    phase: Annotated[
        PodPhase | None,
        Field(
            title="Pod phase",
            description="Not set if the pod has no status yet",
            examples=[PodPhase.RUNNING],
        ),
    ] = None

    eligible: Annotated[bool, Field(title="Whether the pod may be added")]

    reason: Annotated[
        str | None,
        Field(
            title="Failing check",
            description=(
                "Name of the first eligibility check the pod fails, if it is"
                " not eligible"
            ),
            examples=["main-step-ready"],
        ),
    ] = None


class LastSync(BaseModel):
    """Outcome of the most recent successful background sync."""

    action: Annotated[str, Field(title="Action", examples=["added"])]

    candidate: Annotated[str | None, Field(title="Chosen pod")] = None

    peer_url: Annotated[str | None, Field(title="Peer URL of chosen pod")] = (
        None
    )

    @classmethod
    def from_result(cls, result: SyncResult) -> LastSync:
        """Convert a sync result to its API representation."""
        return cls(
            action=result.action.value,
            candidate=result.candidate,
            peer_url=result.peer_url,
        )


class MembershipStatus(BaseModel):
    """Current cluster membership and the pods that could join it."""

    members: Annotated[
        list[MemberStatus], Field(title="Current cluster members")
    ]

    pods: Annotated[
        list[PodEligibility],
        Field(title="Observed pods", description="In Kubernetes list order"),
    ]

    candidate: Annotated[
        str | None,
        Field(
            title="Next candidate",
            description="Pod the next sync would add, if any",
        ),
    ] = None

    last_sync: Annotated[
        LastSync | None,
        Field(title="Most recent successful background sync"),
    ] = None
