"""Models for the etcd v3 JSON gateway.

The gateway serializes the etcd gRPC messages with the protobuf JSON mapping,
so 64-bit member IDs arrive as strings and empty fields are omitted entirely.
Only the fields the member controller uses are modeled.
"""

from __future__ import annotations

from typing import Annotated

from pydantic import BaseModel, ConfigDict, Field

__all__ = [
    "EtcdErrorReply",
    "EtcdHealth",
    "Member",
    "MemberAddReply",
    "MemberAddRequest",
    "MemberListReply",
    "MemberListRequest",
]


class Member(BaseModel):
    """A member of the consensus cluster, as reported by the cluster."""

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    id: Annotated[
        str,
        Field(
            title="Member ID",
            description="Cluster-assigned unique ID, as a decimal string",
            alias="ID",
        ),
    ] = ""

    name: Annotated[
        str,
        Field(
            title="Member name",
            description=(
                "Name the member process was started with. Empty for a member"
                " that has been added but has not yet started."
            ),
        ),
    ] = ""

    peer_urls: Annotated[
        list[str],
        Field(
            title="Peer URLs",
            description="URLs used by other members for consensus traffic",
            alias="peerURLs",
        ),
    ] = []

    client_urls: Annotated[
        list[str],
        Field(
            title="Client URLs",
            description=(
                "URLs on which the member serves clients. Empty until the"
                " member has started."
            ),
            alias="clientURLs",
        ),
    ] = []

    is_learner: Annotated[
        bool,
        Field(
            title="Is learner",
            description="Whether the member is a non-voting learner",
            alias="isLearner",
        ),
    ] = False

    @property
    def started(self) -> bool:
        """Whether the member process has started and joined."""
        return bool(self.name) and bool(self.client_urls)


class MemberListRequest(BaseModel):
    """Body of a member list request."""

    model_config = ConfigDict(populate_by_name=True)

    linearizable: bool = True
    """Whether the list must reflect the latest committed membership."""


class MemberListReply(BaseModel):
    """Reply to a member list request."""

    members: list[Member] = []


class MemberAddRequest(BaseModel):
    """Body of a member add request."""

    model_config = ConfigDict(populate_by_name=True)

    peer_urls: list[str] = Field(..., alias="peerURLs")
    is_learner: bool = Field(False, alias="isLearner")


class MemberAddReply(BaseModel):
    """Reply to a member add request."""

    member: Member
    """The newly-added member."""

    members: list[Member] = []
    """Membership after the addition."""


class EtcdErrorReply(BaseModel):
    """Error body returned by the gateway for a failed gRPC call."""

    code: int | None = None
    """gRPC status code."""

    message: str | None = None
    """Error message from the server."""

    error: str | None = None
    """Duplicate of ``message`` sent by older gateway versions."""

    @property
    def detail(self) -> str | None:
        """Best available error message."""
        return self.message or self.error


class EtcdHealth(BaseModel):
    """Reply from a member's health endpoint."""

    health: str = "false"
    """The string ``true`` if the member is healthy."""

    reason: str = ""
    """Why the member is unhealthy, if it is."""

    @property
    def healthy(self) -> bool:
        """Whether the member reported itself healthy."""
        return self.health == "true"
