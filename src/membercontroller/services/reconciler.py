"""Reconcile cluster membership against observed pods."""

from __future__ import annotations

from datetime import timedelta
from typing import Protocol

from structlog.stdlib import BoundLogger

from ..exceptions import MemberExistsError
from ..models.domain.etcd import Member
from ..models.domain.pod import PodObservation
from ..models.domain.sync import SyncAction, SyncResult
from ..models.v1.status import MembershipStatus, MemberStatus, PodEligibility
from ..timeout import Timeout
from .selection import CandidateSelector

__all__ = [
    "MemberClient",
    "MemberHealthChecker",
    "MembershipReconciler",
    "PodObserver",
]


class PodObserver(Protocol):
    """Read-only source of pod observations."""

    async def list(self, timeout: Timeout) -> list[PodObservation]: ...

    async def read(
        self, name: str, timeout: Timeout
    ) -> PodObservation | None: ...


class MemberClient(Protocol):
    """Membership operations of the consensus cluster."""

    async def list_members(self, timeout: Timeout) -> list[Member]: ...

    async def add_member(self, peer_url: str, timeout: Timeout) -> Member: ...


class MemberHealthChecker(Protocol):
    """Health check for cluster members."""

    async def unhealthy_members(
        self, members: list[Member], timeout: Timeout
    ) -> list[Member]: ...


class MembershipReconciler:
    """Add at most one ready pod to the cluster membership per sync.

    Each sync reads the membership from the cluster and the pods from
    Kubernetes, picks a candidate, and asks the cluster to add it. Nothing is
    remembered between syncs, so the reconciler can be restarted at any time.
    The caller must not run two syncs for the same cluster concurrently; if
    it does anyway, the cluster rejecting a duplicate peer URL keeps the
    result correct.

    Parameters
    ----------
    pod_observer
        Source of pod observations.
    member_client
        Client for cluster membership.
    selector
        Candidate selection policy.
    peer_url_template
        Template for the peer URL of a new member.
    sync_timeout
        Default overall timeout of a sync.
    health_checker
        If given, no member is added while any existing member is unhealthy.
    logger
        Logger to use.
    """

    def __init__(
        self,
        *,
        pod_observer: PodObserver,
        member_client: MemberClient,
        selector: CandidateSelector,
        peer_url_template: str,
        sync_timeout: timedelta,
        health_checker: MemberHealthChecker | None = None,
        logger: BoundLogger,
    ) -> None:
        self._pods = pod_observer
        self._members = member_client
        self._selector = selector
        self._peer_url_template = peer_url_template
        self._sync_timeout = sync_timeout
        self._health = health_checker
        self._logger = logger

    async def sync(self, timeout: Timeout | None = None) -> SyncResult:
        """Add the next eligible pod to the cluster, if there is one.

        Parameters
        ----------
        timeout
            Overall timeout for the sync. If not given, a new timeout of the
            configured sync duration is used. If the timeout expires or the
            sync is cancelled before the add request is sent, no member is
            added.

        Returns
        -------
        SyncResult
            What the sync did.

        Raises
        ------
        ControllerTimeoutError
            Raised if the timeout expired.
        EtcdApiError
            Raised if the cluster rejected a request for any reason other than
            the member already existing.
        EtcdParseError
            Raised if a reply from the cluster could not be parsed.
        EtcdWebError
            Raised if the cluster could not be reached.
        KubernetesError
            Raised if the pods could not be read.
        MissingPeerAddressError
            Raised if the chosen pod has no address for its peer URL.
        """
        if not timeout:
            timeout = Timeout("Membership sync", self._sync_timeout)
        async with timeout.enforce():
            return await self._sync(timeout)

    async def _sync(self, timeout: Timeout) -> SyncResult:
        members = await self._members.list_members(timeout)
        observations = await self._pods.list(timeout)
        candidate = self._selector.select_add_candidate(observations, members)
        if not candidate:
            explain = self._selector.explain
            skipped = {o.name: explain(o, members) for o in observations}
            self._logger.debug("No pod eligible to add", skipped=skipped)
            return SyncResult(action=SyncAction.NO_CANDIDATE)
        logger = self._logger.bind(pod=candidate.name)

        if self._health:
            unhealthy = await self._health.unhealthy_members(members, timeout)
            if unhealthy:
                names = [m.name or m.id for m in unhealthy]
                msg = "Not adding member while members are unhealthy"
                logger.info(msg, unhealthy=names)
                return SyncResult(
                    action=SyncAction.MEMBERS_UNHEALTHY,
                    candidate=candidate.name,
                )

        # The pod list may be stale. Confirm the pod is still there and still
        # eligible immediately before asking the cluster to trust it.
        current = await self._pods.read(candidate.name, timeout)
        reason = "deleted"
        if current:
            reason = self._selector.explain(current, members)
        if not current or reason:
            logger.info("Candidate pod changed, not adding", reason=reason)
            return SyncResult(
                action=SyncAction.CANDIDATE_VANISHED,
                candidate=candidate.name,
            )

        peer_url = current.peer_url(self._peer_url_template)
        logger = logger.bind(peer_url=peer_url)

        timeout.left()
        logger.info("Adding cluster member")
        try:
            member = await self._members.add_member(peer_url, timeout)
        except MemberExistsError as e:
            logger.info("Pod is already a cluster member", error=e.error)
            return SyncResult(
                action=SyncAction.ALREADY_MEMBER,
                candidate=candidate.name,
                peer_url=peer_url,
            )
        return SyncResult(
            action=SyncAction.ADDED,
            candidate=candidate.name,
            peer_url=peer_url,
            member=member,
        )

    async def status(self, timeout: Timeout | None = None) -> MembershipStatus:
        """Report the membership and the eligibility of every pod.

        This reads the same state a sync would but never changes anything.

        Parameters
        ----------
        timeout
            Overall timeout. If not given, a new timeout of the configured
            sync duration is used.

        Returns
        -------
        MembershipStatus
            Current members, observed pods, and the pod a sync would choose.
        """
        if not timeout:
            timeout = Timeout("Membership status", self._sync_timeout)
        async with timeout.enforce():
            members = await self._members.list_members(timeout)
            observations = await self._pods.list(timeout)
        pods = []
        for observation in observations:
            reason = self._selector.explain(observation, members)
            eligibility = PodEligibility(
                name=observation.name,
                phase=observation.phase,
                eligible=reason is None,
                reason=reason,
            )
            pods.append(eligibility)
        candidate = self._selector.select_add_candidate(observations, members)
        return MembershipStatus(
            members=[MemberStatus.from_member(m) for m in members],
            pods=pods,
            candidate=candidate.name if candidate else None,
        )
