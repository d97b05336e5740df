"""Choose the next pod to add to the cluster membership."""

from __future__ import annotations

from collections.abc import Callable, Sequence
from dataclasses import dataclass

from ..exceptions import MissingPeerAddressError
from ..models.domain.etcd import Member
from ..models.domain.kubernetes import PodPhase
from ..models.domain.pod import PodObservation

__all__ = [
    "CandidateSelector",
    "EligibilityCheck",
]


@dataclass(frozen=True, slots=True)
class EligibilityCheck:
    """One named condition a pod must meet before it may be added."""

    name: str
    """Short name of the check, used in logs and status reports."""

    passes: Callable[[PodObservation, Sequence[Member]], bool]
    """Whether the pod passes the check given the current members."""


class CandidateSelector:
    """Decide which pod, if any, should next join the cluster.

    A pod is eligible only once all of its preparatory work has finished and
    its member process is serving, and only if the cluster does not already
    know about it. The checks are applied in a fixed order and the first pod
    in listing order that passes all of them is chosen, so the same inputs
    always produce the same choice.

    Parameters
    ----------
    member_container
        Name of the container that runs the cluster member process.
    peer_url_template
        Template for the peer URL a pod would have as a member, used to
        recognize members that were added but have not yet started.
    """

    def __init__(self, member_container: str, peer_url_template: str) -> None:
        self._member_container = member_container
        self._peer_url_template = peer_url_template
        self.checks = (
            EligibilityCheck("not-member", self._is_not_member),
            EligibilityCheck("running-phase", self._is_running),
            EligibilityCheck("init-steps-succeeded", self._init_succeeded),
            EligibilityCheck("main-step-ready", self._is_serving),
        )

    def explain(
        self, observation: PodObservation, members: Sequence[Member]
    ) -> str | None:
        """Determine why a pod may not be added.

        Parameters
        ----------
        observation
            Observed pod.
        members
            Current cluster members.

        Returns
        -------
        str or None
            Name of the first check the pod fails, or `None` if the pod is
            eligible.
        """
        for check in self.checks:
            if not check.passes(observation, members):
                return check.name
        return None

    def select_add_candidate(
        self, observations: Sequence[PodObservation], members: Sequence[Member]
    ) -> PodObservation | None:
        """Select the pod to add to the cluster membership.

        Parameters
        ----------
        observations
            Observed pods, in the order Kubernetes listed them.
        members
            Current cluster members.

        Returns
        -------
        PodObservation or None
            First eligible pod, or `None` if no pod is eligible. `None` is the
            normal result when the cluster is complete or a join is in
            progress.
        """
        for observation in observations:
            if self.explain(observation, members) is None:
                return observation
        return None

    def _is_not_member(
        self, observation: PodObservation, members: Sequence[Member]
    ) -> bool:
        """Check the pod is not already known to the cluster.

        A member added but not yet started has no name, so it is recognized
        by its peer URL instead.
        """
        try:
            peer_url = observation.peer_url(self._peer_url_template)
        except MissingPeerAddressError:
            peer_url = None
        for member in members:
            if member.name == observation.name:
                return False
            if peer_url and peer_url in member.peer_urls:
                return False
        return True

    def _is_running(
        self, observation: PodObservation, members: Sequence[Member]
    ) -> bool:
        return observation.phase == PodPhase.RUNNING

    def _init_succeeded(
        self, observation: PodObservation, members: Sequence[Member]
    ) -> bool:
        return all(s.succeeded for s in observation.init_steps)

    def _is_serving(
        self, observation: PodObservation, members: Sequence[Member]
    ) -> bool:
        container = observation.container(self._member_container)
        return container is not None and container.serving
