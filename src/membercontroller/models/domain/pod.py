"""Observed state of pods that may become cluster members."""

from __future__ import annotations

from dataclasses import dataclass, field
from string import Formatter
from typing import Self

from kubernetes_asyncio.client import (
    V1ContainerState,
    V1ContainerStatus,
    V1Pod,
)

from ...exceptions import MissingPeerAddressError
from .kubernetes import PodPhase

__all__ = [
    "ContainerObservation",
    "InitStepResult",
    "PodObservation",
    "RunState",
    "Running",
    "Terminated",
    "Unset",
    "Waiting",
]


@dataclass(frozen=True, slots=True)
class Waiting:
    """The container has not started yet."""

    reason: str | None = None
    """Brief reason reported by Kubernetes, such as ``PodInitializing``."""


@dataclass(frozen=True, slots=True)
class Running:
    """The container is running."""


@dataclass(frozen=True, slots=True)
class Terminated:
    """The container ran and exited."""

    exit_code: int
    """Exit status of the container process."""

    reason: str | None = None
    """Brief reason reported by Kubernetes, such as ``Completed``."""


@dataclass(frozen=True, slots=True)
class Unset:
    """No state was reported for the container."""


type RunState = Waiting | Running | Terminated | Unset
"""Current state of a container process."""


def _parse_run_state(state: V1ContainerState | None) -> RunState:
    """Convert a Kubernetes container state to a `RunState`.

    Kubernetes sets at most one of the three fields. If more than one is set
    anyway, the least-advanced state wins so that the container is never
    treated as running when it may not be.
    """
    if not state:
        return Unset()
    if state.waiting:
        return Waiting(reason=state.waiting.reason)
    if state.terminated:
        terminated = state.terminated
        return Terminated(
            exit_code=terminated.exit_code, reason=terminated.reason
        )
    if state.running:
        return Running()
    return Unset()


@dataclass(frozen=True, slots=True)
class InitStepResult:
    """Result of one init container of a pod."""

    name: str
    """Name of the init container."""

    exit_code: int | None = None
    """Exit code if the init container has terminated, otherwise `None`."""

    @property
    def succeeded(self) -> bool:
        """Whether the init container ran to completion successfully."""
        return self.exit_code == 0

    @classmethod
    def from_status(cls, status: V1ContainerStatus) -> Self:
        """Create from a Kubernetes container status.

        Parameters
        ----------
        status
            Status of an init container.

        Returns
        -------
        InitStepResult
            Corresponding result.
        """
        state = _parse_run_state(status.state)
        if isinstance(state, Terminated):
            return cls(name=status.name, exit_code=state.exit_code)
        return cls(name=status.name)


@dataclass(frozen=True, slots=True)
class ContainerObservation:
    """Observed status of one main container of a pod."""

    name: str
    """Name of the container."""

    ready: bool = False
    """Whether the container is passing its readiness checks."""

    state: RunState = field(default_factory=Unset)
    """Current run state of the container."""

    @property
    def serving(self) -> bool:
        """Whether the container is running and ready."""
        return isinstance(self.state, Running) and self.ready

    @classmethod
    def from_status(cls, status: V1ContainerStatus) -> Self:
        """Create from a Kubernetes container status.

        Parameters
        ----------
        status
            Status of a main container.

        Returns
        -------
        ContainerObservation
            Corresponding observation.
        """
        return cls(
            name=status.name,
            ready=bool(status.ready),
            state=_parse_run_state(status.state),
        )


@dataclass(frozen=True, slots=True)
class PodObservation:
    """Snapshot of a pod that may become a cluster member.

    Observations are built fresh from the Kubernetes API on every sync and
    are never updated in place. Any field Kubernetes has not populated yet is
    left empty rather than given an optimistic default.
    """

    name: str
    """Name of the pod."""

    namespace: str
    """Namespace of the pod."""

    node_name: str | None = None
    """Node to which the pod is assigned, if it has been scheduled."""

    host_ip: str | None = None
    """IP address of the node running the pod, if known."""

    pod_ip: str | None = None
    """IP address of the pod, if one has been assigned."""

    phase: PodPhase | None = None
    """Phase of the pod, or `None` if no status has been reported."""

    init_steps: tuple[InitStepResult, ...] = ()
    """Results of the init containers, in pod spec order."""

    containers: tuple[ContainerObservation, ...] = ()
    """Status of the main containers, in the order Kubernetes reports."""

    @classmethod
    def from_pod(cls, pod: V1Pod) -> Self:
        """Create an observation from a Kubernetes pod.

        Parameters
        ----------
        pod
            Pod as returned by the Kubernetes API.

        Returns
        -------
        PodObservation
            Immutable snapshot of the parts of the pod relevant to membership.
        """
        node_name = pod.spec.node_name if pod.spec else None
        status = pod.status
        if not status:
            return cls(
                name=pod.metadata.name,
                namespace=pod.metadata.namespace,
                node_name=node_name,
            )
        phase = None
        if status.phase:
            try:
                phase = PodPhase(status.phase)
            except ValueError:
                phase = PodPhase.UNKNOWN
        init_statuses = status.init_container_statuses or []
        container_statuses = status.container_statuses or []
        return cls(
            name=pod.metadata.name,
            namespace=pod.metadata.namespace,
            node_name=node_name,
            host_ip=status.host_ip,
            pod_ip=status.pod_ip,
            phase=phase,
            init_steps=tuple(
                InitStepResult.from_status(s) for s in init_statuses
            ),
            containers=tuple(
                ContainerObservation.from_status(s) for s in container_statuses
            ),
        )

    def container(self, name: str) -> ContainerObservation | None:
        """Find the observation of a main container by name.

        Parameters
        ----------
        name
            Name of the container.

        Returns
        -------
        ContainerObservation or None
            Observed container, or `None` if Kubernetes reported no status for
            a container by that name.
        """
        for container in self.containers:
            if container.name == name:
                return container
        return None

    def peer_url(self, template: str) -> str:
        """Build the peer URL this pod would have as a cluster member.

        Parameters
        ----------
        template
            Python format string using any of the fields ``name``,
            ``namespace``, ``node_name``, ``host_ip``, and ``pod_ip``.

        Returns
        -------
        str
            Peer URL for the pod.

        Raises
        ------
        MissingPeerAddressError
            Raised if the template uses a field that is not known for this
            pod.
        """
        values = {
            "name": self.name,
            "namespace": self.namespace,
            "node_name": self.node_name,
            "host_ip": self.host_ip,
            "pod_ip": self.pod_ip,
        }
        for _, field_name, _, _ in Formatter().parse(template):
            if field_name and not values.get(field_name):
                raise MissingPeerAddressError(
                    self.name, self.namespace, template
                )
        return template.format(**values)
