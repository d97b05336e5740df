"""Build pods and pod observations for tests."""

from __future__ import annotations

from kubernetes_asyncio.client import (
    V1Container,
    V1ContainerState,
    V1ContainerStateRunning,
    V1ContainerStateTerminated,
    V1ContainerStateWaiting,
    V1ContainerStatus,
    V1ObjectMeta,
    V1Pod,
    V1PodSpec,
    V1PodStatus,
)
from safir.testing.kubernetes import MockKubernetesApi

from membercontroller.models.domain.kubernetes import PodPhase
from membercontroller.models.domain.pod import (
    ContainerObservation,
    InitStepResult,
    PodObservation,
    Running,
    RunState,
)

__all__ = [
    "INIT_STEPS",
    "create_pod",
    "make_pod",
    "make_pod_body",
    "observe",
]

INIT_STEPS = ("etcd-ensure-env", "etcd-resources-copy")
"""Names of the init containers of a member pod."""


def observe(
    name: str,
    *,
    phase: PodPhase | None = PodPhase.RUNNING,
    init_exit_codes: tuple[int | None, ...] = (0, 0),
    ready: bool = True,
    state: RunState | None = None,
    host_ip: str | None = None,
) -> PodObservation:
    """Build an observation of a member pod.

    By default the pod is fully ready to join the cluster.
    """
    if host_ip is None:
        host_ip = f"10.0.0.{sum(map(ord, name)) % 200 + 1}"
    return PodObservation(
        name=name,
        namespace="openshift-etcd",
        node_name=f"node-{name}",
        host_ip=host_ip,
        pod_ip=host_ip,
        phase=phase,
        init_steps=tuple(
            InitStepResult(name=n, exit_code=c)
            for n, c in zip(INIT_STEPS, init_exit_codes, strict=True)
        ),
        containers=(
            ContainerObservation(
                name="etcd", ready=ready, state=state or Running()
            ),
        ),
    )


def _status(
    name: str, state: V1ContainerState, *, ready: bool
) -> V1ContainerStatus:
    return V1ContainerStatus(
        name=name,
        image="quay.io/openshift/etcd:latest",
        image_id="",
        ready=ready,
        restart_count=0,
        state=state,
    )


def make_pod(
    name: str,
    namespace: str = "openshift-etcd",
    *,
    phase: str | None = "Running",
    init_exit_codes: tuple[int | None, ...] = (0, 0),
    waiting_reason: str | None = None,
    ready: bool = True,
    host_ip: str = "10.0.0.1",
    labels: dict[str, str] | None = None,
) -> V1Pod:
    """Build a Kubernetes pod for a cluster member.

    Parameters
    ----------
    name
        Name of the pod.
    namespace
        Namespace of the pod.
    phase
        Pod phase. If `None`, the pod has no status at all.
    init_exit_codes
        Exit code of each init container, or `None` for an init container
        that is still running.
    waiting_reason
        If set, the main container is waiting for this reason instead of
        running.
    ready
        Readiness of the main container.
    host_ip
        IP address of the node.
    labels
        Labels of the pod. Defaults to the standard member pod labels.
    """
    pod = make_pod_body(name, namespace, labels=labels)
    if phase is None:
        return pod
    init_statuses = []
    for step, exit_code in zip(INIT_STEPS, init_exit_codes, strict=True):
        if exit_code is None:
            state = V1ContainerState(running=V1ContainerStateRunning())
        else:
            terminated = V1ContainerStateTerminated(
                exit_code=exit_code,
                reason="Completed" if exit_code == 0 else "Error",
            )
            state = V1ContainerState(terminated=terminated)
        init_statuses.append(_status(step, state, ready=exit_code == 0))
    if waiting_reason:
        waiting = V1ContainerStateWaiting(reason=waiting_reason)
        state = V1ContainerState(waiting=waiting)
    else:
        state = V1ContainerState(running=V1ContainerStateRunning())
    pod.status = V1PodStatus(
        phase=phase,
        host_ip=host_ip,
        pod_ip=host_ip,
        init_container_statuses=init_statuses,
        container_statuses=[_status("etcd", state, ready=ready)],
    )
    return pod


def make_pod_body(
    name: str,
    namespace: str = "openshift-etcd",
    *,
    labels: dict[str, str] | None = None,
) -> V1Pod:
    """Build a member pod with a spec but no status."""
    return V1Pod(
        metadata=V1ObjectMeta(
            name=name,
            namespace=namespace,
            labels=labels if labels is not None else {"app": "etcd"},
        ),
        spec=V1PodSpec(
            node_name=f"node-{name}",
            host_network=True,
            init_containers=[
                V1Container(name=n, image="quay.io/openshift/etcd:latest")
                for n in INIT_STEPS
            ],
            containers=[
                V1Container(name="etcd", image="quay.io/openshift/etcd:latest")
            ],
        ),
    )


async def create_pod(mock_kubernetes: MockKubernetesApi, pod: V1Pod) -> None:
    """Create a pod in the mock Kubernetes API with its full status.

    The mock replaces the status of a new pod with one holding only the
    phase. It stores the pod object it was given, so the status is put back
    on that object after creation.

    Parameters
    ----------
    mock_kubernetes
        Mock Kubernetes API.
    pod
        Pod to create, usually from `make_pod`.
    """
    status = pod.status
    await mock_kubernetes.create_namespaced_pod(pod.metadata.namespace, pod)
    pod.status = status
