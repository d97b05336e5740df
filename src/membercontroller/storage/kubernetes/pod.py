"""Storage layer for cluster member ``Pod`` objects."""

from __future__ import annotations

from collections.abc import AsyncIterator

from kubernetes_asyncio import client
from kubernetes_asyncio.client import ApiClient, ApiException, V1Pod
from structlog.stdlib import BoundLogger

from ...exceptions import KubernetesError
from ...models.domain.pod import PodObservation
from ...timeout import Timeout
from .watcher import KubernetesWatcher

__all__ = ["PodStorage"]


class PodStorage:
    """Read-only view of the pods that may become cluster members.

    All pods are in one namespace and selected by label equality. This class
    never modifies pods. Kubernetes may serve slightly stale data, which the
    caller is expected to tolerate by reconciling again later.

    Parameters
    ----------
    api_client
        Kubernetes API client.
    namespace
        Namespace containing the pods.
    label_selector
        Label selector, in Kubernetes syntax, that member pods match.
    logger
        Logger to use.
    """

    def __init__(
        self,
        api_client: ApiClient,
        *,
        namespace: str,
        label_selector: str,
        logger: BoundLogger,
    ) -> None:
        self._api = client.CoreV1Api(api_client)
        self._namespace = namespace
        self._selector = label_selector
        self._logger = logger.bind(
            namespace=namespace, label_selector=label_selector
        )

    async def list(self, timeout: Timeout) -> list[PodObservation]:
        """List the pods that may become cluster members.

        Parameters
        ----------
        timeout
            Timeout for call.

        Returns
        -------
        list of PodObservation
            Observations of all matching pods, in the order Kubernetes
            returned them.

        Raises
        ------
        ControllerTimeoutError
            Raised if the timeout has already expired.
        KubernetesError
            Raised for exceptions from the Kubernetes API server.
        """
        self._logger.debug("Listing member pods")
        try:
            pods = await self._api.list_namespaced_pod(
                self._namespace,
                label_selector=self._selector,
                _request_timeout=timeout.left(),
            )
        except ApiException as e:
            raise KubernetesError.from_exception(
                "Error listing pods", e, kind="Pod", namespace=self._namespace
            ) from e
        return [PodObservation.from_pod(p) for p in pods.items]

    async def read(self, name: str, timeout: Timeout) -> PodObservation | None:
        """Read the current state of a single pod.

        Parameters
        ----------
        name
            Name of the pod.
        timeout
            Timeout for call.

        Returns
        -------
        PodObservation or None
            Observation of the pod, or `None` if it does not exist.

        Raises
        ------
        ControllerTimeoutError
            Raised if the timeout has already expired.
        KubernetesError
            Raised for exceptions from the Kubernetes API server.
        """
        try:
            pod = await self._api.read_namespaced_pod(
                name, self._namespace, _request_timeout=timeout.left()
            )
        except ApiException as e:
            if e.status == 404:
                return None
            raise KubernetesError.from_exception(
                "Error reading pod",
                e,
                kind="Pod",
                namespace=self._namespace,
                name=name,
            ) from e
        return PodObservation.from_pod(pod)

    async def watch_changes(self) -> AsyncIterator[str]:
        """Watch for any change to the member pods.

        This watch continues until cancelled. Creation, modification, and
        deletion are all reported, since any of them may change which pod is
        eligible for membership.

        Yields
        ------
        str
            Name of a pod that changed.

        Raises
        ------
        KubernetesError
            Raised if there is some failure in a Kubernetes API call.
        """
        self._logger.debug("Watching member pods")
        watcher = KubernetesWatcher(
            method=self._api.list_namespaced_pod,
            object_type=V1Pod,
            kind="Pod",
            namespace=self._namespace,
            label_selector=self._selector,
            logger=self._logger,
        )
        try:
            async for event in watcher.watch():
                name = event.object.metadata.name
                action = event.action.value
                self._logger.debug("Saw pod change", pod=name, action=action)
                yield name
        finally:
            await watcher.close()
