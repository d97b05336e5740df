"""Watch a Kubernetes namespace for object changes."""

from __future__ import annotations

from collections.abc import AsyncIterator, Awaitable, Callable
from dataclasses import dataclass
from typing import Any

from kubernetes_asyncio.client import ApiException
from kubernetes_asyncio.watch import Watch
from structlog.stdlib import BoundLogger

from ...exceptions import KubernetesError
from ...models.domain.kubernetes import WatchEventType

__all__ = [
    "KubernetesWatcher",
    "WatchEvent",
]


@dataclass(frozen=True, slots=True)
class WatchEvent[T]:
    """One change reported by a Kubernetes watch."""

    action: WatchEventType
    """Whether the object was added, modified, or deleted."""

    object: T
    """Object as of the change."""


class KubernetesWatcher[T]:
    """Follow changes to a kind of object in one namespace indefinitely.

    The Kubernetes API server closes watches periodically. The watcher
    reopens them from the last resource version it saw, and if that version
    has expired, starts over without one. Changes that happen while the watch
    is being reopened from scratch may be missed, so callers should also
    reconcile periodically.

    Parameters
    ----------
    method
        API list method that supports the watch API.
    object_type
        Type of object being watched. Passed to the watch explicitly, since
        the client otherwise infers it from the method docstring, which
        `~safir.testing.kubernetes.MockKubernetesApi` does not have.
    kind
        Kubernetes kind of object being watched, for error reporting.
    namespace
        Namespace to watch.
    label_selector
        Only watch objects matching this label selector.
    logger
        Logger to use.
    """

    def __init__(
        self,
        *,
        method: Callable[..., Awaitable[Any]],
        object_type: type[T],
        kind: str,
        namespace: str,
        label_selector: str | None = None,
        logger: BoundLogger,
    ) -> None:
        self._method = method
        self._type = object_type
        self._kind = kind
        self._namespace = namespace
        self._label_selector = label_selector
        self._logger = logger
        self._watch = Watch(return_type=object_type)
        self._resource_version: str | None = None

    async def close(self) -> None:
        """Close the internal API client used by the watch API."""
        self._watch.stop()
        await self._watch.close()

    async def watch(self) -> AsyncIterator[WatchEvent[T]]:
        """Yield changes until cancelled.

        Yields
        ------
        WatchEvent
            Next change.

        Raises
        ------
        KubernetesError
            Raised for any error from the Kubernetes API server other than
            an expired resource version.
        TypeError
            Raised if the watch returned an object of the wrong type.
        """
        while True:
            args: dict[str, str] = {"namespace": self._namespace}
            if self._label_selector:
                args["label_selector"] = self._label_selector
            if self._resource_version:
                args["resource_version"] = self._resource_version
            try:
                async with self._watch.stream(self._method, **args) as stream:
                    async for raw_event in stream:
                        yield self._parse(raw_event)
            except ApiException as e:
                if e.status != 410:
                    raise KubernetesError.from_exception(
                        "Error watching objects",
                        e,
                        kind=self._kind,
                        namespace=self._namespace,
                    ) from e
                rv = self._resource_version
                self._logger.info("Watch resource version expired", rv=rv)
                self._resource_version = None
                continue
            self._logger.debug("Watch closed by server, reopening")

    def _parse(self, raw_event: dict[str, Any]) -> WatchEvent[T]:
        obj = raw_event["object"]
        if not isinstance(obj, self._type):
            real = type(obj).__name__
            msg = f"Watch object was {real}, not {self._type.__name__}"
            raise TypeError(msg)
        metadata = getattr(obj, "metadata", None)
        if metadata and metadata.resource_version:
            self._resource_version = metadata.resource_version
        return WatchEvent(WatchEventType(raw_event["type"]), obj)
