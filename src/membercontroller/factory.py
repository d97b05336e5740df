"""Build controller components from configuration."""

from __future__ import annotations

import ssl
from collections.abc import AsyncIterator
from contextlib import aclosing, asynccontextmanager
from dataclasses import dataclass
from typing import Self

import structlog
from httpx import AsyncClient
from kubernetes_asyncio.client.api_client import ApiClient
from safir.slack.webhook import SlackWebhookClient
from structlog.stdlib import BoundLogger

from .background import BackgroundTaskManager
from .config import Config, EtcdTLSConfig
from .services.reconciler import MembershipReconciler
from .services.selection import CandidateSelector
from .storage.etcd import EtcdStorageClient
from .storage.kubernetes.pod import PodStorage

__all__ = ["Factory", "ProcessContext"]


def _build_ssl_context(tls: EtcdTLSConfig) -> ssl.SSLContext:
    """Build the TLS context for talking to the consensus cluster."""
    context = ssl.create_default_context(cafile=str(tls.ca_path))
    if tls.cert_path and tls.key_path:
        context.load_cert_chain(str(tls.cert_path), str(tls.key_path))
    return context


@dataclass(frozen=True, slots=True)
class ProcessContext:
    """Clients and tasks shared by the whole process.

    Owned by `~membercontroller.dependencies.context.ContextDependency` in the
    web application and by `Factory.standalone` elsewhere. `Factory` draws its
    shared clients from here.
    """

    config: Config
    """Member controller configuration."""

    etcd_http_client: AsyncClient
    """HTTP client for the consensus cluster, with its TLS settings."""

    kubernetes_client: ApiClient
    """Kubernetes API client shared by all pod storage objects."""

    background: BackgroundTaskManager
    """Manager for background syncs."""

    @classmethod
    async def from_config(cls, config: Config) -> Self:
        """Open the shared clients and wire up the background syncs.

        Parameters
        ----------
        config
            Member controller configuration.

        Returns
        -------
        ProcessContext
            Process state, with background syncs not yet started.
        """
        verify: ssl.SSLContext | bool = True
        if config.etcd.tls:
            verify = _build_ssl_context(config.etcd.tls)
        etcd_http_client = AsyncClient(verify=verify)
        kubernetes_client = ApiClient()

        # Route handlers get their own logger through Factory.
        logger = structlog.get_logger(__name__)

        slack_client = None
        if config.slack_webhook:
            slack_client = SlackWebhookClient(
                config.slack_webhook, config.name, logger
            )

        pod_storage = PodStorage(
            kubernetes_client,
            namespace=config.namespace,
            label_selector=config.label_selector,
            logger=logger,
        )
        etcd_client = EtcdStorageClient(
            endpoints=config.etcd.endpoints,
            http_client=etcd_http_client,
            health_timeout=config.etcd.request_timeout,
            logger=logger,
        )
        reconciler = _build_reconciler(
            config, pod_storage, etcd_client, logger
        )
        return cls(
            config=config,
            etcd_http_client=etcd_http_client,
            kubernetes_client=kubernetes_client,
            background=BackgroundTaskManager(
                reconciler=reconciler,
                pod_storage=pod_storage if config.watch_pods else None,
                interval=config.resync_interval,
                slack_client=slack_client,
                logger=logger,
            ),
        )

    async def aclose(self) -> None:
        """Close the HTTP and Kubernetes clients."""
        await self.etcd_http_client.aclose()
        await self.kubernetes_client.close()

    async def start(self) -> None:
        """Start the background tasks running."""
        await self.background.start()

    async def stop(self) -> None:
        """Stop the background tasks.

        Must be called before `aclose`.
        """
        await self.background.stop()


def _build_reconciler(
    config: Config,
    pod_storage: PodStorage,
    etcd_client: EtcdStorageClient,
    logger: BoundLogger,
) -> MembershipReconciler:
    return MembershipReconciler(
        pod_observer=pod_storage,
        member_client=etcd_client,
        selector=CandidateSelector(
            config.member_container, config.peer_url_template
        ),
        peer_url_template=config.peer_url_template,
        sync_timeout=config.sync_timeout,
        health_checker=(
            etcd_client if config.etcd.require_healthy_members else None
        ),
        logger=logger,
    )


class Factory:
    """Build member controller components.

    Each call makes a new object from the shared clients in the
    `ProcessContext`, logging through the logger given to the factory.

    Parameters
    ----------
    context
        Shared process context.
    logger
        Logger to use for messages.
    """

    @classmethod
    @asynccontextmanager
    async def standalone(cls, config: Config) -> AsyncIterator[Self]:
        """Create a factory with its own process state.

        Used outside the web application, such as by the tests. The process
        state is closed on exit.

        Parameters
        ----------
        config
            Member controller configuration.

        Yields
        ------
        Factory
            Factory with freshly opened clients.
        """
        logger = structlog.get_logger(__name__)
        context = await ProcessContext.from_config(config)
        factory = cls(context, logger)
        async with aclosing(factory):
            yield factory

    def __init__(self, context: ProcessContext, logger: BoundLogger) -> None:
        self._context = context
        self._logger = logger
        self._background_services_started = False

    @property
    def background(self) -> BackgroundTaskManager:
        """Global background task manager, from the `ProcessContext`."""
        return self._context.background

    async def aclose(self) -> None:
        """Stop any background services and close the shared clients.

        The factory cannot be used afterwards.
        """
        if self._background_services_started:
            await self._context.stop()
        await self._context.aclose()

    def create_etcd_client(self) -> EtcdStorageClient:
        """Create a client for the consensus cluster membership API.

        Returns
        -------
        EtcdStorageClient
            Newly-created etcd client.
        """
        config = self._context.config
        return EtcdStorageClient(
            endpoints=config.etcd.endpoints,
            http_client=self._context.etcd_http_client,
            health_timeout=config.etcd.request_timeout,
            logger=self._logger,
        )

    def create_pod_storage(self) -> PodStorage:
        """Create Kubernetes storage object for member pods.

        Returns
        -------
        PodStorage
            Newly-created pod storage.
        """
        config = self._context.config
        return PodStorage(
            self._context.kubernetes_client,
            namespace=config.namespace,
            label_selector=config.label_selector,
            logger=self._logger,
        )

    def create_reconciler(self) -> MembershipReconciler:
        """Create a membership reconciler using the request logger.

        Syncs run from the returned reconciler are not serialized with the
        background syncs. Use `background` to run a serialized sync.

        Returns
        -------
        MembershipReconciler
            Newly-created reconciler.
        """
        return _build_reconciler(
            self._context.config,
            self.create_pod_storage(),
            self.create_etcd_client(),
            self._logger,
        )

    async def start_background_services(self) -> None:
        """Start the periodic and watch-driven syncs.

        The web application does this at startup. A standalone factory only
        runs them when asked, and stops them again in `aclose`.
        """
        await self._context.start()
        self._background_services_started = True
