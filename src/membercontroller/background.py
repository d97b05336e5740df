"""Member controller background processing."""

from __future__ import annotations

import asyncio
from datetime import UTC, datetime, timedelta

from aiojobs import Scheduler
from safir.slack.blockkit import SlackException
from safir.slack.webhook import SlackWebhookClient
from structlog.stdlib import BoundLogger

from .constants import WATCH_RESTART_DELAY
from .models.domain.sync import SyncResult
from .services.reconciler import MembershipReconciler
from .storage.kubernetes.pod import PodStorage

__all__ = ["BackgroundTaskManager"]


class BackgroundTaskManager:
    """Run membership syncs in the background.

    This is the scheduler for the membership reconciler. It runs a sync at
    startup, then on a fixed interval and, if a pod watcher is provided,
    whenever a member pod changes. Syncs are serialized so that at most one
    member addition is ever in flight from this process.

    Parameters
    ----------
    reconciler
        Membership reconciler.
    pod_storage
        If given, watch member pods and sync on every change.
    interval
        How often to sync in the absence of pod changes.
    slack_client
        If given, failed syncs are reported here.
    logger
        Logger to use.
    """

    def __init__(
        self,
        *,
        reconciler: MembershipReconciler,
        pod_storage: PodStorage | None,
        interval: timedelta,
        slack_client: SlackWebhookClient | None,
        logger: BoundLogger,
    ) -> None:
        self._reconciler = reconciler
        self._pod_storage = pod_storage
        self._interval = interval
        self._slack = slack_client
        self._logger = logger

        self._lock = asyncio.Lock()
        self._scheduler: Scheduler | None = None
        self._last_result: SyncResult | None = None

    @property
    def last_result(self) -> SyncResult | None:
        """Result of the most recent successful sync, if any."""
        return self._last_result

    async def start(self) -> None:
        """Start all background tasks."""
        if self._scheduler:
            msg = "Membership syncs already started"
            self._logger.warning(msg)
            return
        self._scheduler = Scheduler()
        self._logger.info("Starting membership syncs")
        await self._scheduler.spawn(self._loop())
        if self._pod_storage:
            await self._scheduler.spawn(self._watch_loop())

    async def stop(self) -> None:
        """Cancel the sync tasks and wait for them to exit."""
        if not self._scheduler:
            msg = "Membership syncs not running"
            self._logger.warning(msg)
            return
        self._logger.info("Stopping membership syncs")
        await self._scheduler.close()
        self._scheduler = None

    async def sync(self) -> SyncResult | None:
        """Run one membership sync, serialized with all other syncs.

        Errors are logged and reported to Slack, not raised.

        Returns
        -------
        SyncResult or None
            Result of the sync, or `None` if it failed.
        """
        async with self._lock:
            try:
                result = await self._reconciler.sync()
            except Exception as e:
                self._logger.exception("Membership sync failed")
                if self._slack:
                    if isinstance(e, SlackException):
                        await self._slack.post_exception(e)
                    else:
                        await self._slack.post_uncaught_exception(e)
                return None
        self._last_result = result
        self._logger.debug("Membership sync complete", action=result.action)
        return result

    async def _loop(self) -> None:
        """Sync at startup and then on every interval."""
        while True:
            start = datetime.now(tz=UTC)
            await self.sync()
            now = datetime.now(tz=UTC)
            delay = self._interval - (now - start)
            if delay.total_seconds() < 1:
                msg = "Membership sync is running continuously"
                self._logger.warning(msg)
            else:
                await asyncio.sleep(delay.total_seconds())

    async def _watch_loop(self) -> None:
        """Sync whenever a member pod changes.

        Every change queues a sync behind the lock, even if a sync is
        already running.
        """
        if not self._pod_storage:
            return
        while True:
            try:
                async for name in self._pod_storage.watch_changes():
                    self._logger.debug("Member pod changed", pod=name)
                    await self.sync()
            except Exception as e:
                self._logger.exception("Uncaught exception watching pods")
                if self._slack:
                    await self._slack.post_uncaught_exception(e)
                delay = WATCH_RESTART_DELAY.total_seconds()
                await asyncio.sleep(delay)
