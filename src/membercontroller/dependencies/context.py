"""Per-request state for route handlers.

Handlers depend on `context_dependency` to get a `RequestContext`. The
dependency must be initialized with a loaded `~membercontroller.config.Config`
during application startup before any request is handled.
"""

from dataclasses import dataclass
from typing import Annotated

from fastapi import Depends, Request
from safir.dependencies.logger import logger_dependency
from structlog.stdlib import BoundLogger

from ..background import BackgroundTaskManager
from ..config import Config
from ..factory import Factory, ProcessContext

__all__ = [
    "ContextDependency",
    "RequestContext",
    "context_dependency",
]


@dataclass(slots=True)
class RequestContext:
    """Everything a route handler needs to serve one request."""

    request: Request
    """Request being handled."""

    logger: BoundLogger
    """Logger bound to this request."""

    factory: Factory
    """Builds services that log through the request logger."""

    background: BackgroundTaskManager
    """Process-wide sync manager, for the result of the last sync."""


class ContextDependency:
    """FastAPI dependency that hands each request a fresh `RequestContext`.

    Clients and background tasks live in one
    `~membercontroller.factory.ProcessContext` that every request shares.
    """

    def __init__(self) -> None:
        self._process_context: ProcessContext | None = None

    async def __call__(
        self,
        request: Request,
        logger: Annotated[BoundLogger, Depends(logger_dependency)],
    ) -> RequestContext:
        if not self._process_context:
            raise RuntimeError("Request context used before startup")
        return RequestContext(
            request=request,
            logger=logger,
            factory=Factory(self._process_context, logger),
            background=self._process_context.background,
        )

    @property
    def is_initialized(self) -> bool:
        """Whether `initialize` has run and `aclose` has not."""
        return self._process_context is not None

    async def initialize(self, config: Config) -> None:
        """Build the shared process state and start syncing.

        Calling this again replaces the existing state, which is first shut
        down.

        Parameters
        ----------
        config
            Member controller configuration.
        """
        await self.aclose()
        self._process_context = await ProcessContext.from_config(config)
        await self._process_context.start()

    async def aclose(self) -> None:
        """Stop background syncs and free the per-process resources."""
        if self._process_context:
            await self._process_context.stop()
            await self._process_context.aclose()
        self._process_context = None


context_dependency = ContextDependency()
"""Shared instance used by the route handlers."""
