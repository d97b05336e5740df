"""FastAPI application for the cluster member controller."""

from __future__ import annotations

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from importlib.metadata import metadata

import structlog
from fastapi import FastAPI
from safir.kubernetes import initialize_kubernetes
from safir.logging import configure_logging, configure_uvicorn_logging
from safir.middleware.x_forwarded import XForwardedMiddleware
from safir.sentry import initialize_sentry
from safir.slack.webhook import SlackRouteErrorHandler

from . import __version__
from .dependencies.config import config_dependency
from .dependencies.context import context_dependency
from .handlers import index, status

__all__ = ["create_app"]


def create_app() -> FastAPI:
    """Build the member controller web application.

    Configuration is read when this is called, not at import time, so tests
    can point the configuration dependency at their own file first.
    """
    initialize_sentry(release=__version__)

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        await initialize_kubernetes()
        config = config_dependency.config
        await context_dependency.initialize(config)

        yield

        await context_dependency.aclose()

    # Logging must be configured before anything logs.
    config = config_dependency.config
    configure_logging(
        name="membercontroller",
        profile=config.log_profile,
        log_level=config.log_level,
    )
    configure_uvicorn_logging(config.log_level)

    path_prefix = config.path_prefix
    app = FastAPI(
        title=config.name,
        description=metadata("cluster-member-controller")["Summary"],
        version=__version__,
        openapi_url=f"{path_prefix}/openapi.json",
        docs_url=f"{path_prefix}/docs",
        redoc_url=f"{path_prefix}/redoc",
        lifespan=lifespan,
    )

    # The index route outside the prefix is for Kubernetes probes.
    app.include_router(index.internal_router)
    app.include_router(index.external_router, prefix=path_prefix)
    app.include_router(status.router, prefix=path_prefix)

    app.add_middleware(XForwardedMiddleware)

    # Report uncaught route exceptions to Slack.
    if config.slack_webhook:
        slack_logger = structlog.get_logger(__name__)
        SlackRouteErrorHandler.initialize(
            config.slack_webhook, config.name, slack_logger
        )
        slack_logger.debug("Slack alerts enabled for route errors")

    return app
