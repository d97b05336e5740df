"""Metadata routes, also used for health checks."""

from typing import Annotated

from fastapi import APIRouter, Depends
from safir.metadata import Metadata, get_metadata
from safir.slack.webhook import SlackRouteErrorHandler

from ..config import Config
from ..dependencies.config import config_dependency
from ..models.index import Index

internal_router = APIRouter(route_class=SlackRouteErrorHandler)
"""Routes served at ``/`` for in-cluster probes."""

external_router = APIRouter(route_class=SlackRouteErrorHandler)
"""Routes served under the path prefix."""

__all__ = ["external_router", "internal_router"]


@external_router.get(
    "",
    response_model_exclude_none=True,
    summary="Controller metadata",
)
async def get_index(
    config: Annotated[Config, Depends(config_dependency)],
) -> Index:
    metadata = get_metadata(
        package_name="cluster-member-controller", application_name=config.name
    )
    return Index(metadata=metadata)


@internal_router.get(
    "/",
    description=(
        "Name and version of the controller. Kubernetes probes this route"
        " to check liveness. Only reachable from inside the cluster."
    ),
    include_in_schema=False,
    response_model_exclude_none=True,
    summary="Controller metadata for probes",
)
async def get_internal_index(
    config: Annotated[Config, Depends(config_dependency)],
) -> Metadata:
    return get_metadata(
        package_name="cluster-member-controller", application_name=config.name
    )
