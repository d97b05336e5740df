"""Route reporting cluster membership and pod eligibility."""

from typing import Annotated

from fastapi import APIRouter, Depends
from safir.slack.webhook import SlackRouteErrorHandler

from ..dependencies.context import RequestContext, context_dependency
from ..models.v1.status import LastSync, MembershipStatus

router = APIRouter(route_class=SlackRouteErrorHandler)
"""Router to mount into the application."""

__all__ = ["router"]


@router.get(
    "/v1/status",
    response_model_exclude_none=True,
    summary="Cluster membership status",
    description=(
        "Current members of the consensus cluster and, for each observed"
        " pod, whether it may be added and the first check it fails if not."
        " This route never changes the membership."
    ),
    tags=["status"],
)
async def get_status(
    context: Annotated[RequestContext, Depends(context_dependency)],
) -> MembershipStatus:
    reconciler = context.factory.create_reconciler()
    status = await reconciler.status()
    last_result = context.background.last_result
    if last_result:
        status.last_sync = LastSync.from_result(last_result)
    return status
