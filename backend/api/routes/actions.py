"""
Metered action endpoints: analyses, comparisons and projects.
"""

import logging

from fastapi import APIRouter, HTTPException, Request, Response, status

from api.dependencies import ContainerDep, CurrentUser, OptionalUser
from api.guest_cookie import GuestDep, persist_guest_usage
from api.middleware.rate_limit import get_rate_limit, limiter
from api.schemas.allowance import (
    ActionResponse,
    AnalysisRequest,
    ComparisonRequest,
    ProjectCreateRequest,
    ProjectResponse,
)
from core.domain.subscription import ActionKind, AllowanceDecision
from core.errors import AnalysisServiceError, StoreUnavailableError
from services.allowance import denial_message
from services.metered_actions import ActionOutcome

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Actions"])


def _raise_if_denied(outcome: ActionOutcome, action: ActionKind, guest: bool) -> None:
    decision: AllowanceDecision = outcome.decision
    if decision.can_proceed:
        return
    raise HTTPException(
        status_code=status.HTTP_402_PAYMENT_REQUIRED,
        detail={
            "error": "LIMIT_REACHED" if action != ActionKind.PROJECT else "PROJECT_LIMIT",
            "message": denial_message(action, guest=guest),
            "limit": decision.limit,
            "used": decision.used,
        },
    )


def _remaining_after(decision: AllowanceDecision) -> int | None:
    if decision.remaining is None:
        return None
    return max(0, decision.remaining - 1)


@router.post("/analyses", response_model=ActionResponse)
@limiter.limit(get_rate_limit("metered_action"))
async def create_analysis(
    request: Request,
    response: Response,
    body: AnalysisRequest,
    container: ContainerDep,
    user: OptionalUser,
    guest: GuestDep,
):
    """Run an AI overview analysis for one page."""
    user_id = user.sub if user else None
    try:
        outcome = await container.actions.run_analysis(
            user_id, body.keyword, str(body.url), project_id=body.project_id, guest=guest
        )
    except AnalysisServiceError:
        raise HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY,
            detail="Analysis service failed. Please try again.",
        )

    _raise_if_denied(outcome, ActionKind.ANALYSIS, guest=user_id is None)
    persist_guest_usage(guest, response, secure=container.settings.is_production)
    return ActionResponse(
        id=outcome.record_id,
        result=outcome.result,
        remaining=_remaining_after(outcome.decision),
        degraded=outcome.decision.degraded,
    )


@router.post("/comparisons", response_model=ActionResponse)
@limiter.limit(get_rate_limit("metered_action"))
async def create_comparison(
    request: Request,
    response: Response,
    body: ComparisonRequest,
    container: ContainerDep,
    user: OptionalUser,
    guest: GuestDep,
):
    """Compare the user's page with a competitor page."""
    user_id = user.sub if user else None
    try:
        outcome = await container.actions.run_comparison(
            user_id, body.keyword, str(body.user_url), str(body.competitor_url), guest=guest
        )
    except AnalysisServiceError:
        raise HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY,
            detail="Comparison service failed. Please try again.",
        )

    _raise_if_denied(outcome, ActionKind.COMPARISON, guest=user_id is None)
    persist_guest_usage(guest, response, secure=container.settings.is_production)
    return ActionResponse(
        id=outcome.record_id,
        result=outcome.result,
        remaining=_remaining_after(outcome.decision),
        degraded=outcome.decision.degraded,
    )


@router.post("/projects", response_model=ProjectResponse, status_code=status.HTTP_201_CREATED)
@limiter.limit(get_rate_limit("metered_action"))
async def create_project(
    request: Request,
    body: ProjectCreateRequest,
    container: ContainerDep,
    current_user: CurrentUser,
):
    """Create a project within the plan's project limit."""
    try:
        outcome = await container.actions.create_project(
            current_user.sub, body.name, body.description
        )
    except StoreUnavailableError:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Projects are temporarily unavailable",
        )

    _raise_if_denied(outcome, ActionKind.PROJECT, guest=False)
    return ProjectResponse(
        id=outcome.record_id,
        name=body.name,
        description=body.description,
        remaining=_remaining_after(outcome.decision),
    )
