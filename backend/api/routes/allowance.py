"""Allowance check endpoint."""

import logging

from fastapi import APIRouter, HTTPException, status

from api.dependencies import ContainerDep, OptionalUser
from api.guest_cookie import GuestDep
from api.schemas.allowance import AllowanceResponse
from core.domain.subscription import ActionKind

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/allowance", tags=["Allowance"])


@router.get("/{action}", response_model=AllowanceResponse)
async def get_allowance(
    action: str,
    container: ContainerDep,
    user: OptionalUser,
    guest: GuestDep,
):
    """
    Check whether the caller may perform ``action`` now.

    Authenticated callers are checked against their plan; anonymous
    callers against the guest cookie counter.
    """
    try:
        kind = ActionKind(action)
    except ValueError:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Unknown action '{action}'",
        )

    user_id = user.sub if user else None
    decision = await container.evaluator.evaluate(user_id, kind, guest=guest)
    return AllowanceResponse(action=kind.value, guest=user_id is None, **decision.to_dict())
