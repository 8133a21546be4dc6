"""Admin subscription management."""

import logging

from fastapi import APIRouter, HTTPException, status

from api.dependencies import AdminUser, ContainerDep
from api.schemas.allowance import AdminSubscriptionUpdate
from api.schemas.billing import SubscriptionChangeResponse
from core.domain.subscription import SubscriptionStatus
from core.errors import PlanNotFoundError, StoreUnavailableError

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/admin", tags=["Admin"])


@router.put("/subscriptions/{user_id}", response_model=SubscriptionChangeResponse)
async def override_subscription(
    user_id: str,
    body: AdminSubscriptionUpdate,
    container: ContainerDep,
    admin_user: AdminUser,
):
    """Set a user's plan and status directly, bypassing PayPal."""
    try:
        new_status = SubscriptionStatus(body.status)
    except ValueError:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail=f"Invalid status '{body.status}'",
        )
    if new_status == SubscriptionStatus.NONE:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail="Status 'none' cannot be stored",
        )

    try:
        result = await container.ingestion.apply_admin_override(user_id, body.plan_id, new_status)
    except PlanNotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
    except StoreUnavailableError:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Subscription data is temporarily unavailable",
        )

    logger.info(
        "Admin %s overrode subscription of %s", admin_user.sub, user_id,
        extra={"user_id": user_id, "plan_id": result.plan_id},
    )
    return SubscriptionChangeResponse(
        success=True,
        applied=result.applied,
        subscription_id=result.external_subscription_id,
        plan_id=result.plan_id,
        status=result.status.value if result.status else None,
    )
