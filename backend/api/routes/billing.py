"""
Billing and subscription API routes.
"""

import json
import logging

from fastapi import APIRouter, HTTPException, Request, status
from fastapi.responses import JSONResponse

from adapters.payments.paypal_adapter import PayPalAPIError, PayPalError, PayPalWebhookError
from api.dependencies import ContainerDep, CurrentUser
from api.middleware.rate_limit import get_rate_limit, limiter
from api.schemas.billing import (
    ApprovalRequest,
    CheckoutRequest,
    CheckoutResponse,
    PlanInfo,
    PricingResponse,
    SubscriptionChangeResponse,
    SubscriptionResponse,
)
from core.domain.subscription import SubscriptionStatus, utcnow
from core.errors import (
    MalformedEventError,
    StoreUnavailableError,
    SubscriptionNotFoundError,
    SubscriptionOwnershipError,
    UnattributableSubscriptionError,
)
from services.webhook_ingestion import ADMIN_OVERRIDE_PREFIX, IngestionResult

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/billing", tags=["Billing"])


def _change_response(result: IngestionResult) -> SubscriptionChangeResponse:
    return SubscriptionChangeResponse(
        success=True,
        applied=result.applied,
        subscription_id=result.external_subscription_id,
        plan_id=result.plan_id,
        status=result.status.value if result.status else None,
        note=result.note,
    )


@router.get("/plans", response_model=PricingResponse)
async def get_plans(container: ContainerDep):
    """Get all available subscription plans."""
    catalog = container.catalog
    plans = [
        PlanInfo.from_plan(plan, paypal_plan_id=catalog.external_id_for(plan.plan_id))
        for plan in catalog.list_plans()
    ]
    return PricingResponse(plans=plans, default_plan=catalog.default_plan.plan_id)


@router.get("/subscription", response_model=SubscriptionResponse)
async def get_subscription(container: ContainerDep, current_user: CurrentUser):
    """Get the caller's current subscription."""
    try:
        subscription = await container.store.get_subscription(current_user.sub)
    except StoreUnavailableError:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Subscription data is temporarily unavailable",
        )

    if subscription is None:
        default = container.catalog.default_plan
        return SubscriptionResponse(
            plan_id=default.plan_id,
            plan_name=default.display_name,
            status=SubscriptionStatus.NONE.value,
        )

    plan = container.catalog.resolve_or_default(
        subscription.plan_id if subscription.is_active else None
    ).plan
    return SubscriptionResponse(
        plan_id=plan.plan_id,
        plan_name=plan.display_name,
        status=subscription.status.value,
        subscription_id=subscription.external_subscription_id,
        last_event_at=subscription.last_event_at,
        can_cancel=subscription.is_active
        and not subscription.external_subscription_id.startswith(ADMIN_OVERRIDE_PREFIX),
    )


@router.post("/checkout", response_model=CheckoutResponse)
@limiter.limit(get_rate_limit("checkout"))
async def create_checkout(
    request: Request,
    body: CheckoutRequest,
    container: ContainerDep,
    current_user: CurrentUser,
):
    """
    Start a PayPal subscription for a paid plan.

    The caller's user id is attached as ``custom_id`` so the activation
    webhook can be attributed.
    """
    paypal_plan_id = container.catalog.external_id_for(body.plan)
    if paypal_plan_id is None:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Plan '{body.plan}' cannot be purchased",
        )

    frontend = container.settings.frontend_url.rstrip("/")
    try:
        subscription = await container.paypal.create_subscription(
            plan_id=paypal_plan_id,
            user_id=current_user.sub,
            return_url=f"{frontend}/success?plan={body.plan}",
            cancel_url=f"{frontend}/pricing",
        )
    except PayPalError:
        raise HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY,
            detail="Failed to create subscription. Please try again.",
        )

    if not subscription.approve_url:
        logger.error("PayPal subscription %s has no approve link", subscription.id)
        raise HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY,
            detail="Failed to create subscription. Please try again.",
        )

    logger.info("Checkout started for plan %s", body.plan, extra={"user_id": current_user.sub})
    return CheckoutResponse(subscription_id=subscription.id, approve_url=subscription.approve_url)


@router.post("/paypal/approve", response_model=SubscriptionChangeResponse)
@limiter.limit(get_rate_limit("approve"))
async def approve_subscription(
    request: Request,
    body: ApprovalRequest,
    container: ContainerDep,
    current_user: CurrentUser,
):
    """
    Apply a subscription right after the PayPal approval redirect.

    The webhook would deliver the same activation later; both go through
    the same idempotent upsert.
    """
    try:
        result = await container.ingestion.confirm_approval(current_user.sub, body.subscription_id)
    except SubscriptionOwnershipError as e:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=str(e))
    except PayPalAPIError as e:
        if e.status_code == 404:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Subscription not found")
        raise HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY,
            detail="Could not verify subscription with PayPal",
        )
    except PayPalError:
        raise HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY,
            detail="Could not verify subscription with PayPal",
        )
    except StoreUnavailableError:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Subscription could not be saved; it will be applied when PayPal confirms it",
        )

    return _change_response(result)


@router.post("/cancel", response_model=SubscriptionChangeResponse)
@limiter.limit(get_rate_limit("cancel"))
async def cancel_subscription(
    request: Request,
    container: ContainerDep,
    current_user: CurrentUser,
):
    """Cancel the caller's subscription at PayPal and locally."""
    try:
        result = await container.ingestion.cancel_for_user(current_user.sub)
    except SubscriptionNotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
    except PayPalError:
        raise HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY,
            detail="Failed to cancel subscription. Please try again or contact support.",
        )
    except StoreUnavailableError:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Subscription data is temporarily unavailable",
        )

    return _change_response(result)


@router.post("/webhook")
@limiter.limit(get_rate_limit("webhook"))
async def handle_webhook(request: Request, container: ContainerDep):
    """
    Handle PayPal subscription webhooks.

    - BILLING.SUBSCRIPTION.ACTIVATED: attribute and activate the subscription
    - BILLING.SUBSCRIPTION.CANCELLED / EXPIRED: mark cancelled / expired
    - BILLING.SUBSCRIPTION.PAYMENT.FAILED: mark past_due
    - BILLING.SUBSCRIPTION.PAYMENT.COMPLETED: mark active
    Anything else is acknowledged and ignored.

    4xx tells PayPal not to retry; 5xx asks it to redeliver.
    """
    received_at = utcnow()
    body = await request.body()

    try:
        payload = json.loads(body)
    except (json.JSONDecodeError, ValueError):
        logger.error("Invalid JSON in webhook payload")
        return JSONResponse(status_code=400, content={"error": "invalid_json"})

    settings = container.settings
    if settings.paypal_webhook_id:
        try:
            verified = await container.paypal.verify_webhook_signature(request.headers, payload)
        except PayPalWebhookError as e:
            logger.warning("Webhook rejected: %s", e)
            return JSONResponse(status_code=401, content={"error": "invalid_signature"})
        except PayPalError:
            logger.error("Webhook signature verification unavailable")
            return JSONResponse(status_code=503, content={"error": "verification_unavailable"})
        if not verified:
            return JSONResponse(status_code=401, content={"error": "invalid_signature"})
    elif settings.is_production:
        # 403 rather than 5xx so PayPal does not hammer a misconfigured endpoint
        logger.error("Webhook rejected: PAYPAL_WEBHOOK_ID not configured")
        return JSONResponse(status_code=403, content={"error": "verification_not_configured"})
    else:
        logger.warning("Processing unverified PayPal webhook (PAYPAL_WEBHOOK_ID not set)")

    try:
        result = await container.ingestion.ingest(payload, received_at=received_at)
    except UnattributableSubscriptionError:
        return JSONResponse(status_code=400, content={"error": "missing_custom_id"})
    except MalformedEventError as e:
        logger.warning("Malformed webhook: %s", e)
        return JSONResponse(status_code=400, content={"error": "malformed_event", "detail": str(e)})
    except StoreUnavailableError:
        logger.error(
            "Webhook write failed; PayPal will redeliver",
            extra={"event_type": payload.get("event_type")},
        )
        return JSONResponse(status_code=500, content={"error": "rpc_failed"})

    logger.info(
        "Webhook %s processed (applied=%s)",
        result.event_type, result.applied,
        extra={
            "event_type": result.event_type,
            "external_subscription_id": result.external_subscription_id,
            "user_id": result.user_id,
        },
    )
    return JSONResponse(status_code=200, content=result.to_response())
