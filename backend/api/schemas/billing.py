"""
Billing and subscription request/response schemas.
"""

from datetime import datetime

from pydantic import BaseModel, Field

from core.domain.subscription import Plan


class PlanLimits(BaseModel):
    """Usage limits for a subscription plan."""

    analyses_per_month: int = Field(
        ..., description="Analyses allowed per month (-1 for unlimited)"
    )
    comparisons_per_month: int = Field(
        ..., description="Competitor comparisons allowed per month (-1 for unlimited)"
    )
    projects: int = Field(..., description="Projects allowed at once (-1 for unlimited)")


class PlanInfo(BaseModel):
    """Information about a subscription plan."""

    id: str = Field(..., description="Plan ID (free, starter, pro, business)")
    name: str = Field(..., description="Display name of the plan")
    price_monthly: float = Field(..., description="Monthly price in USD")
    features: list[str] = Field(default_factory=list)
    limits: PlanLimits
    paypal_plan_id: str | None = Field(None, description="PayPal billing plan id")

    @classmethod
    def from_plan(cls, plan: Plan, paypal_plan_id: str | None = None) -> "PlanInfo":
        return cls(
            id=plan.plan_id,
            name=plan.display_name,
            price_monthly=plan.price_usd,
            features=list(plan.features),
            limits=PlanLimits(
                analyses_per_month=plan.monthly_analysis_limit,
                comparisons_per_month=plan.monthly_comparison_limit,
                projects=plan.project_limit,
            ),
            paypal_plan_id=paypal_plan_id,
        )


class PricingResponse(BaseModel):
    """Response containing all available pricing plans."""

    plans: list[PlanInfo]
    default_plan: str


class SubscriptionResponse(BaseModel):
    """Current subscription of the caller."""

    plan_id: str = Field(..., description="Plan governing the caller's allowances")
    plan_name: str
    status: str = Field(
        ..., description="Subscription status (active, cancelled, expired, past_due, none)"
    )
    subscription_id: str | None = Field(None, description="PayPal subscription id")
    last_event_at: datetime | None = None
    can_cancel: bool = False


class CheckoutRequest(BaseModel):
    """Request to start a PayPal subscription."""

    plan: str = Field(..., description="Plan ID (starter, pro, business)")

    model_config = {"json_schema_extra": {"example": {"plan": "pro"}}}


class CheckoutResponse(BaseModel):
    """Response containing the PayPal approval URL."""

    subscription_id: str
    approve_url: str


class ApprovalRequest(BaseModel):
    """Subscription id handed back by the PayPal approval redirect."""

    subscription_id: str = Field(..., min_length=1, max_length=255)

    model_config = {"json_schema_extra": {"example": {"subscription_id": "I-BW452GLLEP1G"}}}


class SubscriptionChangeResponse(BaseModel):
    """Result of an approval, cancellation or admin override."""

    success: bool
    applied: bool
    subscription_id: str | None = None
    plan_id: str | None = None
    status: str | None = None
    note: str | None = None
