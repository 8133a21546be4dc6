"""
API request and response schemas.
"""

from .allowance import (
    ActionResponse,
    AdminSubscriptionUpdate,
    AllowanceResponse,
    AnalysisRequest,
    ComparisonRequest,
    ProjectCreateRequest,
    ProjectResponse,
)
from .billing import (
    ApprovalRequest,
    CheckoutRequest,
    CheckoutResponse,
    PlanInfo,
    PricingResponse,
    SubscriptionChangeResponse,
    SubscriptionResponse,
)

__all__ = [
    "ActionResponse",
    "AdminSubscriptionUpdate",
    "AllowanceResponse",
    "AnalysisRequest",
    "ComparisonRequest",
    "ProjectCreateRequest",
    "ProjectResponse",
    "ApprovalRequest",
    "CheckoutRequest",
    "CheckoutResponse",
    "PlanInfo",
    "PricingResponse",
    "SubscriptionChangeResponse",
    "SubscriptionResponse",
]
