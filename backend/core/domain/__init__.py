# Domain Entities
# Pure business objects with no external dependencies
from .subscription import (
    UNLIMITED,
    ActionKind,
    AllowanceDecision,
    MonthBounds,
    Plan,
    Subscription,
    SubscriptionStatus,
    month_bounds,
    utcnow,
    year_month,
)

__all__ = [
    "UNLIMITED",
    "ActionKind",
    "AllowanceDecision",
    "MonthBounds",
    "Plan",
    "Subscription",
    "SubscriptionStatus",
    "month_bounds",
    "utcnow",
    "year_month",
]
