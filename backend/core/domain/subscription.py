"""Subscription and entitlement domain entities."""
from calendar import monthrange
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Optional


class SubscriptionStatus(str, Enum):
    """Billing relationship states."""
    ACTIVE = "active"
    CANCELLED = "cancelled"
    EXPIRED = "expired"
    PAST_DUE = "past_due"
    NONE = "none"


class ActionKind(str, Enum):
    """Metered user actions."""
    ANALYSIS = "analysis"
    COMPARISON = "comparison"
    PROJECT = "project"


# Sentinel for "no limit" on any plan dimension
UNLIMITED = -1


@dataclass(frozen=True)
class Plan:
    """Static catalog entry describing a plan tier."""

    plan_id: str
    display_name: str
    monthly_analysis_limit: int
    monthly_comparison_limit: int
    project_limit: int
    price_usd: float
    features: tuple[str, ...] = ()

    def limit_for(self, action: ActionKind) -> int:
        """Return the limit that applies to ``action``."""
        if action == ActionKind.ANALYSIS:
            return self.monthly_analysis_limit
        if action == ActionKind.COMPARISON:
            return self.monthly_comparison_limit
        return self.project_limit


@dataclass
class Subscription:
    """A user's current billing relationship."""

    user_id: str
    external_subscription_id: str
    plan_id: str
    status: SubscriptionStatus = SubscriptionStatus.NONE
    last_event_at: Optional[datetime] = None

    def __post_init__(self):
        if isinstance(self.status, str):
            self.status = SubscriptionStatus(self.status)

    @property
    def is_active(self) -> bool:
        return self.status == SubscriptionStatus.ACTIVE


@dataclass(frozen=True)
class AllowanceDecision:
    """Outcome of an allowance check. ``limit``/``remaining`` are None when unlimited."""

    can_proceed: bool
    limit: Optional[int] = None
    remaining: Optional[int] = None
    reason: Optional[str] = None
    used: Optional[int] = None
    # True only for the store-unavailable fallback
    degraded: bool = False

    def to_dict(self) -> dict:
        return {
            "can_proceed": self.can_proceed,
            "limit": self.limit,
            "remaining": self.remaining,
            "reason": self.reason,
            "used": self.used,
            "degraded": self.degraded,
        }


@dataclass(frozen=True)
class MonthBounds:
    """Inclusive calendar month window."""

    start: datetime
    end: datetime
    key: str


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def year_month(moment: Optional[datetime] = None) -> str:
    """Calendar month key, e.g. ``2026-10``."""
    moment = moment or utcnow()
    return f"{moment.year:04d}-{moment.month:02d}"


def month_bounds(key: str) -> MonthBounds:
    """Return the inclusive ``[start, end]`` UTC bounds for a ``YYYY-MM`` key."""
    try:
        year_str, month_str = key.split("-", 1)
        year, month = int(year_str), int(month_str)
        last_day = monthrange(year, month)[1]
    except (ValueError, IndexError) as e:
        raise ValueError(f"Invalid month key: {key!r}") from e

    start = datetime(year, month, 1, tzinfo=timezone.utc)
    end = datetime(year, month, last_day, 23, 59, 59, 999999, tzinfo=timezone.utc)
    return MonthBounds(start=start, end=end, key=key)
