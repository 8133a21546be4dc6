"""
Plan configuration for subscription tiers.

This module is the single source of truth for plan limits and features.
It lives in core/ so both service and API layers can import from it
without creating circular dependencies.
"""

import logging
from dataclasses import dataclass
from typing import Mapping, Optional

from core.domain.subscription import UNLIMITED, Plan

logger = logging.getLogger(__name__)

DEFAULT_PLAN_ID = "free"

# Plan configuration with features and limits
PLANS = {
    "free": {
        "name": "Free",
        "price_monthly": 0,
        "features": [
            "5 analyses per month",
            "2 competitor comparisons per month",
            "1 project",
        ],
        "limits": {
            "analyses_per_month": 5,
            "comparisons_per_month": 2,
            "projects": 1,
        },
    },
    "starter": {
        "name": "Starter",
        "price_monthly": 10,
        "features": [
            "30 analyses per month",
            "10 competitor comparisons per month",
            "3 projects",
            "PDF report export",
        ],
        "limits": {
            "analyses_per_month": 30,
            "comparisons_per_month": 10,
            "projects": 3,
        },
    },
    "pro": {
        "name": "Pro",
        "price_monthly": 30,
        "features": [
            "100 analyses per month",
            "50 competitor comparisons per month",
            "10 projects",
            "PDF report export",
            "Priority support",
        ],
        "limits": {
            "analyses_per_month": 100,
            "comparisons_per_month": 50,
            "projects": 10,
        },
    },
    "business": {
        "name": "Business",
        "price_monthly": 70,
        "features": [
            "300 analyses per month",
            "150 competitor comparisons per month",
            "25 projects",
            "PDF report export",
            "Dedicated support",
        ],
        "limits": {
            "analyses_per_month": 300,
            "comparisons_per_month": 150,
            "projects": 25,
        },
    },
}


def _plan_from_config(plan_id: str, config: dict) -> Plan:
    limits = config["limits"]
    for key, value in limits.items():
        if value < 0 and value != UNLIMITED:
            raise ValueError(f"Plan {plan_id}: {key} must be >= 0 or UNLIMITED, got {value}")

    return Plan(
        plan_id=plan_id,
        display_name=config["name"],
        monthly_analysis_limit=limits["analyses_per_month"],
        monthly_comparison_limit=limits["comparisons_per_month"],
        project_limit=limits["projects"],
        price_usd=float(config["price_monthly"]),
        features=tuple(config.get("features", ())),
    )


@dataclass(frozen=True)
class PlanResolution:
    """Result of resolving a plan id with default fallback."""

    plan: Plan
    resolved: bool
    requested_id: Optional[str] = None


class PlanCatalog:
    """
    Fixed lookup table from internal and external plan ids to plans.

    Built once at process start; every lookup is a dict access.
    """

    def __init__(
        self,
        plans: Mapping[str, dict] = PLANS,
        external_ids: Optional[Mapping[str, str]] = None,
        default_plan_id: str = DEFAULT_PLAN_ID,
    ):
        """
        Args:
            plans: Plan configuration keyed by internal plan id
            external_ids: Payment-provider plan id -> internal plan id
            default_plan_id: Plan used when nothing else resolves
        """
        self._plans: dict[str, Plan] = {
            plan_id: _plan_from_config(plan_id, config) for plan_id, config in plans.items()
        }

        if default_plan_id not in self._plans:
            raise ValueError(f"Default plan {default_plan_id!r} is not in the catalog")
        self._default_plan_id = default_plan_id

        self._external: dict[str, Plan] = {}
        for external_id, internal_id in (external_ids or {}).items():
            if not external_id:
                continue
            if internal_id not in self._plans:
                raise ValueError(
                    f"External plan id {external_id!r} maps to unknown plan {internal_id!r}"
                )
            if external_id in self._plans:
                raise ValueError(f"External plan id {external_id!r} collides with an internal id")
            self._external[external_id] = self._plans[internal_id]

    @property
    def default_plan(self) -> Plan:
        return self._plans[self._default_plan_id]

    def resolve(self, plan_id: Optional[str]) -> Optional[Plan]:
        """Look up a plan by internal or external id. Returns None if unknown."""
        if not plan_id:
            return None
        key = str(plan_id)
        return self._plans.get(key) or self._external.get(key)

    def resolve_or_default(self, plan_id: Optional[str]) -> PlanResolution:
        """Resolve ``plan_id``, falling back to the default plan when unknown."""
        plan = self.resolve(plan_id)
        if plan is None:
            return PlanResolution(plan=self.default_plan, resolved=False, requested_id=plan_id)
        return PlanResolution(plan=plan, resolved=True, requested_id=plan_id)

    def list_plans(self) -> list[Plan]:
        """All plans ordered by price."""
        return sorted(self._plans.values(), key=lambda p: p.price_usd)

    def external_id_for(self, plan_id: str) -> Optional[str]:
        """Reverse lookup used when starting a checkout for an internal plan."""
        for external_id, plan in self._external.items():
            if plan.plan_id == plan_id:
                return external_id
        return None

    def __contains__(self, plan_id: str) -> bool:
        return self.resolve(plan_id) is not None


def build_plan_catalog(settings) -> PlanCatalog:
    """Create the catalog from application settings."""
    external_ids = {
        settings.paypal_plan_starter: "starter",
        settings.paypal_plan_pro: "pro",
        settings.paypal_plan_business: "business",
    }
    catalog = PlanCatalog(
        plans=PLANS,
        external_ids={k: v for k, v in external_ids.items() if k},
        default_plan_id=settings.default_plan_id,
    )
    logger.info(
        "Plan catalog loaded: %d plans, %d external ids, default=%s",
        len(PLANS), len(catalog._external), settings.default_plan_id,
    )
    return catalog
