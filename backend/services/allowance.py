"""
Allowance evaluation for metered actions.

Answers "may this caller perform this action now, and how much is left?"
from the caller's plan and recorded usage.
"""

import logging
from typing import Callable, Iterable, Optional

from core.domain.subscription import (
    UNLIMITED,
    ActionKind,
    AllowanceDecision,
    Plan,
    utcnow,
    year_month,
)
from core.errors import StoreUnavailableError
from core.interfaces.repositories import EntitlementStore
from core.plans import PlanCatalog
from services.degraded_mode import DegradedModePolicy
from services.guest_allowance import DEFAULT_GUEST_CAP, GuestAllowance

logger = logging.getLogger(__name__)

QUOTA_EXCEEDED = "quota_exceeded"
UNLIMITED_REASON = "unlimited"

LIMIT_REACHED_MESSAGE = (
    "You have reached your monthly limit. Please upgrade your plan to continue."
)
PROJECT_LIMIT_MESSAGE = (
    "You have reached the maximum number of projects for your plan. "
    "Please upgrade to create more projects."
)
GUEST_LIMIT_MESSAGE = (
    "You have used all free analyses for this month. Sign up to keep analyzing."
)


def denial_message(action: ActionKind, guest: bool = False) -> str:
    """User-facing message for a denied decision."""
    if guest:
        return GUEST_LIMIT_MESSAGE
    if ActionKind(action) == ActionKind.PROJECT:
        return PROJECT_LIMIT_MESSAGE
    return LIMIT_REACHED_MESSAGE


class AllowanceEvaluator:
    """
    Computes AllowanceDecisions.

    Reads may fail; any StoreUnavailableError is handed to the degraded-mode
    policy instead of propagating, so a store outage never blocks users.
    """

    def __init__(
        self,
        store: EntitlementStore,
        catalog: PlanCatalog,
        degraded_policy: Optional[DegradedModePolicy] = None,
        guest_cap: int = DEFAULT_GUEST_CAP,
        unlimited_user_ids: Iterable[str] = (),
        clock: Callable = utcnow,
    ):
        self.store = store
        self.catalog = catalog
        self.degraded_policy = degraded_policy or DegradedModePolicy()
        self.guest_cap = guest_cap
        self.unlimited_user_ids = frozenset(unlimited_user_ids)
        self._clock = clock

    async def evaluate(
        self,
        user_id: Optional[str],
        action: ActionKind,
        guest: Optional[GuestAllowance] = None,
    ) -> AllowanceDecision:
        """
        Decide whether ``user_id`` may perform ``action``.

        Args:
            user_id: Authenticated user id, or None for an anonymous visitor
            action: The metered action
            guest: Guest counter; required when ``user_id`` is None

        Returns:
            AllowanceDecision. ``limit`` and ``remaining`` are None for
            unlimited plans.
        """
        action = ActionKind(action)

        if user_id is None:
            if guest is None:
                raise ValueError("Guest evaluation requires a GuestAllowance")
            return self._evaluate_guest(guest)

        if user_id in self.unlimited_user_ids:
            return AllowanceDecision(can_proceed=True, reason=UNLIMITED_REASON)

        try:
            plan = await self.plan_for(user_id)
            limit = plan.limit_for(action)
            if limit == UNLIMITED:
                return AllowanceDecision(can_proceed=True, reason=UNLIMITED_REASON)
            used = await self._usage(user_id, action)
        except StoreUnavailableError as e:
            return self.degraded_policy.decide(user_id, action, e)

        remaining = max(0, limit - used)
        if remaining > 0:
            return AllowanceDecision(can_proceed=True, limit=limit, remaining=remaining, used=used)

        logger.info(
            "Quota exhausted for %s on plan %s (%d/%d)",
            action.value, plan.plan_id, used, limit,
            extra={"user_id": user_id, "action": action.value, "plan_id": plan.plan_id},
        )
        return AllowanceDecision(
            can_proceed=False, limit=limit, remaining=0, reason=QUOTA_EXCEEDED, used=used
        )

    async def plan_for(self, user_id: str) -> Plan:
        """
        The plan governing ``user_id``: the live subscription's plan when it
        is active, the default plan otherwise.

        Raises:
            StoreUnavailableError: If the store cannot be read
        """
        subscription = await self.store.get_subscription(user_id)
        if subscription is None or not subscription.is_active:
            return self.catalog.default_plan

        resolution = self.catalog.resolve_or_default(subscription.plan_id)
        if not resolution.resolved:
            logger.warning(
                "Stored plan id %r is not in the catalog; using %s",
                subscription.plan_id, resolution.plan.plan_id,
                extra={"user_id": user_id, "plan_id": subscription.plan_id},
            )
        return resolution.plan

    async def _usage(self, user_id: str, action: ActionKind) -> int:
        if action == ActionKind.PROJECT:
            return await self.store.get_project_count(user_id)
        return await self.store.get_monthly_usage(user_id, action, year_month(self._clock()))

    def _evaluate_guest(self, guest: GuestAllowance) -> AllowanceDecision:
        cap = self.guest_cap
        used = guest.count()
        remaining = max(0, cap - used)
        return AllowanceDecision(
            can_proceed=used < cap,
            limit=cap,
            remaining=remaining,
            reason=None if used < cap else QUOTA_EXCEEDED,
            used=used,
        )
