"""
Unit tests for AllowanceEvaluator.

The store is an AsyncMock so each test controls exactly what is read.
"""

from datetime import datetime, timezone
from unittest.mock import AsyncMock

import pytest

from core.domain.subscription import ActionKind, Subscription, SubscriptionStatus
from core.errors import StoreUnavailableError
from core.interfaces.repositories import EntitlementStore
from core.plans import PLANS, PlanCatalog
from services.allowance import (
    GUEST_LIMIT_MESSAGE,
    LIMIT_REACHED_MESSAGE,
    PROJECT_LIMIT_MESSAGE,
    QUOTA_EXCEEDED,
    AllowanceEvaluator,
    denial_message,
)
from services.degraded_mode import DegradedModePolicy
from services.guest_allowance import GuestAllowance, MemoryGuestStorage

NOW = datetime(2026, 10, 19, 10, 0, tzinfo=timezone.utc)


def _subscription(plan_id="pro", status=SubscriptionStatus.ACTIVE):
    return Subscription(
        user_id="user-1",
        external_subscription_id="I-1",
        plan_id=plan_id,
        status=status,
    )


@pytest.fixture
def mock_store():
    store = AsyncMock(spec=EntitlementStore)
    store.get_subscription.return_value = None
    store.get_monthly_usage.return_value = 0
    store.get_project_count.return_value = 0
    return store


@pytest.fixture
def evaluator(mock_store, catalog):
    return AllowanceEvaluator(
        mock_store,
        catalog,
        degraded_policy=DegradedModePolicy(fallback_limit=999),
        guest_cap=2,
        unlimited_user_ids={"owner-0001"},
        clock=lambda: NOW,
    )


class TestAuthenticatedUsers:
    async def test_free_user_under_limit(self, evaluator, mock_store):
        mock_store.get_monthly_usage.return_value = 3

        decision = await evaluator.evaluate("user-1", ActionKind.ANALYSIS)

        assert decision.can_proceed is True
        assert decision.limit == 5
        assert decision.remaining == 2
        assert decision.used == 3
        assert decision.degraded is False
        mock_store.get_monthly_usage.assert_awaited_once_with("user-1", ActionKind.ANALYSIS, "2026-10")

    async def test_free_user_at_limit_is_denied(self, evaluator, mock_store):
        mock_store.get_monthly_usage.return_value = 5

        decision = await evaluator.evaluate("user-1", ActionKind.ANALYSIS)

        assert decision.can_proceed is False
        assert decision.remaining == 0
        assert decision.reason == QUOTA_EXCEEDED

    async def test_over_limit_never_reports_negative_remaining(self, evaluator, mock_store):
        mock_store.get_monthly_usage.return_value = 40

        decision = await evaluator.evaluate("user-1", ActionKind.COMPARISON)

        assert decision.remaining == 0
        assert decision.limit == 2

    async def test_active_subscription_uses_its_plan(self, evaluator, mock_store):
        mock_store.get_subscription.return_value = _subscription("pro")
        mock_store.get_monthly_usage.return_value = 60

        decision = await evaluator.evaluate("user-1", ActionKind.ANALYSIS)

        assert decision.can_proceed is True
        assert decision.limit == 100
        assert decision.remaining == 40

    async def test_external_plan_id_is_resolved(self, evaluator, mock_store):
        mock_store.get_subscription.return_value = _subscription("plan_pro")

        decision = await evaluator.evaluate("user-1", ActionKind.COMPARISON)

        assert decision.limit == 50

    @pytest.mark.parametrize(
        "status",
        [SubscriptionStatus.CANCELLED, SubscriptionStatus.EXPIRED, SubscriptionStatus.PAST_DUE],
    )
    async def test_inactive_subscription_falls_back_to_default(self, evaluator, mock_store, status):
        mock_store.get_subscription.return_value = _subscription("business", status)

        decision = await evaluator.evaluate("user-1", ActionKind.ANALYSIS)

        assert decision.limit == 5

    async def test_unknown_stored_plan_uses_default(self, evaluator, mock_store):
        mock_store.get_subscription.return_value = _subscription("P-RETIRED")

        decision = await evaluator.evaluate("user-1", ActionKind.ANALYSIS)

        assert decision.limit == 5

    async def test_projects_use_live_count(self, evaluator, mock_store):
        mock_store.get_subscription.return_value = _subscription("starter")
        mock_store.get_project_count.return_value = 3

        decision = await evaluator.evaluate("user-1", ActionKind.PROJECT)

        assert decision.can_proceed is False
        assert decision.limit == 3
        mock_store.get_monthly_usage.assert_not_awaited()


class TestUnlimited:
    async def test_owner_is_unlimited_without_reading_the_store(self, evaluator, mock_store):
        decision = await evaluator.evaluate("owner-0001", ActionKind.ANALYSIS)

        assert decision.can_proceed is True
        assert decision.limit is None
        assert decision.remaining is None
        mock_store.get_subscription.assert_not_awaited()

    async def test_unlimited_plan_skips_usage_read(self, mock_store):
        plans = {
            **PLANS,
            "agency": {
                "name": "Agency",
                "price_monthly": 200,
                "limits": {"analyses_per_month": -1, "comparisons_per_month": -1, "projects": -1},
            },
        }
        evaluator = AllowanceEvaluator(mock_store, PlanCatalog(plans))
        mock_store.get_subscription.return_value = _subscription("agency")

        decision = await evaluator.evaluate("user-1", ActionKind.ANALYSIS)

        assert decision.can_proceed is True
        assert decision.limit is None
        mock_store.get_monthly_usage.assert_not_awaited()


class TestDegradedMode:
    async def test_subscription_read_failure_fails_open(self, evaluator, mock_store):
        mock_store.get_subscription.side_effect = StoreUnavailableError("get_subscription")

        decision = await evaluator.evaluate("user-1", ActionKind.ANALYSIS)

        assert decision.can_proceed is True
        assert decision.degraded is True
        assert decision.limit == 999
        assert evaluator.degraded_policy.activations == 1

    async def test_usage_read_failure_fails_open(self, evaluator, mock_store):
        mock_store.get_monthly_usage.side_effect = StoreUnavailableError("get_monthly_usage")

        decision = await evaluator.evaluate("user-1", ActionKind.COMPARISON)

        assert decision.degraded is True
        assert decision.remaining == 999

    async def test_other_errors_propagate(self, evaluator, mock_store):
        mock_store.get_subscription.side_effect = RuntimeError("bug")

        with pytest.raises(RuntimeError):
            await evaluator.evaluate("user-1", ActionKind.ANALYSIS)


class TestGuests:
    async def test_fresh_guest(self, evaluator, mock_store):
        guest = GuestAllowance(MemoryGuestStorage(), cap=2, clock=lambda: NOW)

        decision = await evaluator.evaluate(None, ActionKind.ANALYSIS, guest=guest)

        assert decision.can_proceed is True
        assert decision.limit == 2
        assert decision.remaining == 2
        mock_store.get_subscription.assert_not_awaited()

    async def test_guest_at_cap(self, evaluator):
        guest = GuestAllowance(MemoryGuestStorage({"2026-10": 2}), cap=2, clock=lambda: NOW)

        decision = await evaluator.evaluate(None, ActionKind.ANALYSIS, guest=guest)

        assert decision.can_proceed is False
        assert decision.reason == QUOTA_EXCEEDED

    async def test_previous_month_does_not_count(self, evaluator):
        guest = GuestAllowance(MemoryGuestStorage({"2026-09": 2}), cap=2, clock=lambda: NOW)

        decision = await evaluator.evaluate(None, ActionKind.ANALYSIS, guest=guest)

        assert decision.can_proceed is True

    async def test_guest_requires_allowance(self, evaluator):
        with pytest.raises(ValueError):
            await evaluator.evaluate(None, ActionKind.ANALYSIS)


class TestDenialMessages:
    def test_messages(self):
        assert denial_message(ActionKind.ANALYSIS) == LIMIT_REACHED_MESSAGE
        assert denial_message(ActionKind.COMPARISON) == LIMIT_REACHED_MESSAGE
        assert denial_message(ActionKind.PROJECT) == PROJECT_LIMIT_MESSAGE
        assert denial_message(ActionKind.ANALYSIS, guest=True) == GUEST_LIMIT_MESSAGE
