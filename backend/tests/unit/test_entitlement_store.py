"""
Unit tests for the SQLAlchemy entitlement store, against in-memory SQLite.
"""

import asyncio
from datetime import datetime, timezone

import pytest
from sqlalchemy import select
from sqlalchemy.exc import OperationalError

from core.domain.subscription import ActionKind, SubscriptionStatus, year_month
from core.errors import StoreUnavailableError
from infrastructure.database.models import (
    AnalysisRecord,
    ComparisonRecord,
    ProjectRecord,
    SubscriptionRecord,
)
from infrastructure.repositories.entitlement_store import SQLAlchemyEntitlementStore


async def _rows(session_maker, user_id=None):
    async with session_maker() as session:
        query = select(SubscriptionRecord)
        if user_id:
            query = query.where(SubscriptionRecord.user_id == user_id)
        return list((await session.execute(query)).scalars())


class TestUpsertSubscription:
    async def test_creates_row(self, store, event_time):
        applied = await store.upsert_subscription(
            "I-1", "user-1", "pro", SubscriptionStatus.ACTIVE, event_time(0),
            event_type="BILLING.SUBSCRIPTION.ACTIVATED",
        )

        assert applied is True
        sub = await store.get_subscription("user-1")
        assert sub.external_subscription_id == "I-1"
        assert sub.plan_id == "pro"
        assert sub.is_active
        assert sub.last_event_at == event_time(0)

    async def test_replaying_the_same_event_is_idempotent(self, store, session_maker, event_time):
        for _ in range(3):
            await store.upsert_subscription("I-1", "user-1", "pro", SubscriptionStatus.ACTIVE, event_time(0))

        rows = await _rows(session_maker)
        assert len(rows) == 1
        assert rows[0].status == "active"

    async def test_older_event_does_not_overwrite_newer(self, store, event_time):
        await store.upsert_subscription("I-1", "user-1", "pro", SubscriptionStatus.CANCELLED, event_time(10))

        applied = await store.upsert_subscription(
            "I-1", "user-1", "pro", SubscriptionStatus.ACTIVE, event_time(5)
        )

        assert applied is False
        sub = await store.get_subscription_by_external_id("I-1")
        assert sub.status == SubscriptionStatus.CANCELLED
        assert sub.last_event_at == event_time(10)

    async def test_user_id_is_never_rewritten(self, store, event_time):
        await store.upsert_subscription("I-1", "user-1", "pro", SubscriptionStatus.ACTIVE, event_time(0))
        await store.upsert_subscription("I-1", "intruder", "business", SubscriptionStatus.ACTIVE, event_time(1))

        sub = await store.get_subscription_by_external_id("I-1")
        assert sub.user_id == "user-1"
        assert sub.plan_id == "business"
        assert await store.get_subscription("intruder") is None

    async def test_status_only_upsert_keeps_plan(self, store, event_time):
        await store.upsert_subscription("I-1", "user-1", "pro", SubscriptionStatus.ACTIVE, event_time(0))

        await store.upsert_subscription(
            "I-1", "user-1", "free", SubscriptionStatus.PAST_DUE, event_time(1), update_plan=False
        )

        sub = await store.get_subscription("user-1")
        assert sub.plan_id == "pro"
        assert sub.status == SubscriptionStatus.PAST_DUE

    async def test_status_only_insert_does_not_shadow_live_row(self, store, session_maker, event_time):
        await store.upsert_subscription("I-A", "user-1", "pro", SubscriptionStatus.ACTIVE, event_time(0))

        applied = await store.upsert_subscription(
            "I-B", "user-1", "pro", SubscriptionStatus.PAST_DUE, event_time(5), update_plan=False
        )

        assert applied is True
        rows = {r.external_subscription_id: r for r in await _rows(session_maker, "user-1")}
        assert rows["I-A"].deleted_at is None
        assert rows["I-B"].deleted_at is not None
        assert rows["I-B"].status == "past_due"

        sub = await store.get_subscription("user-1")
        assert sub.external_subscription_id == "I-A"
        assert sub.is_active

    async def test_status_only_insert_for_fresh_user_is_live(self, store, event_time):
        await store.upsert_subscription(
            "I-B", "user-1", "pro", SubscriptionStatus.CANCELLED, event_time(0), update_plan=False
        )

        sub = await store.get_subscription("user-1")
        assert sub.external_subscription_id == "I-B"
        assert sub.status == SubscriptionStatus.CANCELLED

    async def test_activation_soft_deletes_other_rows(self, store, session_maker, event_time):
        await store.upsert_subscription("I-OLD", "user-1", "starter", SubscriptionStatus.ACTIVE, event_time(0))
        await store.upsert_subscription("I-NEW", "user-1", "pro", SubscriptionStatus.ACTIVE, event_time(5))

        rows = {r.external_subscription_id: r for r in await _rows(session_maker, "user-1")}
        assert rows["I-OLD"].deleted_at is not None
        assert rows["I-NEW"].deleted_at is None

        sub = await store.get_subscription("user-1")
        assert sub.external_subscription_id == "I-NEW"

    async def test_activation_does_not_touch_other_users(self, store, event_time):
        await store.upsert_subscription("I-A", "user-a", "starter", SubscriptionStatus.ACTIVE, event_time(0))
        await store.upsert_subscription("I-B", "user-b", "pro", SubscriptionStatus.ACTIVE, event_time(1))

        assert (await store.get_subscription("user-a")).external_subscription_id == "I-A"
        assert (await store.get_subscription("user-b")).external_subscription_id == "I-B"

    async def test_reactivating_a_replaced_subscription_revives_it(self, store, event_time):
        await store.upsert_subscription("I-1", "user-1", "starter", SubscriptionStatus.ACTIVE, event_time(0))
        await store.upsert_subscription("I-2", "user-1", "pro", SubscriptionStatus.ACTIVE, event_time(1))
        await store.upsert_subscription("I-1", "user-1", "business", SubscriptionStatus.ACTIVE, event_time(2))

        sub = await store.get_subscription("user-1")
        assert sub.external_subscription_id == "I-1"
        assert sub.plan_id == "business"


class TestUpdateSubscriptionStatus:
    async def test_updates_existing_row(self, store, event_time):
        await store.upsert_subscription("I-1", "user-1", "pro", SubscriptionStatus.ACTIVE, event_time(0))

        applied = await store.update_subscription_status(
            "I-1", SubscriptionStatus.CANCELLED, event_time(1), event_type="BILLING.SUBSCRIPTION.CANCELLED"
        )

        assert applied is True
        sub = await store.get_subscription("user-1")
        assert sub.status == SubscriptionStatus.CANCELLED
        assert sub.plan_id == "pro"

    async def test_unknown_subscription_is_not_created(self, store, session_maker, event_time):
        applied = await store.update_subscription_status("I-404", SubscriptionStatus.EXPIRED, event_time(0))

        assert applied is False
        assert await _rows(session_maker) == []

    async def test_stale_status_is_ignored(self, store, event_time):
        await store.upsert_subscription("I-1", "user-1", "pro", SubscriptionStatus.ACTIVE, event_time(10))

        applied = await store.update_subscription_status("I-1", SubscriptionStatus.EXPIRED, event_time(3))

        assert applied is False
        assert (await store.get_subscription("user-1")).is_active

    async def test_naive_event_time_is_treated_as_utc(self, store):
        aware = datetime(2026, 10, 1, 9, 0, tzinfo=timezone.utc)
        await store.upsert_subscription("I-1", "user-1", "pro", SubscriptionStatus.ACTIVE, aware)

        applied = await store.update_subscription_status(
            "I-1", SubscriptionStatus.CANCELLED, datetime(2026, 10, 1, 9, 30)
        )

        assert applied is True


class TestGetSubscription:
    async def test_none_for_unknown_user(self, store):
        assert await store.get_subscription("nobody") is None

    async def test_by_external_id_includes_soft_deleted(self, store, event_time):
        await store.upsert_subscription("I-OLD", "user-1", "starter", SubscriptionStatus.ACTIVE, event_time(0))
        await store.upsert_subscription("I-NEW", "user-1", "pro", SubscriptionStatus.ACTIVE, event_time(1))

        old = await store.get_subscription_by_external_id("I-OLD")
        assert old is not None
        assert old.plan_id == "starter"


class TestUsageCounts:
    async def test_monthly_usage_counts_only_that_month(self, store, db_session):
        db_session.add_all([
            AnalysisRecord(user_id="user-1", created_at=datetime(2026, 9, 30, 23, 59, tzinfo=timezone.utc)),
            AnalysisRecord(user_id="user-1", created_at=datetime(2026, 10, 1, 0, 0, tzinfo=timezone.utc)),
            AnalysisRecord(user_id="user-1", created_at=datetime(2026, 10, 31, 23, 59, 59, tzinfo=timezone.utc)),
            AnalysisRecord(user_id="user-2", created_at=datetime(2026, 10, 15, tzinfo=timezone.utc)),
            ComparisonRecord(user_id="user-1", created_at=datetime(2026, 10, 15, tzinfo=timezone.utc)),
        ])
        await db_session.commit()

        assert await store.get_monthly_usage("user-1", ActionKind.ANALYSIS, "2026-10") == 2
        assert await store.get_monthly_usage("user-1", ActionKind.ANALYSIS, "2026-09") == 1
        assert await store.get_monthly_usage("user-1", ActionKind.COMPARISON, "2026-10") == 1
        assert await store.get_monthly_usage("user-3", ActionKind.COMPARISON, "2026-10") == 0

    async def test_projects_are_not_monthly(self, store):
        with pytest.raises(ValueError):
            await store.get_monthly_usage("user-1", ActionKind.PROJECT, "2026-10")

    async def test_project_count_excludes_deleted(self, store, db_session):
        db_session.add_all([
            ProjectRecord(user_id="user-1", name="Blog"),
            ProjectRecord(user_id="user-1", name="Shop"),
            ProjectRecord(user_id="user-1", name="Old", deleted_at=datetime(2026, 1, 1, tzinfo=timezone.utc)),
            ProjectRecord(user_id="user-2", name="Other"),
        ])
        await db_session.commit()

        assert await store.get_project_count("user-1") == 2

    async def test_increment_usage_records_an_analysis(self, store, session_maker):
        record_id = await store.increment_usage(
            "user-1",
            ActionKind.ANALYSIS,
            {"keyword": "seo audit", "url": "https://example.com/", "result": {"score": 82}},
        )

        async with session_maker() as session:
            record = await session.get(AnalysisRecord, record_id)
        assert record.keyword == "seo audit"
        assert record.result == {"score": 82}

        assert await store.get_monthly_usage("user-1", ActionKind.ANALYSIS, year_month()) == 1

    async def test_increment_usage_creates_project(self, store):
        await store.increment_usage("user-1", ActionKind.PROJECT, {"name": "Blog"})
        assert await store.get_project_count("user-1") == 1


class _SlowSession:
    async def __aenter__(self):
        await asyncio.sleep(1)

    async def __aexit__(self, *exc):
        return False


class _BrokenSession:
    async def __aenter__(self):
        raise OperationalError("SELECT 1", {}, ConnectionRefusedError("db down"))

    async def __aexit__(self, *exc):
        return False


class TestStoreUnavailable:
    async def test_timeout_raises_store_unavailable(self):
        store = SQLAlchemyEntitlementStore(lambda: _SlowSession(), timeout=0.01)

        with pytest.raises(StoreUnavailableError) as exc_info:
            await store.get_subscription("user-1")
        assert exc_info.value.operation == "get_subscription"

    async def test_driver_error_raises_store_unavailable(self):
        store = SQLAlchemyEntitlementStore(lambda: _BrokenSession(), timeout=1.0)

        with pytest.raises(StoreUnavailableError):
            await store.get_project_count("user-1")
