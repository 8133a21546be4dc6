"""
SQLAlchemy implementation of the entitlement store.

Every public call opens its own session, runs inside one transaction and is
bounded by ``timeout`` seconds. Driver errors and timeouts surface as
StoreUnavailableError so callers can tell "store down" from "no data".
"""

import asyncio
import logging
from datetime import UTC, datetime
from typing import Any, Awaitable, Callable, Optional, TypeVar
from uuid import uuid4

from sqlalchemy import func, or_, select, update
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from core.domain.subscription import (
    ActionKind,
    Subscription,
    SubscriptionStatus,
    month_bounds,
    utcnow,
)
from core.errors import StoreUnavailableError
from core.interfaces.repositories import EntitlementStore
from infrastructure.database.models import (
    AnalysisRecord,
    ComparisonRecord,
    ProjectRecord,
    SubscriptionRecord,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")

_MONTHLY_MODELS = {
    ActionKind.ANALYSIS: AnalysisRecord,
    ActionKind.COMPARISON: ComparisonRecord,
}


def _as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """SQLite hands back naive datetimes; everything stored is UTC."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


def _to_domain(row: SubscriptionRecord) -> Subscription:
    return Subscription(
        user_id=row.user_id,
        external_subscription_id=row.external_subscription_id,
        plan_id=row.plan_id,
        status=SubscriptionStatus(row.status),
        last_event_at=_as_utc(row.last_event_at),
    )


class SQLAlchemyEntitlementStore(EntitlementStore):
    """Entitlement store backed by PostgreSQL (production) or SQLite (tests)."""

    def __init__(
        self,
        session_maker: async_sessionmaker[AsyncSession],
        timeout: float = 3.0,
    ):
        self._session_maker = session_maker
        self._timeout = timeout

    async def _run(self, operation: str, work: Callable[[AsyncSession], Awaitable[T]]) -> T:
        async def _transaction() -> T:
            async with self._session_maker() as session:
                async with session.begin():
                    return await work(session)

        try:
            return await asyncio.wait_for(_transaction(), timeout=self._timeout)
        except asyncio.TimeoutError as e:
            logger.warning("Entitlement store timed out after %.1fs during %s", self._timeout, operation)
            raise StoreUnavailableError(operation, e) from e
        except (SQLAlchemyError, OSError) as e:
            logger.warning("Entitlement store error during %s: %s", operation, type(e).__name__)
            raise StoreUnavailableError(operation, e) from e

    @staticmethod
    def _insert(session: AsyncSession):
        if session.bind.dialect.name == "postgresql":
            return pg_insert
        return sqlite_insert

    @staticmethod
    async def _would_shadow_live_row(
        session: AsyncSession, external_subscription_id: str, user_id: str
    ) -> bool:
        """True when inserting this id would give the user a second live row."""
        known = await session.scalar(
            select(SubscriptionRecord.id).where(
                SubscriptionRecord.external_subscription_id == external_subscription_id
            )
        )
        if known is not None:
            return False
        other = await session.scalar(
            select(SubscriptionRecord.id)
            .where(
                SubscriptionRecord.user_id == user_id,
                SubscriptionRecord.deleted_at.is_(None),
            )
            .limit(1)
        )
        return other is not None

    async def upsert_subscription(
        self,
        external_subscription_id: str,
        user_id: str,
        plan_id: str,
        status: SubscriptionStatus,
        event_at: datetime,
        *,
        update_plan: bool = True,
        event_type: Optional[str] = None,
    ) -> bool:
        event_at = _as_utc(event_at)
        status = SubscriptionStatus(status)

        async def work(session: AsyncSession) -> bool:
            values: dict[str, Any] = {
                "id": str(uuid4()),
                "external_subscription_id": external_subscription_id,
                "user_id": user_id,
                "plan_id": plan_id,
                "status": status.value,
                "last_event_at": event_at,
                "last_event_type": event_type,
            }
            # Status-only events never displace the live row
            if not update_plan and await self._would_shadow_live_row(
                session, external_subscription_id, user_id
            ):
                values["deleted_at"] = utcnow()

            insert = self._insert(session)
            stmt = insert(SubscriptionRecord).values(**values)

            # user_id is deliberately absent: ownership is fixed at insert
            set_: dict[str, Any] = {
                "status": stmt.excluded.status,
                "last_event_at": stmt.excluded.last_event_at,
                "last_event_type": stmt.excluded.last_event_type,
                "updated_at": func.now(),
            }
            if update_plan:
                # Activations and admin overrides take over the user's live row
                set_["plan_id"] = stmt.excluded.plan_id
                set_["deleted_at"] = None

            stmt = stmt.on_conflict_do_update(
                index_elements=["external_subscription_id"],
                set_=set_,
                where=or_(
                    SubscriptionRecord.last_event_at.is_(None),
                    SubscriptionRecord.last_event_at <= stmt.excluded.last_event_at,
                ),
            ).returning(SubscriptionRecord.user_id)

            row = (await session.execute(stmt)).first()
            if row is None:
                return False

            if update_plan:
                # Keep a single live row per user
                await session.execute(
                    update(SubscriptionRecord)
                    .where(
                        SubscriptionRecord.user_id == row.user_id,
                        SubscriptionRecord.external_subscription_id != external_subscription_id,
                        SubscriptionRecord.deleted_at.is_(None),
                    )
                    .values(deleted_at=utcnow())
                )
            return True

        applied = await self._run("upsert_subscription", work)
        logger.info(
            "Subscription upsert %s",
            "applied" if applied else "skipped (stale event)",
            extra={
                "external_subscription_id": external_subscription_id,
                "user_id": user_id,
                "plan_id": plan_id,
                "event_type": event_type,
            },
        )
        return applied

    async def update_subscription_status(
        self,
        external_subscription_id: str,
        status: SubscriptionStatus,
        event_at: datetime,
        *,
        event_type: Optional[str] = None,
    ) -> bool:
        event_at = _as_utc(event_at)
        status = SubscriptionStatus(status)

        async def work(session: AsyncSession) -> bool:
            result = await session.execute(
                update(SubscriptionRecord)
                .where(
                    SubscriptionRecord.external_subscription_id == external_subscription_id,
                    or_(
                        SubscriptionRecord.last_event_at.is_(None),
                        SubscriptionRecord.last_event_at <= event_at,
                    ),
                )
                .values(
                    status=status.value,
                    last_event_at=event_at,
                    last_event_type=event_type,
                )
            )
            return result.rowcount > 0

        return await self._run("update_subscription_status", work)

    async def get_subscription(self, user_id: str) -> Optional[Subscription]:
        async def work(session: AsyncSession) -> Optional[Subscription]:
            result = await session.execute(
                select(SubscriptionRecord)
                .where(
                    SubscriptionRecord.user_id == user_id,
                    SubscriptionRecord.deleted_at.is_(None),
                )
                .order_by(
                    SubscriptionRecord.last_event_at.desc().nulls_last(),
                    SubscriptionRecord.updated_at.desc(),
                )
                .limit(1)
            )
            row = result.scalar_one_or_none()
            return _to_domain(row) if row else None

        return await self._run("get_subscription", work)

    async def get_subscription_by_external_id(
        self, external_subscription_id: str
    ) -> Optional[Subscription]:
        async def work(session: AsyncSession) -> Optional[Subscription]:
            result = await session.execute(
                select(SubscriptionRecord).where(
                    SubscriptionRecord.external_subscription_id == external_subscription_id
                )
            )
            row = result.scalar_one_or_none()
            return _to_domain(row) if row else None

        return await self._run("get_subscription_by_external_id", work)

    async def get_monthly_usage(self, user_id: str, action: ActionKind, year_month: str) -> int:
        model = _MONTHLY_MODELS.get(ActionKind(action))
        if model is None:
            raise ValueError(f"{action} is not a monthly-metered action")
        bounds = month_bounds(year_month)

        async def work(session: AsyncSession) -> int:
            result = await session.execute(
                select(func.count())
                .select_from(model)
                .where(
                    model.user_id == user_id,
                    model.created_at >= bounds.start,
                    model.created_at <= bounds.end,
                )
            )
            return result.scalar_one()

        return await self._run("get_monthly_usage", work)

    async def get_project_count(self, user_id: str) -> int:
        async def work(session: AsyncSession) -> int:
            result = await session.execute(
                select(func.count())
                .select_from(ProjectRecord)
                .where(
                    ProjectRecord.user_id == user_id,
                    ProjectRecord.deleted_at.is_(None),
                )
            )
            return result.scalar_one()

        return await self._run("get_project_count", work)

    async def increment_usage(
        self, user_id: str, action: ActionKind, details: Optional[dict[str, Any]] = None
    ) -> str:
        details = details or {}
        action = ActionKind(action)

        if action == ActionKind.ANALYSIS:
            record = AnalysisRecord(
                user_id=user_id,
                keyword=details.get("keyword"),
                url=details.get("url"),
                project_id=details.get("project_id"),
                result=details.get("result"),
            )
        elif action == ActionKind.COMPARISON:
            record = ComparisonRecord(
                user_id=user_id,
                keyword=details.get("keyword"),
                user_url=details.get("user_url"),
                competitor_url=details.get("competitor_url"),
                result=details.get("result"),
            )
        else:
            record = ProjectRecord(
                user_id=user_id,
                name=details.get("name") or "Untitled project",
                description=details.get("description"),
            )
        record.id = str(uuid4())
        if action != ActionKind.PROJECT:
            record.created_at = utcnow()

        async def work(session: AsyncSession) -> str:
            session.add(record)
            await session.flush()
            return record.id

        record_id = await self._run("increment_usage", work)
        logger.debug("Recorded %s usage %s", action.value, record_id, extra={"user_id": user_id})
        return record_id
