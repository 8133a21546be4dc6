"""
Subscription database model.
"""

from datetime import datetime
from typing import Optional
from uuid import uuid4

from sqlalchemy import DateTime, Index, String
from sqlalchemy.orm import Mapped, mapped_column

from .base import Base, TimestampMixin


class SubscriptionRecord(Base, TimestampMixin):
    """
    A user's billing relationship with the payment provider.

    Keyed by the provider's subscription id. Rows are soft-deleted when a
    newer subscription of the same user is activated, never hard-deleted.
    """

    __tablename__ = "subscriptions"

    id: Mapped[str] = mapped_column(
        String(36),
        primary_key=True,
        default=lambda: str(uuid4()),
    )

    external_subscription_id: Mapped[str] = mapped_column(
        String(255), unique=True, nullable=False
    )
    # Owner id from the auth provider; written once on insert
    user_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    plan_id: Mapped[str] = mapped_column(String(50), nullable=False)
    status: Mapped[str] = mapped_column(String(20), nullable=False)

    # Provider timestamp of the newest applied event
    last_event_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    last_event_type: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)

    # Soft delete
    deleted_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    __table_args__ = (
        Index("ix_subscriptions_user_live", "user_id", "deleted_at"),
    )

    def __repr__(self) -> str:
        return (
            f"<SubscriptionRecord(external_id={self.external_subscription_id}, "
            f"user_id={self.user_id}, plan={self.plan_id}, status={self.status})>"
        )
