"""Repository interfaces for entitlement data access."""

from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any

from ..domain.subscription import ActionKind, Subscription, SubscriptionStatus


class EntitlementStore(ABC):
    """
    Abstract store for subscriptions and usage counters.

    Implementations raise ``StoreUnavailableError`` when the backing store
    cannot be reached or a call exceeds its timeout.
    """

    @abstractmethod
    async def upsert_subscription(
        self,
        external_subscription_id: str,
        user_id: str,
        plan_id: str,
        status: SubscriptionStatus,
        event_at: datetime,
        *,
        update_plan: bool = True,
        event_type: str | None = None,
    ) -> bool:
        """
        Insert or update the row keyed by ``external_subscription_id``.

        With ``update_plan`` the row becomes the user's only live row.
        Without it, a first sighting of a subscription id arrives
        soft-deleted when the user already has a live row.

        Returns True if the write applied, False if a newer event was
        already stored.
        """
        ...

    @abstractmethod
    async def update_subscription_status(
        self,
        external_subscription_id: str,
        status: SubscriptionStatus,
        event_at: datetime,
        *,
        event_type: str | None = None,
    ) -> bool:
        """Update status on an existing row. Returns False if no row applied."""
        ...

    @abstractmethod
    async def get_subscription(self, user_id: str) -> Subscription | None:
        """Get the user's live subscription row."""
        ...

    @abstractmethod
    async def get_subscription_by_external_id(
        self, external_subscription_id: str
    ) -> Subscription | None:
        """Get a subscription by its payment-provider id."""
        ...

    @abstractmethod
    async def get_monthly_usage(self, user_id: str, action: ActionKind, year_month: str) -> int:
        """Count analysis or comparison records created in the given month."""
        ...

    @abstractmethod
    async def get_project_count(self, user_id: str) -> int:
        """Count the user's live projects."""
        ...

    @abstractmethod
    async def increment_usage(
        self, user_id: str, action: ActionKind, details: dict[str, Any] | None = None
    ) -> str:
        """Record one usage row and return its id."""
        ...


class GuestUsageStorage(ABC):
    """Client-side key/value storage holding the guest usage counter."""

    @abstractmethod
    def load(self) -> dict[str, int]:
        """Return the month-keyed usage buckets."""
        ...

    @abstractmethod
    def save(self, buckets: dict[str, int]) -> None:
        """Persist the month-keyed usage buckets."""
        ...
