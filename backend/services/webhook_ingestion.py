"""
Subscription state ingestion.

Every path that changes a subscription (PayPal webhooks, the approval
callback, admin overrides and user cancellations) goes through this
service and ends in the store's idempotent upsert keyed by the external
subscription id.
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Optional

from adapters.payments.paypal_adapter import PayPalAdapter
from adapters.payments.paypal_events import (
    PayPalEvent,
    SubscriptionActivated,
    SubscriptionStatusChanged,
    parse_webhook_event,
)
from core.domain.subscription import SubscriptionStatus, utcnow
from core.errors import (
    PlanNotFoundError,
    SubscriptionNotFoundError,
    SubscriptionOwnershipError,
    UnattributableSubscriptionError,
)
from core.interfaces.repositories import EntitlementStore
from core.plans import PlanCatalog

logger = logging.getLogger(__name__)

ADMIN_OVERRIDE_PREFIX = "admin-override:"

NOTE_IGNORED = "ignored"
NOTE_NO_INTERNAL_SUBSCRIPTION = "no-internal-subscription"
NOTE_STALE_EVENT = "stale-event"


def admin_override_id(user_id: str) -> str:
    return f"{ADMIN_OVERRIDE_PREFIX}{user_id}"


@dataclass(frozen=True)
class IngestionResult:
    """What happened to one event."""

    event_type: str
    applied: bool
    external_subscription_id: Optional[str] = None
    user_id: Optional[str] = None
    plan_id: Optional[str] = None
    status: Optional[SubscriptionStatus] = None
    note: Optional[str] = None
    plan_resolved: bool = True

    def to_response(self) -> dict[str, Any]:
        body: dict[str, Any] = {"success": True}
        if self.note == NOTE_IGNORED:
            body["event"] = NOTE_IGNORED
        elif self.note:
            body["note"] = self.note
        if self.external_subscription_id:
            body["subscription_id"] = self.external_subscription_id
        return body


class SubscriptionIngestionService:
    """Applies billing events to the entitlement store."""

    def __init__(
        self,
        store: EntitlementStore,
        catalog: PlanCatalog,
        paypal: Optional[PayPalAdapter] = None,
    ):
        self.store = store
        self.catalog = catalog
        self.paypal = paypal

    async def ingest(self, payload: Any, received_at: Optional[datetime] = None) -> IngestionResult:
        """
        Parse and apply one PayPal webhook envelope.

        Raises:
            MalformedEventError: If required fields are missing
            UnattributableSubscriptionError: If an activation has no custom_id
            StoreUnavailableError: If the write could not be performed
        """
        event = parse_webhook_event(payload, received_at=received_at or utcnow())
        return await self.apply(event)

    async def apply(self, event: PayPalEvent) -> IngestionResult:
        if isinstance(event, SubscriptionActivated):
            return await self._apply_activation(event)
        if isinstance(event, SubscriptionStatusChanged):
            return await self._apply_status_change(event)

        logger.info("Ignoring PayPal event %s", event.event_type, extra={"event_type": event.event_type})
        return IngestionResult(event_type=event.event_type, applied=False, note=NOTE_IGNORED)

    async def _apply_activation(self, event: SubscriptionActivated) -> IngestionResult:
        log_extra = {
            "event_type": event.event_type,
            "external_subscription_id": event.external_subscription_id,
        }
        if not event.user_id:
            logger.error("Activation without custom_id; cannot attribute subscription", extra=log_extra)
            raise UnattributableSubscriptionError(event.external_subscription_id)

        resolution = self.catalog.resolve_or_default(event.external_plan_id)
        if not resolution.resolved:
            logger.warning(
                "Unknown PayPal plan id %r; activating on default plan %s",
                event.external_plan_id, resolution.plan.plan_id,
                extra={**log_extra, "user_id": event.user_id},
            )

        applied = await self.store.upsert_subscription(
            event.external_subscription_id,
            event.user_id,
            resolution.plan.plan_id,
            SubscriptionStatus.ACTIVE,
            event.event_at,
            update_plan=True,
            event_type=event.event_type,
        )
        return IngestionResult(
            event_type=event.event_type,
            applied=applied,
            external_subscription_id=event.external_subscription_id,
            user_id=event.user_id,
            plan_id=resolution.plan.plan_id,
            status=SubscriptionStatus.ACTIVE,
            note=None if applied else NOTE_STALE_EVENT,
            plan_resolved=resolution.resolved,
        )

    async def _apply_status_change(self, event: SubscriptionStatusChanged) -> IngestionResult:
        result_kwargs = {
            "event_type": event.event_type,
            "external_subscription_id": event.external_subscription_id,
            "user_id": event.user_id,
            "status": event.status,
        }

        if event.user_id:
            # Attributable: create the row if this is the first event we see
            resolution = self.catalog.resolve_or_default(event.external_plan_id)
            applied = await self.store.upsert_subscription(
                event.external_subscription_id,
                event.user_id,
                resolution.plan.plan_id,
                event.status,
                event.event_at,
                update_plan=False,
                event_type=event.event_type,
            )
            return IngestionResult(
                applied=applied, note=None if applied else NOTE_STALE_EVENT, **result_kwargs
            )

        applied = await self.store.update_subscription_status(
            event.external_subscription_id,
            event.status,
            event.event_at,
            event_type=event.event_type,
        )
        if applied:
            return IngestionResult(applied=True, **result_kwargs)

        existing = await self.store.get_subscription_by_external_id(event.external_subscription_id)
        if existing is None:
            logger.info(
                "Status event for unknown subscription; nothing to update",
                extra={
                    "event_type": event.event_type,
                    "external_subscription_id": event.external_subscription_id,
                },
            )
            return IngestionResult(applied=False, note=NOTE_NO_INTERNAL_SUBSCRIPTION, **result_kwargs)
        return IngestionResult(applied=False, note=NOTE_STALE_EVENT, **result_kwargs)

    async def confirm_approval(self, user_id: str, external_subscription_id: str) -> IngestionResult:
        """
        Apply a subscription the buyer just approved, without waiting for the webhook.

        Raises:
            SubscriptionOwnershipError: If PayPal attributes it to someone else
            PayPalError: If PayPal cannot be queried
        """
        if self.paypal is None:
            raise RuntimeError("PayPal adapter not configured")

        remote = await self.paypal.get_subscription(external_subscription_id)
        if remote.custom_id and remote.custom_id != user_id:
            logger.warning(
                "Approval callback for a subscription owned by another user",
                extra={"user_id": user_id, "external_subscription_id": external_subscription_id},
            )
            raise SubscriptionOwnershipError("Subscription does not belong to the current user")

        if not remote.is_active:
            logger.info(
                "Approved subscription not active yet (%s); waiting for webhook",
                remote.status,
                extra={"user_id": user_id, "external_subscription_id": external_subscription_id},
            )
            return IngestionResult(
                event_type="APPROVAL",
                applied=False,
                external_subscription_id=external_subscription_id,
                user_id=user_id,
                note=f"paypal-status-{remote.status.lower() or 'unknown'}",
            )

        event = SubscriptionActivated(
            event_type="APPROVAL",
            external_subscription_id=remote.id or external_subscription_id,
            user_id=user_id,
            external_plan_id=remote.plan_id,
            event_at=remote.status_update_time or remote.start_time or utcnow(),
            last_payment_id=remote.last_payment_id,
        )
        return await self._apply_activation(event)

    async def apply_admin_override(
        self,
        user_id: str,
        plan_id: str,
        status: SubscriptionStatus = SubscriptionStatus.ACTIVE,
    ) -> IngestionResult:
        """
        Set a user's plan directly, bypassing the payment provider.

        Raises:
            PlanNotFoundError: If ``plan_id`` is not in the catalog
        """
        plan = self.catalog.resolve(plan_id)
        if plan is None:
            raise PlanNotFoundError(f"Unknown plan: {plan_id}")

        external_id = admin_override_id(user_id)
        status = SubscriptionStatus(status)
        applied = await self.store.upsert_subscription(
            external_id,
            user_id,
            plan.plan_id,
            status,
            utcnow(),
            update_plan=True,
            event_type="ADMIN.OVERRIDE",
        )
        logger.info(
            "Admin override set %s/%s",
            plan.plan_id, status.value,
            extra={"user_id": user_id, "plan_id": plan.plan_id, "external_subscription_id": external_id},
        )
        return IngestionResult(
            event_type="ADMIN.OVERRIDE",
            applied=applied,
            external_subscription_id=external_id,
            user_id=user_id,
            plan_id=plan.plan_id,
            status=status,
        )

    async def cancel_for_user(self, user_id: str, reason: str = "Cancelled by user") -> IngestionResult:
        """
        Cancel the caller's live subscription at PayPal, then locally.

        Raises:
            SubscriptionNotFoundError: If there is no active subscription
            PayPalError: If PayPal rejects the cancellation
        """
        subscription = await self.store.get_subscription(user_id)
        if subscription is None or not subscription.is_active:
            raise SubscriptionNotFoundError("No active subscription to cancel")

        external_id = subscription.external_subscription_id
        if not external_id.startswith(ADMIN_OVERRIDE_PREFIX):
            if self.paypal is None:
                raise RuntimeError("PayPal adapter not configured")
            await self.paypal.cancel_subscription(external_id, reason=reason)

        applied = await self.store.update_subscription_status(
            external_id,
            SubscriptionStatus.CANCELLED,
            utcnow(),
            event_type="USER.CANCEL",
        )
        logger.info(
            "Subscription cancelled by user",
            extra={"user_id": user_id, "external_subscription_id": external_id},
        )
        return IngestionResult(
            event_type="USER.CANCEL",
            applied=applied,
            external_subscription_id=external_id,
            user_id=user_id,
            plan_id=subscription.plan_id,
            status=SubscriptionStatus.CANCELLED,
        )
