"""
PayPal webhook envelope parsing.

Turns the loosely-typed JSON PayPal posts into one of three event types so
the ingestion service never touches raw dictionaries.
"""

import logging
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any, Optional, Union

from core.domain.subscription import SubscriptionStatus
from core.errors import MalformedEventError

logger = logging.getLogger(__name__)

_PREFIX = "BILLING."

ACTIVATED = "SUBSCRIPTION.ACTIVATED"

# Normalized event type (without the BILLING. prefix) -> resulting status
STATUS_BY_EVENT_TYPE: dict[str, SubscriptionStatus] = {
    ACTIVATED: SubscriptionStatus.ACTIVE,
    "SUBSCRIPTION.CANCELLED": SubscriptionStatus.CANCELLED,
    "SUBSCRIPTION.EXPIRED": SubscriptionStatus.EXPIRED,
    "SUBSCRIPTION.PAYMENT.FAILED": SubscriptionStatus.PAST_DUE,
    "SUBSCRIPTION.PAYMENT.COMPLETED": SubscriptionStatus.ACTIVE,
}


def normalize_event_type(event_type: str) -> str:
    """``BILLING.SUBSCRIPTION.ACTIVATED`` and ``SUBSCRIPTION.ACTIVATED`` are the same event."""
    event_type = event_type.strip().upper()
    if event_type.startswith(_PREFIX):
        return event_type[len(_PREFIX):]
    return event_type


def _parse_timestamp(value: Any) -> Optional[datetime]:
    if not isinstance(value, str) or not value:
        return None
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        logger.warning("Unparseable webhook create_time %r; using receipt time", value)
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=UTC)
    return parsed.astimezone(UTC)


@dataclass(frozen=True)
class SubscriptionActivated:
    """A subscription became active and must be attributed to a user."""

    event_type: str
    external_subscription_id: str
    user_id: Optional[str]
    external_plan_id: Optional[str]
    event_at: datetime
    last_payment_id: Optional[str] = None
    event_id: Optional[str] = None

    @property
    def status(self) -> SubscriptionStatus:
        return SubscriptionStatus.ACTIVE


@dataclass(frozen=True)
class SubscriptionStatusChanged:
    """Cancellation, expiry or a payment outcome on an existing subscription."""

    event_type: str
    external_subscription_id: str
    status: SubscriptionStatus
    event_at: datetime
    user_id: Optional[str] = None
    external_plan_id: Optional[str] = None
    event_id: Optional[str] = None


@dataclass(frozen=True)
class UnhandledEvent:
    """Any event type the system does not act on."""

    event_type: str
    event_id: Optional[str] = None
    raw: dict[str, Any] = field(default_factory=dict, compare=False, repr=False)


PayPalEvent = Union[SubscriptionActivated, SubscriptionStatusChanged, UnhandledEvent]


def parse_webhook_event(payload: Any, received_at: Optional[datetime] = None) -> PayPalEvent:
    """
    Parse a PayPal webhook envelope.

    Args:
        payload: Decoded JSON body
        received_at: Receipt time, used when the envelope has no ``create_time``

    Returns:
        The typed event

    Raises:
        MalformedEventError: If the envelope lacks an event type, or a
            handled event lacks ``resource.id``
    """
    if not isinstance(payload, dict):
        raise MalformedEventError("Webhook body must be a JSON object")

    raw_type = payload.get("event_type") or payload.get("eventType")
    if not raw_type or not isinstance(raw_type, str):
        raise MalformedEventError("Missing event_type")

    event_type = normalize_event_type(raw_type)
    event_id = payload.get("id")

    status = STATUS_BY_EVENT_TYPE.get(event_type)
    if status is None:
        return UnhandledEvent(event_type=raw_type, event_id=event_id, raw=payload)

    resource = payload.get("resource")
    if not isinstance(resource, dict) or not resource.get("id"):
        raise MalformedEventError("Missing resource.id")

    external_id = str(resource["id"])
    user_id = resource.get("custom_id") or None
    plan_id = resource.get("plan_id") or None
    event_at = (
        _parse_timestamp(payload.get("create_time"))
        or received_at
        or datetime.now(UTC)
    )

    if event_type == ACTIVATED:
        last_payment = (resource.get("billing_info") or {}).get("last_payment") or {}
        return SubscriptionActivated(
            event_type=raw_type,
            external_subscription_id=external_id,
            user_id=user_id,
            external_plan_id=plan_id,
            event_at=event_at,
            last_payment_id=last_payment.get("payment_id"),
            event_id=event_id,
        )

    return SubscriptionStatusChanged(
        event_type=raw_type,
        external_subscription_id=external_id,
        status=status,
        event_at=event_at,
        user_id=user_id,
        external_plan_id=plan_id,
        event_id=event_id,
    )
