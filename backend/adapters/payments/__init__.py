"""Payment adapters for billing and subscription management."""

from .paypal_adapter import (
    PayPalAdapter,
    PayPalAPIError,
    PayPalAuthError,
    PayPalError,
    PayPalSubscription,
    PayPalWebhookError,
    create_paypal_adapter,
)
from .paypal_events import (
    PayPalEvent,
    SubscriptionActivated,
    SubscriptionStatusChanged,
    UnhandledEvent,
    normalize_event_type,
    parse_webhook_event,
)

__all__ = [
    "PayPalAdapter",
    "PayPalSubscription",
    "PayPalError",
    "PayPalAPIError",
    "PayPalWebhookError",
    "PayPalAuthError",
    "create_paypal_adapter",
    "PayPalEvent",
    "SubscriptionActivated",
    "SubscriptionStatusChanged",
    "UnhandledEvent",
    "normalize_event_type",
    "parse_webhook_event",
]
