"""
PayPal REST adapter for subscription billing.

Covers the calls the entitlement backend needs: OAuth2 client-credentials
tokens, subscription creation/lookup/cancellation, and webhook signature
verification.
"""

import logging
import time
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Mapping

import httpx

from infrastructure.config.settings import settings

logger = logging.getLogger(__name__)


# Custom Exceptions
class PayPalError(Exception):
    """Base exception for PayPal adapter errors."""

    pass


class PayPalAPIError(PayPalError):
    """Raised when the PayPal API returns an error."""

    def __init__(self, message: str, status_code: int | None = None):
        self.status_code = status_code
        super().__init__(message)


class PayPalWebhookError(PayPalError):
    """Raised when webhook verification cannot be performed."""

    pass


class PayPalAuthError(PayPalError):
    """Raised when credentials are missing or rejected."""

    pass


def _parse_time(value: str | None) -> datetime | None:
    if not value:
        return None
    return datetime.fromisoformat(value.replace("Z", "+00:00"))


@dataclass
class PayPalSubscription:
    """PayPal subscription information."""

    id: str
    status: str  # APPROVAL_PENDING, APPROVED, ACTIVE, SUSPENDED, CANCELLED, EXPIRED
    plan_id: str | None
    custom_id: str | None
    start_time: datetime | None
    status_update_time: datetime | None
    last_payment_id: str | None
    approve_url: str | None = None

    @classmethod
    def from_api_response(cls, data: dict[str, Any]) -> "PayPalSubscription":
        """Create subscription from API response data."""
        billing_info = data.get("billing_info") or {}
        last_payment = billing_info.get("last_payment") or {}
        approve_url = next(
            (link.get("href") for link in data.get("links", []) if link.get("rel") == "approve"),
            None,
        )
        return cls(
            id=data.get("id", ""),
            status=data.get("status", ""),
            plan_id=data.get("plan_id"),
            custom_id=data.get("custom_id"),
            start_time=_parse_time(data.get("start_time")),
            status_update_time=_parse_time(data.get("status_update_time")),
            last_payment_id=last_payment.get("payment_id"),
            approve_url=approve_url,
        )

    @property
    def is_active(self) -> bool:
        return self.status == "ACTIVE"


# Headers PayPal sends with every webhook delivery
WEBHOOK_HEADERS = {
    "auth_algo": "paypal-auth-algo",
    "cert_url": "paypal-cert-url",
    "transmission_id": "paypal-transmission-id",
    "transmission_sig": "paypal-transmission-sig",
    "transmission_time": "paypal-transmission-time",
}


class PayPalAdapter:
    """
    PayPal API adapter.

    One short-lived httpx client per request; the OAuth token is cached
    until shortly before it expires.
    """

    SANDBOX_BASE_URL = "https://api-m.sandbox.paypal.com"
    LIVE_BASE_URL = "https://api-m.paypal.com"

    # Refresh the token this many seconds before PayPal expires it
    TOKEN_EXPIRY_MARGIN = 60

    def __init__(
        self,
        client_id: str | None = None,
        client_secret: str | None = None,
        webhook_id: str | None = None,
        base_url: str | None = None,
        timeout: float | None = None,
    ):
        """
        Initialize PayPal adapter.

        Args:
            client_id: REST app client id (defaults to settings)
            client_secret: REST app secret (defaults to settings)
            webhook_id: Webhook id used for signature verification (defaults to settings)
            base_url: API base URL (defaults to sandbox/live per settings)
            timeout: Request timeout in seconds
        """
        self.client_id = client_id or settings.paypal_client_id
        self.client_secret = client_secret or settings.paypal_client_secret
        self.webhook_id = webhook_id if webhook_id is not None else settings.paypal_webhook_id
        self.base_url = (base_url or settings.paypal_base_url).rstrip("/")
        self.timeout = timeout or settings.paypal_timeout

        self._access_token: str | None = None
        self._token_expires_at: float = 0.0

        if not self.client_id or not self.client_secret:
            logger.warning("PayPal credentials not configured. Set PAYPAL_CLIENT_ID/SECRET.")

    @property
    def is_configured(self) -> bool:
        return bool(self.client_id and self.client_secret)

    async def get_access_token(self) -> str:
        """
        Fetch (or reuse) an OAuth2 client-credentials token.

        Raises:
            PayPalAuthError: If credentials are missing or rejected
        """
        if self._access_token and time.monotonic() < self._token_expires_at:
            return self._access_token

        if not self.is_configured:
            raise PayPalAuthError("PayPal credentials not configured")

        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                response = await client.request(
                    "POST",
                    f"{self.base_url}/v1/oauth2/token",
                    auth=(self.client_id, self.client_secret),
                    data={"grant_type": "client_credentials"},
                    headers={"Accept": "application/json"},
                )
                response.raise_for_status()
                payload = response.json()
        except httpx.HTTPStatusError as e:
            logger.error("PayPal token request rejected: HTTP %s", e.response.status_code)
            raise PayPalAuthError(f"Token request failed: HTTP {e.response.status_code}") from e
        except httpx.RequestError as e:
            logger.error("PayPal token request error: %s", type(e).__name__)
            raise PayPalAPIError(f"Token request failed: {e}") from e

        token = payload.get("access_token")
        if not token:
            raise PayPalAuthError("Token response did not include access_token")

        self._access_token = token
        expires_in = int(payload.get("expires_in", 0))
        self._token_expires_at = time.monotonic() + max(0, expires_in - self.TOKEN_EXPIRY_MARGIN)
        return token

    async def _make_request(
        self,
        method: str,
        endpoint: str,
        data: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        """
        Make an authenticated request to the PayPal API.

        Raises:
            PayPalAPIError: If the request fails or PayPal returns an error
        """
        token = await self.get_access_token()
        url = f"{self.base_url}/{endpoint.lstrip('/')}"
        headers = {
            "Authorization": f"Bearer {token}",
            "Content-Type": "application/json",
            "Accept": "application/json",
        }

        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                logger.info("Making %s request to %s", method, endpoint)
                response = await client.request(method, url, headers=headers, json=data)
                response.raise_for_status()

                if response.status_code == 204 or not response.content:
                    return {}
                return response.json()

        except httpx.HTTPStatusError as e:
            status_code = e.response.status_code
            if status_code == 401:
                # Token revoked early; next call fetches a new one
                self._access_token = None
            try:
                detail = e.response.json().get("message") or str(e)
            except ValueError:
                detail = str(e)
            logger.error("PayPal API error on %s: %s", endpoint, detail)
            raise PayPalAPIError(f"API request failed: {detail}", status_code=status_code) from e
        except httpx.RequestError as e:
            logger.error("PayPal request error on %s: %s", endpoint, type(e).__name__)
            raise PayPalAPIError(f"Request failed: {e}") from e

    async def create_subscription(
        self,
        plan_id: str,
        user_id: str,
        return_url: str,
        cancel_url: str,
    ) -> PayPalSubscription:
        """
        Create a subscription awaiting buyer approval.

        The internal user id travels as ``custom_id`` so the activation
        webhook can be attributed.
        """
        body = {
            "plan_id": plan_id,
            "custom_id": user_id,
            "application_context": {
                "brand_name": "Rankora",
                "user_action": "SUBSCRIBE_NOW",
                "return_url": return_url,
                "cancel_url": cancel_url,
            },
        }
        response = await self._make_request("POST", "v1/billing/subscriptions", data=body)
        return PayPalSubscription.from_api_response(response)

    async def get_subscription(self, subscription_id: str) -> PayPalSubscription:
        """Get subscription details by id."""
        response = await self._make_request("GET", f"v1/billing/subscriptions/{subscription_id}")
        return PayPalSubscription.from_api_response(response)

    async def cancel_subscription(self, subscription_id: str, reason: str = "Cancelled by user") -> bool:
        """Cancel a subscription. PayPal answers 204 on success."""
        logger.info("Cancelling PayPal subscription %s", subscription_id)
        await self._make_request(
            "POST",
            f"v1/billing/subscriptions/{subscription_id}/cancel",
            data={"reason": reason},
        )
        return True

    async def verify_webhook_signature(
        self,
        headers: Mapping[str, str],
        event: dict[str, Any],
    ) -> bool:
        """
        Ask PayPal whether a webhook delivery is authentic.

        Args:
            headers: Incoming request headers (case-insensitive mapping)
            event: Decoded webhook body

        Returns:
            True if PayPal reports SUCCESS

        Raises:
            PayPalWebhookError: If the webhook id or transmission headers are missing
        """
        if not self.webhook_id:
            raise PayPalWebhookError("PayPal webhook id not configured")

        body: dict[str, Any] = {}
        for field_name, header_name in WEBHOOK_HEADERS.items():
            value = headers.get(header_name)
            if not value:
                raise PayPalWebhookError(f"Missing {header_name} header")
            body[field_name] = value
        body["webhook_id"] = self.webhook_id
        body["webhook_event"] = event

        response = await self._make_request(
            "POST", "v1/notifications/verify-webhook-signature", data=body
        )
        verified = response.get("verification_status") == "SUCCESS"
        if not verified:
            logger.warning(
                "PayPal webhook signature verification failed",
                extra={"event_type": event.get("event_type")},
            )
        return verified


def create_paypal_adapter(settings_obj=None) -> PayPalAdapter:
    """Build the adapter from application settings."""
    cfg = settings_obj or settings
    return PayPalAdapter(
        client_id=cfg.paypal_client_id,
        client_secret=cfg.paypal_client_secret,
        webhook_id=cfg.paypal_webhook_id or "",
        base_url=cfg.paypal_base_url,
        timeout=cfg.paypal_timeout,
    )
