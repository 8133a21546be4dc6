"""
Rate limiting using slowapi.

Limits are keyed by client IP. Redis backs the counters when REDIS_URL is
set so limits hold across workers; otherwise counters are per process.

Rate Limits:
- PayPal webhook: 100 per minute
- Approval callback / cancellation / checkout: 5 per minute
- Metered actions: 20 per minute
- Default: 100 requests per minute
"""

import ipaddress
import logging

from starlette.requests import Request
from slowapi import Limiter
from slowapi.util import get_remote_address

from infrastructure.config.settings import settings

logger = logging.getLogger(__name__)


def _public_ip(value: str) -> str | None:
    """Return the address if it parses and is publicly routable."""
    try:
        addr = ipaddress.ip_address(value.strip())
    except ValueError:
        return None
    # Private or loopback values in forwarded headers are trivially spoofed
    if addr.is_private or addr.is_loopback or addr.is_link_local:
        return None
    return str(addr)


def _get_real_ip(request: Request) -> str:
    """Client IP from proxy headers, falling back to the socket address."""
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        ip = _public_ip(forwarded.split(",")[0])
        if ip:
            return ip
    real_ip = request.headers.get("x-real-ip")
    if real_ip:
        ip = _public_ip(real_ip)
        if ip:
            return ip
    return get_remote_address(request)


# Format: "count/period" where period can be: second, minute, hour, day
RATE_LIMITS = {
    "webhook": "100/minute",
    "approve": "5/minute",
    "cancel": "5/minute",
    "checkout": "5/minute",
    "metered_action": "20/minute",
    "default": "100/minute",
}

_storage_uri = settings.redis_url if settings.redis_url else "memory://"

if not settings.redis_url:
    logger.warning("Rate limiter using in-memory storage; limits are per process")
    if settings.is_production:
        logger.critical("REDIS_URL is not set in production; rate limits are not shared across workers")

limiter = Limiter(
    key_func=_get_real_ip,
    storage_uri=_storage_uri,
    default_limits=[RATE_LIMITS["default"]],
)


def get_rate_limit(endpoint: str) -> str:
    """
    Get rate limit configuration for a specific endpoint.

    Example:
        >>> get_rate_limit("webhook")
        "100/minute"
        >>> get_rate_limit("unknown")
        "100/minute"
    """
    return RATE_LIMITS.get(endpoint, RATE_LIMITS["default"])
