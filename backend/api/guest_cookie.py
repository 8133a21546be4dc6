"""
Cookie-backed guest usage storage.

Holds the ``{"YYYY-MM": count}`` bucket map in a single cookie. The value
is JSON, percent-encoded so it survives cookie quoting.
"""

import json
import logging
import re
from typing import Annotated, Optional
from urllib.parse import quote, unquote

from fastapi import Depends, Request, Response

from api.dependencies import ContainerDep
from core.interfaces.repositories import GuestUsageStorage
from services.guest_allowance import GUEST_STORAGE_KEY, GuestAllowance

logger = logging.getLogger(__name__)

_MONTH_KEY = re.compile(r"^\d{4}-(0[1-9]|1[0-2])$")

# A few month buckets fit easily; anything longer is not ours
MAX_COOKIE_LENGTH = 512

# Long enough to outlive any month bucket
COOKIE_MAX_AGE = 60 * 60 * 24 * 62


def _parse(raw: Optional[str]) -> dict[str, int]:
    if not raw:
        return {}
    if len(raw) > MAX_COOKIE_LENGTH:
        logger.debug("Discarding oversized guest usage cookie")
        return {}
    try:
        data = json.loads(unquote(raw))
    except (ValueError, RecursionError):
        logger.debug("Discarding unreadable guest usage cookie")
        return {}
    if not isinstance(data, dict):
        return {}
    return {
        k: v for k, v in data.items()
        if isinstance(k, str) and _MONTH_KEY.match(k) and type(v) is int and v >= 0
    }


class CookieGuestStorage(GuestUsageStorage):
    """Reads the bucket map from the request, writes it onto the response."""

    def __init__(self, raw: Optional[str] = None):
        self._buckets = _parse(raw)
        self.dirty = False

    def load(self) -> dict[str, int]:
        return dict(self._buckets)

    def save(self, buckets: dict[str, int]) -> None:
        self._buckets = {k: v for k, v in buckets.items() if _MONTH_KEY.match(k)}
        self.dirty = True

    def encode(self) -> str:
        return quote(json.dumps(self._buckets, separators=(",", ":")))

    def apply(self, response: Response, secure: bool = False) -> None:
        """Write the cookie if the counter changed."""
        if not self.dirty:
            return
        response.set_cookie(
            GUEST_STORAGE_KEY,
            self.encode(),
            max_age=COOKIE_MAX_AGE,
            httponly=True,
            samesite="lax",
            secure=secure,
        )


def get_guest_allowance(request: Request, container: ContainerDep) -> GuestAllowance:
    """Guest counter for the current request."""
    storage = CookieGuestStorage(request.cookies.get(GUEST_STORAGE_KEY))
    return GuestAllowance(storage, cap=container.settings.guest_monthly_cap)


GuestDep = Annotated[GuestAllowance, Depends(get_guest_allowance)]


def persist_guest_usage(guest: GuestAllowance, response: Response, secure: bool = False) -> None:
    storage = guest.storage
    if isinstance(storage, CookieGuestStorage):
        storage.apply(response, secure=secure)
