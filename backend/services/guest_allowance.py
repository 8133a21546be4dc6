"""
Monthly usage counter for anonymous visitors.

The counter lives on the client (a cookie at the HTTP edge), so it is a
courtesy limit only: clearing the cookie resets it.
"""

import logging
from datetime import datetime
from typing import Callable, Optional

from core.domain.subscription import utcnow, year_month
from core.interfaces.repositories import GuestUsageStorage

logger = logging.getLogger(__name__)

GUEST_STORAGE_KEY = "rankora_free_usage"
DEFAULT_GUEST_CAP = 2


class MemoryGuestStorage(GuestUsageStorage):
    """In-process storage, used in tests and for server-side callers."""

    def __init__(self, buckets: Optional[dict[str, int]] = None):
        self.buckets: dict[str, int] = dict(buckets or {})

    def load(self) -> dict[str, int]:
        return dict(self.buckets)

    def save(self, buckets: dict[str, int]) -> None:
        self.buckets = dict(buckets)


class GuestAllowance:
    """Month-bucketed counter over a GuestUsageStorage."""

    def __init__(
        self,
        storage: GuestUsageStorage,
        cap: int = DEFAULT_GUEST_CAP,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.storage = storage
        self.cap = cap
        self._clock = clock

    def _current_key(self) -> str:
        return year_month(self._clock())

    def count(self) -> int:
        """Uses recorded for the current month. A new month starts at 0."""
        value = self.storage.load().get(self._current_key(), 0)
        try:
            return max(0, int(value))
        except (TypeError, ValueError):
            return 0

    @property
    def remaining(self) -> int:
        return max(0, self.cap - self.count())

    def consume(self) -> bool:
        """Record one use. Returns False without recording if the cap is reached."""
        key = self._current_key()
        used = self.count()
        if used >= self.cap:
            return False

        # Only the current month matters; older buckets are dropped on write
        self.storage.save({key: used + 1})
        logger.debug("Guest usage %d/%d for %s", used + 1, self.cap, key)
        return True
