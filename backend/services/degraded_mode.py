"""
Degraded-mode policy for allowance checks.

When the entitlement store cannot be read, allowance checks fail open with
a generous fixed limit. This module is the only place that fallback is
defined, so it can be tuned or switched to fail-closed in one spot.
"""

import logging
from datetime import datetime
from typing import Optional

from core.domain.subscription import ActionKind, AllowanceDecision, utcnow

logger = logging.getLogger(__name__)

DEGRADED_REASON = "degraded_mode"


class DegradedModePolicy:
    """Builds fallback decisions and counts how often they were issued."""

    def __init__(self, fallback_limit: int = 999):
        self.fallback_limit = fallback_limit
        self.activations = 0
        self.last_activated_at: Optional[datetime] = None

    def decide(
        self,
        user_id: Optional[str],
        action: ActionKind,
        error: Optional[Exception] = None,
    ) -> AllowanceDecision:
        self.activations += 1
        self.last_activated_at = utcnow()

        logger.warning(
            "Entitlement store unavailable; allowing %s in degraded mode",
            ActionKind(action).value,
            extra={
                "degraded": True,
                "user_id": user_id,
                "action": ActionKind(action).value,
                "error": type(error).__name__ if error else None,
            },
        )
        return AllowanceDecision(
            can_proceed=True,
            limit=self.fallback_limit,
            remaining=self.fallback_limit,
            reason=DEGRADED_REASON,
            degraded=True,
        )

    def snapshot(self) -> dict:
        """Counters for the health endpoint."""
        return {
            "degraded_decisions": self.activations,
            "last_degraded_at": self.last_activated_at.isoformat() if self.last_activated_at else None,
        }
