"""
Service layer for business logic.
"""

from .allowance import AllowanceEvaluator, denial_message
from .degraded_mode import DegradedModePolicy
from .guest_allowance import GuestAllowance, MemoryGuestStorage
from .metered_actions import ActionOutcome, MeteredActionService
from .webhook_ingestion import IngestionResult, SubscriptionIngestionService

__all__ = [
    "AllowanceEvaluator",
    "denial_message",
    "DegradedModePolicy",
    "GuestAllowance",
    "MemoryGuestStorage",
    "ActionOutcome",
    "MeteredActionService",
    "IngestionResult",
    "SubscriptionIngestionService",
]
