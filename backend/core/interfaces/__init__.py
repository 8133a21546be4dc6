# Interfaces (Abstract Contracts)
# Adapters implement these interfaces
from .repositories import EntitlementStore, GuestUsageStorage

__all__ = [
    "EntitlementStore",
    "GuestUsageStorage",
]
