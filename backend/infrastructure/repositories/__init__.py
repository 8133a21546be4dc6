from .entitlement_store import SQLAlchemyEntitlementStore

__all__ = ["SQLAlchemyEntitlementStore"]
