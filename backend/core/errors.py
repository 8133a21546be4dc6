"""
Entitlement error taxonomy.

Only actionable failures are exceptions. A quota denial is a normal
AllowanceDecision, and an unresolved plan id is a warning carried on the
PlanResolution.
"""


class EntitlementError(Exception):
    """Base exception for entitlement and billing errors."""

    pass


class MalformedEventError(EntitlementError):
    """Webhook payload is missing required fields. Redelivery would not help."""

    pass


class UnattributableSubscriptionError(EntitlementError):
    """Activation event carries no user identity to attach the subscription to."""

    def __init__(self, external_subscription_id: str):
        self.external_subscription_id = external_subscription_id
        super().__init__(
            f"Subscription {external_subscription_id} has no custom_id; cannot attribute to a user"
        )


class StoreUnavailableError(EntitlementError):
    """The entitlement store could not be reached or timed out."""

    def __init__(self, operation: str, cause: Exception | None = None):
        self.operation = operation
        self.cause = cause
        detail = f": {type(cause).__name__}" if cause is not None else ""
        super().__init__(f"Entitlement store unavailable during {operation}{detail}")


class PlanNotFoundError(EntitlementError):
    """A plan id was required to resolve and did not."""

    pass


class AnalysisServiceError(EntitlementError):
    """The AI analysis webhook returned a non-2xx status or malformed JSON."""

    def __init__(self, message: str, status_code: int | None = None):
        self.status_code = status_code
        super().__init__(message)


class SubscriptionNotFoundError(EntitlementError):
    """The caller has no subscription the requested operation applies to."""

    pass


class SubscriptionOwnershipError(EntitlementError):
    """A provider subscription belongs to a different user than the caller."""

    pass
