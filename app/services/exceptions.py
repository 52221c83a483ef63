"""
Entitlement error kinds.

StoreUnavailableError and ProviderUnavailableError are retryable and must
never be read as "the subscription ended".
"""


class EntitlementError(Exception):
    """Base class for entitlement failures."""


class NoActiveSubscriptionError(EntitlementError):
    """Operation requires an active subscription and the user has none."""

    def __init__(self, user_id):
        self.user_id = user_id
        super().__init__(f"No active subscription found for user {user_id}")


class StoreUnavailableError(EntitlementError):
    """The entitlement tables could not be read or written."""


class ProviderUnavailableError(EntitlementError):
    """Stripe could not be reached or returned an unexpected error."""


class InvalidPlanError(EntitlementError):
    """Plan or product outside the configured set."""

    def __init__(self, value):
        self.value = value
        super().__init__(f"Unknown plan or product: {value!r}")
