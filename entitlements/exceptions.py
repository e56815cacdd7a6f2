"""
Exception Classes - Strongly typed exception hierarchy.

NO DICTIONARIES - All exceptions have typed attributes.

The first three classes are the caller-facing error kinds of the
verify/restore flows. Their messages are safe to return to clients and
never include purchase tokens or internal exception detail.
"""


class EntitlementError(Exception):
    """Base exception for all entitlement errors."""

    pass


class UnauthenticatedError(EntitlementError):
    """Raised when a flow that requires a caller identity has none."""

    def __init__(self, message: str = "User must be authenticated to verify purchases") -> None:
        self.message = message
        super().__init__(message)


class InvalidArgumentError(EntitlementError):
    """Raised for missing/empty fields or a product ID outside the allow-list."""

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(message)


class InternalError(EntitlementError):
    """Raised when reconciliation fails; carries a generic, caller-safe message."""

    def __init__(self, message: str = "Failed to verify purchase. Please try again.") -> None:
        self.message = message
        super().__init__(message)


class BillingProviderError(EntitlementError):
    """Raised when the billing provider query fails."""

    def __init__(self, message: str, status: int | None = None) -> None:
        self.message = message
        self.status = status
        super().__init__(f"Billing provider error: {message}")


class NotificationDecodeError(EntitlementError):
    """Raised when a push notification envelope cannot be decoded."""

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(f"Notification decode error: {message}")


class EntitlementNotFoundError(EntitlementError):
    """Raised when an in-place update targets a user with no entitlement document."""

    def __init__(self, user_id: str) -> None:
        self.user_id = user_id
        super().__init__(f"Entitlement document not found for user {user_id}")
