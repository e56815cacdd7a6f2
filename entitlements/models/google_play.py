"""
Google Play domain models - Immutable dataclasses for subscription records
and Real-Time Developer Notifications.

NO DICTIONARIES - All data uses strongly typed models.
"""

from collections.abc import Mapping
from dataclasses import dataclass
from enum import IntEnum
from typing import Any


class PaymentState(IntEnum):
    """SubscriptionPurchase.paymentState codes."""

    PENDING = 0
    RECEIVED = 1
    FREE_TRIAL = 2
    PENDING_DEFERRED_CHANGE = 3


class CancelReason(IntEnum):
    """SubscriptionPurchase.cancelReason codes."""

    USER = 0
    BILLING_ERROR = 1
    REPLACED = 2
    DEVELOPER = 3


# RTDN subscriptionNotification.notificationType codes
SUBSCRIPTION_NOTIFICATION_TYPES: dict[int, str] = {
    1: "recovered",
    2: "renewed",
    3: "canceled",
    4: "purchased",
    5: "on_hold",
    6: "in_grace_period",
    7: "restarted",
    8: "price_change_confirmed",
    9: "deferred",
    10: "paused",
    11: "pause_schedule_changed",
    12: "revoked",
    13: "expired",
    20: "pending_purchase_canceled",
}


def _optional_int(value: Any) -> int | None:
    """Coerce an API value (int or numeric string) to int; None if absent or malformed."""
    if value is None or isinstance(value, bool):
        return None
    try:
        return int(value)
    except (TypeError, ValueError, OverflowError):
        return None


@dataclass(frozen=True)
class RawSubscriptionRecord:
    """
    Billing provider's view of a subscription at fetch time.

    Only the fields the state derivation inspects are kept. Received fresh
    on every reconciliation, never cached.
    """

    payment_state: int | None
    cancel_reason: int | None
    expiry_time_millis: int = 0
    user_cancellation_time_millis: int | None = None
    cancel_survey_present: bool = False

    @classmethod
    def from_api_response(cls, resource: Mapping[str, Any]) -> "RawSubscriptionRecord":
        """
        Build a record from a purchases.subscriptions.get response.

        Parsing is total: the API sends millisecond timestamps as strings,
        and anything missing or malformed becomes absent (expiry becomes 0).
        """
        expiry = _optional_int(resource.get("expiryTimeMillis"))
        return cls(
            payment_state=_optional_int(resource.get("paymentState")),
            cancel_reason=_optional_int(resource.get("cancelReason")),
            expiry_time_millis=expiry if expiry is not None else 0,
            user_cancellation_time_millis=_optional_int(
                resource.get("userCancellationTimeMillis")
            ),
            cancel_survey_present=resource.get("cancelSurveyResult") is not None,
        )


@dataclass(frozen=True)
class SubscriptionNotification:
    """Subscription RTDN decoded from a Pub/Sub push envelope."""

    message_id: str
    package_name: str
    subscription_id: str
    purchase_token: str
    notification_type: int
    event_time_millis: int

    def __post_init__(self) -> None:
        """Validate the fields reconciliation depends on."""
        if not self.purchase_token:
            raise ValueError("Notification purchase token required")
        if not self.subscription_id:
            raise ValueError("Notification subscription ID required")

    @property
    def event_name(self) -> str:
        """Readable name of the notification type."""
        return SUBSCRIPTION_NOTIFICATION_TYPES.get(
            self.notification_type, f"unknown_{self.notification_type}"
        )

    def __repr__(self) -> str:
        """Representation without the purchase token."""
        return (
            f"<SubscriptionNotification(message_id={self.message_id}, "
            f"subscription_id={self.subscription_id}, type={self.notification_type})>"
        )
