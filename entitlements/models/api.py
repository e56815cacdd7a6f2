"""
API Models - Pydantic models for request/response validation.

NO DICTIONARIES - All data structures are strongly typed.

Request and response bodies use camelCase on the wire (the mobile client's
convention); snake_case field names are accepted on input as well.
"""

from enum import Enum

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class SubscriptionState(str, Enum):
    """Canonical entitlement state for a user + product pair."""

    ACTIVE = "active"
    FREE = "free"
    CANCELLED = "cancelled"
    GRACE_PERIOD = "grace_period"
    ON_HOLD = "on_hold"
    EXPIRED = "expired"
    REFUNDED = "refunded"
    UNKNOWN = "unknown"


class AuditEventType(str, Enum):
    """Audit trail event type enumeration."""

    VERIFIED = "verified"
    RESTORED = "restored"
    RTDN_PROCESSED = "rtdn_processed"


class NotificationOutcome(str, Enum):
    """Result of handling one push notification delivery."""

    PROCESSED = "processed"
    IGNORED = "ignored"
    NO_MATCHING_USER = "no_matching_user"


class CamelModel(BaseModel):
    """Base model serialising to camelCase and accepting either casing."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# ============================================================================
# Subscription Verification Models
# ============================================================================


class VerifyPurchaseRequest(CamelModel):
    """
    POST /v1/subscriptions/verify request body.

    Empty values are accepted here and rejected by the reconciliation
    service as invalid arguments.
    """

    product_id: str = Field("", max_length=255)
    purchase_token: str = Field("", max_length=4096)
    package_name: str | None = Field(None, max_length=255)


class RestorePurchaseRequest(CamelModel):
    """POST /v1/subscriptions/restore request body."""

    product_id: str = Field("", max_length=255)
    purchase_token: str = Field("", max_length=4096)


class SubscriptionStatusResponse(CamelModel):
    """
    Verify/restore response.

    Minimized on purpose: never carries the purchase token or any raw
    provider field.
    """

    success: bool = Field(True, description="Whether reconciliation succeeded")
    state: SubscriptionState
    has_premium_access: bool
    expiry_date: str | None = Field(None, description="ISO 8601 expiry timestamp")


# ============================================================================
# Push Notification Models
# ============================================================================


class NotificationAckResponse(BaseModel):
    """POST /v1/webhooks/google-play response."""

    status: NotificationOutcome


# ============================================================================
# Health Models
# ============================================================================


class HealthResponse(BaseModel):
    """Health check response."""

    status: str
    database: str
    timestamp: str
