"""
Subscription State Derivation.

Maps a raw Google Play subscription record to the canonical entitlement
state. Pure and total: no I/O, deterministic for a given `now`, and every
input yields a state (unmapped codes become UNKNOWN, never an error).
"""

from datetime import UTC, datetime

from entitlements.models.api import SubscriptionState
from entitlements.models.domain import DerivedEntitlement
from entitlements.models.google_play import CancelReason, PaymentState, RawSubscriptionRecord


def _to_millis(instant: datetime) -> int:
    """Convert an aware datetime to milliseconds since the epoch."""
    return int(instant.timestamp() * 1000)


def _from_millis(millis: int) -> datetime | None:
    """Convert milliseconds since the epoch to an aware UTC datetime; None if out of range."""
    try:
        return datetime.fromtimestamp(millis / 1000, tz=UTC)
    except (OverflowError, OSError, ValueError):
        return None


def derive_state(record: RawSubscriptionRecord, now_millis: int) -> SubscriptionState:
    """
    Apply the ordered decision rules, first match wins, then the on-hold override.

    1. Cancel survey present and cancelled by the user: CANCELLED while paid
       time remains, else EXPIRED.
    2. Payment pending: GRACE_PERIOD.
    3. User cancellation recorded: CANCELLED while paid time remains, else EXPIRED.
    4. Payment received or free trial: ACTIVE until expiry, else EXPIRED.
    5. Anything else: UNKNOWN.

    Override: payment pending with expiry already passed is ON_HOLD. Rule 2
    therefore only settles as GRACE_PERIOD while expiry >= now.
    """
    expiry = record.expiry_time_millis
    still_paid = expiry > now_millis

    if record.cancel_survey_present and record.cancel_reason == CancelReason.USER:
        state = SubscriptionState.CANCELLED if still_paid else SubscriptionState.EXPIRED
    elif record.payment_state == PaymentState.PENDING:
        state = SubscriptionState.GRACE_PERIOD
    elif record.user_cancellation_time_millis is not None:
        state = SubscriptionState.CANCELLED if still_paid else SubscriptionState.EXPIRED
    elif record.payment_state in (PaymentState.RECEIVED, PaymentState.FREE_TRIAL):
        state = SubscriptionState.ACTIVE if still_paid else SubscriptionState.EXPIRED
    else:
        state = SubscriptionState.UNKNOWN

    # Applied after the rules above, not folded into them
    if record.payment_state == PaymentState.PENDING and expiry < now_millis:
        state = SubscriptionState.ON_HOLD

    return state


def derive(
    record: RawSubscriptionRecord,
    product_id: str,
    now: datetime,
) -> DerivedEntitlement:
    """
    Derive the full entitlement for a record.

    Args:
        record: Billing provider record, fetched fresh
        product_id: Subscription product the record belongs to
        now: Timezone-aware evaluation instant

    Returns:
        Derived entitlement; grace_expiry_date is never computed and stays None
    """
    expiry = record.expiry_time_millis
    return DerivedEntitlement(
        state=derive_state(record, _to_millis(now)),
        product_id=product_id,
        is_trial_period=record.payment_state == PaymentState.FREE_TRIAL,
        last_verified_at=now,
        expiry_date=_from_millis(expiry) if expiry > 0 else None,
        grace_expiry_date=None,
    )
