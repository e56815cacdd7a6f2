"""
Tests for subscription state derivation.

Covers each decision rule, the on-hold override, boundary instants and
property-based totality/determinism.
"""

from datetime import UTC, datetime

import pytest
from hypothesis import given
from hypothesis import strategies as st

from entitlements.models.api import SubscriptionState
from entitlements.models.domain import PREMIUM_STATES, has_premium_access
from entitlements.models.google_play import RawSubscriptionRecord
from entitlements.services.state_deriver import derive, derive_state
from tests.conftest import FIXED_NOW, FIXED_NOW_MILLIS, FUTURE_MILLIS, MONTHLY, PAST_MILLIS


def record(
    payment_state: int | None = 1,
    cancel_reason: int | None = None,
    expiry: int = FUTURE_MILLIS,
    user_cancellation: int | None = None,
    survey: bool = False,
) -> RawSubscriptionRecord:
    return RawSubscriptionRecord(
        payment_state=payment_state,
        cancel_reason=cancel_reason,
        expiry_time_millis=expiry,
        user_cancellation_time_millis=user_cancellation,
        cancel_survey_present=survey,
    )


class TestDecisionRules:
    """Each rule in order, first match wins."""

    def test_survey_user_cancel_before_expiry_is_cancelled(self):
        """Cancel survey + user cancel reason with time left stays cancelled."""
        assert (
            derive_state(record(cancel_reason=0, survey=True), FIXED_NOW_MILLIS)
            == SubscriptionState.CANCELLED
        )

    def test_survey_user_cancel_after_expiry_is_expired(self):
        """Cancel survey + user cancel reason past expiry is expired."""
        assert (
            derive_state(record(cancel_reason=0, survey=True, expiry=PAST_MILLIS), FIXED_NOW_MILLIS)
            == SubscriptionState.EXPIRED
        )

    def test_survey_with_non_user_reason_falls_through(self):
        """A survey with a billing-error reason does not trigger rule 1."""
        assert (
            derive_state(record(cancel_reason=1, survey=True), FIXED_NOW_MILLIS)
            == SubscriptionState.ACTIVE
        )

    def test_pending_payment_before_expiry_is_grace_period(self):
        """Pending payment with time left is a grace period."""
        assert derive_state(record(payment_state=0), FIXED_NOW_MILLIS) == (
            SubscriptionState.GRACE_PERIOD
        )

    def test_user_cancellation_before_expiry_is_cancelled(self):
        """User cancellation timestamp with time left keeps access until expiry."""
        result = derive_state(
            record(user_cancellation=FIXED_NOW_MILLIS - 1000), FIXED_NOW_MILLIS
        )
        assert result == SubscriptionState.CANCELLED

    def test_user_cancellation_after_expiry_is_expired(self):
        """User cancellation timestamp past expiry is expired."""
        result = derive_state(
            record(user_cancellation=PAST_MILLIS - 1000, expiry=PAST_MILLIS), FIXED_NOW_MILLIS
        )
        assert result == SubscriptionState.EXPIRED

    @pytest.mark.parametrize("payment_state", [1, 2])
    def test_paid_or_trial_before_expiry_is_active(self, payment_state: int):
        """Received payment and free trial are active until expiry."""
        assert derive_state(record(payment_state=payment_state), FIXED_NOW_MILLIS) == (
            SubscriptionState.ACTIVE
        )

    @pytest.mark.parametrize("payment_state", [1, 2])
    def test_paid_or_trial_after_expiry_is_expired(self, payment_state: int):
        """Received payment and free trial are expired once expiry passes."""
        assert derive_state(
            record(payment_state=payment_state, expiry=PAST_MILLIS), FIXED_NOW_MILLIS
        ) == (SubscriptionState.EXPIRED)

    @pytest.mark.parametrize("payment_state", [None, 3, 7, -1])
    def test_unmapped_payment_state_is_unknown(self, payment_state: int | None):
        """Deferred, absent and unmapped payment states are unknown, never an error."""
        assert derive_state(record(payment_state=payment_state), FIXED_NOW_MILLIS) == (
            SubscriptionState.UNKNOWN
        )

    def test_empty_survey_object_counts_as_survey(self):
        """An empty cancelSurveyResult is still a survey for rule 1."""
        raw = RawSubscriptionRecord.from_api_response(
            {
                "paymentState": 1,
                "cancelReason": 0,
                "cancelSurveyResult": {},
                "expiryTimeMillis": str(FIXED_NOW_MILLIS + 1000),
            }
        )

        assert derive_state(raw, FIXED_NOW_MILLIS) == SubscriptionState.CANCELLED

    def test_zero_user_cancellation_counts_as_cancelled(self):
        """A "0" cancellation timestamp is present, so rule 3 applies."""
        raw = RawSubscriptionRecord.from_api_response(
            {
                "paymentState": 1,
                "userCancellationTimeMillis": "0",
                "expiryTimeMillis": str(FIXED_NOW_MILLIS + 1000),
            }
        )

        assert derive_state(raw, FIXED_NOW_MILLIS) == SubscriptionState.CANCELLED

    def test_survey_rule_wins_over_user_cancellation(self):
        """Rule 1 is evaluated before rule 3."""
        result = derive_state(
            record(cancel_reason=0, survey=True, user_cancellation=PAST_MILLIS), FIXED_NOW_MILLIS
        )
        assert result == SubscriptionState.CANCELLED


class TestOnHoldOverride:
    """Pending payment past expiry is on hold, regardless of the rule that matched."""

    def test_pending_after_expiry_is_on_hold(self):
        """Pending payment past expiry overrides the grace period."""
        assert derive_state(record(payment_state=0, expiry=PAST_MILLIS), FIXED_NOW_MILLIS) == (
            SubscriptionState.ON_HOLD
        )

    def test_pending_with_missing_expiry_is_on_hold(self):
        """Missing expiry counts as 0, which is always in the past."""
        assert derive_state(record(payment_state=0, expiry=0), FIXED_NOW_MILLIS) == (
            SubscriptionState.ON_HOLD
        )

    def test_override_applies_after_survey_rule(self):
        """Rule 1 yields expired; the override still turns it into on hold."""
        result = derive_state(
            record(payment_state=0, cancel_reason=0, survey=True, expiry=PAST_MILLIS),
            FIXED_NOW_MILLIS,
        )
        assert result == SubscriptionState.ON_HOLD

    def test_survey_cancel_with_pending_before_expiry_stays_cancelled(self):
        """Without a passed expiry the override does not apply."""
        result = derive_state(
            record(payment_state=0, cancel_reason=0, survey=True), FIXED_NOW_MILLIS
        )
        assert result == SubscriptionState.CANCELLED


class TestBoundaries:
    """Expiry exactly at `now`."""

    def test_received_at_exact_expiry_is_expired(self):
        """Access requires expiry strictly after now."""
        assert derive_state(record(expiry=FIXED_NOW_MILLIS), FIXED_NOW_MILLIS) == (
            SubscriptionState.EXPIRED
        )

    def test_pending_at_exact_expiry_is_grace_period(self):
        """The override requires expiry strictly before now."""
        assert derive_state(record(payment_state=0, expiry=FIXED_NOW_MILLIS), FIXED_NOW_MILLIS) == (
            SubscriptionState.GRACE_PERIOD
        )


class TestDerive:
    """Tests for the full derived entitlement."""

    def test_active_subscription_fields(self):
        """Derived fields for a paid subscription."""
        entitlement = derive(record(), MONTHLY, FIXED_NOW)

        assert entitlement.state == SubscriptionState.ACTIVE
        assert entitlement.product_id == MONTHLY
        assert entitlement.is_trial_period is False
        assert entitlement.last_verified_at == FIXED_NOW
        assert entitlement.expiry_date == datetime.fromtimestamp(FUTURE_MILLIS / 1000, tz=UTC)
        assert entitlement.grace_expiry_date is None
        assert entitlement.has_premium_access is True

    def test_free_trial_sets_trial_flag(self):
        """Free-trial payment state marks the entitlement as a trial."""
        entitlement = derive(record(payment_state=2), MONTHLY, FIXED_NOW)

        assert entitlement.is_trial_period is True
        assert entitlement.state == SubscriptionState.ACTIVE

    def test_missing_expiry_leaves_expiry_date_unset(self):
        """Expiry of 0 means no expiry date."""
        entitlement = derive(record(expiry=0), MONTHLY, FIXED_NOW)

        assert entitlement.expiry_date is None
        assert entitlement.state == SubscriptionState.EXPIRED

    def test_grace_period_never_computes_grace_expiry(self):
        """Grace expiry is not derived even in grace period."""
        entitlement = derive(record(payment_state=0), MONTHLY, FIXED_NOW)

        assert entitlement.state == SubscriptionState.GRACE_PERIOD
        assert entitlement.grace_expiry_date is None
        assert entitlement.has_premium_access is True

    def test_on_hold_has_no_premium_access(self):
        """On hold revokes premium access."""
        entitlement = derive(record(payment_state=0, expiry=PAST_MILLIS), MONTHLY, FIXED_NOW)

        assert entitlement.has_premium_access is False


class TestPremiumAccess:
    """Premium access is exactly the active/cancelled/grace states."""

    @pytest.mark.parametrize("state", list(SubscriptionState))
    def test_premium_access_per_state(self, state: SubscriptionState):
        expected = state in (
            SubscriptionState.ACTIVE,
            SubscriptionState.CANCELLED,
            SubscriptionState.GRACE_PERIOD,
        )
        assert has_premium_access(state) is expected

    def test_refunded_and_free_never_grant_access(self):
        assert SubscriptionState.REFUNDED not in PREMIUM_STATES
        assert SubscriptionState.FREE not in PREMIUM_STATES


# ============================================================================
# Property-Based Tests
# ============================================================================

optional_codes = st.none() | st.integers(min_value=-5, max_value=25)
millis = st.integers(min_value=-(2**40), max_value=2**53)

records = st.builds(
    RawSubscriptionRecord,
    payment_state=optional_codes,
    cancel_reason=optional_codes,
    expiry_time_millis=millis,
    user_cancellation_time_millis=st.none() | millis,
    cancel_survey_present=st.booleans(),
)

instants = st.datetimes(
    min_value=datetime(2000, 1, 1),
    max_value=datetime(2100, 1, 1),
    timezones=st.just(UTC),
)


class TestDeriveProperties:
    """Totality and determinism over arbitrary records."""

    @given(raw=records, now=instants)
    def test_total(self, raw: RawSubscriptionRecord, now: datetime):
        """Every record yields a canonical state without raising."""
        entitlement = derive(raw, MONTHLY, now)

        assert isinstance(entitlement.state, SubscriptionState)
        assert entitlement.state not in (SubscriptionState.REFUNDED, SubscriptionState.FREE)
        assert entitlement.grace_expiry_date is None
        assert entitlement.last_verified_at == now

    @given(raw=records, now=instants)
    def test_deterministic(self, raw: RawSubscriptionRecord, now: datetime):
        """Same record and instant give the same entitlement."""
        assert derive(raw, MONTHLY, now) == derive(raw, MONTHLY, now)

    @given(raw=records, now=instants)
    def test_trial_flag_tracks_payment_state(self, raw: RawSubscriptionRecord, now: datetime):
        assert derive(raw, MONTHLY, now).is_trial_period is (raw.payment_state == 2)

    @given(raw=records, now=instants)
    def test_expiry_date_only_for_positive_expiry(self, raw: RawSubscriptionRecord, now: datetime):
        if raw.expiry_time_millis <= 0:
            assert derive(raw, MONTHLY, now).expiry_date is None

    @given(raw=records, now=instants)
    def test_pending_past_expiry_always_on_hold(self, raw: RawSubscriptionRecord, now: datetime):
        now_millis = int(now.timestamp() * 1000)
        if raw.payment_state == 0 and raw.expiry_time_millis < now_millis:
            assert derive_state(raw, now_millis) == SubscriptionState.ON_HOLD
