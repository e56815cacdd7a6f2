"""
Domain Models - Internal business logic models using dataclasses.

NO DICTIONARIES - All data structures are strongly typed immutable dataclasses.
"""

from dataclasses import dataclass
from datetime import datetime

from entitlements.models.api import SubscriptionState

PREMIUM_STATES: frozenset[SubscriptionState] = frozenset(
    {
        SubscriptionState.ACTIVE,
        SubscriptionState.CANCELLED,
        SubscriptionState.GRACE_PERIOD,
    }
)


def has_premium_access(state: SubscriptionState) -> bool:
    """Whether a canonical state grants premium features."""
    return state in PREMIUM_STATES


@dataclass(frozen=True)
class CallerIdentity:
    """Authenticated principal invoking verify/restore."""

    user_id: str
    email: str | None = None

    def __post_init__(self) -> None:
        """Validate caller identity."""
        if not self.user_id:
            raise ValueError("user_id cannot be empty")


@dataclass(frozen=True)
class DerivedEntitlement:
    """
    Canonical entitlement computed from one billing record.

    Produced fresh on every reconciliation and written as a whole.
    """

    state: SubscriptionState
    product_id: str
    is_trial_period: bool
    last_verified_at: datetime
    expiry_date: datetime | None = None
    grace_expiry_date: datetime | None = None

    @property
    def has_premium_access(self) -> bool:
        """Whether this entitlement grants premium features."""
        return has_premium_access(self.state)


@dataclass(frozen=True)
class VerificationResult:
    """Caller-safe outcome of verify/restore."""

    state: SubscriptionState
    has_premium_access: bool
    expiry_date: datetime | None

    @classmethod
    def from_entitlement(cls, entitlement: DerivedEntitlement) -> "VerificationResult":
        """Reduce a derived entitlement to what the caller may see."""
        return cls(
            state=entitlement.state,
            has_premium_access=entitlement.has_premium_access,
            expiry_date=entitlement.expiry_date,
        )
