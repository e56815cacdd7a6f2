"""
Entitlement Store - Persisted per-user subscription document.

Two distinct write paths:
- upsert_merge: first-establishment paths (verify, restore). Creates the
  row when absent and only touches entitlement columns when present.
- update: re-assertion path (RTDN). The row must already exist.

Purchase tokens are stored as SHA-256 hashes and looked up by exact match.
"""

import hashlib
from typing import Any, Protocol

from sqlalchemy import func, select, update
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.ext.asyncio import AsyncSession
from structlog import get_logger

from entitlements.db.models import UserEntitlement
from entitlements.exceptions import EntitlementNotFoundError
from entitlements.models.domain import DerivedEntitlement

logger = get_logger(__name__)


def hash_purchase_token(purchase_token: str) -> str:
    """
    Hash a purchase token using SHA-256.

    The raw token is never persisted; the hash is enough for the exact-match
    lookup RTDN handling needs.
    """
    return hashlib.sha256(purchase_token.encode()).hexdigest()


def _entitlement_columns(entitlement: DerivedEntitlement) -> dict[str, Any]:
    """Column values for the full derived set, written together."""
    return {
        "subscription_status": entitlement.state.value,
        "subscription_product_id": entitlement.product_id,
        "subscription_expiry_date": entitlement.expiry_date,
        "subscription_grace_expiry_date": entitlement.grace_expiry_date,
        "subscription_is_trial_period": entitlement.is_trial_period,
        "subscription_last_verified_at": entitlement.last_verified_at,
    }


class EntitlementStore(Protocol):
    """Storage operations required by the reconciliation flows."""

    async def upsert_merge(
        self,
        user_id: str,
        entitlement: DerivedEntitlement,
        purchase_token: str,
    ) -> None:
        """Write the derived set and token reference, creating the document if absent."""
        ...

    async def update(self, user_id: str, entitlement: DerivedEntitlement) -> None:
        """
        Write the derived set into an existing document.

        Raises:
            EntitlementNotFoundError: If the user has no document
        """
        ...

    async def find_user_by_token(self, purchase_token: str) -> str | None:
        """Return the user whose document references this token, if any."""
        ...


class SqlEntitlementStore:
    """
    EntitlementStore backed by the user_entitlements table.

    Writes are staged on the shared session; the caller owns the commit.
    """

    def __init__(self, session: AsyncSession) -> None:
        """Initialize entitlement store with database session."""
        self.session = session

    async def upsert_merge(
        self,
        user_id: str,
        entitlement: DerivedEntitlement,
        purchase_token: str,
    ) -> None:
        """INSERT ... ON CONFLICT (user_id) DO UPDATE on entitlement columns only."""
        values = _entitlement_columns(entitlement)
        values["purchase_token_hash"] = hash_purchase_token(purchase_token)

        stmt = pg_insert(UserEntitlement).values(user_id=user_id, **values)
        stmt = stmt.on_conflict_do_update(
            index_elements=[UserEntitlement.user_id],
            set_={**values, "updated_at": func.now()},
        )
        await self.session.execute(stmt)

        logger.debug("entitlement_upserted", user_id=user_id, state=entitlement.state.value)

    async def update(self, user_id: str, entitlement: DerivedEntitlement) -> None:
        """UPDATE the entitlement columns; the token reference is left untouched."""
        stmt = (
            update(UserEntitlement)
            .where(UserEntitlement.user_id == user_id)
            .values(**_entitlement_columns(entitlement), updated_at=func.now())
        )
        result = await self.session.execute(stmt)

        if result.rowcount == 0:
            raise EntitlementNotFoundError(user_id)

        logger.debug("entitlement_updated", user_id=user_id, state=entitlement.state.value)

    async def find_user_by_token(self, purchase_token: str) -> str | None:
        """Exact-match lookup on the token hash, limited to one row."""
        stmt = (
            select(UserEntitlement.user_id)
            .where(UserEntitlement.purchase_token_hash == hash_purchase_token(purchase_token))
            .limit(1)
        )
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()
