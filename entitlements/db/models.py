"""
Database Models - SQLAlchemy ORM models with strict typing.

NO DICTIONARIES - All columns use Mapped[] type annotations.
"""

from datetime import datetime
from typing import Any
from uuid import UUID, uuid4

from sqlalchemy import Boolean, CheckConstraint, DateTime, Index, String, func
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.dialects.postgresql import UUID as PG_UUID
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(DeclarativeBase):
    """Base class for all ORM models."""

    pass


class UserEntitlement(Base):
    """
    ORM model for user_entitlements table.

    One row per user holding the last reconciled subscription state.
    Only the subscription_* columns and the token hash are written by
    reconciliation.
    """

    __tablename__ = "user_entitlements"

    # Primary Key - authenticated user ID (Google `sub` claim)
    user_id: Mapped[str] = mapped_column(String(255), primary_key=True)

    # Derived entitlement
    subscription_status: Mapped[str] = mapped_column(String(20), nullable=False)
    subscription_product_id: Mapped[str] = mapped_column(String(255), nullable=False)
    subscription_expiry_date: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    subscription_grace_expiry_date: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    subscription_is_trial_period: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=False
    )
    subscription_last_verified_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False
    )

    # SHA-256 of the purchase token - used only for RTDN lookup, never returned
    purchase_token_hash: Mapped[str | None] = mapped_column(String(64), nullable=True)

    # Audit timestamps (server-assigned)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now(), onupdate=func.now()
    )

    __table_args__ = (
        CheckConstraint(
            "subscription_status IN ('active', 'free', 'cancelled', 'grace_period', "
            "'on_hold', 'expired', 'refunded', 'unknown')",
            name="ck_user_entitlements_status",
        ),
        Index("idx_user_entitlements_token_hash", "purchase_token_hash"),
        Index("idx_user_entitlements_status", "subscription_status"),
    )

    def __repr__(self) -> str:
        """String representation for debugging."""
        return (
            f"<UserEntitlement(user_id={self.user_id}, "
            f"status={self.subscription_status}, product={self.subscription_product_id})>"
        )


class EntitlementAuditLog(Base):
    """
    ORM model for entitlement_audit_logs table.

    Immutable, append-only trail of reconciliation events. Never read back
    by the service.
    """

    __tablename__ = "entitlement_audit_logs"

    # Primary Key
    id: Mapped[UUID] = mapped_column(PG_UUID(as_uuid=True), primary_key=True, default=uuid4)

    user_id: Mapped[str] = mapped_column(String(255), nullable=False)
    event_type: Mapped[str] = mapped_column(String(50), nullable=False)

    # Non-sensitive event details
    data: Mapped[dict[str, Any]] = mapped_column(JSONB, nullable=False, default=dict)

    # Timestamp (server-assigned)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now()
    )

    __table_args__ = (
        CheckConstraint(
            "event_type IN ('verified', 'restored', 'rtdn_processed')",
            name="ck_entitlement_audit_logs_event_type",
        ),
        Index("idx_entitlement_audit_logs_user_id", "user_id"),
        Index("idx_entitlement_audit_logs_created_at", "created_at", postgresql_using="brin"),
    )

    def __repr__(self) -> str:
        """String representation for debugging."""
        return (
            f"<EntitlementAuditLog(id={self.id}, user_id={self.user_id}, "
            f"event_type={self.event_type})>"
        )
