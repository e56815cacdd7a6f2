"""create entitlement tables

Revision ID: 2026_10_19_0001
Revises:
Create Date: 2026-10-19 00:00:00.000000

Creates the reconciliation schema:
- user_entitlements: one row per user with the last derived subscription state
- entitlement_audit_logs: append-only trail of verify/restore/RTDN events
"""

from collections.abc import Sequence

import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

from alembic import op

# revision identifiers, used by Alembic.
revision: str = "2026_10_19_0001"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def upgrade() -> None:
    op.create_table(
        "user_entitlements",
        sa.Column("user_id", sa.String(length=255), nullable=False),
        sa.Column("subscription_status", sa.String(length=20), nullable=False),
        sa.Column("subscription_product_id", sa.String(length=255), nullable=False),
        sa.Column("subscription_expiry_date", sa.DateTime(timezone=True), nullable=True),
        sa.Column("subscription_grace_expiry_date", sa.DateTime(timezone=True), nullable=True),
        sa.Column(
            "subscription_is_trial_period",
            sa.Boolean(),
            nullable=False,
            server_default="false",
        ),
        sa.Column("subscription_last_verified_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("purchase_token_hash", sa.String(length=64), nullable=True),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.text("NOW()"),
        ),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.text("NOW()"),
        ),
        sa.CheckConstraint(
            "subscription_status IN ('active', 'free', 'cancelled', 'grace_period', "
            "'on_hold', 'expired', 'refunded', 'unknown')",
            name="ck_user_entitlements_status",
        ),
        sa.PrimaryKeyConstraint("user_id"),
    )
    op.create_index(
        "idx_user_entitlements_token_hash", "user_entitlements", ["purchase_token_hash"]
    )
    op.create_index("idx_user_entitlements_status", "user_entitlements", ["subscription_status"])

    op.create_table(
        "entitlement_audit_logs",
        sa.Column("id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("user_id", sa.String(length=255), nullable=False),
        sa.Column("event_type", sa.String(length=50), nullable=False),
        sa.Column(
            "data",
            postgresql.JSONB(astext_type=sa.Text()),
            nullable=False,
            server_default=sa.text("'{}'::jsonb"),
        ),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.text("NOW()"),
        ),
        sa.CheckConstraint(
            "event_type IN ('verified', 'restored', 'rtdn_processed')",
            name="ck_entitlement_audit_logs_event_type",
        ),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(
        "idx_entitlement_audit_logs_user_id", "entitlement_audit_logs", ["user_id"]
    )
    op.create_index(
        "idx_entitlement_audit_logs_created_at",
        "entitlement_audit_logs",
        ["created_at"],
        postgresql_using="brin",
    )


def downgrade() -> None:
    op.drop_index("idx_entitlement_audit_logs_created_at", table_name="entitlement_audit_logs")
    op.drop_index("idx_entitlement_audit_logs_user_id", table_name="entitlement_audit_logs")
    op.drop_table("entitlement_audit_logs")

    op.drop_index("idx_user_entitlements_status", table_name="user_entitlements")
    op.drop_index("idx_user_entitlements_token_hash", table_name="user_entitlements")
    op.drop_table("user_entitlements")
