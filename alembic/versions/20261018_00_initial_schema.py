"""create marketplace subscription and tenant member schema

Revision ID: 20261018_00
Revises: 
Create Date: 2026-10-18 09:10:00

"""
from __future__ import annotations

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


# revision identifiers, used by Alembic.
revision = "20261018_00"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "marketplace_subscriptions",
        sa.Column("origin", sa.String(length=20), nullable=False),
        sa.Column("subscription_id", sa.String(length=64), nullable=False),
        sa.Column("plan_id", sa.String(length=100), nullable=True),
        sa.Column("offer_id", sa.String(length=100), nullable=True),
        sa.Column("quantity", sa.Integer(), nullable=True),
        sa.Column("status", sa.String(length=20), nullable=False),
        sa.Column("last_operation_id", sa.String(length=64), nullable=True),
        sa.Column("user_oid", sa.String(length=128), nullable=True),
        sa.Column("user_email", sa.String(length=320), nullable=True),
        sa.Column("user_name", sa.String(length=255), nullable=True),
        sa.Column("user_tenant", sa.String(length=64), nullable=True),
        sa.Column("last_modified", sa.DateTime(timezone=True), nullable=False),
        sa.Column("id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint(
            "origin",
            "subscription_id",
            name="uq_marketplace_subscriptions_origin_subscription",
        ),
    )
    op.create_index(
        "ix_marketplace_subscriptions_subscription_id",
        "marketplace_subscriptions",
        ["subscription_id"],
        unique=False,
    )
    op.create_index(
        "ix_marketplace_subscriptions_user_oid", "marketplace_subscriptions", ["user_oid"], unique=False
    )
    op.create_index(
        "ix_marketplace_subscriptions_user_tenant", "marketplace_subscriptions", ["user_tenant"], unique=False
    )

    op.create_table(
        "tenant_members",
        sa.Column("user_id", sa.String(length=128), nullable=False),
        sa.Column("email", sa.String(length=320), nullable=True),
        sa.Column("name", sa.String(length=255), nullable=True),
        sa.Column("role", sa.String(length=20), nullable=False),
        sa.Column("added_by", sa.String(length=255), nullable=False),
        sa.Column("id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("tenant_id", sa.String(length=64), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("tenant_id", "user_id", name="uq_tenant_members_tenant_user"),
    )
    op.create_index("ix_tenant_members_tenant_id", "tenant_members", ["tenant_id"], unique=False)
    op.create_index("ix_tenant_members_user_id", "tenant_members", ["user_id"], unique=False)

    op.create_table(
        "usage_records",
        sa.Column("category", sa.String(length=50), nullable=False),
        sa.Column("week_key", sa.String(length=8), nullable=False),
        sa.Column("recorded_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("tenant_id", sa.String(length=64), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_usage_records_tenant_id", "usage_records", ["tenant_id"], unique=False)
    op.create_index(
        "ix_usage_records_tenant_category_week",
        "usage_records",
        ["tenant_id", "category", "week_key"],
        unique=False,
    )


def downgrade() -> None:
    op.drop_index("ix_usage_records_tenant_category_week", table_name="usage_records")
    op.drop_index("ix_usage_records_tenant_id", table_name="usage_records")
    op.drop_table("usage_records")

    op.drop_index("ix_tenant_members_user_id", table_name="tenant_members")
    op.drop_index("ix_tenant_members_tenant_id", table_name="tenant_members")
    op.drop_table("tenant_members")

    op.drop_index("ix_marketplace_subscriptions_user_tenant", table_name="marketplace_subscriptions")
    op.drop_index("ix_marketplace_subscriptions_user_oid", table_name="marketplace_subscriptions")
    op.drop_index("ix_marketplace_subscriptions_subscription_id", table_name="marketplace_subscriptions")
    op.drop_table("marketplace_subscriptions")
