"""add survey responses for per-survey response limits

Revision ID: 20261018_01
Revises: 20261018_00
Create Date: 2026-10-18 11:40:00

"""
from __future__ import annotations

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


# revision identifiers, used by Alembic.
revision = "20261018_01"
down_revision = "20261018_00"
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "survey_responses",
        sa.Column("survey_id", sa.String(length=64), nullable=False),
        sa.Column("participant_hash", sa.String(length=64), nullable=False),
        sa.Column("question_index", sa.Integer(), nullable=False),
        sa.Column("id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("tenant_id", sa.String(length=64), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_survey_responses_tenant_id", "survey_responses", ["tenant_id"], unique=False)
    op.create_index("ix_survey_responses_survey_id", "survey_responses", ["survey_id"], unique=False)


def downgrade() -> None:
    op.drop_index("ix_survey_responses_survey_id", table_name="survey_responses")
    op.drop_index("ix_survey_responses_tenant_id", table_name="survey_responses")
    op.drop_table("survey_responses")
