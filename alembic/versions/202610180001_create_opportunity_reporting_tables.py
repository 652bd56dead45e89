"""create opportunity reporting tables

Revision ID: 202610180001
Revises:
Create Date: 2026-10-18 00:01:00
"""

from collections.abc import Sequence

from alembic import op
import sqlalchemy as sa


revision: str = "202610180001"
down_revision: str | None = None
branch_labels: Sequence[str] | None = None
depends_on: Sequence[str] | None = None


def upgrade() -> None:
    op.create_table(
        "accounts",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("tenant_id", sa.String(length=64), nullable=False),
        sa.Column("name", sa.Text(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_accounts_tenant_id", "accounts", ["tenant_id"], unique=False)

    op.create_table(
        "opportunities",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("tenant_id", sa.String(length=64), nullable=False),
        sa.Column("name", sa.Text(), nullable=False),
        sa.Column("account_id", sa.Uuid(), nullable=True),
        sa.Column("owner_id", sa.String(length=64), nullable=True),
        sa.Column("stage", sa.String(length=100), nullable=False, server_default="qualification"),
        sa.Column("amount", sa.Numeric(15, 2), nullable=True),
        sa.Column("probability", sa.Integer(), nullable=True),
        sa.Column("expected_close_date", sa.Date(), nullable=True),
        sa.Column("actual_close_date", sa.Date(), nullable=True),
        sa.Column("close_reason", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["account_id"], ["accounts.id"], ondelete="SET NULL"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_opportunities_tenant_stage", "opportunities", ["tenant_id", "stage"], unique=False)
    op.create_index("ix_opportunities_tenant_created_at", "opportunities", ["tenant_id", "created_at"], unique=False)
    op.create_index(
        "ix_opportunities_tenant_actual_close_date",
        "opportunities",
        ["tenant_id", "actual_close_date"],
        unique=False,
    )
    op.create_index(
        "ix_opportunities_tenant_expected_close_date",
        "opportunities",
        ["tenant_id", "expected_close_date"],
        unique=False,
    )

    op.create_table(
        "event_dates",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("tenant_id", sa.String(length=64), nullable=False),
        sa.Column("opportunity_id", sa.Uuid(), nullable=False),
        sa.Column("event_date", sa.Date(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["opportunity_id"], ["opportunities.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_event_dates_opportunity_id", "event_dates", ["opportunity_id"], unique=False)

    op.create_table(
        "tenant_settings",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("tenant_id", sa.String(length=64), nullable=False),
        sa.Column("setting_key", sa.String(length=255), nullable=False),
        sa.Column("setting_value", sa.JSON(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("tenant_id", "setting_key", name="uq_tenant_settings_tenant_key"),
    )


def downgrade() -> None:
    op.drop_table("tenant_settings")
    op.drop_index("ix_event_dates_opportunity_id", table_name="event_dates")
    op.drop_table("event_dates")
    op.drop_index("ix_opportunities_tenant_expected_close_date", table_name="opportunities")
    op.drop_index("ix_opportunities_tenant_actual_close_date", table_name="opportunities")
    op.drop_index("ix_opportunities_tenant_created_at", table_name="opportunities")
    op.drop_index("ix_opportunities_tenant_stage", table_name="opportunities")
    op.drop_table("opportunities")
    op.drop_index("ix_accounts_tenant_id", table_name="accounts")
    op.drop_table("accounts")
