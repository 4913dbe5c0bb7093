"""create app.payouts

Revision ID: 0001_create_payouts
Revises:
Create Date: 2026-10-19 00:00:00.000000

"""

from __future__ import annotations

from alembic import op
import sqlalchemy as sa


revision = "0001_create_payouts"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.execute("CREATE SCHEMA IF NOT EXISTS app;")
    op.create_table(
        "payouts",
        sa.Column("id", sa.Text(), primary_key=True),
        sa.Column("batch_id", sa.Text(), nullable=False),
        sa.Column("reference_id", sa.Text(), nullable=False, unique=True),
        sa.Column("recipient_name", sa.Text(), nullable=False),
        sa.Column("recipient_phone", sa.Text(), nullable=True),
        sa.Column("recipient_email", sa.Text(), nullable=True),
        sa.Column("recipient_tag", sa.Text(), nullable=True),
        sa.Column("country_code", sa.String(2), nullable=False),
        sa.Column("bank_code", sa.Text(), nullable=True),
        sa.Column("account_number", sa.Text(), nullable=True),
        sa.Column("bank_name", sa.Text(), nullable=True),
        sa.Column("amount", sa.BigInteger(), nullable=False),
        sa.Column("currency", sa.String(3), nullable=False),
        sa.Column("status", sa.Text(), nullable=False, server_default="PENDING"),
        sa.Column("error_message", sa.Text(), nullable=True),
        sa.Column("gateway_transaction_id", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
        sa.CheckConstraint("amount >= 0", name="payouts_amount_non_negative"),
        sa.CheckConstraint(
            "status IN ('PENDING','PROCESSING','SUCCESS','FAILED')",
            name="payouts_status_valid",
        ),
        schema="app",
    )
    op.create_index("ix_payouts_batch_id", "payouts", ["batch_id"], schema="app")
    op.create_index("ix_payouts_created_at", "payouts", ["created_at"], schema="app")
    op.create_index(
        "ix_payouts_unfinished",
        "payouts",
        ["status"],
        schema="app",
        postgresql_where=sa.text("status IN ('PENDING','PROCESSING')"),
    )


def downgrade() -> None:
    op.drop_index("ix_payouts_unfinished", table_name="payouts", schema="app")
    op.drop_index("ix_payouts_created_at", table_name="payouts", schema="app")
    op.drop_index("ix_payouts_batch_id", table_name="payouts", schema="app")
    op.drop_table("payouts", schema="app")
