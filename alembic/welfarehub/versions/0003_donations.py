"""donations and payment recheck audit

Revision ID: 0003_donations
Revises: 0002_campaigns
Create Date: 2026-10-18
"""

from alembic import op
import sqlalchemy as sa


revision = "0003_donations"
down_revision = "0002_campaigns"
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "donations",
        sa.Column("donation_id", sa.String(), nullable=False),
        sa.Column("amount_paise", sa.Integer(), nullable=False),
        sa.Column("currency", sa.String(length=3), nullable=False),
        sa.Column("donor_email", sa.String(), nullable=True),
        sa.Column("status", sa.String(), nullable=False),
        sa.Column("payment_verified", sa.Boolean(), nullable=False),
        sa.Column("payment_verified_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("razorpay_payment_id", sa.String(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.PrimaryKeyConstraint("donation_id"),
    )
    op.create_index("ix_donations_status", "donations", ["status"])
    op.create_index("ix_donations_razorpay_payment_id", "donations", ["razorpay_payment_id"])

    op.create_table(
        "payment_rechecks",
        sa.Column("recheck_id", sa.String(), nullable=False),
        sa.Column("donation_id", sa.String(), nullable=False),
        sa.Column("razorpay_payment_id", sa.String(), nullable=False),
        sa.Column("performed_by", sa.String(), nullable=False),
        sa.Column("previous_status", sa.String(), nullable=False),
        sa.Column("new_status", sa.String(), nullable=False),
        sa.Column("gateway_status", sa.String(), nullable=True),
        sa.Column("success", sa.Boolean(), nullable=False),
        sa.Column("error_code", sa.String(), nullable=True),
        sa.Column("error_message", sa.String(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.ForeignKeyConstraint(["donation_id"], ["donations.donation_id"]),
        sa.PrimaryKeyConstraint("recheck_id"),
    )
    op.create_index("ix_payment_rechecks_donation_id", "payment_rechecks", ["donation_id"])


def downgrade() -> None:
    op.drop_index("ix_payment_rechecks_donation_id", table_name="payment_rechecks")
    op.drop_table("payment_rechecks")
    op.drop_index("ix_donations_razorpay_payment_id", table_name="donations")
    op.drop_index("ix_donations_status", table_name="donations")
    op.drop_table("donations")
