"""initial ledger schema

Revision ID: 202610190900
Revises:
Create Date: 2026-10-19 09:00:00.000000

"""

from alembic import op
import sqlalchemy as sa


revision = "202610190900"
down_revision = None
branch_labels = None
depends_on = None

MONTHS = ["Jan", "Feb", "Mar", "Apr", "May", "Jun", "Jul", "Aug", "Sep", "Oct", "Nov", "Dec"]
DAYS = ["Mon", "Tue", "Wed", "Thu", "Fri", "Sat", "Sun"]


def upgrade():
    op.create_table(
        "ledger_snapshots",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("savings", sa.BigInteger(), nullable=False, server_default="0"),
        sa.Column("income", sa.BigInteger(), nullable=False, server_default="0"),
        sa.Column("expenses", sa.BigInteger(), nullable=False, server_default="0"),
        sa.Column("last_updated", sa.DateTime(), nullable=False),
        sa.CheckConstraint("savings >= 0", name="ck_ledger_savings_non_negative"),
        sa.CheckConstraint("income >= 0", name="ck_ledger_income_non_negative"),
        sa.CheckConstraint("expenses >= 0", name="ck_ledger_expenses_non_negative"),
    )
    op.create_index("ix_ledger_last_updated", "ledger_snapshots", ["last_updated"])

    bucket_slots = op.create_table(
        "bucket_slots",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column(
            "granularity",
            sa.Enum("month", "weekday", name="granularity"),
            nullable=False,
        ),
        sa.Column("slot", sa.Integer(), nullable=False),
        sa.Column("label", sa.String(length=16), nullable=False),
        sa.Column("credit", sa.BigInteger(), nullable=False, server_default="0"),
        sa.Column("debit", sa.BigInteger(), nullable=False, server_default="0"),
        sa.UniqueConstraint("granularity", "slot", name="uq_bucket_granularity_slot"),
        sa.CheckConstraint("slot >= 0 AND slot < 12", name="ck_bucket_slot_range"),
        sa.CheckConstraint("credit >= 0", name="ck_bucket_credit_non_negative"),
        sa.CheckConstraint("debit >= 0", name="ck_bucket_debit_non_negative"),
    )

    op.create_table(
        "history_records",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column(
            "operation_type",
            sa.Enum("savings", "income", "expenses", name="ledgerfield"),
            nullable=False,
        ),
        sa.Column("amount", sa.BigInteger(), nullable=False),
        sa.Column("is_incremental", sa.Boolean(), nullable=False),
        sa.Column("recorded_at", sa.DateTime(), nullable=False),
    )
    op.create_index("ix_history_recorded_at", "history_records", ["recorded_at"])

    op.create_table(
        "transaction_records",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column(
            "type", sa.Enum("income", "expense", name="transactiontype"), nullable=False
        ),
        sa.Column("amount", sa.BigInteger(), nullable=False),
        sa.Column("occurred_at", sa.DateTime(), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.CheckConstraint("amount > 0", name="ck_transaction_amount_positive"),
    )
    op.create_index(
        "ix_transaction_occurred_at", "transaction_records", ["occurred_at"]
    )

    op.bulk_insert(
        bucket_slots,
        [
            {"granularity": "month", "slot": i, "label": label, "credit": 0, "debit": 0}
            for i, label in enumerate(MONTHS)
        ]
        + [
            {"granularity": "weekday", "slot": i, "label": label, "credit": 0, "debit": 0}
            for i, label in enumerate(DAYS)
        ],
    )


def downgrade():
    op.drop_index("ix_transaction_occurred_at", table_name="transaction_records")
    op.drop_table("transaction_records")
    op.drop_index("ix_history_recorded_at", table_name="history_records")
    op.drop_table("history_records")
    op.drop_table("bucket_slots")
    op.drop_index("ix_ledger_last_updated", table_name="ledger_snapshots")
    op.drop_table("ledger_snapshots")
