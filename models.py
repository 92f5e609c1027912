from datetime import datetime
from enum import Enum

from sqlalchemy import (
    BigInteger,
    Boolean,
    CheckConstraint,
    DateTime,
    Enum as SAEnum,
    Index,
    Integer,
    String,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column

from database import Base


def utcnow() -> datetime:
    return datetime.utcnow()


class LedgerField(str, Enum):
    savings = "savings"
    income = "income"
    expenses = "expenses"


class TransactionType(str, Enum):
    income = "income"
    expense = "expense"


class Granularity(str, Enum):
    month = "month"
    weekday = "weekday"


class BucketSide(str, Enum):
    """Which column of a bucket slot an amount lands in."""

    credit = "credit"
    debit = "debit"


# income rolls up into monthly income / weekly earning, expenses into
# monthly expenses / weekly spent
BUCKET_SIDE_FOR_FIELD = {
    LedgerField.income: BucketSide.credit,
    LedgerField.expenses: BucketSide.debit,
}

LEDGER_FIELD_FOR_TRANSACTION = {
    TransactionType.income: LedgerField.income,
    TransactionType.expense: LedgerField.expenses,
}

SLOT_COUNTS = {Granularity.month: 12, Granularity.weekday: 7}


class LedgerSnapshot(Base):
    __tablename__ = "ledger_snapshots"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    savings: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    income: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    expenses: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    last_updated: Mapped[datetime] = mapped_column(
        DateTime, default=utcnow, onupdate=utcnow, nullable=False
    )

    __table_args__ = (
        CheckConstraint("savings >= 0", name="ck_ledger_savings_non_negative"),
        CheckConstraint("income >= 0", name="ck_ledger_income_non_negative"),
        CheckConstraint("expenses >= 0", name="ck_ledger_expenses_non_negative"),
        Index("ix_ledger_last_updated", "last_updated"),
    )

    @property
    def balance(self) -> int:
        return self.income - self.expenses


class BucketSlot(Base):
    __tablename__ = "bucket_slots"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    granularity: Mapped[Granularity] = mapped_column(
        SAEnum(Granularity), nullable=False
    )
    slot: Mapped[int] = mapped_column(Integer, nullable=False)
    label: Mapped[str] = mapped_column(String(16), nullable=False)
    credit: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    debit: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)

    __table_args__ = (
        UniqueConstraint("granularity", "slot", name="uq_bucket_granularity_slot"),
        CheckConstraint("slot >= 0 AND slot < 12", name="ck_bucket_slot_range"),
        CheckConstraint("credit >= 0", name="ck_bucket_credit_non_negative"),
        CheckConstraint("debit >= 0", name="ck_bucket_debit_non_negative"),
    )


class HistoryRecord(Base):
    __tablename__ = "history_records"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    operation_type: Mapped[LedgerField] = mapped_column(
        SAEnum(LedgerField), nullable=False
    )
    amount: Mapped[int] = mapped_column(BigInteger, nullable=False)
    is_incremental: Mapped[bool] = mapped_column(Boolean, nullable=False)
    recorded_at: Mapped[datetime] = mapped_column(
        DateTime, default=utcnow, nullable=False
    )

    __table_args__ = (Index("ix_history_recorded_at", "recorded_at"),)


class TransactionRecord(Base):
    __tablename__ = "transaction_records"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    type: Mapped[TransactionType] = mapped_column(
        SAEnum(TransactionType), nullable=False
    )
    amount: Mapped[int] = mapped_column(BigInteger, nullable=False)
    occurred_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=utcnow, nullable=False
    )

    __table_args__ = (
        CheckConstraint("amount > 0", name="ck_transaction_amount_positive"),
        Index("ix_transaction_occurred_at", "occurred_at"),
    )

