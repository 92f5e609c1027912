from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from datetime import datetime
from functools import partial
from typing import Callable, Optional, Sequence, Union
from zoneinfo import ZoneInfo

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from amounts import AmountCodec, Number
from config import get_settings
from errors import InvalidKind, InvalidTimestamp, OutOfRange, StorageFailure
from models import (
    BUCKET_SIDE_FOR_FIELD,
    LEDGER_FIELD_FOR_TRANSACTION,
    SLOT_COUNTS,
    BucketSide,
    BucketSlot,
    Granularity,
    HistoryRecord,
    LedgerField,
    LedgerSnapshot,
    TransactionRecord,
    TransactionType,
)
from periods import from_epoch, localize, slots_for
from store import LedgerStore
from tasks import TaskSupervisor

logger = logging.getLogger(__name__)

HISTORY_LIMIT = 100
TRANSACTIONS_LIMIT = 100

Clock = Callable[[], datetime]


def parse_kind(kind: Union[str, LedgerField]) -> LedgerField:
    try:
        return LedgerField(kind)
    except ValueError as exc:
        raise InvalidKind(f"Unknown operation type: {kind!r}") from exc


def parse_transaction_type(value: Union[str, TransactionType]) -> TransactionType:
    normalized = value.strip().lower() if isinstance(value, str) else value
    try:
        return TransactionType(normalized)
    except ValueError as exc:
        raise InvalidKind(f"Unknown transaction type: {value!r}") from exc


def _clamp_limit(limit: int, ceiling: int) -> int:
    return min(max(int(limit), 1), ceiling)


@dataclass(frozen=True)
class LedgerView:
    savings: int
    income: int
    expenses: int

    @property
    def balance(self) -> int:
        return self.income - self.expenses

    def as_dict(self, codec: AmountCodec) -> dict[str, object]:
        return {
            "savings": codec.to_amount(self.savings),
            "income": codec.to_amount(self.income),
            "expenses": codec.to_amount(self.expenses),
            "balance": codec.to_amount(self.balance),
        }


@dataclass(frozen=True)
class BucketSeries:
    granularity: Granularity
    labels: tuple[str, ...]
    credits: tuple[int, ...]
    debits: tuple[int, ...]


class LedgerRepository:
    """Session-bound access to the latest ledger snapshot."""

    def __init__(self, session: Session) -> None:
        self.session = session
        self._id: Optional[int] = None

    def latest_id(self) -> int:
        if self._id is not None:
            return self._id
        snapshot_id = self.session.scalar(
            select(LedgerSnapshot.id)
            .order_by(LedgerSnapshot.last_updated.desc(), LedgerSnapshot.id.desc())
            .limit(1)
        )
        if snapshot_id is None:
            snapshot = LedgerSnapshot(savings=0, income=0, expenses=0)
            self.session.add(snapshot)
            self.session.flush()
            snapshot_id = snapshot.id
        self._id = snapshot_id
        return snapshot_id

    def view(self) -> LedgerView:
        row = self.session.execute(
            select(
                LedgerSnapshot.savings, LedgerSnapshot.income, LedgerSnapshot.expenses
            ).where(LedgerSnapshot.id == self.latest_id())
        ).one()
        return LedgerView(savings=row.savings, income=row.income, expenses=row.expenses)

    def _write(self, values: dict) -> None:
        values["last_updated"] = datetime.utcnow()
        self.session.execute(
            update(LedgerSnapshot)
            .where(LedgerSnapshot.id == self.latest_id())
            .values(values)
            .execution_options(synchronize_session=False)
        )

    def add(self, field: LedgerField, units: int) -> None:
        column = getattr(LedgerSnapshot, field.value)
        self._write({field.value: column + units})

    def set(self, field: LedgerField, units: int) -> None:
        self._write({field.value: units})

    def replace(self, view: LedgerView) -> None:
        self._write(
            {"savings": view.savings, "income": view.income, "expenses": view.expenses}
        )


class BucketRepository:
    """Session-bound access to the monthly and weekday bucket series."""

    def __init__(self, session: Session) -> None:
        self.session = session

    def increment(
        self, granularity: Granularity, slot: int, side: BucketSide, units: int
    ) -> None:
        column = getattr(BucketSlot, side.value)
        result = self.session.execute(
            update(BucketSlot)
            .where(BucketSlot.granularity == granularity, BucketSlot.slot == slot)
            .values({side.value: column + units})
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            raise StorageFailure(f"Bucket slot {granularity.value}[{slot}] is missing")

    def series(self, granularity: Granularity) -> BucketSeries:
        rows = self.session.execute(
            select(BucketSlot.label, BucketSlot.credit, BucketSlot.debit)
            .where(BucketSlot.granularity == granularity)
            .order_by(BucketSlot.slot)
        ).all()
        if len(rows) != SLOT_COUNTS[granularity]:
            raise StorageFailure(
                f"Expected {SLOT_COUNTS[granularity]} {granularity.value} slots, found {len(rows)}"
            )
        return BucketSeries(
            granularity=granularity,
            labels=tuple(row.label for row in rows),
            credits=tuple(row.credit for row in rows),
            debits=tuple(row.debit for row in rows),
        )

    def write_series(
        self,
        granularity: Granularity,
        credits: Sequence[int],
        debits: Sequence[int],
    ) -> None:
        count = SLOT_COUNTS[granularity]
        if len(credits) != count or len(debits) != count:
            raise ValueError(f"{granularity.value} series must have {count} slots")
        if any(value < 0 for value in (*credits, *debits)):
            raise ValueError("Bucket values cannot be negative")
        for slot in range(count):
            result = self.session.execute(
                update(BucketSlot)
                .where(BucketSlot.granularity == granularity, BucketSlot.slot == slot)
                .values(credit=int(credits[slot]), debit=int(debits[slot]))
                .execution_options(synchronize_session=False)
            )
            if result.rowcount != 1:
                raise StorageFailure(
                    f"Bucket slot {granularity.value}[{slot}] is missing"
                )

    def zero(self, granularity: Granularity) -> None:
        zeros = [0] * SLOT_COUNTS[granularity]
        self.write_series(granularity, zeros, zeros)


class HistoryService:
    def __init__(self, store: LedgerStore) -> None:
        self.store = store

    def append(
        self,
        operation_type: LedgerField,
        units: int,
        is_incremental: bool,
        recorded_at: Optional[datetime] = None,
    ) -> None:
        with self.store.write() as session:
            session.add(
                HistoryRecord(
                    operation_type=operation_type,
                    amount=units,
                    is_incremental=is_incremental,
                    recorded_at=recorded_at or datetime.utcnow(),
                )
            )

    def recent(self, limit: int = HISTORY_LIMIT) -> list[HistoryRecord]:
        stmt = (
            select(HistoryRecord)
            .order_by(HistoryRecord.recorded_at.desc(), HistoryRecord.id.desc())
            .limit(_clamp_limit(limit, HISTORY_LIMIT))
        )
        with self.store.read() as session:
            return list(session.scalars(stmt).all())


class AggregationEngine:
    """Applies a ledger delta and its bucket rollup as one unit.

    The ledger field, the monthly slot and the weekday slot are written in
    one transaction under the store lock. History is appended afterwards and
    its failure never undoes the update.
    """

    def __init__(
        self,
        store: LedgerStore,
        *,
        codec: Optional[AmountCodec] = None,
        tz: Optional[ZoneInfo] = None,
        clock: Optional[Clock] = None,
        supervisor: Optional[TaskSupervisor] = None,
        history: Optional[HistoryService] = None,
    ) -> None:
        settings = None
        if codec is None or tz is None:
            settings = get_settings()
        self.store = store
        self.codec = codec or AmountCodec(settings.amount_mode)
        self.tz = tz or ZoneInfo(settings.timezone)
        self.clock = clock or (lambda: datetime.now(self.tz))
        self.supervisor = supervisor
        self.history = history or HistoryService(store)

    def apply(
        self, kind: Union[str, LedgerField], amount: Number, incremental: bool
    ) -> LedgerView:
        field = parse_kind(kind)
        units = self.codec.parse(amount)
        moment = self.clock()
        with self.store.write() as session:
            view = self.apply_units(session, field, units, incremental, moment)
        logger.info(
            f"ledger_apply: kind={field.value} units={units} incremental={incremental}"
        )
        self.record_history(field, units, incremental)
        return view

    def apply_units(
        self,
        session: Session,
        field: LedgerField,
        units: int,
        incremental: bool,
        moment: datetime,
    ) -> LedgerView:
        """Write ledger and buckets inside the caller's transaction."""
        ledger = LedgerRepository(session)
        # replacement only applies to savings; income and expenses accumulate
        if incremental or field is not LedgerField.savings:
            ledger.add(field, units)
        else:
            ledger.set(field, units)
        view = ledger.view()
        if getattr(view, field.value) > self.codec.max_units:
            raise OutOfRange(
                f"{field.value} would exceed {self.codec.to_amount(self.codec.max_units)}"
            )

        side = BUCKET_SIDE_FOR_FIELD.get(field)
        if side is not None:
            slots = slots_for(moment, self.tz)
            buckets = BucketRepository(session)
            buckets.increment(Granularity.month, slots.month, side, units)
            buckets.increment(Granularity.weekday, slots.weekday, side, units)
        return view

    def record_history(self, field: LedgerField, units: int, incremental: bool) -> None:
        job = partial(self.history.append, field, units, incremental, datetime.utcnow())
        if self.supervisor is not None:
            self.supervisor.submit("history_append", job)
            return
        try:
            job()
        except StorageFailure as exc:
            logger.error(f"history_append_failed: kind={field.value} error={exc}")


class TransactionService:
    def __init__(self, engine: AggregationEngine) -> None:
        self.engine = engine
        self.store = engine.store
        self.codec = engine.codec

    def _resolve_timestamp(
        self, timestamp: Union[datetime, float, int, None]
    ) -> datetime:
        if timestamp is None or (
            not isinstance(timestamp, datetime) and timestamp == 0
        ):
            moment = self.engine.clock()
        elif isinstance(timestamp, datetime):
            moment = timestamp
        else:
            seconds = float(timestamp)
            if not math.isfinite(seconds):
                raise InvalidTimestamp(f"Invalid timestamp: {timestamp!r}")
            try:
                moment = from_epoch(seconds, self.engine.tz)
            except (OverflowError, ValueError, OSError) as exc:
                raise InvalidTimestamp(f"Timestamp out of range: {timestamp!r}") from exc
        try:
            # stored as local wall-clock time
            return localize(moment, self.engine.tz).replace(tzinfo=None)
        except (OverflowError, ValueError) as exc:
            raise InvalidTimestamp(f"Timestamp out of range: {timestamp!r}") from exc

    def record(
        self,
        type: Union[str, TransactionType],
        amount: Number,
        timestamp: Union[datetime, float, int, None] = None,
    ) -> TransactionRecord:
        txn_type = parse_transaction_type(type)
        units = self.codec.parse(amount, allow_zero=False)
        occurred_at = self._resolve_timestamp(timestamp)
        field = LEDGER_FIELD_FOR_TRANSACTION[txn_type]

        with self.store.write() as session:
            txn = TransactionRecord(type=txn_type, amount=units, occurred_at=occurred_at)
            session.add(txn)
            session.flush()
            self.engine.apply_units(session, field, units, True, occurred_at)
        logger.info(
            f"transaction_recorded: id={txn.id} type={txn_type.value} units={units} "
            f"occurred_at={occurred_at.isoformat()}"
        )
        self.engine.record_history(field, units, True)
        return txn

    def list(self, limit: int = TRANSACTIONS_LIMIT) -> list[TransactionRecord]:
        stmt = (
            select(TransactionRecord)
            .order_by(TransactionRecord.occurred_at.desc(), TransactionRecord.id.desc())
            .limit(_clamp_limit(limit, TRANSACTIONS_LIMIT))
        )
        with self.store.read() as session:
            return list(session.scalars(stmt).all())


class ResetService:
    def __init__(self, store: LedgerStore, codec: Optional[AmountCodec] = None) -> None:
        self.store = store
        self.codec = codec or AmountCodec(get_settings().amount_mode)

    def weekly(self) -> LedgerView:
        """Zero the weekday series and fold the week's balance into savings."""
        with self.store.write() as session:
            BucketRepository(session).zero(Granularity.weekday)
            ledger = LedgerRepository(session)
            before = ledger.view()
            savings = before.savings + before.balance
            clamped = min(max(savings, 0), self.codec.max_units)
            if clamped != savings:
                logger.warning(
                    f"weekly_reset: savings {savings} outside bounds, clamped to {clamped}"
                )
            after = LedgerView(savings=clamped, income=0, expenses=0)
            ledger.replace(after)
        logger.info(
            f"weekly_reset: savings={before.savings}->{after.savings} "
            f"balance_folded={before.balance}"
        )
        return after

    def yearly(self) -> None:
        with self.store.write() as session:
            BucketRepository(session).zero(Granularity.month)
        logger.info("yearly_reset: monthly series zeroed")

    def reset_all(self) -> LedgerView:
        with self.store.write() as session:
            buckets = BucketRepository(session)
            buckets.zero(Granularity.month)
            buckets.zero(Granularity.weekday)
            view = LedgerView(savings=0, income=0, expenses=0)
            LedgerRepository(session).replace(view)
        logger.info("manual_reset: ledger and both series zeroed")
        return view


class DashboardService:
    """Consistent reads of the ledger cards and the two chart series."""

    def __init__(self, store: LedgerStore, codec: Optional[AmountCodec] = None) -> None:
        self.store = store
        self.codec = codec or AmountCodec(get_settings().amount_mode)

    def ledger(self) -> LedgerView:
        with self.store.read() as session:
            return LedgerRepository(session).view()

    def series(self) -> tuple[BucketSeries, BucketSeries]:
        with self.store.read() as session:
            buckets = BucketRepository(session)
            return buckets.series(Granularity.month), buckets.series(Granularity.weekday)

    def cards(self) -> dict[str, object]:
        return self.ledger().as_dict(self.codec)

    def charts(self) -> dict[str, object]:
        monthly, weekly = self.series()
        to_amount = self.codec.to_amount
        return {
            "months": list(monthly.labels),
            "income": [to_amount(v) for v in monthly.credits],
            "expenses": [to_amount(v) for v in monthly.debits],
            "days": list(weekly.labels),
            "earning": [to_amount(v) for v in weekly.credits],
            "spent": [to_amount(v) for v in weekly.debits],
        }
