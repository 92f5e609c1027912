from datetime import datetime, timezone
from zoneinfo import ZoneInfo

import pytest
from alembic.migration import MigrationContext

from database import make_engine
from models import Granularity
from periods import (
    DAY_LABELS,
    MONTH_LABELS,
    RU_DAY_LABELS,
    RU_MONTH_LABELS,
    slots_for,
    week_start,
    year_start,
)
from services import BucketRepository
from store import LedgerStore

TZ = ZoneInfo("Europe/Moscow")


def make_store(tmp_path) -> LedgerStore:
    store = LedgerStore(make_engine(f"sqlite:///{tmp_path / 'ledger.db'}"))
    store.ensure_schema()
    return store


def test_series_round_trip_keeps_zero_slots_and_labels(tmp_path) -> None:
    store = make_store(tmp_path)
    income = [0, 5, 0, 0, 120, 0, 0, 0, 9, 0, 0, 99_999_999]
    expenses = [3, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0]
    earning = [0, 0, 0, 0, 0, 0, 1]
    spent = [7, 0, 0, 0, 0, 0, 0]

    with store.write() as session:
        buckets = BucketRepository(session)
        buckets.write_series(Granularity.month, income, expenses)
        buckets.write_series(Granularity.weekday, earning, spent)

    with store.read() as session:
        buckets = BucketRepository(session)
        monthly = buckets.series(Granularity.month)
        weekly = buckets.series(Granularity.weekday)

    assert list(monthly.credits) == income
    assert list(monthly.debits) == expenses
    assert list(weekly.credits) == earning
    assert list(weekly.debits) == spent
    assert monthly.labels == MONTH_LABELS
    assert weekly.labels == DAY_LABELS


def test_write_series_rejects_wrong_length(tmp_path) -> None:
    store = make_store(tmp_path)
    with pytest.raises(ValueError):
        with store.write() as session:
            BucketRepository(session).write_series(
                Granularity.weekday, [0] * 12, [0] * 12
            )


def test_ensure_schema_is_repeatable(tmp_path) -> None:
    store = make_store(tmp_path)
    store.ensure_schema()

    with store.read() as session:
        buckets = BucketRepository(session)
        assert len(buckets.series(Granularity.month).credits) == 12
        assert len(buckets.series(Granularity.weekday).credits) == 7


def test_bootstrapped_database_is_stamped_at_migration_head(tmp_path) -> None:
    store = make_store(tmp_path)
    store.ensure_schema()

    with store.engine.connect() as conn:
        assert MigrationContext.configure(conn).get_current_revision() == "202610190900"


def test_labels_follow_the_configured_locale(tmp_path) -> None:
    store = make_store(tmp_path)
    with store.write() as session:
        BucketRepository(session).write_series(Granularity.weekday, [1] * 7, [2] * 7)

    relabelled = LedgerStore(store.engine, locale="ru")
    relabelled.ensure_schema()

    with relabelled.read() as session:
        buckets = BucketRepository(session)
        monthly = buckets.series(Granularity.month)
        weekly = buckets.series(Granularity.weekday)
    assert monthly.labels == RU_MONTH_LABELS
    assert weekly.labels == RU_DAY_LABELS
    assert weekly.credits == (1,) * 7
    assert weekly.debits == (2,) * 7


@pytest.mark.parametrize(
    "moment, month, weekday",
    [
        (datetime(2025, 1, 1, 0, 0), 0, 2),
        (datetime(2025, 1, 5, 23, 59), 0, 6),
        (datetime(2025, 1, 6, 0, 0), 0, 0),
        (datetime(2024, 12, 31, 12, 0), 11, 1),
        # 22:00 UTC on Sunday is already Monday in Moscow
        (datetime(2025, 1, 5, 22, 0, tzinfo=timezone.utc), 0, 0),
        # 21:30 UTC on Dec 31 is already January in Moscow
        (datetime(2024, 12, 31, 21, 30, tzinfo=timezone.utc), 0, 2),
    ],
)
def test_slots_follow_local_calendar(moment, month, weekday) -> None:
    slots = slots_for(moment, TZ)
    assert (slots.month, slots.weekday) == (month, weekday)


def test_boundaries() -> None:
    moment = datetime(2025, 3, 12, 10, 30, tzinfo=TZ)

    assert week_start(moment) == datetime(2025, 3, 10, 0, 0, tzinfo=TZ)
    assert year_start(moment) == datetime(2025, 1, 1, 0, 0, tzinfo=TZ)
    assert week_start(datetime(2025, 3, 10, 0, 0, tzinfo=TZ)) == datetime(
        2025, 3, 10, 0, 0, tzinfo=TZ
    )
