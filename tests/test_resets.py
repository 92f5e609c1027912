import logging
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime
from zoneinfo import ZoneInfo

from amounts import AmountCodec
from database import make_engine
from models import Granularity
from scheduler import ResetLoop, ResetRule, default_rules
from services import (
    AggregationEngine,
    BucketRepository,
    DashboardService,
    LedgerRepository,
    LedgerView,
    ResetService,
)
from periods import week_start, year_start
from store import LedgerStore

TZ = ZoneInfo("Europe/Moscow")


def make_store(tmp_path) -> LedgerStore:
    store = LedgerStore(make_engine(f"sqlite:///{tmp_path / 'ledger.db'}"))
    store.ensure_schema()
    return store


def seed_ledger(store, savings, income, expenses) -> None:
    with store.write() as session:
        LedgerRepository(session).replace(
            LedgerView(savings=savings, income=income, expenses=expenses)
        )


def fill_buckets(store) -> None:
    with store.write() as session:
        buckets = BucketRepository(session)
        buckets.write_series(Granularity.month, [5] * 12, [4] * 12)
        buckets.write_series(Granularity.weekday, [3] * 7, [2] * 7)


def test_weekly_reset_folds_balance_into_savings(tmp_path) -> None:
    store = make_store(tmp_path)
    seed_ledger(store, 100, 500, 200)
    fill_buckets(store)

    after = ResetService(store, AmountCodec()).weekly()

    assert after == LedgerView(savings=400, income=0, expenses=0)
    dashboard = DashboardService(store, AmountCodec())
    assert dashboard.ledger() == after
    monthly, weekly = dashboard.series()
    assert weekly.credits == (0,) * 7
    assert weekly.debits == (0,) * 7
    assert monthly.credits == (5,) * 12
    assert monthly.debits == (4,) * 12


def test_weekly_reset_clamps_negative_savings(tmp_path, caplog) -> None:
    store = make_store(tmp_path)
    seed_ledger(store, 100, 0, 300)

    with caplog.at_level(logging.WARNING):
        after = ResetService(store, AmountCodec()).weekly()

    assert after.savings == 0
    assert "clamped" in caplog.text


def test_yearly_reset_only_touches_monthly_series(tmp_path) -> None:
    store = make_store(tmp_path)
    seed_ledger(store, 100, 500, 200)
    fill_buckets(store)

    ResetService(store, AmountCodec()).yearly()

    dashboard = DashboardService(store, AmountCodec())
    assert dashboard.ledger() == LedgerView(savings=100, income=500, expenses=200)
    monthly, weekly = dashboard.series()
    assert monthly.credits == (0,) * 12
    assert monthly.debits == (0,) * 12
    assert weekly.credits == (3,) * 7
    assert weekly.debits == (2,) * 7


def test_reset_all_zeroes_everything(tmp_path) -> None:
    store = make_store(tmp_path)
    seed_ledger(store, 100, 500, 200)
    fill_buckets(store)

    ResetService(store, AmountCodec()).reset_all()

    dashboard = DashboardService(store, AmountCodec())
    assert dashboard.cards() == {"savings": 0, "income": 0, "expenses": 0, "balance": 0}
    monthly, weekly = dashboard.series()
    assert not any(monthly.credits + monthly.debits + weekly.credits + weekly.debits)


def recording_rules(calls):
    return [
        ResetRule(
            "weekly", lambda now: week_start(now, TZ), lambda: calls.append("weekly")
        ),
        ResetRule(
            "yearly", lambda now: year_start(now, TZ), lambda: calls.append("yearly")
        ),
    ]


def test_weekly_rule_fires_once_after_monday_midnight() -> None:
    calls: list[str] = []
    loop = ResetLoop(
        recording_rules(calls), TZ, started_at=datetime(2025, 3, 9, 23, 59, 30)
    )

    assert loop.tick(datetime(2025, 3, 9, 23, 59, 50)) == []
    assert loop.tick(datetime(2025, 3, 10, 0, 0, 10)) == ["weekly"]
    assert loop.tick(datetime(2025, 3, 10, 0, 0, 40)) == []
    assert calls == ["weekly"]


def test_yearly_rule_fires_on_new_year() -> None:
    calls: list[str] = []
    # 2026-01-01 is a Thursday
    loop = ResetLoop(
        recording_rules(calls), TZ, started_at=datetime(2025, 12, 31, 23, 59)
    )

    assert loop.tick(datetime(2026, 1, 1, 0, 0, 30)) == ["yearly"]
    assert calls == ["yearly"]


def test_both_rules_fire_when_new_year_is_a_monday() -> None:
    calls: list[str] = []
    loop = ResetLoop(
        recording_rules(calls), TZ, started_at=datetime(2023, 12, 31, 23, 59)
    )

    assert loop.tick(datetime(2024, 1, 1, 0, 1)) == ["weekly", "yearly"]


def test_failing_rule_is_skipped_and_fires_next_time(caplog) -> None:
    calls: list[str] = []
    attempts = {"weekly": 0}

    def flaky_weekly():
        attempts["weekly"] += 1
        if attempts["weekly"] == 1:
            raise RuntimeError("database unavailable")
        calls.append("weekly")

    rules = [
        ResetRule("weekly", lambda now: week_start(now, TZ), flaky_weekly),
        ResetRule(
            "yearly", lambda now: year_start(now, TZ), lambda: calls.append("yearly")
        ),
    ]
    loop = ResetLoop(rules, TZ, started_at=datetime(2023, 12, 31, 23, 59))

    with caplog.at_level(logging.ERROR):
        assert loop.tick(datetime(2024, 1, 1, 0, 1)) == ["yearly"]
    assert "weekly failed" in caplog.text

    # not retried within the same week
    assert loop.tick(datetime(2024, 1, 3, 12, 0)) == []
    assert loop.tick(datetime(2024, 1, 8, 0, 0)) == ["weekly"]
    assert calls == ["yearly", "weekly"]


def test_default_rules_drive_the_real_resets(tmp_path) -> None:
    store = make_store(tmp_path)
    engine = AggregationEngine(
        store,
        codec=AmountCodec(),
        tz=TZ,
        clock=lambda: datetime(2025, 3, 14, 12, 0, tzinfo=TZ),
    )
    engine.apply("savings", 100, False)
    engine.apply("income", 500, True)
    engine.apply("expenses", 200, True)

    resets = ResetService(store, AmountCodec())
    loop = ResetLoop(
        default_rules(resets, TZ), TZ, started_at=datetime(2025, 3, 16, 23, 59)
    )
    assert loop.tick(datetime(2025, 3, 17, 0, 0, 30)) == ["weekly_reset"]

    dashboard = DashboardService(store, AmountCodec())
    assert dashboard.ledger() == LedgerView(savings=400, income=0, expenses=0)
    monthly, weekly = dashboard.series()
    assert not any(weekly.credits + weekly.debits)
    assert monthly.credits[2] == 500
    assert monthly.debits[2] == 200


def test_weekly_reset_interleaved_with_updates_loses_nothing(tmp_path) -> None:
    store = make_store(tmp_path)
    engine = AggregationEngine(
        store,
        codec=AmountCodec(),
        tz=TZ,
        clock=lambda: datetime(2025, 3, 14, 12, 0, tzinfo=TZ),
    )
    resets = ResetService(store, AmountCodec())
    observed: list[tuple[int, int]] = []

    def work(i: int) -> None:
        if i % 10 == 5:
            resets.weekly()
        elif i % 10 == 0:
            with store.read() as session:
                income = LedgerRepository(session).view().income
                weekly = BucketRepository(session).series(Granularity.weekday)
            observed.append((income, sum(weekly.credits)))
        else:
            engine.apply("income", 7, True)

    with ThreadPoolExecutor(max_workers=8) as pool:
        list(pool.map(work, range(60)))

    # 6 resets, 6 reads, 48 applies
    applied = 48 * 7
    ledger = DashboardService(store, AmountCodec()).ledger()
    assert ledger.savings + ledger.income - ledger.expenses == applied
    monthly, weekly = DashboardService(store, AmountCodec()).series()
    assert sum(monthly.credits) == applied
    assert sum(weekly.credits) == ledger.income
    assert len(observed) == 6
    assert all(income == earned for income, earned in observed)
