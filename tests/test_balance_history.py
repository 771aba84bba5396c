from datetime import datetime, timedelta

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from balance import compute_balance_history, parse_interval_count
from database import Base
from errors import InvalidParameter
from models import IntervalUnit, Transaction, TransactionType
from periods import add_months
from schemas import TransactionIn
from services import AccountService, BalanceService, TransactionService

NOW = datetime(2026, 10, 18, 12, 0)


def make_session():
    engine = create_engine(
        "sqlite+pysqlite:///:memory:", connect_args={"check_same_thread": False}
    )
    Base.metadata.create_all(engine)
    SessionLocal = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)
    return SessionLocal()


def submit(session, account_id: int, when: datetime, amount: int, kind: str):
    return TransactionService(session, account_id).create(
        TransactionIn(
            occurred_at=when,
            type=TransactionType(kind),
            amount_cents=amount,
            external_iban="NL39RABO0300065264",
            description="University of Twente",
        )
    )


def test_last_interval_tracks_open_close_high_low_and_volume() -> None:
    session = make_session()
    account = AccountService(session).resolve("balance-history")

    submit(session, account.id, add_months(NOW, -5), 50_000, "deposit")
    # Same instant: applied in submission order.
    submit(session, account.id, NOW, 30_000, "deposit")
    submit(session, account.id, NOW, 10_000, "withdrawal")

    history = BalanceService(session, account.id).history(now=NOW)

    assert len(history) == 24
    last = history[-1]
    assert last.open == 50_000
    assert last.close == 70_000
    assert last.high == 80_000
    assert last.low == 50_000
    assert last.volume == 40_000
    assert history[0].open == 0
    assert history[0].timestamp == add_months(NOW, -5)


def test_monthly_transactions_spread_over_five_intervals() -> None:
    session = make_session()
    account = AccountService(session).resolve("five-intervals")

    submit(session, account.id, NOW, 30_000, "withdrawal")
    submit(session, account.id, add_months(NOW, -1), 40_000, "deposit")
    submit(session, account.id, add_months(NOW, -2), 20_000, "withdrawal")
    submit(session, account.id, add_months(NOW, -3), 10_000, "withdrawal")
    submit(session, account.id, add_months(NOW, -4), 50_000, "deposit")

    history = BalanceService(session, account.id).history("5", now=NOW)

    assert [i.close for i in history] == [50_000, 40_000, 20_000, 60_000, 30_000]
    assert history[4].open == 60_000
    assert history[3].high == 60_000
    assert history[3].low == 20_000
    assert history[2].volume == 20_000
    assert history[1].volume == 10_000


def test_adjacent_intervals_are_continuous() -> None:
    session = make_session()
    account = AccountService(session).resolve("continuity")

    amounts = [(12_500, "deposit"), (3_000, "withdrawal"), (9_999, "withdrawal")]
    for offset, (amount, kind) in enumerate(amounts * 4):
        submit(session, account.id, NOW - timedelta(days=37 * offset), amount, kind)

    history = BalanceService(session, account.id).history(7, now=NOW)

    for current, following in zip(history, history[1:]):
        assert current.close == following.open
        assert current.low <= min(current.open, current.close)
        assert current.high >= max(current.open, current.close)
    assert history[-1].close == BalanceService(session, account.id).current()


def test_calendar_unit_intervals_seed_opening_balance_from_earlier_entries() -> None:
    session = make_session()
    account = AccountService(session).resolve("unit-mode")

    submit(session, account.id, add_months(NOW, -5), 10_000, "deposit")
    submit(session, account.id, NOW - timedelta(days=10), 2_500, "deposit")

    history = BalanceService(session, account.id).history(3, "month", now=NOW)

    assert [i.timestamp for i in history] == [
        add_months(NOW, -3),
        add_months(NOW, -2),
        add_months(NOW, -1),
    ]
    assert history[0].open == 10_000
    assert history[0].volume == 0
    assert history[2].close == 12_500
    assert history[2].volume == 2_500


def test_empty_ledger_yields_flat_intervals() -> None:
    history = compute_balance_history([], intervals=4, end=NOW)

    assert len(history) == 4
    assert all(i.open == i.close == i.high == i.low == 0 for i in history)
    assert all(i.volume == 0 for i in history)


def test_equal_timestamps_are_ordered_by_id() -> None:
    entries = [
        Transaction(
            id=2,
            occurred_at=NOW,
            type=TransactionType.deposit,
            amount_cents=300,
        ),
        Transaction(
            id=1,
            occurred_at=NOW,
            type=TransactionType.withdrawal,
            amount_cents=100,
        ),
    ]

    (only,) = compute_balance_history(entries, intervals=1, end=NOW)

    assert only.low == -100
    assert only.high == 200
    assert only.close == 200
    assert only.volume == 400


@pytest.mark.parametrize(
    "raw", ["invalid", "", "0", 0, -3, "2.5", True, None, "201", 10**9]
)
def test_interval_count_rejects_bad_values(raw) -> None:
    with pytest.raises(InvalidParameter):
        parse_interval_count(raw)


def test_history_rejects_unknown_unit_and_bad_count() -> None:
    session = make_session()
    account = AccountService(session).resolve("bad-params")
    service = BalanceService(session, account.id)

    with pytest.raises(InvalidParameter):
        service.history("invalid", now=NOW)
    with pytest.raises(InvalidParameter):
        service.history(0, now=NOW)
    with pytest.raises(InvalidParameter):
        service.history(3, "fortnight", now=NOW)
    assert len(service.history(3, IntervalUnit.week, now=NOW)) == 3


def test_interval_count_accepts_up_to_the_maximum() -> None:
    assert parse_interval_count("200") == 200
    assert len(compute_balance_history([], intervals=200, end=NOW)) == 200
