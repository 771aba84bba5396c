from datetime import datetime

from sqlalchemy import create_engine
from sqlalchemy.orm import Session

from database import Base
from models import MessageType, PaymentRequest, Transaction, TransactionType
from payment_requests import expire_overdue, match_transaction
from schemas import PaymentRequestIn, TransactionIn
from services import AccountService, PaymentRequestService, TransactionService

DUE = datetime(2018, 7, 1)


def _submit(session, account_id: int, when: datetime, amount: int, kind="deposit"):
    return TransactionService(session, account_id).create(
        TransactionIn(
            occurred_at=when,
            type=TransactionType(kind),
            amount_cents=amount,
            external_iban="NL39RABO0300065264",
            description="Roommate",
        )
    )


def _request(session, account_id: int, **overrides) -> PaymentRequest:
    values = {
        "description": "Rent share",
        "due_date": DUE,
        "amount_cents": 10_000,
        "number_of_requests": 1,
    }
    values.update(overrides)
    return PaymentRequestService(session, account_id).create(
        PaymentRequestIn(**values)
    )


def test_matching_deposit_fills_request() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        account = AccountService(session).resolve("requests-filled")
        request = _request(session, account.id)

        result = _submit(session, account.id, datetime(2018, 6, 15), 10_000)

        stored = PaymentRequestService(session, account.id).get(request.id)
        assert stored.filled is True
        assert stored.expired is False
        assert [t.id for t in stored.transactions] == [result.transaction.id]
        assert [(m.type, m.content) for m in result.messages] == [
            (MessageType.info, "Your balance reached a new high: 100.00"),
            (MessageType.info, "Payment request 'Rent share' has been filled"),
        ]


def test_request_needs_every_installment() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        account = AccountService(session).resolve("requests-installments")
        request = _request(
            session, account.id, amount_cents=5_000, number_of_requests=2
        )
        service = PaymentRequestService(session, account.id)

        _submit(session, account.id, datetime(2018, 6, 1), 5_000)
        assert service.get(request.id).filled is False

        _submit(session, account.id, datetime(2018, 6, 2), 5_000)
        stored = service.get(request.id)
        assert stored.filled is True
        assert len(stored.transactions) == 2


def test_withdrawal_of_equal_amount_also_counts() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        account = AccountService(session).resolve("requests-withdrawal")
        request = _request(session, account.id, amount_cents=2_500)

        _submit(session, account.id, datetime(2018, 6, 1), 2_500, "withdrawal")

        assert PaymentRequestService(session, account.id).get(request.id).filled


def test_different_amount_leaves_request_open() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        account = AccountService(session).resolve("requests-amount")
        request = _request(session, account.id)

        _submit(session, account.id, datetime(2018, 6, 15), 9_999)

        stored = PaymentRequestService(session, account.id).get(request.id)
        assert stored.is_open
        assert stored.transactions == []


def test_request_expires_once_due_date_passes() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        account = AccountService(session).resolve("requests-expired")
        request = _request(session, account.id)
        service = PaymentRequestService(session, account.id)

        late = _submit(session, account.id, datetime(2018, 7, 15), 10_000)
        stored = service.get(request.id)
        assert stored.expired is True
        assert stored.filled is False
        assert (
            MessageType.warning,
            "Payment request 'Rent share' expired before it was filled",
        ) in [(m.type, m.content) for m in late.messages]

        # Dated before the due date, but the request is already closed.
        _submit(session, account.id, datetime(2018, 6, 20), 10_000)
        stored = service.get(request.id)
        assert stored.filled is False
        assert stored.transactions == []


def test_request_created_after_due_date_is_expired_immediately() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        account = AccountService(session).resolve("requests-stale")
        _submit(session, account.id, datetime(2018, 7, 15), 1_000)

        request = _request(session, account.id)

        assert request.expired is True
        assert request.filled is False


def test_transaction_settles_earliest_due_request_only() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        account = AccountService(session).resolve("requests-earliest")
        later = _request(session, account.id, due_date=datetime(2018, 8, 1))
        sooner = _request(session, account.id, due_date=datetime(2018, 7, 1))
        service = PaymentRequestService(session, account.id)

        _submit(session, account.id, datetime(2018, 6, 15), 10_000)

        assert service.get(sooner.id).filled is True
        assert service.get(later.id).filled is False
        assert [r.id for r in service.list_all()] == [later.id, sooner.id]


def test_requests_are_scoped_to_their_account() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        owner = AccountService(session).resolve("requests-owner")
        stranger = AccountService(session).resolve("requests-stranger")
        request = _request(session, owner.id)

        _submit(session, stranger.id, datetime(2018, 6, 15), 10_000)

        assert PaymentRequestService(session, owner.id).get(request.id).is_open
        assert PaymentRequestService(session, stranger.id).list_all() == []


def _pending(request_id: int, due: datetime, *, filled: bool = False) -> PaymentRequest:
    return PaymentRequest(
        id=request_id,
        due_date=due,
        amount_cents=100,
        number_of_requests=1,
        filled=filled,
        expired=False,
    )


def test_expire_overdue_includes_due_instant() -> None:
    open_request = _pending(1, DUE)
    future_request = _pending(2, datetime(2018, 9, 1))
    filled_request = _pending(3, DUE, filled=True)

    expired = expire_overdue([open_request, future_request, filled_request], DUE)

    assert expired == [open_request]
    assert filled_request.expired is False
    assert future_request.is_open


def test_match_rejects_transaction_on_due_date() -> None:
    request = _pending(1, DUE)
    on_due = Transaction(
        id=1, occurred_at=DUE, type=TransactionType.deposit, amount_cents=100
    )
    just_before = Transaction(
        id=2,
        occurred_at=datetime(2018, 6, 30, 23, 59, 59, 999000),
        type=TransactionType.deposit,
        amount_cents=100,
    )

    assert match_transaction([request], on_due) is None
    assert request.transactions == []
    assert match_transaction([request], just_before) is request
    assert request.filled is True
