from __future__ import annotations

from datetime import datetime
from typing import Iterable, Optional

from models import PaymentRequest, Transaction


def expire_overdue(
    requests: Iterable[PaymentRequest], clock: datetime
) -> list[PaymentRequest]:
    """Close every open request whose due date has passed; returns the newly expired."""
    expired: list[PaymentRequest] = []
    for request in requests:
        if request.is_open and request.due_date <= clock:
            request.expired = True
            expired.append(request)
    return expired


def request_accepts(request: PaymentRequest, txn: Transaction) -> bool:
    return (
        request.is_open
        and txn.amount_cents == request.amount_cents
        and txn.occurred_at < request.due_date
    )


def match_transaction(
    requests: Iterable[PaymentRequest], txn: Transaction
) -> Optional[PaymentRequest]:
    """
    Count ``txn`` towards the earliest-due open request it satisfies.

    Returns the request when this installment filled it, otherwise ``None``.
    A transaction settles at most one request.
    """
    if txn.is_transfer or txn.deleted_at is not None:
        return None
    candidates = sorted(
        (r for r in requests if request_accepts(r, txn)),
        key=lambda r: (r.due_date, r.id),
    )
    if not candidates:
        return None
    request = candidates[0]
    request.transactions.append(txn)
    if len(request.transactions) >= request.number_of_requests:
        request.filled = True
        return request
    return None
