from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Iterable, Optional, Protocol, Sequence

from errors import InvalidParameter
from models import IntervalUnit, TransactionType
from periods import Period, split_evenly, step_back


class LedgerEntry(Protocol):
    id: int
    occurred_at: datetime
    type: TransactionType
    amount_cents: int


@dataclass(frozen=True)
class BalanceInterval:
    open: int
    close: int
    high: int
    low: int
    volume: int
    timestamp: datetime


def chronological_key(entry: LedgerEntry) -> tuple[datetime, int]:
    # Ids are assigned on flush; unsaved entries sort after saved ones.
    return entry.occurred_at, entry.id if entry.id is not None else 2**63


def chronological(entries: Iterable[LedgerEntry]) -> list[LedgerEntry]:
    return sorted(entries, key=chronological_key)


def signed_amount(entry: LedgerEntry) -> int:
    if entry.type == TransactionType.deposit:
        return entry.amount_cents
    return -entry.amount_cents


def balance_of(entries: Iterable[LedgerEntry]) -> int:
    return sum(signed_amount(entry) for entry in entries)


MAX_INTERVALS = 200


def parse_interval_count(raw: object) -> int:
    if isinstance(raw, bool):
        raise InvalidParameter("Interval count must be a positive integer")
    if isinstance(raw, int):
        value = raw
    else:
        try:
            value = int(str(raw).strip())
        except (TypeError, ValueError) as exc:
            raise InvalidParameter(
                "Interval count must be a positive integer"
            ) from exc
    if value < 1:
        raise InvalidParameter("Interval count must be a positive integer")
    if value > MAX_INTERVALS:
        raise InvalidParameter(f"Interval count cannot exceed {MAX_INTERVALS}")
    return value


def parse_interval_unit(raw: Optional[str]) -> Optional[IntervalUnit]:
    if raw is None or not raw.strip():
        return None
    try:
        return IntervalUnit(raw.strip().lower())
    except ValueError as exc:
        raise InvalidParameter(f"Unknown interval unit: {raw}") from exc


def compute_balance_history(
    entries: Sequence[LedgerEntry],
    *,
    intervals: int,
    end: datetime,
    unit: Optional[IntervalUnit] = None,
) -> list[BalanceInterval]:
    """
    Bucket the running balance into ``intervals`` OHLC slices, oldest first.

    Without ``unit`` the slices split [earliest entry, end] evenly; with a unit
    they are consecutive calendar steps ending at ``end``. Entries before the
    first slice only seed the opening balance, entries after ``end`` are
    ignored. The final slice is closed on the right so ``end`` itself counts.
    """
    count = parse_interval_count(intervals)
    ordered = [entry for entry in chronological(entries) if entry.occurred_at <= end]

    if unit is None:
        start = ordered[0].occurred_at if ordered else end
        periods = split_evenly(start, end, count)
    else:
        periods = step_back(end, unit, count)

    balance = 0
    idx = 0
    first_start = periods[0].start
    while idx < len(ordered) and ordered[idx].occurred_at < first_start:
        balance += signed_amount(ordered[idx])
        idx += 1

    result: list[BalanceInterval] = []
    last = len(periods) - 1
    for position, period in enumerate(periods):
        opening = balance
        high = low = balance
        volume = 0
        while idx < len(ordered) and _within(
            ordered[idx].occurred_at, period, closed=position == last
        ):
            entry = ordered[idx]
            balance += signed_amount(entry)
            volume += entry.amount_cents
            high = max(high, balance)
            low = min(low, balance)
            idx += 1
        result.append(
            BalanceInterval(
                open=opening,
                close=balance,
                high=high,
                low=low,
                volume=volume,
                timestamp=period.start,
            )
        )
    return result


def _within(moment: datetime, period: Period, *, closed: bool) -> bool:
    if closed:
        return moment <= period.end
    return moment < period.end
