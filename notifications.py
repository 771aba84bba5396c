from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Sequence

from models import MessageType, PaymentRequest, SavingGoal


@dataclass(frozen=True)
class LedgerContext:
    """Per-account state shared by one mutation: clock, balance and its peak."""

    account_id: int
    clock: datetime
    balance_cents: int
    peak_balance_cents: int


@dataclass(frozen=True)
class MessageDraft:
    type: MessageType
    content: str
    occurred_at: datetime


def format_cents(cents: int) -> str:
    sign = "-" if cents < 0 else ""
    return f"{sign}{abs(cents) // 100}.{abs(cents) % 100:02d}"


def emit(
    before: LedgerContext,
    after: LedgerContext,
    *,
    filled: Sequence[PaymentRequest] = (),
    expired: Sequence[PaymentRequest] = (),
    completed: Sequence[SavingGoal] = (),
) -> list[MessageDraft]:
    drafts: list[MessageDraft] = []
    at = after.clock

    if before.balance_cents >= 0 and after.balance_cents < 0:
        drafts.append(
            MessageDraft(
                MessageType.warning,
                f"Your balance dropped below zero: {format_cents(after.balance_cents)}",
                at,
            )
        )
    if after.balance_cents > before.peak_balance_cents:
        drafts.append(
            MessageDraft(
                MessageType.info,
                f"Your balance reached a new high: {format_cents(after.balance_cents)}",
                at,
            )
        )
    for request in filled:
        drafts.append(
            MessageDraft(
                MessageType.info,
                f"Payment request '{request.description}' has been filled",
                at,
            )
        )
    for request in expired:
        drafts.append(
            MessageDraft(
                MessageType.warning,
                f"Payment request '{request.description}' expired before it was filled",
                at,
            )
        )
    for goal in completed:
        drafts.append(
            MessageDraft(
                MessageType.info,
                f"Saving goal '{goal.name}' has been reached",
                at,
            )
        )
    return drafts
