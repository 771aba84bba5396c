from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Iterable, Optional, Sequence

from balance import LedgerEntry, balance_of, chronological, signed_amount
from models import SavingGoal
from periods import month_starts_after


@dataclass(frozen=True)
class PlannedTransfer:
    goal_id: int
    month: datetime
    amount_cents: int


@dataclass
class GoalProgress:
    goal_id: int
    saved_cents: int = 0
    completed_at: Optional[datetime] = None

    @property
    def completed(self) -> bool:
        return self.completed_at is not None


@dataclass
class TransferPlan:
    transfers: list[PlannedTransfer] = field(default_factory=list)
    progress: dict[int, GoalProgress] = field(default_factory=dict)
    closing_balance: int = 0

    def for_goal(self, goal_id: int) -> list[PlannedTransfer]:
        return [t for t in self.transfers if t.goal_id == goal_id]


def plan_transfers(
    entries: Iterable[LedgerEntry],
    goals: Sequence[SavingGoal],
    *,
    horizon: Optional[datetime],
) -> TransferPlan:
    """
    Sweep the timeline forward once and decide every monthly contribution.

    ``entries`` is everything that moves the balance and is not being
    re-planned: ordinary transactions plus the recorded transfers of goals
    that already completed. ``goals`` are the active goals; each one starts
    from zero because all of its transfers are re-derived here.

    A month point ``m`` is settled right before the first entry later than
    ``m``, and any points left up to ``horizon`` are settled after the last
    entry. At a point, goals are visited in id order and each sees the balance
    left by the goals before it.
    """
    ordered = chronological(entries)
    active = sorted((g for g in goals if not g.completed), key=lambda g: g.id)
    plan = TransferPlan(progress={g.id: GoalProgress(g.id) for g in active})

    if horizon is None or not active:
        plan.closing_balance = balance_of(ordered)
        return plan

    first_point = {g.id: next(month_starts_after(g.starts_at)) for g in active}
    points = month_starts_after(min(g.starts_at for g in active))
    pending = next(points)
    balance = 0

    def settle(point: datetime) -> None:
        nonlocal balance
        for goal in active:
            state = plan.progress[goal.id]
            if state.completed or first_point[goal.id] > point:
                continue
            if balance < goal.min_balance_cents:
                continue
            amount = min(
                goal.save_per_month_cents, goal.target_cents - state.saved_cents
            )
            if amount <= 0:
                continue
            balance -= amount
            state.saved_cents += amount
            plan.transfers.append(PlannedTransfer(goal.id, point, amount))
            if state.saved_cents >= goal.target_cents:
                state.completed_at = point

    for entry in ordered:
        while pending < entry.occurred_at and pending <= horizon:
            settle(pending)
            pending = next(points)
        balance += signed_amount(entry)

    while pending <= horizon:
        settle(pending)
        pending = next(points)

    plan.closing_balance = balance
    return plan
