from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional, Sequence

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, joinedload

from balance import (
    BalanceInterval,
    balance_of,
    chronological,
    compute_balance_history,
    parse_interval_count,
    parse_interval_unit,
)
from config import get_settings
from database import ledger_mutation
from errors import InvalidParameter, InvalidTransaction, NotFound
from goals import plan_transfers
from models import (
    Account,
    Category,
    CategoryRule,
    IntervalUnit,
    PaymentRequest,
    SavingGoal,
    Transaction,
    TransactionType,
    UserMessage,
)
from notifications import LedgerContext, emit
from payment_requests import expire_overdue, match_transaction
from periods import utc_now
from rules import backfill, categorize
from schemas import (
    MAX_AMOUNT_CENTS,
    CategoryIn,
    CategoryRuleIn,
    PaymentRequestIn,
    SavingGoalIn,
    TransactionIn,
)

logger = logging.getLogger(__name__)


def live_transactions(session: Session, account_id: int) -> list[Transaction]:
    stmt = (
        select(Transaction)
        .where(Transaction.account_id == account_id, Transaction.deleted_at.is_(None))
        .order_by(Transaction.occurred_at, Transaction.id)
    )
    return list(session.scalars(stmt).all())


def account_clock(session: Session, account_id: int) -> Optional[datetime]:
    """The account's notion of "now": its latest live, user-submitted transaction."""
    return session.execute(
        select(func.max(Transaction.occurred_at)).where(
            Transaction.account_id == account_id,
            Transaction.deleted_at.is_(None),
            Transaction.saving_goal_id.is_(None),
        )
    ).scalar_one_or_none()


def load_context(session: Session, account: Account) -> LedgerContext:
    session.flush()
    balance = balance_of(live_transactions(session, account.id))
    return LedgerContext(
        account_id=account.id,
        clock=account_clock(session, account.id) or utc_now(),
        balance_cents=balance,
        peak_balance_cents=account.peak_balance_cents,
    )


def record_messages(
    session: Session,
    account: Account,
    before: LedgerContext,
    *,
    filled: Sequence[PaymentRequest] = (),
    expired: Sequence[PaymentRequest] = (),
    completed: Sequence[SavingGoal] = (),
) -> list[UserMessage]:
    current = load_context(session, account)
    after = LedgerContext(
        account_id=account.id,
        clock=current.clock,
        balance_cents=current.balance_cents,
        peak_balance_cents=max(before.peak_balance_cents, current.balance_cents),
    )
    drafts = emit(before, after, filled=filled, expired=expired, completed=completed)
    messages = [
        UserMessage(
            account_id=account.id,
            type=draft.type,
            content=draft.content,
            read=False,
            occurred_at=draft.occurred_at,
        )
        for draft in drafts
    ]
    session.add_all(messages)
    account.peak_balance_cents = after.peak_balance_cents
    session.flush()
    if messages:
        logger.info(
            f"messages_emitted: account={account.id} count={len(messages)} "
            f"balance={after.balance_cents}"
        )
    return messages


@dataclass
class SubmitResult:
    transaction: Transaction
    messages: list[UserMessage] = field(default_factory=list)


class AccountService:
    def __init__(self, session: Session) -> None:
        self.session = session

    def get(self, account_id: int) -> Account:
        account = self.session.get(Account, account_id)
        if not account:
            raise NotFound("Account not found")
        return account

    def resolve(self, session_key: str) -> Account:
        clean_key = (session_key or "").strip()
        if not clean_key:
            raise InvalidParameter("Session key cannot be empty")
        stmt = select(Account).where(Account.session_key == clean_key)
        existing = self.session.scalar(stmt)
        if existing:
            return existing

        account = Account(session_key=clean_key, peak_balance_cents=0)
        self.session.add(account)
        try:
            self.session.commit()
        except IntegrityError:
            # Another request provisioned the same key first.
            self.session.rollback()
            return self.session.scalars(stmt).one()
        self.session.refresh(account)
        logger.info(f"account_provisioned: account={account.id}")
        return account


class CategoryService:
    def __init__(self, session: Session, account_id: int) -> None:
        self.session = session
        self.account_id = account_id

    def list_all(self) -> list[Category]:
        stmt = (
            select(Category)
            .where(Category.account_id == self.account_id)
            .order_by(Category.name, Category.id)
        )
        return self.session.scalars(stmt).all()

    def get(self, category_id: int) -> Category:
        category = self.session.get(Category, category_id)
        if not category or category.account_id != self.account_id:
            raise NotFound("Category not found")
        return category

    def create(self, data: CategoryIn) -> Category:
        name = data.name.strip()
        existing = self.session.scalar(
            select(Category).where(
                Category.account_id == self.account_id,
                func.lower(Category.name) == name.lower(),
            )
        )
        if existing:
            raise InvalidParameter("Category with this name already exists")
        category = Category(account_id=self.account_id, name=name)
        self.session.add(category)
        self.session.commit()
        self.session.refresh(category)
        return category


class CategoryRuleService:
    def __init__(self, session: Session, account_id: int) -> None:
        self.session = session
        self.account_id = account_id

    def list_all(self) -> list[CategoryRule]:
        stmt = (
            select(CategoryRule)
            .options(joinedload(CategoryRule.category))
            .where(CategoryRule.account_id == self.account_id)
            .order_by(CategoryRule.id.asc())
        )
        return self.session.scalars(stmt).all()

    def get(self, rule_id: int) -> CategoryRule:
        rule = self.session.get(CategoryRule, rule_id)
        if not rule or rule.account_id != self.account_id:
            raise NotFound("Category rule not found")
        return rule

    def create(self, data: CategoryRuleIn) -> CategoryRule:
        with ledger_mutation(self.session, self.account_id):
            CategoryService(self.session, self.account_id).get(data.category_id)
            rule = CategoryRule(
                account_id=self.account_id,
                description=data.description,
                iban=data.iban,
                type=data.type,
                category_id=data.category_id,
                apply_on_history=data.apply_on_history,
            )
            self.session.add(rule)
            self.session.flush()
            if rule.apply_on_history:
                changed = backfill(
                    rule, live_transactions(self.session, self.account_id)
                )
                self.session.flush()
                logger.info(
                    f"rule_backfill: account={self.account_id} rule={rule.id} "
                    f"categorized={len(changed)}"
                )
        self.session.refresh(rule)
        return rule

    def update(self, rule_id: int, data: CategoryRuleIn) -> CategoryRule:
        with ledger_mutation(self.session, self.account_id):
            rule = self.get(rule_id)
            CategoryService(self.session, self.account_id).get(data.category_id)
            rule.description = data.description
            rule.iban = data.iban
            rule.type = data.type
            rule.category_id = data.category_id
            rule.apply_on_history = data.apply_on_history
        self.session.refresh(rule)
        return rule

    def delete(self, rule_id: int) -> None:
        with ledger_mutation(self.session, self.account_id):
            rule = self.get(rule_id)
            self.session.delete(rule)

    def apply_rules(self, txn: Transaction) -> Optional[CategoryRule]:
        stmt = select(CategoryRule).where(CategoryRule.account_id == self.account_id)
        return categorize(self.session.scalars(stmt).all(), txn)


class SavingGoalService:
    def __init__(self, session: Session, account_id: int) -> None:
        self.session = session
        self.account_id = account_id

    def list_all(self) -> list[SavingGoal]:
        stmt = (
            select(SavingGoal)
            .where(SavingGoal.account_id == self.account_id)
            .order_by(SavingGoal.id)
        )
        return self.session.scalars(stmt).all()

    def get(self, goal_id: int) -> SavingGoal:
        goal = self.session.get(SavingGoal, goal_id)
        if not goal or goal.account_id != self.account_id:
            raise NotFound("Saving goal not found")
        return goal

    def create(self, data: SavingGoalIn) -> SavingGoal:
        with ledger_mutation(self.session, self.account_id):
            account = AccountService(self.session).get(self.account_id)
            before = load_context(self.session, account)
            starts_at = (
                data.starts_at
                or account_clock(self.session, self.account_id)
                or utc_now()
            )
            goal = SavingGoal(
                account_id=self.account_id,
                name=data.name.strip(),
                target_cents=data.target_cents,
                save_per_month_cents=data.save_per_month_cents,
                min_balance_cents=data.min_balance_cents,
                saved_cents=0,
                completed=False,
                starts_at=starts_at,
            )
            self.session.add(goal)
            self.session.flush()
            completed = self.replay()
            record_messages(self.session, account, before, completed=completed)
        self.session.refresh(goal)
        return goal

    def delete(self, goal_id: int) -> None:
        with ledger_mutation(self.session, self.account_id):
            account = AccountService(self.session).get(self.account_id)
            goal = self.get(goal_id)
            before = load_context(self.session, account)
            transfers = self.session.scalars(
                select(Transaction).where(Transaction.saving_goal_id == goal.id)
            ).all()
            for transfer in transfers:
                self.session.delete(transfer)
            self.session.delete(goal)
            self.session.flush()
            completed = self.replay()
            record_messages(self.session, account, before, completed=completed)
        logger.info(f"saving_goal_deleted: account={self.account_id} goal={goal_id}")

    def replay(self) -> list[SavingGoal]:
        """
        Re-derive every active goal's transfers from the full timeline.

        Stored transfers are reconciled against the plan by (goal, month):
        missing ones are inserted, changed amounts updated, stale ones
        removed. Running it again without new input changes nothing.
        Returns the goals that completed during this replay.
        """
        self.session.flush()
        active = [goal for goal in self.list_all() if not goal.completed]
        if not active:
            return []
        active_ids = {goal.id for goal in active}

        txns = live_transactions(self.session, self.account_id)
        entries = [t for t in txns if t.saving_goal_id not in active_ids]
        real = [t.occurred_at for t in txns if t.saving_goal_id is None]
        horizon = max(real) if real else None
        plan = plan_transfers(entries, active, horizon=horizon)

        goals_by_id = {goal.id: goal for goal in active}
        existing = {
            (t.saving_goal_id, t.transfer_month): t
            for t in txns
            if t.saving_goal_id in active_ids
        }
        inserted = updated = 0
        for transfer in plan.transfers:
            key = (transfer.goal_id, transfer.month.date())
            txn = existing.pop(key, None)
            if txn is None:
                goal = goals_by_id[transfer.goal_id]
                self.session.add(
                    Transaction(
                        account_id=self.account_id,
                        occurred_at=transfer.month,
                        type=TransactionType.withdrawal,
                        amount_cents=transfer.amount_cents,
                        external_iban="",
                        description=f"Saving goal: {goal.name}",
                        saving_goal_id=goal.id,
                        transfer_month=transfer.month.date(),
                    )
                )
                inserted += 1
            elif txn.amount_cents != transfer.amount_cents:
                txn.amount_cents = transfer.amount_cents
                updated += 1
        for stale in existing.values():
            self.session.delete(stale)

        completed: list[SavingGoal] = []
        for goal in active:
            state = plan.progress[goal.id]
            goal.saved_cents = state.saved_cents
            if state.completed:
                goal.completed = True
                goal.completed_at = state.completed_at
                completed.append(goal)
        self.session.flush()

        if inserted or updated or existing or completed:
            logger.info(
                f"saving_goal_replay: account={self.account_id} inserted={inserted} "
                f"updated={updated} removed={len(existing)} completed={len(completed)}"
            )
        return completed


class PaymentRequestService:
    def __init__(self, session: Session, account_id: int) -> None:
        self.session = session
        self.account_id = account_id

    def list_all(self) -> list[PaymentRequest]:
        stmt = (
            select(PaymentRequest)
            .options(joinedload(PaymentRequest.transactions))
            .where(PaymentRequest.account_id == self.account_id)
            .order_by(PaymentRequest.id)
        )
        return self.session.scalars(stmt).unique().all()

    def get(self, request_id: int) -> PaymentRequest:
        request = self.session.get(PaymentRequest, request_id)
        if not request or request.account_id != self.account_id:
            raise NotFound("Payment request not found")
        return request

    def create(self, data: PaymentRequestIn) -> PaymentRequest:
        with ledger_mutation(self.session, self.account_id):
            account = AccountService(self.session).get(self.account_id)
            before = load_context(self.session, account)
            request = PaymentRequest(
                account_id=self.account_id,
                description=data.description,
                due_date=data.due_date,
                amount_cents=data.amount_cents,
                number_of_requests=data.number_of_requests,
                filled=False,
                expired=False,
            )
            self.session.add(request)
            self.session.flush()
            expired: list[PaymentRequest] = []
            clock = account_clock(self.session, self.account_id)
            if clock is not None:
                expired = expire_overdue([request], clock)
            record_messages(self.session, account, before, expired=expired)
        self.session.refresh(request)
        return request

    def resolve(
        self, txn: Transaction, clock: datetime
    ) -> tuple[list[PaymentRequest], list[PaymentRequest]]:
        """Expire overdue requests, then count ``txn`` towards an open one."""
        stmt = select(PaymentRequest).where(
            PaymentRequest.account_id == self.account_id,
            PaymentRequest.filled.is_(False),
            PaymentRequest.expired.is_(False),
        )
        open_requests = self.session.scalars(stmt).all()
        expired = expire_overdue(open_requests, clock)
        filled_request = match_transaction(open_requests, txn)
        filled = [filled_request] if filled_request is not None else []
        self.session.flush()
        return filled, expired


class MessageService:
    def __init__(self, session: Session, account_id: int) -> None:
        self.session = session
        self.account_id = account_id

    def list_all(self) -> list[UserMessage]:
        stmt = (
            select(UserMessage)
            .where(UserMessage.account_id == self.account_id)
            .order_by(UserMessage.id.desc())
        )
        return self.session.scalars(stmt).all()

    def get(self, message_id: int) -> UserMessage:
        message = self.session.get(UserMessage, message_id)
        if not message or message.account_id != self.account_id:
            raise NotFound("Message not found")
        return message

    def mark_read(self, message_id: int) -> UserMessage:
        with ledger_mutation(self.session, self.account_id):
            message = self.get(message_id)
            message.read = True
        return message


class TransactionService:
    def __init__(self, session: Session, account_id: int) -> None:
        self.session = session
        self.account_id = account_id

    def create(self, data: TransactionIn) -> SubmitResult:
        if not isinstance(data.type, TransactionType):
            raise InvalidTransaction("Transaction type must be deposit or withdrawal")
        if (
            not isinstance(data.amount_cents, int)
            or isinstance(data.amount_cents, bool)
            or not 0 <= data.amount_cents <= MAX_AMOUNT_CENTS
        ):
            raise InvalidTransaction(
                "Transaction amount must be a non-negative integer "
                f"no larger than {MAX_AMOUNT_CENTS}"
            )

        with ledger_mutation(self.session, self.account_id):
            account = AccountService(self.session).get(self.account_id)
            before = load_context(self.session, account)
            if data.category_id is not None:
                CategoryService(self.session, self.account_id).get(data.category_id)

            txn = Transaction(
                account_id=self.account_id,
                occurred_at=data.occurred_at,
                type=data.type,
                amount_cents=data.amount_cents,
                external_iban=data.external_iban,
                description=data.description,
                category_id=data.category_id,
            )
            self.session.add(txn)
            CategoryRuleService(self.session, self.account_id).apply_rules(txn)
            self.session.flush()

            completed = SavingGoalService(self.session, self.account_id).replay()
            clock = account_clock(self.session, self.account_id)
            filled, expired = PaymentRequestService(
                self.session, self.account_id
            ).resolve(txn, clock)
            messages = record_messages(
                self.session,
                account,
                before,
                filled=filled,
                expired=expired,
                completed=completed,
            )
        logger.info(
            f"transaction_submitted: account={self.account_id} id={txn.id} "
            f"type={txn.type.value} amount_cents={txn.amount_cents} "
            f"category={txn.category_id}"
        )
        return SubmitResult(transaction=txn, messages=messages)

    def get(self, transaction_id: int) -> Transaction:
        stmt = (
            select(Transaction)
            .options(joinedload(Transaction.category))
            .where(
                Transaction.account_id == self.account_id,
                Transaction.id == transaction_id,
                Transaction.deleted_at.is_(None),
            )
        )
        txn = self.session.scalar(stmt)
        if not txn:
            raise NotFound("Transaction not found")
        return txn

    def list(
        self,
        *,
        category_id: Optional[int] = None,
        limit: int = 20,
        offset: int = 0,
    ) -> list[Transaction]:
        if limit < 1 or offset < 0:
            raise InvalidParameter("Limit must be positive and offset non-negative")
        stmt = (
            select(Transaction)
            .options(joinedload(Transaction.category))
            .where(
                Transaction.account_id == self.account_id,
                Transaction.deleted_at.is_(None),
            )
            .order_by(Transaction.occurred_at.desc(), Transaction.id.desc())
            .limit(limit)
            .offset(offset)
        )
        if category_id is not None:
            stmt = stmt.where(Transaction.category_id == category_id)
        return self.session.scalars(stmt).all()

    def delete(self, transaction_id: int) -> list[UserMessage]:
        with ledger_mutation(self.session, self.account_id):
            account = AccountService(self.session).get(self.account_id)
            txn = self.get(transaction_id)
            if txn.is_transfer:
                raise InvalidParameter("Saving goal transfers cannot be removed")
            before = load_context(self.session, account)
            txn.deleted_at = utc_now()
            self.session.flush()
            completed = SavingGoalService(self.session, self.account_id).replay()
            messages = record_messages(
                self.session, account, before, completed=completed
            )
        logger.info(
            f"transaction_deleted: account={self.account_id} id={transaction_id}"
        )
        return messages


class BalanceService:
    def __init__(self, session: Session, account_id: int) -> None:
        self.session = session
        self.account_id = account_id

    def current(self) -> int:
        return balance_of(live_transactions(self.session, self.account_id))

    def history(
        self,
        intervals: object = None,
        unit: object = None,
        *,
        now: Optional[datetime] = None,
    ) -> list[BalanceInterval]:
        if intervals is None:
            intervals = get_settings().default_intervals
        count = parse_interval_count(intervals)
        if unit is None or isinstance(unit, IntervalUnit):
            interval_unit = unit
        else:
            interval_unit = parse_interval_unit(str(unit))

        entries = chronological(live_transactions(self.session, self.account_id))
        end = now or utc_now()
        if entries and entries[-1].occurred_at > end:
            end = entries[-1].occurred_at
        return compute_balance_history(
            entries, intervals=count, end=end, unit=interval_unit
        )
