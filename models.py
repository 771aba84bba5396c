from datetime import date, datetime
from enum import Enum
from typing import Optional

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Column,
    Date,
    DateTime,
    Enum as SAEnum,
    ForeignKey,
    Index,
    Integer,
    String,
    Table,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from database import Base


class TransactionType(str, Enum):
    deposit = "deposit"
    withdrawal = "withdrawal"


class MessageType(str, Enum):
    info = "info"
    warning = "warning"


class IntervalUnit(str, Enum):
    hour = "hour"
    day = "day"
    week = "week"
    month = "month"
    year = "year"


class TimestampMixin:
    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False
    )


class Account(Base, TimestampMixin):
    __tablename__ = "accounts"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    session_key: Mapped[str] = mapped_column(String(64), nullable=False, unique=True)
    peak_balance_cents: Mapped[int] = mapped_column(
        Integer, nullable=False, default=0
    )


class Category(Base, TimestampMixin):
    __tablename__ = "categories"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    account_id: Mapped[int] = mapped_column(ForeignKey("accounts.id"), nullable=False)
    name: Mapped[str] = mapped_column(String(100), nullable=False)

    transactions: Mapped[list["Transaction"]] = relationship(
        "Transaction", back_populates="category"
    )

    __table_args__ = (
        UniqueConstraint("account_id", "name", name="uq_category_account_name"),
    )


class Transaction(Base, TimestampMixin):
    __tablename__ = "transactions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    account_id: Mapped[int] = mapped_column(ForeignKey("accounts.id"), nullable=False)
    occurred_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    type: Mapped[TransactionType] = mapped_column(
        SAEnum(TransactionType), nullable=False
    )
    amount_cents: Mapped[int] = mapped_column(Integer, nullable=False)
    external_iban: Mapped[str] = mapped_column(String(64), nullable=False, default="")
    description: Mapped[str] = mapped_column(Text, nullable=False, default="")
    category_id: Mapped[Optional[int]] = mapped_column(ForeignKey("categories.id"))
    saving_goal_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey("saving_goals.id")
    )
    transfer_month: Mapped[Optional[date]] = mapped_column(Date)
    deleted_at: Mapped[Optional[datetime]] = mapped_column(DateTime)

    category: Mapped[Optional["Category"]] = relationship(
        "Category", back_populates="transactions"
    )
    saving_goal: Mapped[Optional["SavingGoal"]] = relationship(
        "SavingGoal", back_populates="transfers"
    )

    __table_args__ = (
        UniqueConstraint(
            "saving_goal_id",
            "transfer_month",
            name="uq_txn_goal_month",
        ),
        Index("ix_transactions_account_occurred", "account_id", "occurred_at", "id"),
        Index("ix_transactions_account_category", "account_id", "category_id"),
        CheckConstraint("amount_cents >= 0", name="ck_transactions_amount_positive"),
    )

    @property
    def is_transfer(self) -> bool:
        return self.saving_goal_id is not None


class CategoryRule(Base, TimestampMixin):
    __tablename__ = "category_rules"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    account_id: Mapped[int] = mapped_column(ForeignKey("accounts.id"), nullable=False)
    description: Mapped[str] = mapped_column(String(200), nullable=False, default="")
    iban: Mapped[str] = mapped_column(String(64), nullable=False, default="")
    type: Mapped[Optional[TransactionType]] = mapped_column(SAEnum(TransactionType))
    category_id: Mapped[int] = mapped_column(
        ForeignKey("categories.id"), nullable=False
    )
    apply_on_history: Mapped[bool] = mapped_column(
        Boolean, default=False, nullable=False
    )

    category: Mapped["Category"] = relationship("Category")

    __table_args__ = (Index("ix_category_rules_account", "account_id", "id"),)


class SavingGoal(Base, TimestampMixin):
    __tablename__ = "saving_goals"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    account_id: Mapped[int] = mapped_column(ForeignKey("accounts.id"), nullable=False)
    name: Mapped[str] = mapped_column(String(120), nullable=False)
    target_cents: Mapped[int] = mapped_column(Integer, nullable=False)
    save_per_month_cents: Mapped[int] = mapped_column(Integer, nullable=False)
    min_balance_cents: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    saved_cents: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    completed: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime)
    starts_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)

    transfers: Mapped[list["Transaction"]] = relationship(
        "Transaction", back_populates="saving_goal"
    )

    __table_args__ = (
        CheckConstraint("target_cents > 0", name="ck_goal_target_positive"),
        CheckConstraint("save_per_month_cents > 0", name="ck_goal_save_positive"),
        CheckConstraint("saved_cents <= target_cents", name="ck_goal_saved_capped"),
        Index("ix_saving_goals_account", "account_id", "id"),
    )


payment_request_transactions = Table(
    "payment_request_transactions",
    Base.metadata,
    Column(
        "payment_request_id",
        Integer,
        ForeignKey("payment_requests.id"),
        primary_key=True,
    ),
    Column("transaction_id", Integer, ForeignKey("transactions.id"), primary_key=True),
)


class PaymentRequest(Base, TimestampMixin):
    __tablename__ = "payment_requests"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    account_id: Mapped[int] = mapped_column(ForeignKey("accounts.id"), nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False, default="")
    due_date: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    amount_cents: Mapped[int] = mapped_column(Integer, nullable=False)
    number_of_requests: Mapped[int] = mapped_column(Integer, nullable=False)
    filled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    expired: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    transactions: Mapped[list["Transaction"]] = relationship(
        "Transaction",
        secondary="payment_request_transactions",
        order_by="Transaction.id",
    )

    __table_args__ = (
        CheckConstraint("amount_cents >= 0", name="ck_request_amount_positive"),
        CheckConstraint("number_of_requests > 0", name="ck_request_count_positive"),
        Index("ix_payment_requests_account_due", "account_id", "due_date"),
    )

    @property
    def is_open(self) -> bool:
        return not self.filled and not self.expired


class UserMessage(Base, TimestampMixin):
    __tablename__ = "user_messages"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    account_id: Mapped[int] = mapped_column(ForeignKey("accounts.id"), nullable=False)
    type: Mapped[MessageType] = mapped_column(SAEnum(MessageType), nullable=False)
    content: Mapped[str] = mapped_column(Text, nullable=False)
    read: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    occurred_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)

    __table_args__ = (Index("ix_user_messages_account", "account_id", "id"),)
