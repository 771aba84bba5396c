"""initial ledger schema

Revision ID: 202610180900
Revises:
Create Date: 2026-10-18 09:00:00.000000

"""

from __future__ import annotations

import sqlalchemy as sa
from alembic import op


revision = "202610180900"
down_revision = None
branch_labels = None
depends_on = None


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column(
            "created_at", sa.DateTime(), nullable=False, server_default=sa.func.now()
        ),
        sa.Column(
            "updated_at", sa.DateTime(), nullable=False, server_default=sa.func.now()
        ),
    ]


def _transaction_type(nullable: bool) -> sa.Column:
    return sa.Column(
        "type",
        sa.Enum("deposit", "withdrawal", name="transactiontype"),
        nullable=nullable,
    )


def upgrade() -> None:
    op.create_table(
        "accounts",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("session_key", sa.String(length=64), nullable=False, unique=True),
        sa.Column(
            "peak_balance_cents", sa.Integer(), nullable=False, server_default="0"
        ),
        *_timestamps(),
    )

    op.create_table(
        "categories",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column(
            "account_id", sa.Integer(), sa.ForeignKey("accounts.id"), nullable=False
        ),
        sa.Column("name", sa.String(length=100), nullable=False),
        *_timestamps(),
        sa.UniqueConstraint("account_id", "name", name="uq_category_account_name"),
    )

    op.create_table(
        "saving_goals",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column(
            "account_id", sa.Integer(), sa.ForeignKey("accounts.id"), nullable=False
        ),
        sa.Column("name", sa.String(length=120), nullable=False),
        sa.Column("target_cents", sa.Integer(), nullable=False),
        sa.Column("save_per_month_cents", sa.Integer(), nullable=False),
        sa.Column(
            "min_balance_cents", sa.Integer(), nullable=False, server_default="0"
        ),
        sa.Column("saved_cents", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("completed", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("completed_at", sa.DateTime(), nullable=True),
        sa.Column("starts_at", sa.DateTime(), nullable=False),
        *_timestamps(),
        sa.CheckConstraint("target_cents > 0", name="ck_goal_target_positive"),
        sa.CheckConstraint("save_per_month_cents > 0", name="ck_goal_save_positive"),
        sa.CheckConstraint("saved_cents <= target_cents", name="ck_goal_saved_capped"),
    )
    op.create_index("ix_saving_goals_account", "saving_goals", ["account_id", "id"])

    op.create_table(
        "transactions",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column(
            "account_id", sa.Integer(), sa.ForeignKey("accounts.id"), nullable=False
        ),
        sa.Column("occurred_at", sa.DateTime(), nullable=False),
        _transaction_type(nullable=False),
        sa.Column("amount_cents", sa.Integer(), nullable=False),
        sa.Column(
            "external_iban", sa.String(length=64), nullable=False, server_default=""
        ),
        sa.Column("description", sa.Text(), nullable=False, server_default=""),
        sa.Column("category_id", sa.Integer(), sa.ForeignKey("categories.id")),
        sa.Column("saving_goal_id", sa.Integer(), sa.ForeignKey("saving_goals.id")),
        sa.Column("transfer_month", sa.Date(), nullable=True),
        sa.Column("deleted_at", sa.DateTime(), nullable=True),
        *_timestamps(),
        sa.UniqueConstraint(
            "saving_goal_id", "transfer_month", name="uq_txn_goal_month"
        ),
        sa.CheckConstraint("amount_cents >= 0", name="ck_transactions_amount_positive"),
    )
    op.create_index(
        "ix_transactions_account_occurred",
        "transactions",
        ["account_id", "occurred_at", "id"],
    )
    op.create_index(
        "ix_transactions_account_category",
        "transactions",
        ["account_id", "category_id"],
    )

    op.create_table(
        "category_rules",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column(
            "account_id", sa.Integer(), sa.ForeignKey("accounts.id"), nullable=False
        ),
        sa.Column(
            "description", sa.String(length=200), nullable=False, server_default=""
        ),
        sa.Column("iban", sa.String(length=64), nullable=False, server_default=""),
        _transaction_type(nullable=True),
        sa.Column(
            "category_id",
            sa.Integer(),
            sa.ForeignKey("categories.id"),
            nullable=False,
        ),
        sa.Column(
            "apply_on_history", sa.Boolean(), nullable=False, server_default=sa.false()
        ),
        *_timestamps(),
    )
    op.create_index("ix_category_rules_account", "category_rules", ["account_id", "id"])

    op.create_table(
        "payment_requests",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column(
            "account_id", sa.Integer(), sa.ForeignKey("accounts.id"), nullable=False
        ),
        sa.Column("description", sa.Text(), nullable=False, server_default=""),
        sa.Column("due_date", sa.DateTime(), nullable=False),
        sa.Column("amount_cents", sa.Integer(), nullable=False),
        sa.Column("number_of_requests", sa.Integer(), nullable=False),
        sa.Column("filled", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("expired", sa.Boolean(), nullable=False, server_default=sa.false()),
        *_timestamps(),
        sa.CheckConstraint("amount_cents >= 0", name="ck_request_amount_positive"),
        sa.CheckConstraint("number_of_requests > 0", name="ck_request_count_positive"),
    )
    op.create_index(
        "ix_payment_requests_account_due",
        "payment_requests",
        ["account_id", "due_date"],
    )

    op.create_table(
        "payment_request_transactions",
        sa.Column(
            "payment_request_id",
            sa.Integer(),
            sa.ForeignKey("payment_requests.id"),
            primary_key=True,
        ),
        sa.Column(
            "transaction_id",
            sa.Integer(),
            sa.ForeignKey("transactions.id"),
            primary_key=True,
        ),
    )

    op.create_table(
        "user_messages",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column(
            "account_id", sa.Integer(), sa.ForeignKey("accounts.id"), nullable=False
        ),
        sa.Column(
            "type", sa.Enum("info", "warning", name="messagetype"), nullable=False
        ),
        sa.Column("content", sa.Text(), nullable=False),
        sa.Column("read", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("occurred_at", sa.DateTime(), nullable=False),
        *_timestamps(),
    )
    op.create_index("ix_user_messages_account", "user_messages", ["account_id", "id"])


def downgrade() -> None:
    op.drop_index("ix_user_messages_account", table_name="user_messages")
    op.drop_table("user_messages")
    op.drop_table("payment_request_transactions")
    op.drop_index("ix_payment_requests_account_due", table_name="payment_requests")
    op.drop_table("payment_requests")
    op.drop_index("ix_category_rules_account", table_name="category_rules")
    op.drop_table("category_rules")
    op.drop_index("ix_transactions_account_category", table_name="transactions")
    op.drop_index("ix_transactions_account_occurred", table_name="transactions")
    op.drop_table("transactions")
    op.drop_index("ix_saving_goals_account", table_name="saving_goals")
    op.drop_table("saving_goals")
    op.drop_table("categories")
    op.drop_table("accounts")
