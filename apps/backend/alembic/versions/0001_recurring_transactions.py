"""create users, categories, transactions and recurring transactions

Revision ID: 0001_recurring_transactions
Revises:
Create Date: 2026-10-19 09:00:00.000000
"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = "0001_recurring_transactions"
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column("created_at", sa.DateTime(), nullable=False, server_default=sa.text("(CURRENT_TIMESTAMP)")),
        sa.Column("updated_at", sa.DateTime(), nullable=False, server_default=sa.text("(CURRENT_TIMESTAMP)")),
    ]


def upgrade() -> None:
    txn_type = sa.Enum("INCOME", "EXPENSE", name="txn_type")
    frequency = sa.Enum("WEEKLY", "BIWEEKLY", "MONTHLY", "YEARLY", name="recurring_frequency")

    op.create_table(
        "user",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("email", sa.String(length=320), nullable=False, unique=True),
        sa.Column("display_name", sa.String(length=120), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        *_timestamps(),
    )

    op.create_table(
        "category",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("user_id", sa.Integer(), sa.ForeignKey("user.id", ondelete="CASCADE"), nullable=False),
        sa.Column("name", sa.String(length=100), nullable=False),
        sa.Column("type", txn_type, nullable=False),
        *_timestamps(),
        sa.UniqueConstraint("user_id", "type", "name", name="uq_category_user_type_name"),
    )

    op.create_table(
        "recurring_transaction",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("user_id", sa.Integer(), sa.ForeignKey("user.id", ondelete="CASCADE"), nullable=False),
        sa.Column("category_id", sa.Integer(), sa.ForeignKey("category.id"), nullable=False),
        sa.Column("type", txn_type, nullable=False),
        sa.Column("amount", sa.Numeric(18, 2), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("frequency", frequency, nullable=False),
        sa.Column("start_date", sa.Date(), nullable=False),
        sa.Column("end_date", sa.Date(), nullable=True),
        sa.Column("max_occurrences", sa.Integer(), nullable=True),
        sa.Column("day_of_month", sa.Integer(), nullable=True),
        sa.Column("paused_at", sa.DateTime(), nullable=True),
        sa.Column("generated_through", sa.Date(), nullable=True),
        *_timestamps(),
        sa.CheckConstraint("amount > 0", name="ck_recurring_amount_positive"),
        sa.CheckConstraint("end_date IS NULL OR max_occurrences IS NULL", name="ck_recurring_single_end_condition"),
        sa.CheckConstraint(
            "max_occurrences IS NULL OR max_occurrences > 0",
            name="ck_recurring_max_occurrences_positive",
        ),
    )
    op.create_index("ix_recurring_user_created", "recurring_transaction", ["user_id", "created_at"])

    op.create_table(
        "transaction",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("user_id", sa.Integer(), sa.ForeignKey("user.id", ondelete="CASCADE"), nullable=False),
        sa.Column("category_id", sa.Integer(), sa.ForeignKey("category.id"), nullable=False),
        sa.Column("type", txn_type, nullable=False),
        sa.Column("amount", sa.Numeric(18, 2), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("date", sa.Date(), nullable=False),
        sa.Column(
            "recurring_id",
            sa.Integer(),
            sa.ForeignKey("recurring_transaction.id", ondelete="SET NULL"),
            nullable=True,
        ),
        *_timestamps(),
        sa.CheckConstraint("amount > 0", name="ck_transaction_amount_positive"),
    )
    op.create_index("ix_transaction_recurring_date", "transaction", ["recurring_id", "date"])
    op.create_index("ix_transaction_user_date", "transaction", ["user_id", "date"])


def downgrade() -> None:
    op.drop_index("ix_transaction_user_date", table_name="transaction")
    op.drop_index("ix_transaction_recurring_date", table_name="transaction")
    op.drop_table("transaction")
    op.drop_index("ix_recurring_user_created", table_name="recurring_transaction")
    op.drop_table("recurring_transaction")
    op.drop_table("category")
    op.drop_table("user")
    bind = op.get_bind()
    if bind.dialect.name != "sqlite":
        sa.Enum(name="recurring_frequency").drop(bind, checkfirst=True)
        sa.Enum(name="txn_type").drop(bind, checkfirst=True)
