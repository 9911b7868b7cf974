"""Initial schema - loan applications and synced bank transactions

Revision ID: 001_initial_schema
Revises:
Create Date: 2026-10-19

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = "001_initial_schema"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    # loan_applications
    op.create_table(
        "loan_applications",
        sa.Column("id", sa.String(64), nullable=False),
        sa.Column("account_address", sa.String(64), nullable=False),
        sa.Column("loan_amount", sa.Numeric(20, 2), nullable=True),
        sa.Column("funding_urgency", sa.String(32), nullable=True),
        sa.Column("last_synced_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("lend_score", sa.Integer(), nullable=True),
        sa.Column("lend_score_reason_codes", sa.JSON(), nullable=True),
        sa.Column("lend_score_retrieved_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.text("now()"),
            nullable=False,
        ),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            server_default=sa.text("now()"),
            nullable=False,
        ),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(
        "idx_loan_applications_account_address", "loan_applications", ["account_address"]
    )

    # transactions
    op.create_table(
        "transactions",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("loan_application_id", sa.String(64), nullable=False),
        sa.Column("transaction_id", sa.String(128), nullable=True),
        sa.Column("amount", sa.Float(), nullable=True),
        sa.Column("date", sa.DateTime(timezone=True), nullable=True),
        sa.Column("is_deleted", sa.Boolean(), server_default="false", nullable=False),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.text("now()"),
            nullable=False,
        ),
        sa.ForeignKeyConstraint(
            ["loan_application_id"], ["loan_applications.id"], ondelete="CASCADE"
        ),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint(
            "loan_application_id", "transaction_id", name="uq_transactions_loan_txid"
        ),
    )
    op.create_index(
        "idx_transactions_loan_date", "transactions", ["loan_application_id", "date"]
    )


def downgrade() -> None:
    op.drop_index("idx_transactions_loan_date", table_name="transactions")
    op.drop_table("transactions")
    op.drop_index("idx_loan_applications_account_address", table_name="loan_applications")
    op.drop_table("loan_applications")
