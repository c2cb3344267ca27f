"""ledger transactions, import batches, balance checkpoints

Revision ID: 0002_checkpoints_and_imports
Revises: 0001_core_schema
Create Date: 2025-09-06 14:20:00

"""
from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql as pg

# revision identifiers, used by Alembic.
revision = "0002_checkpoints_and_imports"
down_revision = "0001_core_schema"
branch_labels = None
depends_on = None


def upgrade() -> None:
    # import_batches
    op.create_table(
        "import_batches",
        sa.Column("id", pg.UUID(as_uuid=True), primary_key=True, nullable=False),
        sa.Column("budget_id", pg.UUID(as_uuid=True), sa.ForeignKey("budgets.id", ondelete="CASCADE"), nullable=False),
        sa.Column("account_id", pg.UUID(as_uuid=True), sa.ForeignKey("accounts.id", ondelete="CASCADE"), nullable=False),
        sa.Column("file_name", sa.String(length=255), nullable=True),
        sa.Column("status", sa.String(length=16), nullable=False, server_default="completed"),
        sa.Column("statement_start_date", sa.Date(), nullable=True),
        sa.Column("statement_end_date", sa.Date(), nullable=False),
        sa.Column("ending_balance_cents", sa.BigInteger(), nullable=False),
        sa.Column("total_rows", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("imported_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("duplicate_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("imported_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.Column("rolled_back_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("transactions_deleted", sa.Integer(), nullable=True),
    )
    op.create_index("ix_import_batches_account_id", "import_batches", ["account_id"])

    # balance_checkpoints
    op.create_table(
        "balance_checkpoints",
        sa.Column("id", pg.UUID(as_uuid=True), primary_key=True, nullable=False),
        sa.Column("account_id", pg.UUID(as_uuid=True), sa.ForeignKey("accounts.id", ondelete="CASCADE"), nullable=False),
        sa.Column("checkpoint_date", sa.Date(), nullable=False),
        sa.Column("declared_balance_cents", sa.BigInteger(), nullable=False),
        sa.Column("calculated_balance_cents", sa.BigInteger(), nullable=False, server_default="0"),
        sa.Column("adjustment_amount_cents", sa.BigInteger(), nullable=False, server_default="0"),
        sa.Column("is_reconciled", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("import_batch_id", pg.UUID(as_uuid=True), sa.ForeignKey("import_batches.id", ondelete="SET NULL"), nullable=True),
        sa.Column("created_by_user_id", pg.UUID(as_uuid=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.UniqueConstraint("account_id", "checkpoint_date", name="uq_balance_checkpoints_account_date"),
    )
    op.create_index("ix_balance_checkpoints_account_id", "balance_checkpoints", ["account_id"])
    op.create_index("ix_balance_checkpoints_import_batch_id", "balance_checkpoints", ["import_batch_id"])

    # transactions
    op.create_table(
        "transactions",
        sa.Column("id", pg.UUID(as_uuid=True), primary_key=True, nullable=False),
        sa.Column("budget_id", pg.UUID(as_uuid=True), sa.ForeignKey("budgets.id", ondelete="CASCADE"), nullable=False),
        sa.Column("account_id", pg.UUID(as_uuid=True), sa.ForeignKey("accounts.id", ondelete="CASCADE"), nullable=False),
        sa.Column("date", sa.Date(), nullable=False),
        sa.Column("amount_cents", sa.BigInteger(), nullable=False),
        sa.Column("state", sa.String(length=16), nullable=False, server_default="uncleared"),
        sa.Column("memo", sa.Text(), nullable=True),
        sa.Column("source", sa.String(length=32), nullable=False, server_default="manual"),
        sa.Column("import_id", sa.String(length=255), nullable=True),
        sa.Column("import_batch_id", pg.UUID(as_uuid=True), sa.ForeignKey("import_batches.id", ondelete="SET NULL"), nullable=True),
        sa.Column("transfer_tx_id", pg.UUID(as_uuid=True), sa.ForeignKey("transactions.id"), nullable=True),
        sa.Column("checkpoint_id", pg.UUID(as_uuid=True), sa.ForeignKey("balance_checkpoints.id", ondelete="SET NULL"), nullable=True),
        sa.Column("is_balance_adjustment", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("is_flagged", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("deleted_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
    )
    op.create_index("ix_transactions_budget_id", "transactions", ["budget_id"])
    op.create_index("ix_transactions_account_id", "transactions", ["account_id"])
    op.create_index("ix_transactions_date", "transactions", ["date"])
    op.create_index("ix_transactions_import_batch_id", "transactions", ["import_batch_id"])
    op.create_index("ix_transactions_checkpoint_id", "transactions", ["checkpoint_id"])
    # One live adjustment row per checkpoint
    op.create_index(
        "uq_transactions_adjustment_checkpoint",
        "transactions",
        ["checkpoint_id"],
        unique=True,
        postgresql_where=sa.text("is_balance_adjustment"),
    )
    # Ledger sums filter on these; adjustments are excluded
    op.create_index(
        "ix_transactions_ledger_balance",
        "transactions",
        ["account_id", "date"],
        postgresql_where=sa.text("deleted_at IS NULL AND NOT is_balance_adjustment"),
    )


def downgrade() -> None:
    op.drop_index("ix_transactions_ledger_balance", table_name="transactions")
    op.drop_index("uq_transactions_adjustment_checkpoint", table_name="transactions")
    op.drop_index("ix_transactions_checkpoint_id", table_name="transactions")
    op.drop_index("ix_transactions_import_batch_id", table_name="transactions")
    op.drop_index("ix_transactions_date", table_name="transactions")
    op.drop_index("ix_transactions_account_id", table_name="transactions")
    op.drop_index("ix_transactions_budget_id", table_name="transactions")
    op.drop_table("transactions")
    op.drop_index("ix_balance_checkpoints_import_batch_id", table_name="balance_checkpoints")
    op.drop_index("ix_balance_checkpoints_account_id", table_name="balance_checkpoints")
    op.drop_table("balance_checkpoints")
    op.drop_index("ix_import_batches_account_id", table_name="import_batches")
    op.drop_table("import_batches")
