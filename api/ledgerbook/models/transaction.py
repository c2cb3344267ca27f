import uuid
from datetime import date, datetime
from sqlalchemy import String, BigInteger, Boolean, Date, DateTime, ForeignKey, Text, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from .base import Base


SOURCE_MANUAL = "manual"
SOURCE_IMPORT = "import"
SOURCE_AUTO_ADJUSTMENT = "auto_adjustment"


class Transaction(Base):
    __tablename__ = "transactions"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    budget_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("budgets.id", ondelete="CASCADE"), nullable=False, index=True)
    account_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("accounts.id", ondelete="CASCADE"), nullable=False, index=True)
    date: Mapped[date] = mapped_column(Date, nullable=False, index=True)
    amount_cents: Mapped[int] = mapped_column(BigInteger, nullable=False)  # negative = outflow/debit
    state: Mapped[str] = mapped_column(String(16), nullable=False, default="uncleared")
    memo: Mapped[str | None] = mapped_column(Text, nullable=True)
    source: Mapped[str] = mapped_column(String(32), nullable=False, default=SOURCE_MANUAL)
    import_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    import_batch_id: Mapped[uuid.UUID | None] = mapped_column(Uuid, ForeignKey("import_batches.id", ondelete="SET NULL"), nullable=True, index=True)
    transfer_tx_id: Mapped[uuid.UUID | None] = mapped_column(Uuid, ForeignKey("transactions.id"), nullable=True)
    checkpoint_id: Mapped[uuid.UUID | None] = mapped_column(Uuid, ForeignKey("balance_checkpoints.id", ondelete="SET NULL"), nullable=True, index=True)
    is_balance_adjustment: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    is_flagged: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    deleted_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)
