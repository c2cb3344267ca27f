import uuid
from datetime import date, datetime
from sqlalchemy import BigInteger, Boolean, Date, DateTime, ForeignKey, Text, UniqueConstraint, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from .base import Base


class BalanceCheckpoint(Base):
    """A statement balance the user vouches for on a given day.

    ``declared_balance_cents == calculated_balance_cents + adjustment_amount_cents``
    always holds after the engine has touched the row.
    """

    __tablename__ = "balance_checkpoints"
    __table_args__ = (
        UniqueConstraint("account_id", "checkpoint_date", name="uq_balance_checkpoints_account_date"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    account_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("accounts.id", ondelete="CASCADE"), nullable=False, index=True)
    checkpoint_date: Mapped[date] = mapped_column(Date, nullable=False)
    declared_balance_cents: Mapped[int] = mapped_column(BigInteger, nullable=False)
    calculated_balance_cents: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    adjustment_amount_cents: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    is_reconciled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    import_batch_id: Mapped[uuid.UUID | None] = mapped_column(Uuid, ForeignKey("import_batches.id", ondelete="SET NULL"), nullable=True, index=True)
    created_by_user_id: Mapped[uuid.UUID | None] = mapped_column(Uuid, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)
