import uuid
from datetime import date, datetime
from sqlalchemy import String, Boolean, Date, DateTime, ForeignKey, Text, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from .base import Base


# Balance is the amount owed, so inflows reduce it.
LIABILITY_ACCOUNT_TYPES = frozenset({"credit_card", "credit_line", "term_loan"})


class Account(Base):
    __tablename__ = "accounts"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    budget_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("budgets.id", ondelete="CASCADE"), nullable=False)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    type: Mapped[str] = mapped_column(String(32), nullable=False, default="checking")
    on_budget: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    note: Mapped[str | None] = mapped_column(Text, nullable=True)
    opening_balance_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    earliest_transaction_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=datetime.utcnow)

    @property
    def is_liability(self) -> bool:
        return self.type in LIABILITY_ACCOUNT_TYPES

    @property
    def balance_sign(self) -> int:
        return -1 if self.is_liability else 1
