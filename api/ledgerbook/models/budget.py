import uuid
from datetime import datetime
from sqlalchemy import CheckConstraint, String, DateTime, Uuid, func
from sqlalchemy.orm import Mapped, mapped_column

from .base import Base


class Budget(Base):
    """Tenant boundary: every account, import and checkpoint hangs off one."""

    __tablename__ = "budgets"
    __table_args__ = (
        CheckConstraint("length(currency) = 3", name="ck_budgets_currency_iso"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    # ISO 4217; all *_cents columns are minor units of this currency
    currency: Mapped[str] = mapped_column(String(3), nullable=False, default="USD")
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now(), nullable=False)
