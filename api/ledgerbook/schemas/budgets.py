from datetime import date, datetime
from uuid import UUID
from pydantic import BaseModel, ConfigDict, constr, field_validator


class BudgetCreate(BaseModel):
    name: constr(strip_whitespace=True, min_length=1, max_length=200)
    currency: constr(pattern=r"^[A-Za-z]{3}$") = "USD"

    @field_validator("currency")
    @classmethod
    def upper_currency(cls, v: str) -> str:
        return v.upper()


class BudgetOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    name: str
    currency: str
    created_at: datetime


class BudgetOverview(BudgetOut):
    account_count: int
    checkpoint_count: int
    unreconciled_checkpoint_count: int
    latest_checkpoint_date: date | None = None
