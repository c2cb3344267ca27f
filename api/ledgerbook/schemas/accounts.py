from datetime import date
from uuid import UUID
from pydantic import BaseModel, ConfigDict, constr


class AccountCreate(BaseModel):
    name: constr(min_length=1, max_length=200)
    type: constr(min_length=2, max_length=32) = "checking"
    on_budget: bool = True
    note: str | None = None
    opening_balance_cents: int | None = None
    opening_balance_date: date | None = None


class AccountPatch(BaseModel):
    name: constr(min_length=1, max_length=200) | None = None
    on_budget: bool | None = None
    note: str | None = None


class AccountOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)
    id: UUID
    name: str
    type: str
    on_budget: bool
    note: str | None = None
    opening_balance_date: date | None = None
    earliest_transaction_date: date | None = None


class BalanceCalculationOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)
    account_id: UUID
    as_of: date
    calculated_balance_cents: int
    transaction_count: int
