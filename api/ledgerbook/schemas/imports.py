from datetime import date, datetime
from uuid import UUID
from pydantic import BaseModel, ConfigDict, Field, constr

from .checkpoints import CheckpointOut


class StatementRowIn(BaseModel):
    date: date
    amount_cents: int  # negative = outflow, positive = inflow
    memo: str | None = None
    import_id: constr(max_length=255) | None = None


class ImportRequest(BaseModel):
    file_name: constr(max_length=255) | None = None
    statement_start_date: date | None = None
    statement_end_date: date
    ending_balance_cents: int
    rows: list[StatementRowIn] = Field(min_length=1)


class ImportBatchOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    account_id: UUID
    file_name: str | None
    status: str
    statement_start_date: date | None
    statement_end_date: date
    ending_balance_cents: int
    total_rows: int
    imported_count: int
    duplicate_count: int
    imported_at: datetime
    rolled_back_at: datetime | None = None
    transactions_deleted: int | None = None
    current_transaction_count: int | None = None


class ImportResponse(BaseModel):
    batch: ImportBatchOut
    checkpoint: CheckpointOut
    imported_count: int
    duplicate_count: int
    checkpoints_recalculated: int
    message: str


class RollbackResponse(BaseModel):
    import_batch_id: UUID
    account_id: UUID
    transactions_deleted: int
    checkpoint_ids: list[UUID]
    message: str
