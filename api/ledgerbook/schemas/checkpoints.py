from datetime import date, datetime
from uuid import UUID
from pydantic import BaseModel, ConfigDict


class CheckpointCreate(BaseModel):
    checkpoint_date: datetime | date
    declared_balance_cents: int
    notes: str | None = None


class CheckpointPatch(BaseModel):
    declared_balance_cents: int | None = None
    notes: str | None = None


class CheckpointOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    account_id: UUID
    checkpoint_date: date
    declared_balance_cents: int
    calculated_balance_cents: int
    adjustment_amount_cents: int
    is_reconciled: bool
    notes: str | None = None
    import_batch_id: UUID | None = None
    created_by_user_id: UUID | None = None
    created_at: datetime
    updated_at: datetime


class CheckpointResponse(BaseModel):
    checkpoint: CheckpointOut
    adjustment_transaction_id: UUID | None = None
    message: str


class RecalculationResultOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    checkpoint_id: UUID
    checkpoint_date: date
    old_calculated_balance_cents: int | None
    new_calculated_balance_cents: int
    old_adjustment_amount_cents: int | None
    new_adjustment_amount_cents: int
    old_is_reconciled: bool | None
    new_is_reconciled: bool
    adjustment_transaction_updated: bool


class RecalculationSummary(BaseModel):
    total: int
    now_reconciled: int
    still_unreconciled: int


class RecalculateResponse(BaseModel):
    data: list[RecalculationResultOut]
    summary: RecalculationSummary
    message: str


class CheckpointSummaryOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    account_id: UUID
    account_name: str
    total_checkpoints: int
    reconciled_checkpoints: int
    unreconciled_checkpoints: int
    total_adjustment_amount_cents: int
    earliest_checkpoint_date: date | None
    latest_checkpoint_date: date | None
