from uuid import UUID
from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from ledgerbook.db import get_db, unit_of_work
from ledgerbook.routers.common import require_account, require_budget
from ledgerbook.schemas.checkpoints import CheckpointOut
from ledgerbook.schemas.imports import ImportBatchOut, ImportRequest, ImportResponse, RollbackResponse
from ledgerbook.services import imports


router = APIRouter(prefix="/api/v1/budgets/{budget_id}", tags=["imports"])


def _batch_out(db: Session, batch) -> ImportBatchOut:
    out = ImportBatchOut.model_validate(batch)
    out.current_transaction_count = imports.count_batch_transactions(db, batch.id)
    return out


@router.post("/accounts/{account_id}/import", response_model=ImportResponse, status_code=201)
def import_statement(budget_id: UUID, account_id: UUID, payload: ImportRequest, db: Session = Depends(get_db)):
    acc = require_account(db, budget_id, account_id)
    with unit_of_work(db):
        result = imports.import_statement(
            db,
            acc,
            payload.rows,
            payload.statement_end_date,
            payload.ending_balance_cents,
            file_name=payload.file_name,
            statement_start_date=payload.statement_start_date,
        )
    db.refresh(result.batch)
    db.refresh(result.checkpoint)
    return ImportResponse(
        batch=_batch_out(db, result.batch),
        checkpoint=CheckpointOut.model_validate(result.checkpoint),
        imported_count=result.imported_count,
        duplicate_count=result.duplicate_count,
        checkpoints_recalculated=result.checkpoints_recalculated,
        message=(
            f"Imported {result.imported_count} transaction(s), "
            f"skipped {result.duplicate_count} duplicate(s)"
        ),
    )


@router.get("/import-batches/{batch_id}", response_model=ImportBatchOut)
def get_import_batch(budget_id: UUID, batch_id: UUID, db: Session = Depends(get_db)):
    require_budget(db, budget_id)
    batch = imports.get_import_batch(db, batch_id, budget_id=budget_id)
    return _batch_out(db, batch)


@router.delete("/import-batches/{batch_id}", response_model=RollbackResponse)
def rollback_import_batch(budget_id: UUID, batch_id: UUID, db: Session = Depends(get_db)):
    require_budget(db, budget_id)
    batch = imports.get_import_batch(db, batch_id, budget_id=budget_id)
    with unit_of_work(db):
        result = imports.rollback_import_batch(db, batch)
    return RollbackResponse(
        import_batch_id=result.import_batch_id,
        account_id=result.account_id,
        transactions_deleted=result.transactions_deleted,
        checkpoint_ids=result.checkpoint_ids,
        message=f"Rolled back import: {result.transactions_deleted} transaction(s) deleted",
    )
