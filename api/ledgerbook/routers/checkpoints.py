from typing import Literal
from uuid import UUID
from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from ledgerbook.db import get_db, unit_of_work
from ledgerbook.routers.common import require_account
from ledgerbook.schemas.checkpoints import (
    CheckpointCreate,
    CheckpointPatch,
    CheckpointOut,
    CheckpointResponse,
    CheckpointSummaryOut,
    RecalculateResponse,
    RecalculationResultOut,
    RecalculationSummary,
)
from ledgerbook.schemas.imports import RollbackResponse
from ledgerbook.services import checkpoints, imports


router = APIRouter(
    prefix="/api/v1/budgets/{budget_id}/accounts/{account_id}/checkpoints",
    tags=["checkpoints"],
)


def _checkpoint_response(db: Session, cp) -> CheckpointResponse:
    adjustment = checkpoints.get_adjustment_transaction(db, cp.id)
    return CheckpointResponse(
        checkpoint=CheckpointOut.model_validate(cp),
        adjustment_transaction_id=adjustment.id if adjustment else None,
        message=(
            "Checkpoint saved and fully reconciled"
            if cp.is_reconciled
            else "Checkpoint saved with balance adjustment"
        ),
    )


@router.get("/", response_model=list[CheckpointOut])
def list_checkpoints(
    budget_id: UUID,
    account_id: UUID,
    include_reconciled: bool = True,
    order_by: Literal["date_asc", "date_desc"] = "date_desc",
    limit: int | None = Query(None, ge=1, le=500),
    offset: int = Query(0, ge=0),
    db: Session = Depends(get_db),
):
    require_account(db, budget_id, account_id)
    return checkpoints.list_checkpoints(
        db,
        account_id,
        include_reconciled=include_reconciled,
        order_by=order_by,
        limit=limit,
        offset=offset,
    )


@router.post("/", response_model=CheckpointResponse, status_code=201)
def create_checkpoint(budget_id: UUID, account_id: UUID, payload: CheckpointCreate, db: Session = Depends(get_db)):
    acc = require_account(db, budget_id, account_id)
    with unit_of_work(db):
        cp = checkpoints.create_or_update_checkpoint(
            db,
            acc,
            payload.checkpoint_date,
            payload.declared_balance_cents,
            notes=payload.notes,
        )
    db.refresh(cp)
    return _checkpoint_response(db, cp)


@router.get("/summary", response_model=CheckpointSummaryOut)
def get_checkpoint_summary(budget_id: UUID, account_id: UUID, db: Session = Depends(get_db)):
    acc = require_account(db, budget_id, account_id)
    return checkpoints.get_checkpoint_summary(db, acc)


@router.post("/recalculate", response_model=RecalculateResponse)
def recalculate_checkpoints(budget_id: UUID, account_id: UUID, db: Session = Depends(get_db)):
    acc = require_account(db, budget_id, account_id)
    with unit_of_work(db):
        results = checkpoints.recalculate_all_checkpoints(db, acc)
    reconciled = sum(1 for r in results if r.new_is_reconciled)
    return RecalculateResponse(
        data=[RecalculationResultOut.model_validate(r) for r in results],
        summary=RecalculationSummary(
            total=len(results),
            now_reconciled=reconciled,
            still_unreconciled=len(results) - reconciled,
        ),
        message=f"Recalculated {len(results)} checkpoint(s)",
    )


@router.get("/{checkpoint_id}", response_model=CheckpointResponse)
def get_checkpoint(budget_id: UUID, account_id: UUID, checkpoint_id: UUID, db: Session = Depends(get_db)):
    require_account(db, budget_id, account_id)
    cp = checkpoints.get_checkpoint(db, checkpoint_id, account_id=account_id)
    return _checkpoint_response(db, cp)


@router.patch("/{checkpoint_id}", response_model=CheckpointResponse)
def update_checkpoint(
    budget_id: UUID,
    account_id: UUID,
    checkpoint_id: UUID,
    payload: CheckpointPatch,
    db: Session = Depends(get_db),
):
    acc = require_account(db, budget_id, account_id)
    cp = checkpoints.get_checkpoint(db, checkpoint_id, account_id=account_id)
    declared = cp.declared_balance_cents if payload.declared_balance_cents is None else payload.declared_balance_cents
    notes = payload.notes if "notes" in payload.model_fields_set else cp.notes
    with unit_of_work(db):
        cp = checkpoints.create_or_update_checkpoint(db, acc, cp.checkpoint_date, declared, notes=notes)
    db.refresh(cp)
    return _checkpoint_response(db, cp)


@router.delete("/{checkpoint_id}", status_code=204)
def delete_checkpoint(budget_id: UUID, account_id: UUID, checkpoint_id: UUID, db: Session = Depends(get_db)):
    require_account(db, budget_id, account_id)
    cp = checkpoints.get_checkpoint(db, checkpoint_id, account_id=account_id)
    with unit_of_work(db):
        checkpoints.delete_checkpoint(db, cp)
    return


@router.post("/{checkpoint_id}/rollback", response_model=RollbackResponse)
def rollback_checkpoint(budget_id: UUID, account_id: UUID, checkpoint_id: UUID, db: Session = Depends(get_db)):
    require_account(db, budget_id, account_id)
    cp = checkpoints.get_checkpoint(db, checkpoint_id, account_id=account_id)
    with unit_of_work(db):
        result = imports.rollback_checkpoint(db, cp)
    return RollbackResponse(
        import_batch_id=result.import_batch_id,
        account_id=result.account_id,
        transactions_deleted=result.transactions_deleted,
        checkpoint_ids=result.checkpoint_ids,
        message=(
            f"Rolled back import. Deleted {result.transactions_deleted} "
            f"transaction{'' if result.transactions_deleted == 1 else 's'} and the checkpoint."
        ),
    )
