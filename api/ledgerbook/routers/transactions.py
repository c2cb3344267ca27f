from datetime import date, datetime
from uuid import UUID
from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session, aliased

from ledgerbook.db import get_db, unit_of_work
from ledgerbook.errors import ConflictError, ValidationError
from ledgerbook.models.account import Account
from ledgerbook.models.transaction import Transaction
from ledgerbook.routers.common import require_budget
from ledgerbook.schemas.transactions import TransferMatchIn, TxIn, TxOut, TxPatch
from ledgerbook.services import checkpoints


router = APIRouter(prefix="/api/v1/budgets/{budget_id}/transactions", tags=["transactions"])

TX_STATES = {"uncleared", "cleared", "reconciled"}


def tx_out(t: Transaction, transfer_account_id: UUID | None = None) -> TxOut:
    return TxOut(
        id=t.id,
        account_id=t.account_id,
        date=t.date,
        amount_cents=t.amount_cents,
        memo=t.memo,
        state=t.state,
        source=t.source,
        transfer_account_id=transfer_account_id,
        transfer_tx_id=t.transfer_tx_id,
        import_batch_id=t.import_batch_id,
        checkpoint_id=t.checkpoint_id,
        is_balance_adjustment=t.is_balance_adjustment,
        is_flagged=t.is_flagged,
    )


def _get_tx(db: Session, budget_id: UUID, tx_id: UUID) -> Transaction:
    t = db.get(Transaction, tx_id)
    if not t or t.budget_id != budget_id or t.deleted_at is not None:
        raise HTTPException(404, "Transaction not found")
    return t


def _refuse_adjustment(t: Transaction) -> None:
    if t.is_balance_adjustment:
        raise ValidationError(
            "Balance adjustment transactions are managed by their checkpoint",
            details={"transaction_id": str(t.id), "checkpoint_id": str(t.checkpoint_id) if t.checkpoint_id else None},
        )


def _recalculate(db: Session, account_ids) -> None:
    for account_id in dict.fromkeys(account_ids):
        acc = db.get(Account, account_id)
        if acc is not None:
            checkpoints.recalculate_all_checkpoints(db, acc)


def _counterpart_account(db: Session, t: Transaction) -> UUID | None:
    if not t.transfer_tx_id:
        return None
    other = db.get(Transaction, t.transfer_tx_id)
    return other.account_id if other else None


@router.get("/", response_model=list[TxOut])
def list_transactions(
    budget_id: UUID,
    db: Session = Depends(get_db),
    account_id: UUID | None = None,
    since: date | None = None,
    flagged: bool | None = None,
    limit: int = Query(500, ge=1, le=500),
):
    require_budget(db, budget_id)
    # Paired transfer exposes the other account id
    other = aliased(Transaction)
    q = (
        db.query(Transaction, other.account_id.label("other_account_id"))
        .outerjoin(other, Transaction.transfer_tx_id == other.id)
        .filter(Transaction.budget_id == budget_id)
        .filter(Transaction.deleted_at.is_(None))
    )
    if account_id:
        q = q.filter(Transaction.account_id == account_id)
    if since:
        q = q.filter(Transaction.date >= since)
    if flagged is not None:
        q = q.filter(Transaction.is_flagged.is_(flagged))
    q = q.order_by(Transaction.date.desc(), Transaction.id.desc())
    return [tx_out(t, other_account_id) for t, other_account_id in q.limit(limit).all()]


@router.post("/", response_model=TxOut, status_code=201)
def create_transaction(budget_id: UUID, payload: TxIn, db: Session = Depends(get_db)):
    require_budget(db, budget_id)
    acc = db.get(Account, payload.account_id)
    if not acc or acc.budget_id != budget_id:
        raise HTTPException(400, "Invalid account")

    # Transfers: create pair and link
    if payload.transfer_account_id:
        other = db.get(Account, payload.transfer_account_id)
        if not other or other.budget_id != budget_id:
            raise HTTPException(400, "Invalid transfer account")
        if other.id == acc.id:
            raise HTTPException(400, "Cannot transfer to the same account")
        t1 = Transaction(
            budget_id=budget_id,
            account_id=acc.id,
            date=payload.date,
            amount_cents=payload.amount_cents,
            memo=payload.memo,
            state="uncleared",
        )
        t2 = Transaction(
            budget_id=budget_id,
            account_id=other.id,
            date=payload.date,
            amount_cents=-payload.amount_cents,
            memo=payload.memo,
            state="uncleared",
        )
        with unit_of_work(db):
            db.add_all([t1, t2])
            db.flush()
            t1.transfer_tx_id = t2.id
            t2.transfer_tx_id = t1.id
            _recalculate(db, [acc.id, other.id])
        db.refresh(t1)
        return tx_out(t1, other.id)

    t = Transaction(
        budget_id=budget_id,
        account_id=acc.id,
        date=payload.date,
        amount_cents=payload.amount_cents,
        memo=payload.memo,
        state="uncleared",
    )
    with unit_of_work(db):
        db.add(t)
        _recalculate(db, [acc.id])
    db.refresh(t)
    return tx_out(t)


@router.patch("/{tx_id}", response_model=TxOut)
def patch_transaction(budget_id: UUID, tx_id: UUID, payload: TxPatch, db: Session = Depends(get_db)):
    t = _get_tx(db, budget_id, tx_id)
    _refuse_adjustment(t)
    # If it's a transfer, only allow memo/state edits for now
    is_transfer = bool(t.transfer_tx_id)

    if payload.state is not None:
        if payload.state not in TX_STATES:
            raise HTTPException(400, "Invalid state")
        t.state = payload.state
    if "memo" in payload.model_fields_set:
        t.memo = payload.memo
    if payload.date is not None and not is_transfer:
        t.date = payload.date
    if payload.amount_cents is not None and not is_transfer:
        t.amount_cents = payload.amount_cents

    with unit_of_work(db):
        _recalculate(db, [t.account_id])
    db.refresh(t)
    return tx_out(t, _counterpart_account(db, t))


@router.delete("/{tx_id}", status_code=204)
def delete_transaction(budget_id: UUID, tx_id: UUID, db: Session = Depends(get_db)):
    t = _get_tx(db, budget_id, tx_id)
    _refuse_adjustment(t)
    # Soft delete
    now = datetime.utcnow()
    t.deleted_at = now
    affected = [t.account_id]
    # If transfer, also delete counterpart; the pair is dissolved
    if t.transfer_tx_id:
        other = db.get(Transaction, t.transfer_tx_id)
        if other:
            other.deleted_at = now
            other.transfer_tx_id = None
            affected.append(other.account_id)
        t.transfer_tx_id = None
    with unit_of_work(db):
        _recalculate(db, affected)
    return


@router.post("/{tx_id}/transfer-match", response_model=TxOut)
def match_transfer(budget_id: UUID, tx_id: UUID, payload: TransferMatchIn, db: Session = Depends(get_db)):
    """Link two existing transactions as the two legs of one transfer."""
    t = _get_tx(db, budget_id, tx_id)
    other = _get_tx(db, budget_id, payload.other_transaction_id)
    _refuse_adjustment(t)
    _refuse_adjustment(other)
    if t.account_id == other.account_id:
        raise ValidationError("Transfer legs must be in different accounts")
    if t.amount_cents != -other.amount_cents:
        raise ValidationError(
            "Transfer legs must have opposite amounts",
            details={"amount_cents": t.amount_cents, "other_amount_cents": other.amount_cents},
        )
    if t.transfer_tx_id or other.transfer_tx_id:
        raise ConflictError(
            "Transaction is already matched to a transfer",
            details={"transaction_ids": [str(x.id) for x in (t, other) if x.transfer_tx_id]},
        )
    with unit_of_work(db):
        t.transfer_tx_id = other.id
        other.transfer_tx_id = t.id
    db.refresh(t)
    return tx_out(t, other.account_id)


@router.delete("/{tx_id}/transfer-match", response_model=TxOut)
def unmatch_transfer(budget_id: UUID, tx_id: UUID, db: Session = Depends(get_db)):
    t = _get_tx(db, budget_id, tx_id)
    if not t.transfer_tx_id:
        raise ValidationError("Transaction is not matched to a transfer", details={"transaction_id": str(t.id)})
    with unit_of_work(db):
        other = db.get(Transaction, t.transfer_tx_id)
        if other is not None and other.transfer_tx_id == t.id:
            other.transfer_tx_id = None
        t.transfer_tx_id = None
    db.refresh(t)
    return tx_out(t)
