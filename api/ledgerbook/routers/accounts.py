from datetime import date
from uuid import UUID
from fastapi import APIRouter, Depends, HTTPException
import sqlalchemy as sa
from sqlalchemy.orm import Session

from ledgerbook.db import get_db, unit_of_work
from ledgerbook.models.account import Account
from ledgerbook.models.transaction import Transaction
from ledgerbook.routers.common import require_account, require_budget
from ledgerbook.routers.transactions import tx_out
from ledgerbook.schemas.accounts import AccountCreate, AccountPatch, AccountOut, BalanceCalculationOut
from ledgerbook.schemas.transactions import TxOut
from ledgerbook.services import checkpoints


router = APIRouter(prefix="/api/v1/budgets/{budget_id}/accounts", tags=["accounts"])


def _current_balance(db: Session, acc: Account) -> int:
    total = (
        db.query(sa.func.coalesce(sa.func.sum(Transaction.amount_cents), 0))
        .filter(Transaction.account_id == acc.id, Transaction.deleted_at.is_(None))
        .scalar()
    )
    return acc.balance_sign * int(total)


@router.get("/", response_model=list[AccountOut])
def list_accounts(budget_id: UUID, db: Session = Depends(get_db)):
    require_budget(db, budget_id)
    return db.query(Account).filter_by(budget_id=budget_id).order_by(Account.name).all()


@router.post("/", response_model=AccountOut, status_code=201)
def create_account(budget_id: UUID, payload: AccountCreate, db: Session = Depends(get_db)):
    require_budget(db, budget_id)
    if (payload.opening_balance_cents is None) != (payload.opening_balance_date is None):
        raise HTTPException(400, "opening_balance_cents and opening_balance_date go together")
    acc = Account(
        budget_id=budget_id,
        name=payload.name,
        type=payload.type,
        on_budget=payload.on_budget,
        note=payload.note,
    )
    with unit_of_work(db):
        db.add(acc)
        db.flush()
        if payload.opening_balance_cents is not None:
            checkpoints.create_or_update_checkpoint(
                db,
                acc,
                payload.opening_balance_date,
                payload.opening_balance_cents,
                notes="Opening balance",
            )
    db.refresh(acc)
    return acc


@router.patch("/{account_id}", response_model=AccountOut)
def update_account(budget_id: UUID, account_id: UUID, payload: AccountPatch, db: Session = Depends(get_db)):
    acc = require_account(db, budget_id, account_id)
    with unit_of_work(db):
        if payload.name is not None:
            acc.name = payload.name
        if payload.on_budget is not None:
            acc.on_budget = payload.on_budget
        if "note" in payload.model_fields_set:
            acc.note = payload.note
    db.refresh(acc)
    return acc


@router.get("/with-balances", response_model=list[dict])
def list_accounts_with_balances(budget_id: UUID, db: Session = Depends(get_db)):
    require_budget(db, budget_id)
    # Aggregate balances per account
    subq = (
        db.query(
            Transaction.account_id.label("account_id"),
            sa.func.coalesce(sa.func.sum(Transaction.amount_cents), 0).label("balance")
        )
        .filter(Transaction.deleted_at.is_(None))
        .group_by(Transaction.account_id)
        .subquery()
    )
    rows = (
        db.query(Account, sa.func.coalesce(subq.c.balance, 0).label("ledger_total"))
        .outerjoin(subq, subq.c.account_id == Account.id)
        .filter(Account.budget_id == budget_id)
        .order_by(Account.name)
        .all()
    )
    return [
        {
            "id": acc.id,
            "name": acc.name,
            "type": acc.type,
            "on_budget": acc.on_budget,
            "current_balance_cents": acc.balance_sign * int(ledger_total or 0),
        }
        for acc, ledger_total in rows
    ]


@router.get("/{account_id}/balance", response_model=dict)
def get_account_balance(budget_id: UUID, account_id: UUID, db: Session = Depends(get_db)):
    acc = require_account(db, budget_id, account_id)
    return {"current_balance_cents": _current_balance(db, acc)}


@router.get("/{account_id}/calculated-balance", response_model=BalanceCalculationOut)
def get_calculated_balance(budget_id: UUID, account_id: UUID, as_of: date | None = None, db: Session = Depends(get_db)):
    acc = require_account(db, budget_id, account_id)
    return checkpoints.calculate_balance_up_to(db, acc, as_of or date.today())


@router.get("/{account_id}/flagged-transactions", response_model=list[TxOut])
def list_flagged_transactions(budget_id: UUID, account_id: UUID, db: Session = Depends(get_db)):
    require_account(db, budget_id, account_id)
    return [tx_out(t) for t in checkpoints.list_flagged_transactions(db, account_id)]
