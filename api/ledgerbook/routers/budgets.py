from uuid import UUID
from fastapi import APIRouter, Depends
import sqlalchemy as sa
from sqlalchemy.orm import Session

from ledgerbook.db import get_db, unit_of_work
from ledgerbook.models.account import Account
from ledgerbook.models.budget import Budget
from ledgerbook.models.checkpoint import BalanceCheckpoint
from ledgerbook.routers.common import require_budget
from ledgerbook.schemas.budgets import BudgetCreate, BudgetOut, BudgetOverview


router = APIRouter(prefix="/api/v1/budgets", tags=["budgets"])


@router.get("/", response_model=list[BudgetOut])
def list_budgets(db: Session = Depends(get_db)):
    return db.query(Budget).order_by(Budget.created_at.desc()).all()


@router.post("/", response_model=BudgetOut, status_code=201)
def create_budget(payload: BudgetCreate, db: Session = Depends(get_db)):
    b = Budget(name=payload.name, currency=payload.currency)
    with unit_of_work(db):
        db.add(b)
    db.refresh(b)
    return b


@router.get("/{budget_id}", response_model=BudgetOverview)
def get_budget(budget_id: UUID, db: Session = Depends(get_db)):
    b = require_budget(db, budget_id)
    account_count = db.query(sa.func.count(Account.id)).filter(Account.budget_id == budget_id).scalar()
    # Checkpoint status across every account of the budget
    cp = (
        db.query(
            sa.func.count(BalanceCheckpoint.id).label("total"),
            sa.func.coalesce(
                sa.func.sum(sa.case((BalanceCheckpoint.is_reconciled.is_(False), 1), else_=0)), 0
            ).label("unreconciled"),
            sa.func.max(BalanceCheckpoint.checkpoint_date).label("latest"),
        )
        .join(Account, Account.id == BalanceCheckpoint.account_id)
        .filter(Account.budget_id == budget_id)
        .one()
    )
    return BudgetOverview(
        id=b.id,
        name=b.name,
        currency=b.currency,
        created_at=b.created_at,
        account_count=int(account_count or 0),
        checkpoint_count=int(cp.total or 0),
        unreconciled_checkpoint_count=int(cp.unreconciled or 0),
        latest_checkpoint_date=cp.latest,
    )
