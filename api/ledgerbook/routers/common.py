from uuid import UUID

from fastapi import HTTPException
from sqlalchemy.orm import Session

from ledgerbook.models.account import Account
from ledgerbook.models.budget import Budget


def require_budget(db: Session, budget_id: UUID) -> Budget:
    budget = db.get(Budget, budget_id)
    if not budget:
        raise HTTPException(404, "Budget not found")
    return budget


def require_account(db: Session, budget_id: UUID, account_id: UUID) -> Account:
    acc = db.get(Account, account_id)
    if not acc or acc.budget_id != budget_id:
        raise HTTPException(404, "Account not found")
    return acc
