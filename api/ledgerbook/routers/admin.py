from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from ledgerbook.db import get_db, unit_of_work
from ledgerbook.services import checkpoints


router = APIRouter(prefix="/api/v1/admin", tags=["admin"])


@router.post("/cleanup-orphaned-adjustments", response_model=dict)
def cleanup_orphaned_adjustments(db: Session = Depends(get_db)):
    with unit_of_work(db):
        removed = checkpoints.cleanup_orphaned_adjustments(db)
    return {"deleted": len(removed), "transaction_ids": [str(i) for i in removed]}
