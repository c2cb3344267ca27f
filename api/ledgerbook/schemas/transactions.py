from datetime import date
from uuid import UUID
from typing import Optional
from pydantic import BaseModel


class TxIn(BaseModel):
    account_id: UUID
    date: date
    amount_cents: int  # negative = outflow, positive = inflow
    memo: Optional[str] = None
    transfer_account_id: Optional[UUID] = None


class TxPatch(BaseModel):
    state: Optional[str] = None
    memo: Optional[str] = None
    date: Optional[date] = None
    amount_cents: Optional[int] = None


class TxOut(BaseModel):
    id: UUID
    account_id: UUID
    date: date
    amount_cents: int
    memo: Optional[str] = None
    state: str  # 'uncleared'|'cleared'|'reconciled'
    source: str
    transfer_account_id: Optional[UUID] = None
    transfer_tx_id: Optional[UUID] = None
    import_batch_id: Optional[UUID] = None
    checkpoint_id: Optional[UUID] = None
    is_balance_adjustment: bool = False
    is_flagged: bool = False


class TransferMatchIn(BaseModel):
    other_transaction_id: UUID
