"""
Bank statement import and rollback.

Rows arrive already parsed. An import writes the rows as one batch and pins
the statement's ending balance as a checkpoint; a rollback removes both and
lets the engine re-fold whatever checkpoints remain.
"""

import logging
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Iterable, Optional
from uuid import UUID

import sqlalchemy as sa
from sqlalchemy.orm import Session, aliased

from ledgerbook.config import get_settings
from ledgerbook.errors import ConflictError, NotFoundError, ValidationError
from ledgerbook.models.account import Account
from ledgerbook.models.checkpoint import BalanceCheckpoint
from ledgerbook.models.import_batch import STATUS_COMPLETED, STATUS_ROLLED_BACK, ImportBatch
from ledgerbook.models.transaction import SOURCE_IMPORT, Transaction
from ledgerbook.services import audit, checkpoints


logger = logging.getLogger(__name__)


@dataclass
class ImportResult:
    batch: ImportBatch
    checkpoint: BalanceCheckpoint
    imported_count: int
    duplicate_count: int
    checkpoints_recalculated: int


@dataclass
class RollbackResult:
    import_batch_id: UUID
    account_id: UUID
    transactions_deleted: int
    checkpoint_ids: list[UUID] = field(default_factory=list)


def _chunks(items: list, size: int):
    for start in range(0, len(items), size):
        yield items[start:start + size]


def _row_key(import_id: Optional[str], d: date, amount_cents: int, memo: Optional[str]) -> tuple:
    if import_id:
        return ("id", import_id)
    return ("row", d, amount_cents, (memo or "").strip())


def _existing_keys(db: Session, account_id: UUID, start: date, end: date) -> set[tuple]:
    rows = (
        db.query(Transaction.import_id, Transaction.date, Transaction.amount_cents, Transaction.memo)
        .filter(
            Transaction.account_id == account_id,
            Transaction.deleted_at.is_(None),
            Transaction.is_balance_adjustment.is_(False),
            Transaction.date >= start,
            Transaction.date <= end,
        )
        .all()
    )
    keys: set[tuple] = set()
    for import_id, d, amount, memo in rows:
        if import_id:
            keys.add(("id", import_id))
        keys.add(("row", d, amount, (memo or "").strip()))
    return keys


def import_statement(
    db: Session,
    account: Account,
    rows: Iterable,
    statement_end_date,
    ending_balance_cents: int,
    file_name: Optional[str] = None,
    statement_start_date: Optional[date] = None,
    user_id: Optional[UUID] = None,
) -> ImportResult:
    """Insert a statement's rows as one batch and checkpoint its ending balance.

    Each row needs ``date``, ``amount_cents``, ``memo`` and ``import_id``
    attributes. Rows already on the ledger are skipped.
    """
    settings = get_settings()
    end_date = checkpoints.normalize_checkpoint_date(statement_end_date)
    rows = list(rows)
    if not rows:
        raise ValidationError("No transactions to import", details={"field": "rows"})
    for index, row in enumerate(rows):
        if row.date > end_date:
            raise ValidationError(
                "Statement row is dated after the statement end date",
                details={"row": index, "date": row.date.isoformat(), "statement_end_date": end_date.isoformat()},
            )

    start_date = statement_start_date or min(row.date for row in rows)
    batch = ImportBatch(
        budget_id=account.budget_id,
        account_id=account.id,
        file_name=file_name,
        status=STATUS_COMPLETED,
        statement_start_date=start_date,
        statement_end_date=end_date,
        ending_balance_cents=ending_balance_cents,
        total_rows=len(rows),
    )
    db.add(batch)
    db.flush()

    seen = _existing_keys(db, account.id, min(row.date for row in rows), end_date)
    pending: list[Transaction] = []
    duplicates = 0
    for row in rows:
        if _row_key(row.import_id, row.date, row.amount_cents, row.memo) in seen:
            duplicates += 1
            continue
        pending.append(
            Transaction(
                budget_id=account.budget_id,
                account_id=account.id,
                date=row.date,
                amount_cents=row.amount_cents,
                memo=row.memo,
                state="cleared",
                source=SOURCE_IMPORT,
                import_id=row.import_id,
                import_batch_id=batch.id,
            )
        )

    total_chunks = (len(pending) + settings.import_chunk_size - 1) // settings.import_chunk_size
    for number, chunk in enumerate(_chunks(pending, settings.import_chunk_size), start=1):
        db.add_all(chunk)
        db.flush()
        logger.debug("Inserted import chunk %d/%d (%d rows)", number, total_chunks, len(chunk))

    batch.imported_count = len(pending)
    batch.duplicate_count = duplicates

    # Checkpoints inside the statement period must absorb the new rows before
    # their carry feeds the statement's own checkpoint.
    earliest_new = min((tx.date for tx in pending), default=None)
    if earliest_new is not None:
        checkpoints.recalculate_checkpoints_from(db, account, earliest_new)

    refold_start = min(earliest_new, end_date) if earliest_new is not None else end_date
    later = (
        db.query(sa.func.count(BalanceCheckpoint.id))
        .filter(
            BalanceCheckpoint.account_id == account.id,
            BalanceCheckpoint.checkpoint_date >= refold_start,
            BalanceCheckpoint.checkpoint_date != end_date,
        )
        .scalar()
    )
    checkpoint = checkpoints.create_or_update_checkpoint(
        db,
        account,
        end_date,
        ending_balance_cents,
        notes=f"Auto-created from import{f' of {file_name}' if file_name else ''}: {start_date.isoformat()} to {end_date.isoformat()}",
        import_batch_id=batch.id,
        user_id=user_id,
    )

    audit.record(
        db,
        account.budget_id,
        "import",
        "import_batch",
        batch.id,
        {
            "file_name": file_name,
            "total_rows": len(rows),
            "imported": len(pending),
            "duplicates": duplicates,
            "checkpoint_id": str(checkpoint.id),
        },
        user_id=user_id,
    )
    db.flush()

    logger.info(
        "Imported %d of %d rows into account %s (%d duplicates)",
        len(pending), len(rows), account.id, duplicates,
        extra={"import_batch_id": str(batch.id), "checkpoint_id": str(checkpoint.id)},
    )
    return ImportResult(
        batch=batch,
        checkpoint=checkpoint,
        imported_count=len(pending),
        duplicate_count=duplicates,
        checkpoints_recalculated=int(later),
    )


def get_import_batch(db: Session, batch_id: UUID, budget_id: Optional[UUID] = None) -> ImportBatch:
    batch = db.get(ImportBatch, batch_id)
    if batch is None or (budget_id is not None and batch.budget_id != budget_id):
        raise NotFoundError("Import batch not found", details={"import_batch_id": str(batch_id)})
    return batch


def count_batch_transactions(db: Session, batch_id: UUID) -> int:
    return int(
        db.query(sa.func.count(Transaction.id))
        .filter(Transaction.import_batch_id == batch_id, Transaction.deleted_at.is_(None))
        .scalar()
    )


def find_external_transfer_matches(db: Session, batch: ImportBatch) -> list[tuple[Transaction, Transaction]]:
    """Batch transactions transfer-matched to a transaction outside the batch.

    A pair whose legs are both soft-deleted no longer blocks anything.
    """
    counterpart = aliased(Transaction)
    return (
        db.query(Transaction, counterpart)
        .join(counterpart, Transaction.transfer_tx_id == counterpart.id)
        .filter(Transaction.import_batch_id == batch.id)
        .filter(sa.or_(counterpart.import_batch_id.is_(None), counterpart.import_batch_id != batch.id))
        .filter(sa.or_(Transaction.deleted_at.is_(None), counterpart.deleted_at.is_(None)))
        .all()
    )


def rollback_import_batch(db: Session, batch: ImportBatch, user_id: Optional[UUID] = None) -> RollbackResult:
    """Undo an import: its transactions, its checkpoint(s), then re-fold.

    Refuses outright, before deleting anything, when one of the batch's
    transactions is transfer-matched outside the batch; the match has to be
    undone first.
    """
    if batch.status == STATUS_ROLLED_BACK:
        raise ConflictError(
            "This import has already been rolled back",
            details={"import_batch_id": str(batch.id)},
        )

    external = find_external_transfer_matches(db, batch)
    if external:
        logger.warning(
            "Refusing rollback of import batch %s: %d transfer match(es) outside the batch",
            batch.id, len(external),
        )
        raise ConflictError(
            "Cannot rollback: this import contains transfers matched with transactions from other imports",
            details={
                "import_batch_id": str(batch.id),
                "matched_count": len({other.id for _, other in external}),
                "affected_transactions": len(external),
                "transaction_ids": [str(tx.id) for tx, _ in external],
                "hint": "Unmatch these transfers before rolling back this import",
            },
        )

    account = db.get(Account, batch.account_id)
    if account is None:
        raise NotFoundError("Account not found", details={"account_id": str(batch.account_id)})
    settings = get_settings()

    ids = [
        tx_id
        for (tx_id,) in db.query(Transaction.id).filter(
            Transaction.import_batch_id == batch.id,
            Transaction.is_balance_adjustment.is_(False),
        )
    ]
    # In-batch transfer pairs would otherwise straddle chunk boundaries.
    db.query(Transaction).filter(
        Transaction.import_batch_id == batch.id,
        Transaction.transfer_tx_id.is_not(None),
    ).update({Transaction.transfer_tx_id: None}, synchronize_session="fetch")

    deleted = 0
    for chunk in _chunks(ids, settings.import_chunk_size):
        # Deleted legs outside the batch may still point in.
        db.query(Transaction).filter(Transaction.transfer_tx_id.in_(chunk)).update(
            {Transaction.transfer_tx_id: None}, synchronize_session="fetch"
        )
        deleted += db.query(Transaction).filter(Transaction.id.in_(chunk)).delete(synchronize_session="fetch")
    db.flush()

    created = (
        db.query(BalanceCheckpoint)
        .filter(BalanceCheckpoint.import_batch_id == batch.id)
        .order_by(BalanceCheckpoint.checkpoint_date.asc())
        .all()
    )
    checkpoint_ids = [cp.id for cp in created]
    for cp in created:
        checkpoints.delete_checkpoint(db, cp, user_id=user_id)
    checkpoints.recalculate_all_checkpoints(db, account, user_id=user_id)

    batch.status = STATUS_ROLLED_BACK
    batch.rolled_back_at = datetime.utcnow()
    batch.transactions_deleted = deleted
    audit.record(
        db,
        account.budget_id,
        "import_rollback",
        "import_batch",
        batch.id,
        {"transactions_deleted": deleted, "checkpoint_ids": [str(i) for i in checkpoint_ids]},
        user_id=user_id,
    )
    db.flush()

    logger.info(
        "Rolled back import batch %s: %d transaction(s), %d checkpoint(s)",
        batch.id, deleted, len(checkpoint_ids),
        extra={"account_id": str(account.id)},
    )
    return RollbackResult(
        import_batch_id=batch.id,
        account_id=account.id,
        transactions_deleted=deleted,
        checkpoint_ids=checkpoint_ids,
    )


def rollback_checkpoint(db: Session, checkpoint: BalanceCheckpoint, user_id: Optional[UUID] = None) -> RollbackResult:
    if checkpoint.import_batch_id is None:
        raise ValidationError(
            "Can only rollback checkpoints created from imports",
            details={"checkpoint_id": str(checkpoint.id)},
        )
    batch = get_import_batch(db, checkpoint.import_batch_id)
    return rollback_import_batch(db, batch, user_id=user_id)
