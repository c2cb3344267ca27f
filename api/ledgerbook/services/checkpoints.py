"""
Balance checkpoint reconciliation engine.

A checkpoint is a balance the user (or a bank statement import) declares for
an account on a given day. The engine compares it with the balance the ledger
explains and books the unexplained difference as a single synthetic
"balance adjustment" transaction owned by the checkpoint.

For account A and day D:

    raw_balance(A, D)   = sign(A) * sum(amount) of live, non-adjustment
                          transactions dated before D + 1 day
    carry(A, D)         = sum of adjustment amounts of A's unreconciled
                          checkpoints dated before D
    calculated_balance  = raw_balance + carry
    adjustment_amount   = declared_balance - calculated_balance

Checkpoints of one account form a strictly ordered sequence; recalculation
is a left-to-right fold where each step's adjustment feeds the next step's
carry. Every function here only flushes. Callers own the commit (see
``ledgerbook.db.unit_of_work``) so an upsert and its whole cascade land
together.
"""

import logging
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from typing import Callable, Iterable, Optional
from uuid import UUID

import sqlalchemy as sa
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ledgerbook.config import get_settings
from ledgerbook.errors import ConflictError, NotFoundError, ValidationError
from ledgerbook.models.account import Account
from ledgerbook.models.checkpoint import BalanceCheckpoint
from ledgerbook.models.transaction import SOURCE_AUTO_ADJUSTMENT, Transaction
from ledgerbook.services import audit


logger = logging.getLogger(__name__)

ADJUSTMENT_MEMO = "Balance Adjustment (Checkpoint)"
MAX_ABS_BALANCE_CENTS = 99_999_999_999_999
MAX_NOTE_LENGTH = 1000
ORDER_CHOICES = ("date_asc", "date_desc")


@dataclass
class BalanceCalculation:
    account_id: UUID
    as_of: date
    calculated_balance_cents: int
    transaction_count: int


@dataclass
class RecalculationResult:
    checkpoint_id: UUID
    checkpoint_date: date
    old_calculated_balance_cents: Optional[int]
    new_calculated_balance_cents: int
    old_adjustment_amount_cents: Optional[int]
    new_adjustment_amount_cents: int
    old_is_reconciled: Optional[bool]
    new_is_reconciled: bool
    adjustment_transaction_updated: bool = False


@dataclass
class CheckpointSummary:
    account_id: UUID
    account_name: str
    total_checkpoints: int
    reconciled_checkpoints: int
    unreconciled_checkpoints: int
    total_adjustment_amount_cents: int
    earliest_checkpoint_date: Optional[date]
    latest_checkpoint_date: Optional[date]


# ---------------------------------------------------------------------------
# Input normalisation
# ---------------------------------------------------------------------------

def normalize_checkpoint_date(value) -> date:
    """Reduce a date, datetime or ISO string to the calendar day it names.

    A datetime keeps its own offset, so "2025-01-31T23:30:00+07:00" is the
    31st no matter where the server runs.
    """
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, str) and value.strip():
        try:
            return datetime.fromisoformat(value.strip().replace("Z", "+00:00")).date()
        except ValueError:
            raise ValidationError(
                "Invalid checkpoint_date format",
                details={"field": "checkpoint_date", "received_value": value[:100]},
            ) from None
    raise ValidationError("checkpoint_date is required", details={"field": "checkpoint_date"})


def _validate_declared_balance(value) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValidationError(
            "declared_balance_cents must be an integer number of minor units",
            details={"field": "declared_balance_cents", "received_value": str(value)[:100]},
        )
    if abs(value) > MAX_ABS_BALANCE_CENTS:
        raise ValidationError(
            "declared_balance_cents is out of range",
            details={"field": "declared_balance_cents", "max_abs": MAX_ABS_BALANCE_CENTS},
        )
    return value


def _validate_notes(notes: Optional[str]) -> Optional[str]:
    if notes is not None and len(notes) > MAX_NOTE_LENGTH:
        raise ValidationError(
            f"notes must be at most {MAX_NOTE_LENGTH} characters",
            details={"field": "notes"},
        )
    return notes


def _day_after(d: date) -> date:
    return d + timedelta(days=1)


# ---------------------------------------------------------------------------
# Balance computation
# ---------------------------------------------------------------------------

def _ledger_filters(account_id: UUID):
    return (
        Transaction.account_id == account_id,
        Transaction.deleted_at.is_(None),
        Transaction.is_balance_adjustment.is_(False),
    )


def raw_balance_through(db: Session, account: Account, through: date) -> int:
    """Balance explained by real transactions over [inception, through + 1 day)."""
    total = (
        db.query(sa.func.coalesce(sa.func.sum(Transaction.amount_cents), 0))
        .filter(*_ledger_filters(account.id), Transaction.date < _day_after(through))
        .scalar()
    )
    return account.balance_sign * int(total)


def _carry(db: Session, account_id: UUID, boundary: date, inclusive: bool = False) -> int:
    date_filter = (
        BalanceCheckpoint.checkpoint_date <= boundary
        if inclusive
        else BalanceCheckpoint.checkpoint_date < boundary
    )
    total = (
        db.query(sa.func.coalesce(sa.func.sum(BalanceCheckpoint.adjustment_amount_cents), 0))
        .filter(
            BalanceCheckpoint.account_id == account_id,
            BalanceCheckpoint.is_reconciled.is_(False),
            date_filter,
        )
        .scalar()
    )
    return int(total)


def calculate_balance_up_to(db: Session, account: Account, as_of) -> BalanceCalculation:
    as_of = normalize_checkpoint_date(as_of)
    db.flush()
    count = (
        db.query(sa.func.count(Transaction.id))
        .filter(*_ledger_filters(account.id), Transaction.date < _day_after(as_of))
        .scalar()
    )
    return BalanceCalculation(
        account_id=account.id,
        as_of=as_of,
        calculated_balance_cents=raw_balance_through(db, account, as_of) + _carry(db, account.id, as_of),
        transaction_count=int(count),
    )


def _apply_balance(checkpoint, calculated: int, threshold: int) -> None:
    checkpoint.calculated_balance_cents = calculated
    checkpoint.adjustment_amount_cents = checkpoint.declared_balance_cents - calculated
    checkpoint.is_reconciled = abs(checkpoint.adjustment_amount_cents) < threshold


def fold_checkpoints(
    checkpoints: Iterable,
    raw_balance_for: Callable[[date], int],
    threshold: int,
    carry: int = 0,
) -> list[RecalculationResult]:
    """Recompute a run of checkpoints oldest first.

    ``carry`` is the adjustment total of everything before the run. Input
    order does not matter; the fold always walks ascending dates and never
    looks back.
    """
    results: list[RecalculationResult] = []
    for cp in sorted(checkpoints, key=lambda c: (c.checkpoint_date, str(c.id))):
        old_calculated = cp.calculated_balance_cents
        old_adjustment = cp.adjustment_amount_cents
        old_reconciled = cp.is_reconciled

        _apply_balance(cp, raw_balance_for(cp.checkpoint_date) + carry, threshold)
        if not cp.is_reconciled:
            carry += cp.adjustment_amount_cents

        results.append(
            RecalculationResult(
                checkpoint_id=cp.id,
                checkpoint_date=cp.checkpoint_date,
                old_calculated_balance_cents=old_calculated,
                new_calculated_balance_cents=cp.calculated_balance_cents,
                old_adjustment_amount_cents=old_adjustment,
                new_adjustment_amount_cents=cp.adjustment_amount_cents,
                old_is_reconciled=old_reconciled,
                new_is_reconciled=cp.is_reconciled,
            )
        )
    return results


# ---------------------------------------------------------------------------
# Adjustment transaction lifecycle
# ---------------------------------------------------------------------------

def get_adjustment_transaction(db: Session, checkpoint_id: UUID) -> Optional[Transaction]:
    return (
        db.query(Transaction)
        .filter(Transaction.checkpoint_id == checkpoint_id, Transaction.is_balance_adjustment.is_(True))
        .one_or_none()
    )


def sync_adjustment_transaction(db: Session, account: Account, checkpoint: BalanceCheckpoint) -> bool:
    """Make the checkpoint's adjustment row match its adjustment amount.

    Returns True when a row was created, changed or removed.
    """
    existing = get_adjustment_transaction(db, checkpoint.id)

    if checkpoint.is_reconciled:
        if existing is None:
            return False
        db.delete(existing)
        return True

    amount = account.balance_sign * checkpoint.adjustment_amount_cents
    if existing is None:
        db.add(
            Transaction(
                budget_id=account.budget_id,
                account_id=account.id,
                date=checkpoint.checkpoint_date,
                amount_cents=amount,
                memo=ADJUSTMENT_MEMO,
                state="reconciled",
                source=SOURCE_AUTO_ADJUSTMENT,
                import_id=f"BAL-ADJ-{checkpoint.id}",
                checkpoint_id=checkpoint.id,
                is_balance_adjustment=True,
                is_flagged=True,
            )
        )
        return True

    if existing.amount_cents == amount and existing.date == checkpoint.checkpoint_date:
        return False
    existing.amount_cents = amount
    existing.date = checkpoint.checkpoint_date
    return True


def _cascade(db: Session, account: Account, after: Optional[date] = None) -> list[RecalculationResult]:
    db.flush()
    query = db.query(BalanceCheckpoint).filter(BalanceCheckpoint.account_id == account.id)
    carry = 0
    if after is not None:
        query = query.filter(BalanceCheckpoint.checkpoint_date > after)
        carry = _carry(db, account.id, after, inclusive=True)
    checkpoints = query.order_by(BalanceCheckpoint.checkpoint_date.asc(), BalanceCheckpoint.id.asc()).all()
    if not checkpoints:
        return []

    results = fold_checkpoints(
        checkpoints,
        lambda d: raw_balance_through(db, account, d),
        get_settings().reconciliation_threshold_cents,
        carry=carry,
    )
    by_id = {cp.id: cp for cp in checkpoints}
    for result in results:
        result.adjustment_transaction_updated = sync_adjustment_transaction(db, account, by_id[result.checkpoint_id])
    db.flush()

    logger.info(
        "Recalculated %d checkpoint(s) for account %s",
        len(results),
        account.id,
        extra={"account_id": str(account.id), "after": after.isoformat() if after else None},
    )
    return results


def refresh_opening_balance_date(db: Session, account: Account) -> None:
    db.flush()
    earliest = db.query(sa.func.min(Transaction.date)).filter(*_ledger_filters(account.id)).scalar()
    account.earliest_transaction_date = earliest
    account.opening_balance_date = earliest - timedelta(days=1) if earliest else None


def _snapshot(cp: BalanceCheckpoint) -> dict:
    return {
        "checkpoint_date": cp.checkpoint_date.isoformat(),
        "declared_balance_cents": cp.declared_balance_cents,
        "calculated_balance_cents": cp.calculated_balance_cents,
        "adjustment_amount_cents": cp.adjustment_amount_cents,
        "is_reconciled": cp.is_reconciled,
    }


# ---------------------------------------------------------------------------
# Public operations
# ---------------------------------------------------------------------------

def create_or_update_checkpoint(
    db: Session,
    account: Account,
    checkpoint_date,
    declared_balance_cents: int,
    notes: Optional[str] = None,
    import_batch_id: Optional[UUID] = None,
    user_id: Optional[UUID] = None,
) -> BalanceCheckpoint:
    """Upsert the checkpoint for (account, day) and cascade to later ones."""
    settings = get_settings()
    cp_date = normalize_checkpoint_date(checkpoint_date)
    declared = _validate_declared_balance(declared_balance_cents)
    notes = _validate_notes(notes)

    db.flush()
    checkpoint = (
        db.query(BalanceCheckpoint)
        .filter_by(account_id=account.id, checkpoint_date=cp_date)
        .one_or_none()
    )
    before = None
    if checkpoint is None:
        count = (
            db.query(sa.func.count(BalanceCheckpoint.id))
            .filter(BalanceCheckpoint.account_id == account.id)
            .scalar()
        )
        if count >= settings.max_checkpoints_per_account:
            raise ValidationError(
                "Checkpoint limit reached for this account",
                details={"max_checkpoints_per_account": settings.max_checkpoints_per_account},
            )
        checkpoint = BalanceCheckpoint(
            account_id=account.id,
            checkpoint_date=cp_date,
            import_batch_id=import_batch_id,
            created_by_user_id=user_id,
        )
        db.add(checkpoint)
    else:
        before = _snapshot(checkpoint)
        if import_batch_id is not None:
            checkpoint.import_batch_id = import_batch_id

    checkpoint.declared_balance_cents = declared
    checkpoint.notes = notes
    calculated = raw_balance_through(db, account, cp_date) + _carry(db, account.id, cp_date)
    _apply_balance(checkpoint, calculated, settings.reconciliation_threshold_cents)

    try:
        db.flush()
    except IntegrityError as exc:
        logger.warning(
            "Concurrent checkpoint write for account %s on %s", account.id, cp_date,
            extra={"account_id": str(account.id), "checkpoint_date": cp_date.isoformat()},
        )
        raise ConflictError(
            "A checkpoint for this account and date was written concurrently; retry the request",
            details={"retryable": True, "account_id": str(account.id), "checkpoint_date": cp_date.isoformat()},
        ) from exc

    sync_adjustment_transaction(db, account, checkpoint)
    cascaded = _cascade(db, account, after=cp_date)
    refresh_opening_balance_date(db, account)

    audit.record(
        db,
        account.budget_id,
        "checkpoint_create" if before is None else "checkpoint_update",
        "balance_checkpoint",
        checkpoint.id,
        {"before": before, "after": _snapshot(checkpoint), "cascaded": len(cascaded)},
        user_id=user_id,
    )
    db.flush()

    logger.info(
        "Checkpoint %s for account %s on %s: declared=%d calculated=%d adjustment=%d",
        "created" if before is None else "updated",
        account.id,
        cp_date,
        checkpoint.declared_balance_cents,
        checkpoint.calculated_balance_cents,
        checkpoint.adjustment_amount_cents,
        extra={"checkpoint_id": str(checkpoint.id), "is_reconciled": checkpoint.is_reconciled},
    )
    return checkpoint


def recalculate_all_checkpoints(db: Session, account: Account, user_id: Optional[UUID] = None) -> list[RecalculationResult]:
    results = _cascade(db, account)
    refresh_opening_balance_date(db, account)
    if results:
        audit.record(
            db,
            account.budget_id,
            "checkpoint_recalculate",
            "account",
            account.id,
            {
                "total": len(results),
                "changed": sum(1 for r in results if r.adjustment_transaction_updated),
            },
            user_id=user_id,
        )
    return results


def recalculate_checkpoints_from(db: Session, account: Account, since) -> list[RecalculationResult]:
    """Re-fold every checkpoint dated on or after ``since``.

    Used after ledger rows dated ``since`` or later were written in bulk.
    """
    since = normalize_checkpoint_date(since)
    return _cascade(db, account, after=since - timedelta(days=1))


def delete_checkpoint(db: Session, checkpoint: BalanceCheckpoint, user_id: Optional[UUID] = None) -> list[RecalculationResult]:
    """Remove a checkpoint with its adjustment row; later checkpoints lose its carry."""
    account = db.get(Account, checkpoint.account_id)
    if account is None:
        raise NotFoundError("Account not found", details={"account_id": str(checkpoint.account_id)})
    snapshot = _snapshot(checkpoint)
    checkpoint_id = checkpoint.id
    cp_date = checkpoint.checkpoint_date

    adjustment = get_adjustment_transaction(db, checkpoint_id)
    if adjustment is not None:
        db.delete(adjustment)
    db.flush()
    db.delete(checkpoint)

    results = _cascade(db, account, after=cp_date)
    refresh_opening_balance_date(db, account)
    audit.record(
        db,
        account.budget_id,
        "checkpoint_delete",
        "balance_checkpoint",
        checkpoint_id,
        {"before": snapshot, "cascaded": len(results)},
        user_id=user_id,
    )
    logger.info(
        "Deleted checkpoint %s for account %s on %s",
        checkpoint_id, account.id, cp_date,
        extra={"removed_adjustment": adjustment is not None},
    )
    return results


def get_checkpoint(db: Session, checkpoint_id: UUID, account_id: Optional[UUID] = None) -> BalanceCheckpoint:
    checkpoint = db.get(BalanceCheckpoint, checkpoint_id)
    if checkpoint is None or (account_id is not None and checkpoint.account_id != account_id):
        raise NotFoundError("Checkpoint not found", details={"checkpoint_id": str(checkpoint_id)})
    return checkpoint


def list_checkpoints(
    db: Session,
    account_id: UUID,
    include_reconciled: bool = True,
    order_by: str = "date_desc",
    limit: Optional[int] = None,
    offset: int = 0,
) -> list[BalanceCheckpoint]:
    if order_by not in ORDER_CHOICES:
        raise ValidationError(
            "order_by must be one of: " + ", ".join(ORDER_CHOICES),
            details={"field": "order_by", "received_value": order_by},
        )
    query = db.query(BalanceCheckpoint).filter(BalanceCheckpoint.account_id == account_id)
    if not include_reconciled:
        query = query.filter(BalanceCheckpoint.is_reconciled.is_(False))
    if order_by == "date_asc":
        query = query.order_by(BalanceCheckpoint.checkpoint_date.asc())
    else:
        query = query.order_by(BalanceCheckpoint.checkpoint_date.desc())
    if offset:
        query = query.offset(offset)
    if limit is not None:
        query = query.limit(limit)
    return query.all()


def get_checkpoint_summary(db: Session, account: Account) -> CheckpointSummary:
    row = (
        db.query(
            sa.func.count(BalanceCheckpoint.id).label("total"),
            sa.func.coalesce(
                sa.func.sum(sa.case((BalanceCheckpoint.is_reconciled.is_(True), 1), else_=0)), 0
            ).label("reconciled"),
            sa.func.coalesce(sa.func.sum(BalanceCheckpoint.adjustment_amount_cents), 0).label("adjustment"),
            sa.func.min(BalanceCheckpoint.checkpoint_date).label("earliest"),
            sa.func.max(BalanceCheckpoint.checkpoint_date).label("latest"),
        )
        .filter(BalanceCheckpoint.account_id == account.id)
        .one()
    )
    total = int(row.total or 0)
    reconciled = int(row.reconciled or 0)
    return CheckpointSummary(
        account_id=account.id,
        account_name=account.name,
        total_checkpoints=total,
        reconciled_checkpoints=reconciled,
        unreconciled_checkpoints=total - reconciled,
        total_adjustment_amount_cents=int(row.adjustment or 0),
        earliest_checkpoint_date=row.earliest,
        latest_checkpoint_date=row.latest,
    )


def list_flagged_transactions(db: Session, account_id: UUID) -> list[Transaction]:
    return (
        db.query(Transaction)
        .filter(
            Transaction.account_id == account_id,
            Transaction.is_flagged.is_(True),
            Transaction.deleted_at.is_(None),
        )
        .order_by(Transaction.date.desc())
        .all()
    )


def cleanup_orphaned_adjustments(db: Session) -> list[UUID]:
    """Delete adjustment rows whose checkpoint is gone."""
    orphans = (
        db.query(Transaction)
        .outerjoin(BalanceCheckpoint, Transaction.checkpoint_id == BalanceCheckpoint.id)
        .filter(Transaction.is_balance_adjustment.is_(True), BalanceCheckpoint.id.is_(None))
        .all()
    )
    removed = [tx.id for tx in orphans]
    for tx in orphans:
        db.delete(tx)
    db.flush()
    if removed:
        logger.warning("Removed %d orphaned adjustment transaction(s)", len(removed))
    return removed
