"""
Statement import and rollback.
"""

from datetime import date, datetime
from types import SimpleNamespace

import pytest

from ledgerbook.errors import ConflictError, ValidationError
from ledgerbook.models.audit import AuditLog
from ledgerbook.models.checkpoint import BalanceCheckpoint
from ledgerbook.models.import_batch import STATUS_COMPLETED, STATUS_ROLLED_BACK
from ledgerbook.models.transaction import SOURCE_IMPORT, Transaction
from ledgerbook.services import checkpoints, imports


JAN_31 = date(2025, 1, 31)


def row(d, amount_cents, memo=None, import_id=None):
    return SimpleNamespace(date=d, amount_cents=amount_cents, memo=memo, import_id=import_id)


@pytest.fixture
def statement():
    return [
        row(date(2025, 1, 3), 100_000, "Payroll", "FIT-1"),
        row(date(2025, 1, 9), -20_000, "Groceries", "FIT-2"),
        row(date(2025, 1, 22), 5_000, "Refund", "FIT-3"),
    ]


def _batch_tx_count(db, batch_id):
    return db.query(Transaction).filter(Transaction.import_batch_id == batch_id).count()


class TestImportStatement:

    def test_import_creates_batch_rows_and_checkpoint(self, db, account, statement, settings):
        result = imports.import_statement(db, account, statement, JAN_31, 85_000, file_name="jan.ofx")

        assert result.imported_count == 3
        assert result.duplicate_count == 0
        assert result.batch.status == STATUS_COMPLETED
        assert result.batch.statement_start_date == date(2025, 1, 3)
        assert _batch_tx_count(db, result.batch.id) == 3

        tx = db.query(Transaction).filter_by(import_id="FIT-2").one()
        assert tx.source == SOURCE_IMPORT
        assert tx.state == "cleared"

        cp = result.checkpoint
        assert cp.checkpoint_date == JAN_31
        assert cp.import_batch_id == result.batch.id
        assert cp.is_reconciled is True
        assert "jan.ofx" in cp.notes
        assert db.query(AuditLog).filter_by(action="import", entity_id=result.batch.id).count() == 1

    def test_mismatched_ending_balance_books_adjustment(self, db, account, statement, settings):
        result = imports.import_statement(db, account, statement, JAN_31, 90_000)

        assert result.checkpoint.adjustment_amount_cents == 5_000
        assert checkpoints.get_adjustment_transaction(db, result.checkpoint.id).amount_cents == 5_000

    def test_reimport_skips_duplicates(self, db, account, statement, settings):
        imports.import_statement(db, account, statement, JAN_31, 85_000)
        extra = statement + [row(date(2025, 1, 30), -1_000, "Coffee")]

        result = imports.import_statement(db, account, extra, JAN_31, 84_000)

        assert result.imported_count == 1
        assert result.duplicate_count == 3
        assert result.checkpoint.is_reconciled is True
        assert db.query(BalanceCheckpoint).filter_by(account_id=account.id).count() == 1

    def test_rows_without_import_id_dedupe_on_content(self, db, account, settings):
        rows = [row(date(2025, 1, 4), -700, " Bakery ")]
        imports.import_statement(db, account, rows, JAN_31, -700)

        result = imports.import_statement(db, account, [row(date(2025, 1, 4), -700, "Bakery")], JAN_31, -700)

        assert result.duplicate_count == 1

    def test_inserts_in_chunks(self, db, account, settings, monkeypatch):
        monkeypatch.setattr(settings, "import_chunk_size", 2)
        rows = [row(date(2025, 1, i + 1), 10, import_id=f"R{i}") for i in range(5)]

        result = imports.import_statement(db, account, rows, JAN_31, 50)

        assert _batch_tx_count(db, result.batch.id) == 5
        assert result.checkpoint.is_reconciled is True

    def test_later_checkpoints_are_recalculated(self, db, account, statement, settings):
        feb = checkpoints.create_or_update_checkpoint(db, account, date(2025, 2, 28), 85_000)
        assert feb.adjustment_amount_cents == 85_000

        result = imports.import_statement(db, account, statement, JAN_31, 85_000)

        assert result.checkpoints_recalculated == 1
        assert feb.is_reconciled is True
        assert checkpoints.get_adjustment_transaction(db, feb.id) is None

    def test_rows_before_existing_checkpoint_refold_it(self, db, account, settings):
        jan10 = checkpoints.create_or_update_checkpoint(db, account, date(2025, 1, 10), 100)
        assert jan10.adjustment_amount_cents == 100

        result = imports.import_statement(db, account, [row(date(2025, 1, 5), 100, "Deposit", "DEP-1")], JAN_31, 100)

        assert (jan10.calculated_balance_cents, jan10.adjustment_amount_cents, jan10.is_reconciled) == (100, 0, True)
        cp = result.checkpoint
        assert (cp.calculated_balance_cents, cp.adjustment_amount_cents, cp.is_reconciled) == (100, 0, True)
        assert result.checkpoints_recalculated == 1
        adjustments = db.query(Transaction).filter(
            Transaction.account_id == account.id, Transaction.is_balance_adjustment.is_(True)
        )
        assert adjustments.count() == 0

    def test_empty_statement(self, db, account, settings):
        with pytest.raises(ValidationError):
            imports.import_statement(db, account, [], JAN_31, 0)

    def test_row_after_statement_end(self, db, account, settings):
        with pytest.raises(ValidationError) as excinfo:
            imports.import_statement(db, account, [row(date(2025, 2, 1), 10)], JAN_31, 10)
        assert excinfo.value.details["row"] == 0


class TestRollback:

    def test_rollback_removes_rows_checkpoint_and_adjustment(self, db, account, statement, settings):
        result = imports.import_statement(db, account, statement, JAN_31, 90_000)
        jan_id = result.checkpoint.id
        feb = checkpoints.create_or_update_checkpoint(db, account, date(2025, 2, 28), 90_000)
        assert feb.is_reconciled is True

        rollback = imports.rollback_import_batch(db, result.batch)

        assert rollback.transactions_deleted == 3
        assert rollback.checkpoint_ids == [jan_id]
        assert _batch_tx_count(db, result.batch.id) == 0
        assert db.get(BalanceCheckpoint, jan_id) is None
        assert checkpoints.get_adjustment_transaction(db, jan_id) is None
        assert db.query(Transaction).filter_by(checkpoint_id=jan_id).count() == 0

        assert feb.calculated_balance_cents == 0
        assert feb.adjustment_amount_cents == 90_000
        assert checkpoints.get_adjustment_transaction(db, feb.id).amount_cents == 90_000

        assert result.batch.status == STATUS_ROLLED_BACK
        assert result.batch.rolled_back_at is not None
        assert result.batch.transactions_deleted == 3

    def test_rollback_twice_conflicts(self, db, account, statement, settings):
        result = imports.import_statement(db, account, statement, JAN_31, 85_000)
        imports.rollback_import_batch(db, result.batch)

        with pytest.raises(ConflictError):
            imports.rollback_import_batch(db, result.batch)

    def test_rollback_blocked_by_transfer_match_from_other_batch(self, db, make_account, statement, settings):
        checking = make_account(name="Checking")
        savings = make_account(name="Savings")
        first = imports.import_statement(db, checking, statement, JAN_31, 85_000)
        second = imports.import_statement(
            db, savings, [row(date(2025, 1, 9), 20_000, "From checking", "SAV-1")], JAN_31, 20_000
        )
        leg = db.query(Transaction).filter_by(import_id="FIT-2").one()
        other = db.query(Transaction).filter_by(import_id="SAV-1").one()
        leg.transfer_tx_id = other.id
        other.transfer_tx_id = leg.id
        db.flush()

        with pytest.raises(ConflictError) as excinfo:
            imports.rollback_import_batch(db, first.batch)

        assert excinfo.value.details["matched_count"] == 1
        assert excinfo.value.details["transaction_ids"] == [str(leg.id)]
        assert _batch_tx_count(db, first.batch.id) == 3
        assert _batch_tx_count(db, second.batch.id) == 1
        assert db.get(BalanceCheckpoint, first.checkpoint.id) is not None
        assert first.batch.status == STATUS_COMPLETED

    def test_soft_deleted_transfer_pair_does_not_block(self, db, make_account, statement, settings):
        checking = make_account(name="Checking")
        savings = make_account(name="Savings")
        first = imports.import_statement(db, checking, statement, JAN_31, 85_000)
        imports.import_statement(db, savings, [row(date(2025, 1, 9), 20_000, "From checking", "SAV-1")], JAN_31, 20_000)
        leg = db.query(Transaction).filter_by(import_id="FIT-2").one()
        other = db.query(Transaction).filter_by(import_id="SAV-1").one()
        leg.transfer_tx_id = other.id
        other.transfer_tx_id = leg.id
        leg.deleted_at = other.deleted_at = datetime.utcnow()
        db.flush()

        rollback = imports.rollback_import_batch(db, first.batch)

        assert rollback.transactions_deleted == 3
        assert other.transfer_tx_id is None
        assert first.batch.status == STATUS_ROLLED_BACK

    def test_transfer_pairs_inside_batch_do_not_block(self, db, account, statement, settings):
        result = imports.import_statement(db, account, statement, JAN_31, 85_000)
        a = db.query(Transaction).filter_by(import_id="FIT-1").one()
        b = db.query(Transaction).filter_by(import_id="FIT-2").one()
        a.transfer_tx_id = b.id
        b.transfer_tx_id = a.id
        db.flush()

        rollback = imports.rollback_import_batch(db, result.batch)

        assert rollback.transactions_deleted == 3

    def test_rollback_checkpoint_requires_import(self, db, account, settings):
        cp = checkpoints.create_or_update_checkpoint(db, account, JAN_31, 100)

        with pytest.raises(ValidationError):
            imports.rollback_checkpoint(db, cp)

    def test_rollback_checkpoint_rolls_back_its_batch(self, db, account, statement, settings):
        result = imports.import_statement(db, account, statement, JAN_31, 85_000)

        rollback = imports.rollback_checkpoint(db, result.checkpoint)

        assert rollback.import_batch_id == result.batch.id
        assert rollback.transactions_deleted == 3
