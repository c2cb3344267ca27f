"""
HTTP surface: checkpoints, imports, ledger transactions and error payloads.
"""

from datetime import date

import pytest

from ledgerbook.models.transaction import Transaction


@pytest.fixture
def base(budget, account):
    return f"/api/v1/budgets/{budget.id}/accounts/{account.id}"


@pytest.fixture
def statement_payload():
    return {
        "file_name": "jan.csv",
        "statement_end_date": "2025-01-31",
        "ending_balance_cents": 90_000,
        "rows": [
            {"date": "2025-01-03", "amount_cents": 100_000, "memo": "Payroll", "import_id": "FIT-1"},
            {"date": "2025-01-09", "amount_cents": -20_000, "memo": "Groceries", "import_id": "FIT-2"},
            {"date": "2025-01-22", "amount_cents": 5_000, "memo": "Refund", "import_id": "FIT-3"},
        ],
    }


class TestBudgetRoutes:

    def test_create_normalizes_currency(self, client):
        resp = client.post("/api/v1/budgets/", json={"name": "  Family books ", "currency": "eur"})
        assert resp.status_code == 201
        assert resp.json()["currency"] == "EUR"
        assert resp.json()["name"] == "Family books"

        assert client.post("/api/v1/budgets/", json={"name": "Bad", "currency": "EURO"}).status_code == 422

    def test_overview_counts_checkpoints(self, client, budget, base):
        client.post(f"{base}/checkpoints/", json={"checkpoint_date": "2025-01-31", "declared_balance_cents": 100})

        resp = client.get(f"/api/v1/budgets/{budget.id}")

        assert resp.status_code == 200
        body = resp.json()
        assert body["account_count"] == 1
        assert body["checkpoint_count"] == 1
        assert body["unreconciled_checkpoint_count"] == 1
        assert body["latest_checkpoint_date"] == "2025-01-31"

    def test_unknown_budget(self, client):
        assert client.get("/api/v1/budgets/00000000-0000-0000-0000-000000000000").status_code == 404


class TestHealth:

    def test_health(self, client):
        resp = client.get("/health")
        assert resp.status_code == 200
        assert resp.json()["status"] == "ok"

    def test_request_id_is_echoed(self, client):
        resp = client.get("/health", headers={"X-Request-ID": "req-test-1"})
        assert resp.headers["X-Request-ID"] == "req-test-1"
        assert "X-Process-Time" in resp.headers


class TestCheckpointRoutes:

    def test_create_then_reconcile_with_transaction(self, client, budget, account, base):
        resp = client.post(f"{base}/checkpoints/", json={"checkpoint_date": "2025-01-31", "declared_balance_cents": 1_000_000})
        assert resp.status_code == 201
        body = resp.json()
        cp = body["checkpoint"]
        assert cp["calculated_balance_cents"] == 0
        assert cp["adjustment_amount_cents"] == 1_000_000
        assert cp["is_reconciled"] is False
        assert body["adjustment_transaction_id"] is not None

        # A manual transaction recalculates the account's checkpoints
        resp = client.post(
            f"/api/v1/budgets/{budget.id}/transactions/",
            json={"account_id": str(account.id), "date": "2025-01-15", "amount_cents": 1_000_000},
        )
        assert resp.status_code == 201

        resp = client.get(f"{base}/checkpoints/{cp['id']}")
        assert resp.status_code == 200
        assert resp.json()["checkpoint"]["is_reconciled"] is True
        assert resp.json()["adjustment_transaction_id"] is None

    def test_datetime_payload_uses_its_calendar_day(self, client, base):
        resp = client.post(
            f"{base}/checkpoints/",
            json={"checkpoint_date": "2025-01-31T23:30:00+07:00", "declared_balance_cents": 5},
        )
        assert resp.status_code == 201
        assert resp.json()["checkpoint"]["checkpoint_date"] == "2025-01-31"

    def test_list_summary_recalculate(self, client, base):
        client.post(f"{base}/checkpoints/", json={"checkpoint_date": "2025-01-31", "declared_balance_cents": 1_000_000})
        client.post(f"{base}/checkpoints/", json={"checkpoint_date": "2025-02-28", "declared_balance_cents": 1_500_000})

        resp = client.get(f"{base}/checkpoints/", params={"order_by": "date_asc"})
        assert resp.status_code == 200
        assert [c["adjustment_amount_cents"] for c in resp.json()] == [1_000_000, 500_000]
        assert resp.json()[1]["calculated_balance_cents"] == 1_000_000

        summary = client.get(f"{base}/checkpoints/summary").json()
        assert summary["total_checkpoints"] == 2
        assert summary["unreconciled_checkpoints"] == 2
        assert summary["total_adjustment_amount_cents"] == 1_500_000

        resp = client.post(f"{base}/checkpoints/recalculate")
        assert resp.status_code == 200
        assert resp.json()["summary"] == {"total": 2, "now_reconciled": 0, "still_unreconciled": 2}

    def test_patch_and_delete(self, client, base):
        created = client.post(
            f"{base}/checkpoints/",
            json={"checkpoint_date": "2025-01-31", "declared_balance_cents": 100, "notes": "first"},
        ).json()["checkpoint"]

        resp = client.patch(f"{base}/checkpoints/{created['id']}", json={"declared_balance_cents": 0})
        assert resp.status_code == 200
        assert resp.json()["checkpoint"]["is_reconciled"] is True
        assert resp.json()["checkpoint"]["notes"] == "first"

        resp = client.delete(f"{base}/checkpoints/{created['id']}")
        assert resp.status_code == 204
        assert client.get(f"{base}/checkpoints/{created['id']}").status_code == 404

    def test_error_payloads(self, client, base):
        resp = client.get(f"{base}/checkpoints/00000000-0000-0000-0000-000000000000")
        assert resp.status_code == 404
        assert resp.json()["error"] == "not_found"

        resp = client.post(
            f"{base}/checkpoints/",
            json={"checkpoint_date": "2025-01-31", "declared_balance_cents": 10**15},
        )
        assert resp.status_code == 400
        body = resp.json()
        assert body["error"] == "validation_error"
        assert body["details"]["field"] == "declared_balance_cents"

        resp = client.post(f"{base}/checkpoints/", json={"checkpoint_date": "yesterday", "declared_balance_cents": 1})
        assert resp.status_code == 422

    def test_unknown_account(self, client, budget):
        resp = client.get(f"/api/v1/budgets/{budget.id}/accounts/00000000-0000-0000-0000-000000000000/checkpoints/")
        assert resp.status_code == 404


class TestImportRoutes:

    def test_import_and_rollback(self, client, budget, base, statement_payload):
        resp = client.post(f"{base}/import", json=statement_payload)
        assert resp.status_code == 201
        body = resp.json()
        assert body["imported_count"] == 3
        assert body["checkpoint"]["adjustment_amount_cents"] == 5_000
        batch_id = body["batch"]["id"]
        assert body["batch"]["current_transaction_count"] == 3

        resp = client.get(f"/api/v1/budgets/{budget.id}/import-batches/{batch_id}")
        assert resp.status_code == 200
        assert resp.json()["status"] == "completed"

        resp = client.delete(f"/api/v1/budgets/{budget.id}/import-batches/{batch_id}")
        assert resp.status_code == 200
        assert resp.json()["transactions_deleted"] == 3
        assert client.get(f"{base}/checkpoints/").json() == []

        resp = client.delete(f"/api/v1/budgets/{budget.id}/import-batches/{batch_id}")
        assert resp.status_code == 409

    def test_rollback_via_checkpoint(self, client, base, statement_payload):
        cp_id = client.post(f"{base}/import", json=statement_payload).json()["checkpoint"]["id"]

        resp = client.post(f"{base}/checkpoints/{cp_id}/rollback")

        assert resp.status_code == 200
        assert resp.json()["checkpoint_ids"] == [cp_id]

    def test_blocked_rollback_deletes_nothing(self, client, db, budget, account, make_account, base, statement_payload):
        savings = make_account(name="Savings")
        batch_id = client.post(f"{base}/import", json=statement_payload).json()["batch"]["id"]
        client.post(
            f"/api/v1/budgets/{budget.id}/accounts/{savings.id}/import",
            json={
                "statement_end_date": "2025-01-31",
                "ending_balance_cents": 20_000,
                "rows": [{"date": "2025-01-09", "amount_cents": 20_000, "import_id": "SAV-1"}],
            },
        )
        leg = db.query(Transaction).filter_by(import_id="FIT-2").one()
        other = db.query(Transaction).filter_by(import_id="SAV-1").one()
        resp = client.post(
            f"/api/v1/budgets/{budget.id}/transactions/{leg.id}/transfer-match",
            json={"other_transaction_id": str(other.id)},
        )
        assert resp.status_code == 200

        resp = client.delete(f"/api/v1/budgets/{budget.id}/import-batches/{batch_id}")

        assert resp.status_code == 409
        body = resp.json()
        assert body["error"] == "conflict"
        assert body["details"]["matched_count"] == 1
        batch = client.get(f"/api/v1/budgets/{budget.id}/import-batches/{batch_id}").json()
        assert batch["status"] == "completed"
        assert batch["current_transaction_count"] == 3

    def test_deleting_a_matched_transfer_unblocks_rollback(self, client, db, budget, make_account, base, statement_payload):
        savings = make_account(name="Savings")
        batch_id = client.post(f"{base}/import", json=statement_payload).json()["batch"]["id"]
        client.post(
            f"/api/v1/budgets/{budget.id}/accounts/{savings.id}/import",
            json={
                "statement_end_date": "2025-01-31",
                "ending_balance_cents": 20_000,
                "rows": [{"date": "2025-01-09", "amount_cents": 20_000, "import_id": "SAV-1"}],
            },
        )
        leg_id = db.query(Transaction).filter_by(import_id="FIT-2").one().id
        other_id = db.query(Transaction).filter_by(import_id="SAV-1").one().id
        url = f"/api/v1/budgets/{budget.id}/transactions"
        client.post(f"{url}/{leg_id}/transfer-match", json={"other_transaction_id": str(other_id)})

        assert client.delete(f"{url}/{leg_id}").status_code == 204
        assert db.get(Transaction, other_id).transfer_tx_id is None

        resp = client.delete(f"/api/v1/budgets/{budget.id}/import-batches/{batch_id}")
        assert resp.status_code == 200
        assert resp.json()["transactions_deleted"] == 3

    def test_empty_rows_rejected(self, client, base, statement_payload):
        statement_payload["rows"] = []
        assert client.post(f"{base}/import", json=statement_payload).status_code == 422


class TestTransactionRoutes:

    def test_adjustment_rows_are_read_only(self, client, budget, base):
        adj_id = client.post(
            f"{base}/checkpoints/", json={"checkpoint_date": "2025-01-31", "declared_balance_cents": 100}
        ).json()["adjustment_transaction_id"]

        resp = client.patch(f"/api/v1/budgets/{budget.id}/transactions/{adj_id}", json={"amount_cents": 5})
        assert resp.status_code == 400
        assert resp.json()["error"] == "validation_error"
        assert client.delete(f"/api/v1/budgets/{budget.id}/transactions/{adj_id}").status_code == 400

    def test_transfer_match_and_unmatch(self, client, budget, account, make_account, add_tx, db):
        savings = make_account(name="Savings")
        out_leg = add_tx(account, date(2025, 1, 5), -500)
        in_leg = add_tx(savings, date(2025, 1, 5), 500)
        spare = add_tx(savings, date(2025, 1, 6), 500)
        db.commit()
        url = f"/api/v1/budgets/{budget.id}/transactions"

        resp = client.post(f"{url}/{out_leg.id}/transfer-match", json={"other_transaction_id": str(in_leg.id)})
        assert resp.status_code == 200
        assert resp.json()["transfer_account_id"] == str(savings.id)

        resp = client.post(f"{url}/{out_leg.id}/transfer-match", json={"other_transaction_id": str(spare.id)})
        assert resp.status_code == 409

        resp = client.delete(f"{url}/{out_leg.id}/transfer-match")
        assert resp.status_code == 200
        assert resp.json()["transfer_tx_id"] is None

    def test_transfer_match_requires_opposite_amounts(self, client, budget, account, make_account, add_tx, db):
        savings = make_account(name="Savings")
        a = add_tx(account, date(2025, 1, 5), -500)
        b = add_tx(savings, date(2025, 1, 5), 400)
        db.commit()

        resp = client.post(
            f"/api/v1/budgets/{budget.id}/transactions/{a.id}/transfer-match",
            json={"other_transaction_id": str(b.id)},
        )
        assert resp.status_code == 400

    def test_delete_recalculates(self, client, budget, account, base):
        tx = client.post(
            f"/api/v1/budgets/{budget.id}/transactions/",
            json={"account_id": str(account.id), "date": "2025-01-10", "amount_cents": 300},
        ).json()
        cp = client.post(
            f"{base}/checkpoints/", json={"checkpoint_date": "2025-01-31", "declared_balance_cents": 300}
        ).json()["checkpoint"]
        assert cp["is_reconciled"] is True

        assert client.delete(f"/api/v1/budgets/{budget.id}/transactions/{tx['id']}").status_code == 204

        cp = client.get(f"{base}/checkpoints/{cp['id']}").json()["checkpoint"]
        assert cp["adjustment_amount_cents"] == 300


class TestAccountRoutes:

    def test_opening_balance_creates_checkpoint(self, client, budget):
        resp = client.post(
            f"/api/v1/budgets/{budget.id}/accounts/",
            json={"name": "Visa", "type": "credit_card", "opening_balance_cents": 2_500, "opening_balance_date": "2025-01-01"},
        )
        assert resp.status_code == 201
        acc_id = resp.json()["id"]

        cps = client.get(f"/api/v1/budgets/{budget.id}/accounts/{acc_id}/checkpoints/").json()
        assert len(cps) == 1
        assert cps[0]["declared_balance_cents"] == 2_500

        calc = client.get(
            f"/api/v1/budgets/{budget.id}/accounts/{acc_id}/calculated-balance", params={"as_of": "2025-01-15"}
        ).json()
        assert calc["calculated_balance_cents"] == 2_500

        flagged = client.get(f"/api/v1/budgets/{budget.id}/accounts/{acc_id}/flagged-transactions").json()
        assert len(flagged) == 1
        # Owed balance went up, so the card shows an outflow
        assert flagged[0]["amount_cents"] == -2_500

        balances = client.get(f"/api/v1/budgets/{budget.id}/accounts/with-balances").json()
        assert [b["current_balance_cents"] for b in balances if b["id"] == acc_id] == [2_500]
