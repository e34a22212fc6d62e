"""
HTTP tests for the cash and ledger blueprints.

Verifies:
- Domain errors map to {"error", "code"} with their HTTP status
- Session lifecycle over the API (open, record, void, close)
- Ledger posting and reversal over the API
"""

import pytest
from decimal import Decimal


# =============================================================================
# CASH REGISTERS AND SESSIONS
# =============================================================================


class TestRegisterRoutes:
    def test_create_and_list(self, client, db_session):
        resp = client.post("/api/cash/registers", json={"code": "ACCUEIL", "name": "Accueil", "opening_balance": "80"})
        assert resp.status_code == 201
        assert resp.get_json()["register"]["current_balance"] == "80.00"

        resp = client.get("/api/cash/registers")
        assert [r["code"] for r in resp.get_json()["registers"]] == ["ACCUEIL"]

    def test_duplicate_code_is_409(self, client, register):
        resp = client.post("/api/cash/registers", json={"code": "CAISSE_PRINC", "name": "Bis"})
        assert resp.status_code == 409
        assert resp.get_json()["code"] == "conflict"

    def test_missing_name_is_400(self, client, db_session):
        resp = client.post("/api/cash/registers", json={"code": "X"})
        assert resp.status_code == 400
        assert resp.get_json()["code"] == "validation_error"

    def test_unknown_register_is_404(self, client, db_session):
        resp = client.get("/api/cash/registers/9999")
        assert resp.status_code == 404
        assert resp.get_json()["code"] == "not_found"

    def test_statistics_bad_date_is_400(self, client, register):
        resp = client.get(f"/api/cash/registers/{register.id}/statistics?from=last-week")
        assert resp.status_code == 400
        assert resp.get_json()["code"] == "validation_error"

    def test_register_shows_open_session(self, client, register, open_session):
        resp = client.get(f"/api/cash/registers/{register.id}")
        assert resp.status_code == 200
        assert resp.get_json()["open_session"]["id"] == open_session.id


class TestSessionRoutes:
    def test_full_lifecycle(self, client, register, operator):
        resp = client.post(f"/api/cash/registers/{register.id}/sessions", json={"operator_id": operator.id})
        assert resp.status_code == 201
        session_id = resp.get_json()["session"]["id"]

        resp = client.post(
            f"/api/cash/sessions/{session_id}/movements",
            json={"operator_id": operator.id, "movement_type": "in", "amount": "50", "category": "rental"},
        )
        assert resp.status_code == 201

        resp = client.post(
            f"/api/cash/sessions/{session_id}/movements",
            json={"operator_id": operator.id, "movement_type": "in", "amount": "30"},
        )
        movement_id = resp.get_json()["movement"]["id"]

        resp = client.post(
            f"/api/cash/sessions/{session_id}/movements/{movement_id}/void",
            json={"operator_id": operator.id, "reason": "double entry"},
        )
        assert resp.status_code == 200
        assert resp.get_json()["movement"]["status"] == "voided"

        resp = client.get(f"/api/cash/sessions/{session_id}/totals")
        assert resp.get_json()["totals"]["total_in"] == "50.00"

        resp = client.post(
            f"/api/cash/sessions/{session_id}/close",
            json={"operator_id": operator.id, "declared_balance": "50.00"},
        )
        assert resp.status_code == 200
        session = resp.get_json()["session"]
        assert session["status"] == "closed"
        assert session["theoretical_closing_balance"] == "50.00"
        assert session["variance"] == "0.00"

        resp = client.post(
            f"/api/cash/sessions/{session_id}/close",
            json={"operator_id": operator.id, "declared_balance": "50.00"},
        )
        assert resp.status_code == 409
        assert resp.get_json()["code"] == "invalid_state"

        resp = client.get(f"/api/cash/registers/{register.id}")
        assert resp.get_json()["register"]["current_balance"] == "50.00"

    def test_second_open_is_409(self, client, register, operator, open_session):
        resp = client.post(f"/api/cash/registers/{register.id}/sessions", json={"operator_id": operator.id})
        assert resp.status_code == 409
        body = resp.get_json()
        assert body["code"] == "conflict"
        assert body["details"]["session_id"] == open_session.id

    def test_void_with_movements_is_422(self, client, operator, open_session):
        client.post(
            f"/api/cash/sessions/{open_session.id}/movements",
            json={"operator_id": operator.id, "movement_type": "out", "amount": "5"},
        )
        resp = client.post(f"/api/cash/sessions/{open_session.id}/void", json={"operator_id": operator.id})
        assert resp.status_code == 422
        assert resp.get_json()["code"] == "business_rule"

    @pytest.mark.parametrize("payload", [
        {"movement_type": "in", "amount": "5"},
        {"operator_id": "abc", "movement_type": "in", "amount": "5"},
        {"operator_id": 1, "movement_type": "in", "amount": "-5"},
        {"operator_id": 1, "movement_type": "in"},
    ])
    def test_bad_movement_payload_is_400(self, client, open_session, payload):
        resp = client.post(f"/api/cash/sessions/{open_session.id}/movements", json=payload)
        assert resp.status_code == 400

    def test_non_object_body_is_400(self, client, open_session):
        resp = client.post(f"/api/cash/sessions/{open_session.id}/movements", json=[1, 2])
        assert resp.status_code == 400


class TestDepositRoutes:
    def test_deposit_lifecycle(self, client, register, operator, open_session):
        resp = client.post(
            f"/api/cash/sessions/{open_session.id}/movements",
            json={"operator_id": operator.id, "movement_type": "in", "amount": "20", "payment_method": "cheque"},
        )
        movement_id = resp.get_json()["movement"]["id"]

        resp = client.get(f"/api/cash/registers/{register.id}/deposit-candidates")
        assert [m["id"] for m in resp.get_json()["movements"]] == [movement_id]

        resp = client.post(
            f"/api/cash/registers/{register.id}/deposits",
            json={"operator_id": operator.id, "movement_ids": [movement_id]},
        )
        assert resp.status_code == 201
        deposit_id = resp.get_json()["deposit"]["id"]

        resp = client.post(f"/api/cash/deposits/{deposit_id}/validate", json={"operator_id": operator.id})
        assert resp.status_code == 409

        resp = client.post(f"/api/cash/deposits/{deposit_id}/deposit", json={"operator_id": operator.id})
        assert resp.get_json()["deposit"]["status"] == "deposited"

        resp = client.post(f"/api/cash/deposits/{deposit_id}/shred", json={"operator_id": operator.id})
        assert resp.status_code == 404

        resp = client.get(f"/api/cash/deposits/{deposit_id}")
        assert resp.status_code == 200
        body = resp.get_json()
        assert body["deposit"]["status"] == "deposited"
        assert [e["event_type"] for e in body["events"]] == [
            "cash.bank_deposit_deposited",
            "cash.bank_deposit_created",
        ]

    def test_unknown_deposit_is_404(self, client, db_session):
        resp = client.get("/api/cash/deposits/424242")
        assert resp.status_code == 404

    @pytest.mark.parametrize("movement_ids", [[[1]], [{"id": 1}], ["abc"], [0], "12"])
    def test_bad_movement_ids_are_400(self, client, register, operator, movement_ids):
        resp = client.post(
            f"/api/cash/registers/{register.id}/deposits",
            json={"operator_id": operator.id, "movement_ids": movement_ids},
        )
        assert resp.status_code == 400
        assert resp.get_json()["code"] == "validation_error"


# =============================================================================
# LEDGER
# =============================================================================


class TestLedgerRoutes:
    def test_generate_then_already_posted(self, client, operator, make_payment):
        payment = make_payment("20.00")

        resp = client.post(f"/api/ledger/membership-payments/{payment.id}/generate", json={"operator_id": operator.id})
        assert resp.status_code == 201
        piece = resp.get_json()["piece"]
        assert piece["piece_number"] == "COT-2026-000001"
        assert len(piece["entries"]) == 2

        resp = client.post(f"/api/ledger/membership-payments/{payment.id}/generate", json={"operator_id": operator.id})
        assert resp.status_code == 422
        assert resp.get_json()["code"] == "already_posted"

    def test_get_and_reverse_piece(self, client, operator, make_payment):
        payment = make_payment("20.00")
        client.post(f"/api/ledger/membership-payments/{payment.id}/generate", json={"operator_id": operator.id})

        resp = client.get("/api/ledger/pieces/VT/2026/COT-2026-000001")
        assert resp.status_code == 200
        assert Decimal(resp.get_json()["piece"]["balance"]) == 0

        resp = client.post(
            "/api/ledger/pieces/VT/2026/COT-2026-000001/reverse",
            json={"operator_id": operator.id, "reason": "error", "date": "2026-05-01"},
        )
        assert resp.status_code == 201
        reversal = resp.get_json()["piece"]
        assert reversal["piece_number"] == "REV-2026-000001"
        assert reversal["fiscal_year"] == 2026

        resp = client.get(f"/api/ledger/membership-payments/{payment.id}/entries")
        body = resp.get_json()
        assert body["posted"] is True
        assert len(body["entries"]) == 4

    def test_unposted_payment_entries(self, client, make_payment):
        payment = make_payment()
        resp = client.get(f"/api/ledger/membership-payments/{payment.id}/entries")
        assert resp.status_code == 200
        assert resp.get_json() == {"posted": False, "entries": []}

        resp = client.get("/api/ledger/membership-payments/424242/entries")
        assert resp.status_code == 404

    def test_unknown_piece_is_404(self, client, db_session):
        resp = client.get("/api/ledger/pieces/VT/2026/COT-2026-424242")
        assert resp.status_code == 404

    def test_reverse_bad_date_is_400(self, client, operator, make_payment):
        payment = make_payment()
        client.post(f"/api/ledger/membership-payments/{payment.id}/generate", json={"operator_id": operator.id})
        resp = client.post(
            "/api/ledger/pieces/VT/2026/COT-2026-000001/reverse",
            json={"operator_id": operator.id, "date": "yesterday"},
        )
        assert resp.status_code == 400

    def test_batch_generate(self, client, operator, make_payment):
        first = make_payment()
        second = make_payment("12.00")

        resp = client.post(
            "/api/ledger/membership-payments/generate",
            json={"operator_id": operator.id, "payment_ids": [first.id, second.id, 777777]},
        )
        assert resp.status_code == 200
        body = resp.get_json()
        assert len(body["succeeded"]) == 2
        assert body["failed"][0]["code"] == "not_found"

        resp = client.post("/api/ledger/membership-payments/generate", json={"operator_id": operator.id})
        assert resp.status_code == 400

        resp = client.post(
            "/api/ledger/membership-payments/generate",
            json={"operator_id": operator.id, "payment_ids": [first.id, [second.id]]},
        )
        assert resp.status_code == 400
        assert resp.get_json()["code"] == "validation_error"
