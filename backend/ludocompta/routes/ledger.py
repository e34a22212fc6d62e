# Overview: Flask API routes for ledger postings; parses input and returns JSON responses.

# backend/ludocompta/routes/ledger.py
from flask import Blueprint, jsonify

from ..errors import NotFoundError, ValidationError
from ..services import ledger_service, membership_service
from ..validation import coerce_date, require_id
from .common import json_body, operator_id, register_error_handlers


ledger_bp = Blueprint("ledger", __name__, url_prefix="/api/ledger")
register_error_handlers(ledger_bp)


def _piece_payload(entries) -> dict:
    first = entries[0]
    return {
        "journal_code": first.journal_code,
        "fiscal_year": first.fiscal_year,
        "piece_number": first.piece_number,
        "entries": [e.to_dict() for e in entries],
    }


@ledger_bp.post("/membership-payments/<int:payment_id>/generate")
def generate_membership_payment_route(payment_id: int):
    """
    Post a membership payment. 422 (already_posted) on a second call.
    """
    data = json_body()
    entries = ledger_service.generate_for_membership_payment(payment_id, operator_user_id=operator_id(data))
    if not entries:
        return jsonify({"piece": None}), 200
    return jsonify({"piece": _piece_payload(entries)}), 201


@ledger_bp.post("/membership-payments/generate")
def generate_many_route():
    """Request body: {"operator_id": 1, "payment_ids": [1, 2, 3]}"""
    data = json_body()
    ids = data.get("payment_ids")
    if not isinstance(ids, list) or not ids:
        raise ValidationError("payment_ids must be a non-empty list")
    ids = [require_id(i, "payment_ids") for i in ids]
    results = ledger_service.generate_many(ids, operator_user_id=operator_id(data))
    return jsonify(results), 200


@ledger_bp.get("/membership-payments/<int:payment_id>/entries")
def membership_payment_entries_route(payment_id: int):
    payment = membership_service.get_membership_payment(payment_id)
    entries = ledger_service.entries_for_membership_payment(payment.id)
    return jsonify({
        "posted": ledger_service.has_entries(ledger_service.MembershipPaymentEvent(payment)),
        "entries": [e.to_dict() for e in entries],
    }), 200


@ledger_bp.get("/pieces/<journal_code>/<int:fiscal_year>/<piece_number>")
def get_piece_route(journal_code: str, fiscal_year: int, piece_number: str):
    entries = ledger_service.entries_for_piece(journal_code, fiscal_year, piece_number)
    if not entries:
        raise NotFoundError(f"Piece {journal_code}/{fiscal_year}/{piece_number} not found")
    payload = _piece_payload(entries)
    payload["balance"] = str(ledger_service.piece_balance(journal_code, fiscal_year, piece_number))
    return jsonify({"piece": payload}), 200


@ledger_bp.post("/pieces/<journal_code>/<int:fiscal_year>/<piece_number>/reverse")
def reverse_piece_route(journal_code: str, fiscal_year: int, piece_number: str):
    """
    Write the contra-piece of a piece.

    Request body: {"operator_id": 1, "reason": "...", "date": "2026-03-01" (optional)}
    """
    data = json_body()
    reversal_date = coerce_date(data["date"], "date") if data.get("date") else None
    entries = ledger_service.generate_reversal(
        journal_code,
        fiscal_year,
        piece_number,
        data.get("reason"),
        operator_user_id=operator_id(data),
        reversal_date=reversal_date,
    )
    return jsonify({"piece": _piece_payload(entries)}), 201
