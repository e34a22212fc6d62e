# Overview: Flask API routes for cash registers, till sessions, movements and bank deposits.

# backend/ludocompta/routes/cash.py
"""
Cash API Routes

DESIGN:
- Thin: parse JSON, call cash_service / bank_deposit_service, serialize
- Session lifecycle: open -> close | void (terminal)
- operator_id comes from the request body; authentication sits in front
- Domain errors are mapped to JSON by the blueprint error handler
"""

from flask import Blueprint, jsonify, request

from ..errors import ValidationError
from ..services import audit_service, bank_deposit_service, cash_service
from ..time_utils import parse_iso_datetime
from .common import json_body, operator_id, register_error_handlers


cash_bp = Blueprint("cash", __name__, url_prefix="/api/cash")
register_error_handlers(cash_bp)


# =============================================================================
# REGISTERS
# =============================================================================

@cash_bp.get("/registers")
def list_registers_route():
    include_inactive = request.args.get("include_inactive", "false").lower() == "true"
    registers = cash_service.list_registers(include_inactive=include_inactive)
    return jsonify({"registers": [r.to_dict() for r in registers]}), 200


@cash_bp.post("/registers")
def create_register_route():
    """
    Create a cash register.

    Request body:
    {
        "code": "CAISSE_PRINC",
        "name": "Caisse principale",
        "opening_balance": "150.00",   (optional)
        "accounting_account": "5300",  (optional)
        "site": "Ludotheque"           (optional)
    }
    """
    data = json_body()
    register = cash_service.create_register(
        data.get("code"),
        data.get("name"),
        opening_balance=data.get("opening_balance", 0),
        accounting_account=data.get("accounting_account", "5300"),
        responsible_user_id=data.get("responsible_user_id"),
        site=data.get("site"),
        description=data.get("description"),
    )
    return jsonify({"register": register.to_dict()}), 201


@cash_bp.get("/registers/<int:register_id>")
def get_register_route(register_id: int):
    register = cash_service.get_register(register_id)
    open_session = cash_service.get_open_session(register_id)
    return jsonify({
        "register": register.to_dict(),
        "open_session": open_session.to_dict() if open_session else None,
    }), 200


@cash_bp.get("/registers/<int:register_id>/sessions")
def list_sessions_route(register_id: int):
    limit = request.args.get("limit", 30, type=int)
    offset = request.args.get("offset", 0, type=int)
    sessions = cash_service.list_sessions(register_id, limit=limit, offset=offset)
    return jsonify({"sessions": [s.to_dict() for s in sessions]}), 200


@cash_bp.get("/registers/<int:register_id>/statistics")
def register_statistics_route(register_id: int):
    try:
        date_from = parse_iso_datetime(request.args.get("from"))
        date_to = parse_iso_datetime(request.args.get("to"))
    except ValueError:
        raise ValidationError("from/to must be ISO-8601 datetimes")
    stats = cash_service.register_statistics(register_id, date_from=date_from, date_to=date_to)
    return jsonify({k: str(v) if not isinstance(v, int) else v for k, v in stats.items()}), 200


# =============================================================================
# SESSIONS
# =============================================================================

@cash_bp.post("/registers/<int:register_id>/sessions")
def open_session_route(register_id: int):
    """
    Open a session. 409 if the register already has one open.

    Request body: {"operator_id": 3, "comment": "..."}
    """
    data = json_body()
    session = cash_service.open_session(register_id, operator_id(data), data.get("comment"))
    return jsonify({"session": session.to_dict()}), 201


@cash_bp.get("/sessions/<int:session_id>")
def get_session_route(session_id: int):
    session = cash_service.get_session(session_id)
    include_voided = request.args.get("include_voided", "false").lower() == "true"
    movements = cash_service.list_movements(session_id, include_voided=include_voided)
    return jsonify({
        "session": session.to_dict(),
        "movements": [m.to_dict() for m in movements],
    }), 200


@cash_bp.get("/sessions/<int:session_id>/totals")
def session_totals_route(session_id: int):
    session = cash_service.get_session(session_id)
    totals = cash_service.compute_session_totals(session.id)
    return jsonify({"session_id": session.id, "totals": totals.to_dict()}), 200


@cash_bp.post("/sessions/<int:session_id>/close")
def close_session_route(session_id: int):
    """
    Close and reconcile a session.

    Request body:
    {
        "operator_id": 3,
        "declared_balance": "212.50",
        "count_detail": {"20.00": 5, "10.00": 10, "2.50": 1},  (optional)
        "comment": "..."                                       (optional)
    }
    """
    data = json_body()
    session = cash_service.close_session(
        session_id,
        operator_id(data),
        data.get("declared_balance"),
        count_detail=data.get("count_detail"),
        comment=data.get("comment"),
    )
    return jsonify({"session": session.to_dict()}), 200


@cash_bp.post("/sessions/<int:session_id>/void")
def void_session_route(session_id: int):
    data = json_body()
    session = cash_service.void_session(session_id, operator_id(data), data.get("reason"))
    return jsonify({"session": session.to_dict()}), 200


# =============================================================================
# MOVEMENTS
# =============================================================================

@cash_bp.post("/sessions/<int:session_id>/movements")
def record_movement_route(session_id: int):
    """
    Record a movement.

    Request body:
    {
        "operator_id": 3,
        "movement_type": "in",
        "amount": "12.00",
        "category": "rental",        (optional, default "other")
        "payment_method": "cash",    (optional, default "cash")
        "label": "...", "reference": "...", "comment": "..."
    }
    """
    data = json_body()
    movement = cash_service.record_movement(
        session_id,
        operator_id(data),
        data.get("movement_type"),
        data.get("amount"),
        category=data.get("category", "other"),
        payment_method=data.get("payment_method", "cash"),
        label=data.get("label"),
        reference=data.get("reference"),
        comment=data.get("comment"),
        member_user_id=data.get("member_user_id"),
    )
    return jsonify({"movement": movement.to_dict()}), 201


@cash_bp.post("/sessions/<int:session_id>/movements/<int:movement_id>/void")
def void_movement_route(session_id: int, movement_id: int):
    data = json_body()
    movement = cash_service.void_movement(
        movement_id,
        operator_id(data),
        data.get("reason"),
        session_id=session_id,
    )
    return jsonify({"movement": movement.to_dict()}), 200


# =============================================================================
# BANK DEPOSITS
# =============================================================================

@cash_bp.get("/registers/<int:register_id>/deposit-candidates")
def deposit_candidates_route(register_id: int):
    movements = bank_deposit_service.eligible_deposit_movements(register_id)
    return jsonify({"movements": [m.to_dict() for m in movements]}), 200


@cash_bp.post("/registers/<int:register_id>/deposits")
def create_deposit_route(register_id: int):
    data = json_body()
    deposit = bank_deposit_service.create_bank_deposit(
        register_id,
        data.get("movement_ids") or [],
        operator_id(data),
        data.get("comment"),
        bank_account=data.get("bank_account"),
    )
    return jsonify({"deposit": deposit.to_dict()}), 201


@cash_bp.get("/deposits/<int:deposit_id>")
def get_deposit_route(deposit_id: int):
    deposit = bank_deposit_service.get_deposit(deposit_id)
    events = audit_service.list_audit_events(entity_type="bank_deposit", entity_id=deposit.id)
    return jsonify({
        "deposit": deposit.to_dict(),
        "events": [e.to_dict() for e in events],
    }), 200


@cash_bp.post("/deposits/<int:deposit_id>/<action>")
def deposit_transition_route(deposit_id: int, action: str):
    data = json_body()
    user_id = operator_id(data)
    if action == "deposit":
        deposit = bank_deposit_service.mark_deposited(deposit_id, user_id, data.get("slip_reference"))
    elif action == "validate":
        deposit = bank_deposit_service.validate_deposit(deposit_id, user_id)
    elif action == "cancel":
        deposit = bank_deposit_service.cancel_deposit(deposit_id, user_id, data.get("reason"))
    else:
        return jsonify({"error": f"Unknown action: {action}", "code": "not_found"}), 404
    return jsonify({"deposit": deposit.to_dict()}), 200
