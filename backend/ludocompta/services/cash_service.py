# Overview: Service-layer operations for cash registers, till sessions and cash movements.

"""
Cash Register and Session Service

WHY: Track every entry and exit of money in the association's drawers
and reconcile the physical count against the recorded movements at
close time.

DESIGN PRINCIPLES:
- One open session per register at a time (checked under a register
  row lock, backed by a partial unique index)
- Session states: open -> closed | voided, both terminal
- Movements are only written or voided while their session is open
- Movements are never deleted; voiding is a status change
- Session aggregates are recomputed from valid movements, never incremented
- register.current_balance is written only by close and read only by open
- Every mutating call is one transaction (all or nothing)
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal

from flask import current_app
from sqlalchemy import func
from sqlalchemy.exc import IntegrityError

from ..errors import (
    BusinessRuleError,
    ConflictError,
    InvalidStateError,
    NotFoundError,
    ValidationError,
)
from ..extensions import db
from ..models import CashRegister, CashSession, CashMovement, MembershipPayment
from ..models.cash import (
    MOVEMENT_IN,
    MOVEMENT_OUT,
    MOVEMENT_VALID,
    MOVEMENT_VOIDED,
    SESSION_CLOSED,
    SESSION_OPEN,
    SESSION_VOIDED,
)
from ..time_utils import utcnow
from ..validation import optional_text, parse_amount, require_choice, require_text
from .audit_service import append_audit_event
from .concurrency import lock_for_update, unit_of_work


# =============================================================================
# CONSTANTS
# =============================================================================

MOVEMENT_TYPES = [MOVEMENT_IN, MOVEMENT_OUT]

MOVEMENT_CATEGORIES = [
    "membership",
    "rental",
    "late_fee",
    "fine",
    "sale",
    "donation",
    "deposit",
    "deposit_refund",
    "bank_deposit",
    "float_top_up",
    "withdrawal",
    "other",
]

PAYMENT_METHODS = [
    "cash",
    "cheque",
    "card",
    "transfer",
    "direct_debit",
    "other",
]

ZERO = Decimal("0.00")


@dataclass
class SessionTotals:
    total_in: Decimal = ZERO
    total_out: Decimal = ZERO
    movement_count: int = 0
    by_payment_method: dict[str, dict[str, Decimal]] = field(default_factory=dict)

    @property
    def net(self) -> Decimal:
        return self.total_in - self.total_out

    def to_dict(self) -> dict:
        return {
            "total_in": str(self.total_in),
            "total_out": str(self.total_out),
            "net": str(self.net),
            "movement_count": self.movement_count,
            "by_payment_method": {
                method: {"in": str(v["in"]), "out": str(v["out"])}
                for method, v in self.by_payment_method.items()
            },
        }


# =============================================================================
# REGISTER MANAGEMENT
# =============================================================================

def create_register(
    code: str,
    name: str,
    *,
    opening_balance=0,
    accounting_account: str = "5300",
    responsible_user_id: int | None = None,
    site: str | None = None,
    description: str | None = None,
) -> CashRegister:
    """
    Create a cash register.

    The initial balance seeds current_balance; afterwards only session
    close moves it.
    """
    code = require_text(code, "code", max_length=32)
    name = require_text(name, "name", max_length=128)
    balance = parse_amount(opening_balance, "opening_balance", allow_zero=True)

    existing = db.session.query(CashRegister).filter_by(code=code).first()
    if existing:
        raise ConflictError(f"Register '{code}' already exists")

    with unit_of_work():
        register = CashRegister(
            code=code,
            name=name,
            site=optional_text(site, "site", max_length=128),
            description=description,
            opening_balance=balance,
            current_balance=balance,
            accounting_account=require_text(accounting_account, "accounting_account", max_length=20),
            responsible_user_id=responsible_user_id,
            is_active=True,
        )
        db.session.add(register)
        try:
            db.session.flush()
        except IntegrityError:
            raise ConflictError(f"Register '{code}' already exists")

    return register


def update_register(register_id: int, **changes) -> CashRegister:
    """Update descriptive fields. Balances are not editable here."""
    allowed = {"name", "site", "description", "accounting_account", "responsible_user_id"}
    unknown = set(changes) - allowed
    if unknown:
        raise ValidationError(f"Field not allowed: {', '.join(sorted(unknown))}")

    with unit_of_work():
        register = get_register(register_id)
        if "name" in changes:
            register.name = require_text(changes["name"], "name", max_length=128)
        if "site" in changes:
            register.site = optional_text(changes["site"], "site", max_length=128)
        if "description" in changes:
            register.description = changes["description"]
        if "accounting_account" in changes:
            register.accounting_account = require_text(changes["accounting_account"], "accounting_account", max_length=20)
        if "responsible_user_id" in changes:
            register.responsible_user_id = changes["responsible_user_id"]

    return register


def deactivate_register(register_id: int) -> CashRegister:
    """
    Deactivate a register (soft delete).

    Registers are never deleted; an inactive register cannot open sessions.
    """
    with unit_of_work():
        register = get_register(register_id)
        if get_open_session(register_id):
            raise InvalidStateError("Cannot deactivate register with an open session. Close it first.")
        register.is_active = False

    return register


def get_register(register_id: int) -> CashRegister:
    register = db.session.get(CashRegister, register_id)
    if not register:
        raise NotFoundError(f"Register {register_id} not found")
    return register


def get_register_by_code(code: str) -> CashRegister | None:
    return db.session.query(CashRegister).filter_by(code=code).first()


def list_registers(include_inactive: bool = False) -> list[CashRegister]:
    q = db.session.query(CashRegister)
    if not include_inactive:
        q = q.filter_by(is_active=True)
    return q.order_by(CashRegister.name).all()


# =============================================================================
# SESSION LIFECYCLE
# =============================================================================

def open_session(register_id: int, opener_user_id: int, opening_comment: str | None = None) -> CashSession:
    """
    Open a till session on a register.

    opening_balance is the register's current_balance at this instant
    (the declared count of the previous close).

    Raises:
        NotFoundError: unknown register
        InvalidStateError: register is inactive
        ConflictError: register already has an open session
    """
    with unit_of_work():
        # Lock the register row: concurrent opens on the same register queue here
        register = lock_for_update(db.session.query(CashRegister).filter_by(id=register_id)).first()
        if not register:
            raise NotFoundError(f"Register {register_id} not found")
        if not register.is_active:
            raise InvalidStateError(f"Cannot open a session on inactive register '{register.code}'")
        register_code = register.code

        existing = get_open_session(register_id)
        if existing:
            raise ConflictError(
                f"Register '{register_code}' already has an open session (session {existing.id})",
                session_id=existing.id,
            )

        session = CashSession(
            register_id=register.id,
            opened_by_user_id=opener_user_id,
            status=SESSION_OPEN,
            opened_at=utcnow(),
            opening_balance=register.current_balance,
            movement_count=0,
            total_in=ZERO,
            total_out=ZERO,
            opening_comment=optional_text(opening_comment, "opening_comment"),
        )
        db.session.add(session)
        try:
            db.session.flush()
        except IntegrityError:
            raise ConflictError(f"Register '{register_code}' already has an open session")

        append_audit_event(
            event_type="cash.session_opened",
            entity_type="cash_session",
            entity_id=session.id,
            actor_user_id=opener_user_id,
            register_id=register.id,
            cash_session_id=session.id,
            occurred_at=session.opened_at,
            note=session.opening_comment,
            payload={"opening_balance": session.opening_balance},
        )

    current_app.logger.info(
        "Cash session %s opened on register %s by user %s (opening balance %s)",
        session.id, register_id, opener_user_id, session.opening_balance,
    )
    return session


def close_session(
    session_id: int,
    closer_user_id: int,
    declared_balance,
    *,
    count_detail: dict | None = None,
    comment: str | None = None,
) -> CashSession:
    """
    Close a session and reconcile it.

    theoretical = opening_balance + sum(valid in) - sum(valid out)
    variance    = declared - theoretical (exact, no tolerance)

    The declared count becomes the register's current_balance, i.e. the
    next session's opening balance.

    IMMUTABLE: once closed, the session and its movements cannot change.
    """
    declared = parse_amount(declared_balance, "declared_balance", allow_zero=True)
    detail = _validate_count_detail(count_detail)

    with unit_of_work():
        session = _get_session_locked(session_id)
        if session.status != SESSION_OPEN:
            raise InvalidStateError(f"Session {session_id} is already {session.status}")

        register = lock_for_update(db.session.query(CashRegister).filter_by(id=session.register_id)).first()

        totals = recompute_session_totals(session)
        theoretical = Decimal(session.opening_balance) + totals.total_in - totals.total_out
        variance = declared - theoretical

        session.status = SESSION_CLOSED
        session.closed_at = utcnow()
        session.closed_by_user_id = closer_user_id
        session.theoretical_closing_balance = theoretical
        session.declared_closing_balance = declared
        session.variance = variance
        session.count_detail = detail
        session.closing_comment = optional_text(comment, "comment")

        register.current_balance = declared

        append_audit_event(
            event_type="cash.session_closed",
            entity_type="cash_session",
            entity_id=session.id,
            actor_user_id=closer_user_id,
            register_id=session.register_id,
            cash_session_id=session.id,
            occurred_at=session.closed_at,
            note=session.closing_comment,
            payload={
                "theoretical_closing_balance": theoretical,
                "declared_closing_balance": declared,
                "variance": variance,
            },
        )

    current_app.logger.info(
        "Cash session %s closed by user %s: theoretical %s, declared %s, variance %s",
        session_id, closer_user_id, theoretical, declared, variance,
    )
    return session


def void_session(session_id: int, operator_user_id: int, reason: str | None = None) -> CashSession:
    """
    Cancel a session opened by mistake.

    Only legal while open and without any valid movement: a session that
    saw money must be closed so the audit trail stays monotonic. The
    register balance is untouched.
    """
    with unit_of_work():
        session = _get_session_locked(session_id)
        if session.status != SESSION_OPEN:
            raise InvalidStateError(f"Only an open session can be voided (session {session_id} is {session.status})")

        valid_count = (
            db.session.query(func.count(CashMovement.id))
            .filter_by(cash_session_id=session_id, status=MOVEMENT_VALID)
            .scalar()
        )
        if valid_count:
            raise BusinessRuleError(
                f"Cannot void session {session_id}: it has {valid_count} valid movement(s). Close it instead.",
                valid_movement_count=valid_count,
            )

        session.status = SESSION_VOIDED
        session.closed_at = utcnow()
        session.closed_by_user_id = operator_user_id
        session.closing_comment = f"Voided by user {operator_user_id}: {reason or 'no reason given'}"

        append_audit_event(
            event_type="cash.session_voided",
            entity_type="cash_session",
            entity_id=session.id,
            actor_user_id=operator_user_id,
            register_id=session.register_id,
            cash_session_id=session.id,
            occurred_at=session.closed_at,
            note=reason,
        )

    current_app.logger.info("Cash session %s voided by user %s", session_id, operator_user_id)
    return session


# =============================================================================
# MOVEMENTS
# =============================================================================

def record_movement(
    session_id: int,
    operator_user_id: int,
    movement_type: str,
    amount,
    *,
    category: str = "other",
    payment_method: str = "cash",
    label: str | None = None,
    reference: str | None = None,
    comment: str | None = None,
    membership_payment_id: int | None = None,
    member_user_id: int | None = None,
    occurred_at: datetime | None = None,
    commit: bool = True,
) -> CashMovement:
    """
    Record one entry (in) or exit (out) of money in an open session.

    Raises:
        ValidationError: non-positive amount, unknown type/category/method
        NotFoundError: unknown session
        InvalidStateError: session is not open
    """
    require_choice(movement_type, MOVEMENT_TYPES, "movement_type")
    require_choice(category, MOVEMENT_CATEGORIES, "category")
    require_choice(payment_method, PAYMENT_METHODS, "payment_method")
    value = parse_amount(amount, "amount")
    if label is None:
        label = f"{'Encashment' if movement_type == MOVEMENT_IN else 'Disbursement'} ({category})"
    label = require_text(label, "label", max_length=255)

    with unit_of_work(commit=commit):
        session = _get_session_locked(session_id)
        if session.status != SESSION_OPEN:
            raise InvalidStateError(f"Cannot record a movement on a {session.status} session (session {session_id})")

        movement = CashMovement(
            cash_session_id=session.id,
            movement_type=movement_type,
            category=category,
            amount=value,
            payment_method=payment_method,
            membership_payment_id=membership_payment_id,
            member_user_id=member_user_id,
            operator_user_id=operator_user_id,
            reference=optional_text(reference, "reference", max_length=50),
            label=label,
            comment=comment,
            occurred_at=occurred_at or utcnow(),
            status=MOVEMENT_VALID,
        )
        db.session.add(movement)
        db.session.flush()

        recompute_session_totals(session)

        append_audit_event(
            event_type="cash.movement_recorded",
            entity_type="cash_movement",
            entity_id=movement.id,
            actor_user_id=operator_user_id,
            register_id=session.register_id,
            cash_session_id=session.id,
            occurred_at=movement.occurred_at,
            note=label,
            payload={
                "movement_type": movement_type,
                "category": category,
                "amount": value,
                "payment_method": payment_method,
            },
        )

    current_app.logger.info(
        "Cash movement %s recorded in session %s: %s %s (%s, %s)",
        movement.id, session_id, movement_type, value, category, payment_method,
    )
    return movement


def record_encashment(session_id: int, operator_user_id: int, amount, **kwargs) -> CashMovement:
    """Money in (membership fee, rental, fine...)."""
    return record_movement(session_id, operator_user_id, MOVEMENT_IN, amount, **kwargs)


def record_disbursement(session_id: int, operator_user_id: int, amount, **kwargs) -> CashMovement:
    """Money out (deposit refund, withdrawal...)."""
    return record_movement(session_id, operator_user_id, MOVEMENT_OUT, amount, **kwargs)


def void_movement(
    movement_id: int,
    operator_user_id: int,
    reason: str | None = None,
    *,
    session_id: int | None = None,
) -> CashMovement:
    """
    Soft-cancel a movement while its session is still open.

    Closed sessions are immutable: the remedy there is a compensating
    movement in a later session.
    """
    with unit_of_work():
        movement = db.session.get(CashMovement, movement_id)
        if not movement or (session_id is not None and movement.cash_session_id != session_id):
            raise NotFoundError(f"Movement {movement_id} not found")

        session = _get_session_locked(movement.cash_session_id)
        if session.status != SESSION_OPEN:
            raise InvalidStateError(f"Cannot void a movement of a {session.status} session (session {session.id})")
        if movement.status == MOVEMENT_VOIDED:
            raise InvalidStateError(f"Movement {movement_id} is already voided")
        if movement.bank_deposit_id is not None:
            raise BusinessRuleError(f"Movement {movement_id} is part of bank deposit {movement.bank_deposit_id}")

        movement.status = MOVEMENT_VOIDED
        movement.voided_at = utcnow()
        movement.voided_by_user_id = operator_user_id
        movement.void_reason = optional_text(reason, "reason", max_length=255)

        recompute_session_totals(session)

        append_audit_event(
            event_type="cash.movement_voided",
            entity_type="cash_movement",
            entity_id=movement.id,
            actor_user_id=operator_user_id,
            register_id=session.register_id,
            cash_session_id=session.id,
            occurred_at=movement.voided_at,
            note=reason,
            payload={"amount": movement.amount, "movement_type": movement.movement_type},
        )

    current_app.logger.info("Cash movement %s voided by user %s", movement_id, operator_user_id)
    return movement


def record_membership_payment_encashment(payment: MembershipPayment, operator_user_id: int) -> CashMovement | None:
    """
    Record a membership payment in the main register, if it is open.

    Returns None when no main register is configured or no session is
    open: cash tracking is optional and independent from bookkeeping.
    """
    code = current_app.config.get("MAIN_CASH_REGISTER_CODE", "CAISSE_PRINC")
    register = get_register_by_code(code)
    if not register:
        return None

    session = get_open_session(register.id)
    if not session:
        return None

    return record_encashment(
        session.id,
        operator_user_id,
        payment.amount_paid,
        category="membership",
        payment_method=payment.payment_method if payment.payment_method in PAYMENT_METHODS else "other",
        membership_payment_id=payment.id,
        member_user_id=payment.member_user_id,
        label=f"Membership payment {payment.id}",
    )


# =============================================================================
# AGGREGATES
# =============================================================================

def compute_session_totals(session_id: int) -> SessionTotals:
    """Totals over valid movements, overall and per payment method."""
    movements = (
        db.session.query(CashMovement.movement_type, CashMovement.payment_method, CashMovement.amount)
        .filter_by(cash_session_id=session_id, status=MOVEMENT_VALID)
        .all()
    )

    totals = SessionTotals()
    for movement_type, payment_method, amount in movements:
        amount = Decimal(amount)
        per_method = totals.by_payment_method.setdefault(payment_method, {"in": ZERO, "out": ZERO})
        if movement_type == MOVEMENT_IN:
            totals.total_in += amount
            per_method["in"] += amount
        else:
            totals.total_out += amount
            per_method["out"] += amount
        totals.movement_count += 1
    return totals


def recompute_session_totals(session: CashSession) -> SessionTotals:
    """Refresh the session's cached aggregates from its valid movements."""
    db.session.flush()
    totals = compute_session_totals(session.id)
    session.movement_count = totals.movement_count
    session.total_in = totals.total_in
    session.total_out = totals.total_out
    return totals


def theoretical_balance(session_id: int) -> Decimal:
    session = get_session(session_id)
    totals = compute_session_totals(session_id)
    return Decimal(session.opening_balance) + totals.net


# =============================================================================
# QUERIES
# =============================================================================

def get_session(session_id: int) -> CashSession:
    session = db.session.get(CashSession, session_id)
    if not session:
        raise NotFoundError(f"Session {session_id} not found")
    return session


def get_open_session(register_id: int) -> CashSession | None:
    """Get the currently open session for a register, if any."""
    return db.session.query(CashSession).filter_by(
        register_id=register_id,
        status=SESSION_OPEN,
    ).first()


def list_sessions(register_id: int, limit: int = 30, offset: int = 0) -> list[CashSession]:
    return (
        db.session.query(CashSession)
        .filter_by(register_id=register_id)
        .order_by(CashSession.opened_at.desc(), CashSession.id.desc())
        .limit(max(1, min(limit, 500)))
        .offset(max(0, offset))
        .all()
    )


def list_movements(session_id: int, include_voided: bool = False, limit: int = 100, offset: int = 0) -> list[CashMovement]:
    q = db.session.query(CashMovement).filter_by(cash_session_id=session_id)
    if not include_voided:
        q = q.filter_by(status=MOVEMENT_VALID)
    return (
        q.order_by(CashMovement.occurred_at.desc(), CashMovement.id.desc())
        .limit(max(1, min(limit, 500)))
        .offset(max(0, offset))
        .all()
    )


def register_statistics(register_id: int | None = None, date_from: datetime | None = None, date_to: datetime | None = None) -> dict:
    """Session count, totals and summed variance over a period (inclusive bounds)."""
    q = db.session.query(CashSession)
    if register_id is not None:
        q = q.filter(CashSession.register_id == register_id)
    if date_from is not None:
        q = q.filter(CashSession.opened_at >= date_from)
    if date_to is not None:
        q = q.filter(CashSession.opened_at <= date_to)

    stats = {
        "session_count": 0,
        "total_in": ZERO,
        "total_out": ZERO,
        "movement_count": 0,
        "total_variance": ZERO,
    }
    for session in q.all():
        stats["session_count"] += 1
        stats["total_in"] += Decimal(session.total_in or 0)
        stats["total_out"] += Decimal(session.total_out or 0)
        stats["movement_count"] += session.movement_count or 0
        stats["total_variance"] += Decimal(session.variance or 0)
    return stats


def _get_session_locked(session_id: int) -> CashSession:
    session = lock_for_update(db.session.query(CashSession).filter_by(id=session_id)).first()
    if not session:
        raise NotFoundError(f"Session {session_id} not found")
    return session


def _validate_count_detail(count_detail: dict | None) -> dict | None:
    """Denomination -> count, e.g. {"20.00": 3, "0.50": 4}."""
    if count_detail is None:
        return None
    if not isinstance(count_detail, dict):
        raise ValidationError("count_detail must be an object of denomination -> count")
    cleaned = {}
    for denomination, count in count_detail.items():
        parse_amount(denomination, "count_detail denomination")
        if isinstance(count, bool) or not isinstance(count, int) or count < 0:
            raise ValidationError(f"count_detail[{denomination}] must be a non-negative integer")
        cleaned[str(denomination)] = count
    return cleaned
