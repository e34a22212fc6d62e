# Overview: Bank deposit slips (remise en banque) grouping cash and cheque encashments.

"""
Bank Deposit Service

WHY: Cash and cheques collected in a register end up at the bank in
batches. A deposit slip records which encashments left the drawer
together, so none is deposited twice.

LIFECYCLE: preparing -> deposited -> validated
           preparing | deposited -> cancelled (movements released)
"""

from __future__ import annotations

from decimal import Decimal

from flask import current_app

from ..errors import BusinessRuleError, InvalidStateError, NotFoundError, ValidationError
from ..extensions import db
from ..models import BankDeposit, CashMovement, CashSession
from ..models.cash import MOVEMENT_IN, MOVEMENT_VALID
from ..time_utils import fiscal_year_of, utcnow
from ..validation import optional_text, require_id
from . import sequence_service
from .audit_service import append_audit_event
from .cash_service import get_register
from .concurrency import lock_for_update, unit_of_work


DEPOSIT_PREFIX = "REM"
DEPOSITABLE_METHODS = ("cash", "cheque")

STATUS_PREPARING = "preparing"
STATUS_DEPOSITED = "deposited"
STATUS_VALIDATED = "validated"
STATUS_CANCELLED = "cancelled"


def eligible_deposit_movements(register_id: int) -> list[CashMovement]:
    """Valid cash/cheque encashments of a register not yet in a deposit."""
    return (
        _eligible_query(register_id)
        .order_by(CashMovement.occurred_at, CashMovement.id)
        .all()
    )


def create_bank_deposit(
    register_id: int,
    movement_ids: list[int],
    operator_user_id: int,
    comment: str | None = None,
    *,
    bank_account: str | None = None,
) -> BankDeposit:
    """
    Group encashments into a new deposit slip numbered REM-YYYY-NNNNNN.

    Raises:
        ValidationError: no movement given
        BusinessRuleError: a movement is not eligible (voided, out, card,
            other register, already deposited)
    """
    if movement_ids is not None and not isinstance(movement_ids, (list, tuple)):
        raise ValidationError("movement_ids must be a list")
    ids = sorted({require_id(m, "movement_ids") for m in movement_ids or []})
    if not ids:
        raise ValidationError("At least one movement is required")

    with unit_of_work():
        register = get_register(register_id)
        movements = lock_for_update(
            _eligible_query(register_id).filter(CashMovement.id.in_(ids))
        ).all()

        found = {m.id for m in movements}
        missing = [i for i in ids if i not in found]
        if missing:
            raise BusinessRuleError(
                f"Movements not eligible for a deposit on register '{register.code}': {missing}",
                movement_ids=missing,
            )

        total = Decimal("0.00")
        by_method: dict[str, Decimal] = {}
        for movement in movements:
            amount = Decimal(movement.amount)
            total += amount
            by_method[movement.payment_method] = by_method.get(movement.payment_method, Decimal("0.00")) + amount

        now = utcnow()
        deposit = BankDeposit(
            number=sequence_service.next_piece_number(DEPOSIT_PREFIX, fiscal_year_of(now)),
            register_id=register.id,
            status=STATUS_PREPARING,
            total_amount=total,
            movement_count=len(movements),
            totals_by_method={method: str(value) for method, value in by_method.items()},
            bank_account=optional_text(bank_account, "bank_account", max_length=64),
            comment=comment,
            operator_user_id=operator_user_id,
        )
        db.session.add(deposit)
        db.session.flush()

        for movement in movements:
            movement.bank_deposit_id = deposit.id

        append_audit_event(
            event_type="cash.bank_deposit_created",
            entity_type="bank_deposit",
            entity_id=deposit.id,
            actor_user_id=operator_user_id,
            register_id=register.id,
            occurred_at=now,
            note=deposit.number,
            payload={"total_amount": total, "movement_ids": ids},
        )

    current_app.logger.info(
        "Bank deposit %s created for register %s: %s movement(s), total %s",
        deposit.number, register_id, len(ids), total,
    )
    return deposit


def mark_deposited(deposit_id: int, operator_user_id: int, slip_reference: str | None = None) -> BankDeposit:
    """The slip was handed to the bank."""
    with unit_of_work():
        deposit = _get_locked(deposit_id)
        _require_status(deposit, STATUS_PREPARING, "mark as deposited")
        deposit.status = STATUS_DEPOSITED
        deposit.deposited_at = utcnow()
        deposit.slip_reference = optional_text(slip_reference, "slip_reference", max_length=64)
        _audit(deposit, "cash.bank_deposit_deposited", operator_user_id)

    current_app.logger.info("Bank deposit %s marked deposited", deposit.number)
    return deposit


def validate_deposit(deposit_id: int, operator_user_id: int) -> BankDeposit:
    """The bank credited the account. Terminal."""
    with unit_of_work():
        deposit = _get_locked(deposit_id)
        _require_status(deposit, STATUS_DEPOSITED, "validate")
        deposit.status = STATUS_VALIDATED
        deposit.validated_at = utcnow()
        deposit.validated_by_user_id = operator_user_id
        _audit(deposit, "cash.bank_deposit_validated", operator_user_id)

    current_app.logger.info("Bank deposit %s validated by user %s", deposit.number, operator_user_id)
    return deposit


def cancel_deposit(deposit_id: int, operator_user_id: int, reason: str | None = None) -> BankDeposit:
    """Cancel a slip that the bank has not validated; its movements become eligible again."""
    with unit_of_work():
        deposit = _get_locked(deposit_id)
        if deposit.status in (STATUS_VALIDATED, STATUS_CANCELLED):
            raise InvalidStateError(f"Cannot cancel a {deposit.status} deposit ({deposit.number})")

        released = db.session.query(CashMovement).filter_by(bank_deposit_id=deposit.id).all()
        for movement in released:
            movement.bank_deposit_id = None

        deposit.status = STATUS_CANCELLED
        deposit.cancelled_at = utcnow()
        _audit(deposit, "cash.bank_deposit_cancelled", operator_user_id, note=reason)

    current_app.logger.info("Bank deposit %s cancelled, %s movement(s) released", deposit.number, len(released))
    return deposit


def get_deposit(deposit_id: int) -> BankDeposit:
    deposit = db.session.get(BankDeposit, deposit_id)
    if not deposit:
        raise NotFoundError(f"Bank deposit {deposit_id} not found")
    return deposit


def list_deposits(register_id: int | None = None, status: str | None = None, limit: int = 50) -> list[BankDeposit]:
    q = db.session.query(BankDeposit)
    if register_id is not None:
        q = q.filter_by(register_id=register_id)
    if status:
        q = q.filter_by(status=status)
    return q.order_by(BankDeposit.id.desc()).limit(max(1, min(limit, 500))).all()


def _eligible_query(register_id: int):
    return (
        db.session.query(CashMovement)
        .join(CashSession, CashMovement.cash_session_id == CashSession.id)
        .filter(
            CashSession.register_id == register_id,
            CashMovement.movement_type == MOVEMENT_IN,
            CashMovement.status == MOVEMENT_VALID,
            CashMovement.payment_method.in_(DEPOSITABLE_METHODS),
            CashMovement.bank_deposit_id.is_(None),
        )
    )


def _get_locked(deposit_id: int) -> BankDeposit:
    deposit = lock_for_update(db.session.query(BankDeposit).filter_by(id=deposit_id)).first()
    if not deposit:
        raise NotFoundError(f"Bank deposit {deposit_id} not found")
    return deposit


def _require_status(deposit: BankDeposit, expected: str, action: str) -> None:
    if deposit.status != expected:
        raise InvalidStateError(f"Cannot {action} deposit {deposit.number}: status is {deposit.status}, expected {expected}")


def _audit(deposit: BankDeposit, event_type: str, operator_user_id: int, note: str | None = None) -> None:
    append_audit_event(
        event_type=event_type,
        entity_type="bank_deposit",
        entity_id=deposit.id,
        actor_user_id=operator_user_id,
        register_id=deposit.register_id,
        note=note or deposit.number,
        payload={"status": deposit.status},
    )
