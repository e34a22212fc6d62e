# Overview: Membership fee payments and their bookkeeping / cash side effects.

"""
Membership Payment Service

WHY: A membership fee is the most common business event feeding both
the ledger and the cash drawer.

DESIGN:
- The payment itself commits first.
- Posting to the ledger and recording the encashment are separate
  transactions: cash tracking and statutory bookkeeping have different
  triggers, and a failure on one side never undoes the payment or the
  other side. Unposted payments are picked up later (generate_many).
- Cancelling a posted payment writes a contra-piece in the same
  transaction as the status change.
"""

from __future__ import annotations

from datetime import date

from flask import current_app

from ..errors import InvalidStateError, LudocomptaError, NotFoundError, ValidationError
from ..extensions import db
from ..models import MembershipPayment, User
from ..time_utils import today, utcnow
from ..validation import coerce_date, optional_text, parse_amount, require_choice
from . import cash_service, ledger_service
from .audit_service import append_audit_event
from .concurrency import lock_for_update, unit_of_work


def record_membership_payment(
    member_user_id: int,
    amount,
    *,
    payment_method: str = "cash",
    payment_date: date | str | None = None,
    period_start: date | str | None = None,
    period_end: date | str | None = None,
    operator_user_id: int | None = None,
    post_to_ledger: bool = True,
    record_cash: bool = True,
) -> MembershipPayment:
    """Record a fee, then (independently) post it and put it in the main register."""
    value = parse_amount(amount, "amount")
    require_choice(payment_method, cash_service.PAYMENT_METHODS, "payment_method")
    paid_on = coerce_date(payment_date, "payment_date") if payment_date is not None else today()
    start = coerce_date(period_start, "period_start") if period_start is not None else None
    end = coerce_date(period_end, "period_end") if period_end is not None else None
    if start and end and end < start:
        raise ValidationError("period_end must not be before period_start")

    if not db.session.get(User, member_user_id):
        raise NotFoundError(f"Member {member_user_id} not found")

    with unit_of_work():
        payment = MembershipPayment(
            member_user_id=member_user_id,
            amount_paid=value,
            payment_method=payment_method,
            payment_date=paid_on,
            period_start=start,
            period_end=end,
            status="active",
            created_by_user_id=operator_user_id,
        )
        db.session.add(payment)
        db.session.flush()

        append_audit_event(
            event_type="membership.payment_recorded",
            entity_type="membership_payment",
            entity_id=payment.id,
            actor_user_id=operator_user_id,
            payload={"amount": value, "payment_method": payment_method},
        )

    current_app.logger.info("Membership payment %s recorded for member %s: %s", payment.id, member_user_id, value)

    if post_to_ledger:
        try:
            ledger_service.generate_for_membership_payment(payment.id, operator_user_id=operator_user_id)
        except LudocomptaError as exc:
            current_app.logger.warning("Membership payment %s left unposted: %s", payment.id, exc.message)

    if record_cash and operator_user_id is not None:
        try:
            cash_service.record_membership_payment_encashment(payment, operator_user_id)
        except LudocomptaError as exc:
            current_app.logger.warning("Membership payment %s not recorded in the register: %s", payment.id, exc.message)

    return payment


def cancel_membership_payment(payment_id: int, operator_user_id: int, reason: str | None = None) -> MembershipPayment:
    """
    Cancel a payment. A posted payment gets a contra-piece; the original
    entries stay untouched. Refunding the member in cash is a separate
    disbursement.
    """
    reason = optional_text(reason, "reason", max_length=255)

    with unit_of_work():
        payment = lock_for_update(db.session.query(MembershipPayment).filter_by(id=payment_id)).first()
        if not payment:
            raise NotFoundError(f"Membership payment {payment_id} not found")
        if payment.status == "cancelled":
            raise InvalidStateError(f"Membership payment {payment_id} is already cancelled")

        posted = ledger_service.MembershipPaymentEvent(payment).posted_entries().first()
        if posted is not None:
            ledger_service.generate_reversal(
                posted.journal_code,
                posted.fiscal_year,
                posted.piece_number,
                reason or f"cancellation of membership payment {payment_id}",
                operator_user_id=operator_user_id,
                commit=False,
            )

        payment.status = "cancelled"
        payment.cancelled_at = utcnow()
        payment.cancel_reason = reason

        append_audit_event(
            event_type="membership.payment_cancelled",
            entity_type="membership_payment",
            entity_id=payment.id,
            actor_user_id=operator_user_id,
            note=reason,
        )

    current_app.logger.info("Membership payment %s cancelled by user %s", payment_id, operator_user_id)
    return payment


def get_membership_payment(payment_id: int) -> MembershipPayment:
    payment = db.session.get(MembershipPayment, payment_id)
    if not payment:
        raise NotFoundError(f"Membership payment {payment_id} not found")
    return payment


def list_unposted_payments(limit: int = 500) -> list[MembershipPayment]:
    """Active payments without ledger entries yet."""
    return (
        db.session.query(MembershipPayment)
        .filter(MembershipPayment.status == "active", MembershipPayment.posted_at.is_(None))
        .order_by(MembershipPayment.payment_date, MembershipPayment.id)
        .limit(max(1, min(limit, 5000)))
        .all()
    )
