# Overview: Double-entry ledger generator: turns business events into balanced, numbered accounting pieces.

"""
Ledger Generator

INVARIANTS (authoritative):
- A piece is identified by (journal_code, fiscal_year, piece_number).
- For every piece, sum(debit) == sum(credit), exact Decimal comparison.
- The piece number is drawn from the sequence counter inside the same
  transaction as the entries: either all entries and the numbering
  advance commit, or none do.
- Entries are never updated or deleted. Cancelling a posted event means
  writing a contra-piece (debit and credit swapped) under a new number.
- A business event is posted at most once (AlreadyPostedError otherwise).

DESIGN:
Each kind of business event is a small adapter exposing the same
capability, `to_ledger_accounts(resolver) -> PiecePlan | None`. The
generator only sees plans: it checks balance, numbers the piece and
writes the rows. Adding an event kind never touches `generate`.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal

from flask import current_app
from sqlalchemy import func

from ..errors import (
    AlreadyPostedError,
    BusinessRuleError,
    LudocomptaError,
    NotFoundError,
    UnbalancedPieceError,
    ValidationError,
)
from ..extensions import db
from ..models import DisposalItem, DisposalLot, LedgerEntry, MembershipPayment
from ..time_utils import fiscal_year_of, today
from ..validation import require_text
from . import sequence_service
from .account_mapping_service import EVENT_MEMBERSHIP, AccountMappingResolver
from .audit_service import append_audit_event
from .concurrency import lock_for_update, unit_of_work


ZERO = Decimal("0.00")

REVERSAL_PREFIX = "REV"
REINSTATEMENT_PREFIX = "REI"

EVENT_DISPOSAL = "disposal"
EVENT_REINSTATEMENT = "reinstatement"
EVENT_REVERSAL = "reversal"


# =============================================================================
# PIECE PLANS
# =============================================================================

@dataclass(frozen=True)
class PieceLine:
    account_number: str
    debit: Decimal = ZERO
    credit: Decimal = ZERO
    auxiliary_account: str | None = None
    account_label: str | None = None
    label: str | None = None


@dataclass
class PiecePlan:
    """Everything needed to write one piece, before it is numbered."""

    event_type: str
    journal_code: str
    piece_prefix: str
    entry_date: date
    label: str
    lines: list[PieceLine]
    analytic_section: str | None = None
    reverses_piece: str | None = None
    membership_payment_id: int | None = None
    disposal_lot_id: int | None = None
    disposal_item_id: int | None = None

    @property
    def fiscal_year(self) -> int:
        return fiscal_year_of(self.entry_date)

    def totals(self) -> tuple[Decimal, Decimal]:
        debit = sum((line.debit for line in self.lines), ZERO)
        credit = sum((line.credit for line in self.lines), ZERO)
        return debit, credit

    def check_balanced(self) -> None:
        """Reject malformed or unbalanced plans before anything is written."""
        if len(self.lines) < 2:
            raise UnbalancedPieceError("A piece needs at least two lines", lines=len(self.lines))

        for i, line in enumerate(self.lines, start=1):
            if line.debit < 0 or line.credit < 0:
                raise UnbalancedPieceError(f"Line {i} ({line.account_number}) has a negative amount")
            if (line.debit == 0) == (line.credit == 0):
                raise UnbalancedPieceError(
                    f"Line {i} ({line.account_number}) must carry exactly one non-zero side"
                )

        debit, credit = self.totals()
        if debit != credit:
            raise UnbalancedPieceError(
                f"Piece does not balance: debit {debit} != credit {credit}",
                debit=str(debit),
                credit=str(credit),
            )


# =============================================================================
# BUSINESS EVENTS
# =============================================================================

class LedgerEvent:
    """Base adapter between a business record and the generator."""

    entity_type = "event"

    @property
    def entity_id(self) -> int:
        raise NotImplementedError

    def lock(self) -> None:
        """Re-read the business row under a row lock (serializes double posting)."""

    def existing_piece_number(self) -> str | None:
        return None

    def assign_piece_number(self, piece_number: str, entry_date: date) -> None:
        """Persist the piece number onto the business record."""

    def posted_entries(self):
        raise NotImplementedError

    def to_ledger_accounts(self, resolver: AccountMappingResolver) -> PiecePlan | None:
        raise NotImplementedError


class MembershipPaymentEvent(LedgerEvent):
    """Membership fee: debit the encashment account, credit the membership product."""

    entity_type = "membership_payment"

    def __init__(self, payment: MembershipPayment):
        self.payment = payment

    @property
    def entity_id(self) -> int:
        return self.payment.id

    def lock(self) -> None:
        self.payment = (
            lock_for_update(db.session.query(MembershipPayment).filter_by(id=self.payment.id))
            .populate_existing()
            .one()
        )

    def existing_piece_number(self) -> str | None:
        return self.payment.piece_number

    def assign_piece_number(self, piece_number: str, entry_date: date) -> None:
        self.payment.piece_number = piece_number
        self.payment.posted_at = entry_date

    def posted_entries(self):
        return db.session.query(LedgerEntry).filter(
            LedgerEntry.membership_payment_id == self.payment.id,
            LedgerEntry.reverses_piece.is_(None),
        )

    def to_ledger_accounts(self, resolver: AccountMappingResolver) -> PiecePlan | None:
        payment = self.payment
        if payment.status == "cancelled":
            raise BusinessRuleError(f"Membership payment {payment.id} is cancelled")

        amount = Decimal(payment.amount_paid)
        mapping = resolver.resolve(EVENT_MEMBERSHIP)
        if not mapping.generate_entries or amount <= 0:
            return None

        target = resolver.resolve_encashment_account(payment.payment_method)
        auxiliary = f"CLI{payment.member_user_id:06d}" if payment.member_user_id else None
        member_name = payment.member.display_name if payment.member else f"member {payment.member_user_id}"

        label = f"Membership fee {member_name}"
        if payment.period_start and payment.period_end:
            label += f" - {payment.period_start.isoformat()} to {payment.period_end.isoformat()}"

        return PiecePlan(
            event_type=EVENT_MEMBERSHIP,
            journal_code=mapping.journal_code,
            piece_prefix=mapping.piece_prefix,
            entry_date=payment.payment_date,
            label=label[:255],
            analytic_section=mapping.analytic_section,
            membership_payment_id=payment.id,
            lines=[
                PieceLine(
                    target.account_number,
                    debit=amount,
                    auxiliary_account=auxiliary,
                    account_label=target.account_label,
                ),
                PieceLine(
                    mapping.product_account,
                    credit=amount,
                    auxiliary_account=auxiliary,
                    account_label=mapping.product_account_label,
                ),
            ],
        )


class DisposalLotEvent(LedgerEvent):
    """Exported disposal lot: debit the type's outflow account, credit stock."""

    entity_type = "disposal_lot"

    def __init__(self, lot: DisposalLot):
        self.lot = lot

    @property
    def entity_id(self) -> int:
        return self.lot.id

    def lock(self) -> None:
        self.lot = (
            lock_for_update(db.session.query(DisposalLot).filter_by(id=self.lot.id))
            .populate_existing()
            .one()
        )

    def existing_piece_number(self) -> str | None:
        return self.lot.piece_number

    def assign_piece_number(self, piece_number: str, entry_date: date) -> None:
        self.lot.piece_number = piece_number

    def posted_entries(self):
        return db.session.query(LedgerEntry).filter(
            LedgerEntry.disposal_lot_id == self.lot.id,
            LedgerEntry.disposal_item_id.is_(None),
            LedgerEntry.reverses_piece.is_(None),
        )

    def to_ledger_accounts(self, resolver: AccountMappingResolver) -> PiecePlan | None:
        lot = self.lot
        disposal_type = lot.disposal_type
        value = Decimal(lot.total_value or 0)
        # No outflow account configured: the type is tracked but never posted
        if not disposal_type.generate_entries or not disposal_type.outflow_account or value <= 0:
            return None

        return PiecePlan(
            event_type=EVENT_DISPOSAL,
            journal_code=disposal_type.journal_code,
            piece_prefix=disposal_type.piece_prefix,
            entry_date=lot.disposal_date,
            label=f"Disposal {disposal_type.label} - lot {lot.number}"[:255],
            disposal_lot_id=lot.id,
            lines=[
                PieceLine(disposal_type.outflow_account, debit=value),
                PieceLine(resolver.stock_account(), credit=value),
            ],
        )


class DisposalItemReinstatementEvent(LedgerEvent):
    """Item returned to stock after its lot was posted: stock back, outflow cancelled."""

    entity_type = "disposal_item"

    def __init__(self, item: DisposalItem, reinstatement_date: date | None = None):
        self.item = item
        self.reinstatement_date = reinstatement_date or today()

    @property
    def entity_id(self) -> int:
        return self.item.id

    def posted_entries(self):
        return db.session.query(LedgerEntry).filter(LedgerEntry.disposal_item_id == self.item.id)

    def to_ledger_accounts(self, resolver: AccountMappingResolver) -> PiecePlan | None:
        item = self.item
        lot = item.lot
        disposal_type = lot.disposal_type
        value = Decimal(item.value or 0)
        if not lot.piece_number or not disposal_type.outflow_account or value <= 0:
            return None

        return PiecePlan(
            event_type=EVENT_REINSTATEMENT,
            journal_code=disposal_type.journal_code,
            piece_prefix=REINSTATEMENT_PREFIX,
            entry_date=self.reinstatement_date,
            label=f"Reinstatement {item.item_type} #{item.item_id} - lot {lot.number}"[:255],
            reverses_piece=lot.piece_number,
            disposal_lot_id=lot.id,
            disposal_item_id=item.id,
            lines=[
                PieceLine(resolver.stock_account(), debit=value),
                PieceLine(disposal_type.outflow_account, credit=value),
            ],
        )


class ReversalEvent(LedgerEvent):
    """Contra-piece of an existing piece: same lines, debit and credit swapped."""

    entity_type = "ledger_piece"

    def __init__(self, journal_code: str, fiscal_year: int, piece_number: str, reason: str | None = None,
                 reversal_date: date | None = None):
        self.journal_code = journal_code
        self.fiscal_year = fiscal_year
        self.piece_number = piece_number
        self.reason = reason
        self.reversal_date = reversal_date or today()
        self._original: list[LedgerEntry] | None = None

    @property
    def original_entries(self) -> list[LedgerEntry]:
        if self._original is None:
            self._original = entries_for_piece(self.journal_code, self.fiscal_year, self.piece_number)
            if not self._original:
                raise NotFoundError(
                    f"Piece {self.journal_code}/{self.fiscal_year}/{self.piece_number} not found"
                )
        return self._original

    @property
    def entity_id(self) -> int:
        return self.original_entries[0].id

    def lock(self) -> None:
        # Lock the original lines: racing reversals of one piece queue here
        self._original = (
            lock_for_update(
                db.session.query(LedgerEntry).filter_by(
                    journal_code=self.journal_code,
                    fiscal_year=self.fiscal_year,
                    piece_number=self.piece_number,
                )
            )
            .order_by(LedgerEntry.id)
            .all()
        )
        if not self._original:
            raise NotFoundError(f"Piece {self.journal_code}/{self.fiscal_year}/{self.piece_number} not found")

    def posted_entries(self):
        return db.session.query(LedgerEntry).filter(
            LedgerEntry.journal_code == self.journal_code,
            LedgerEntry.reverses_piece == self.piece_number,
            LedgerEntry.event_type == EVENT_REVERSAL,
        )

    def to_ledger_accounts(self, resolver: AccountMappingResolver) -> PiecePlan:
        original = self.original_entries
        first = original[0]

        label = f"Reversal of {self.piece_number}"
        if self.reason:
            label += f": {self.reason}"

        return PiecePlan(
            event_type=EVENT_REVERSAL,
            journal_code=self.journal_code,
            piece_prefix=REVERSAL_PREFIX,
            entry_date=self.reversal_date,
            label=label[:255],
            analytic_section=first.analytic_section,
            reverses_piece=self.piece_number,
            membership_payment_id=first.membership_payment_id,
            disposal_lot_id=first.disposal_lot_id,
            disposal_item_id=first.disposal_item_id,
            lines=[
                PieceLine(
                    entry.account_number,
                    debit=Decimal(entry.credit),
                    credit=Decimal(entry.debit),
                    auxiliary_account=entry.auxiliary_account,
                    account_label=entry.account_label,
                )
                for entry in original
            ],
        )


# =============================================================================
# GENERATION
# =============================================================================

def generate(
    event: LedgerEvent,
    *,
    resolver: AccountMappingResolver | None = None,
    operator_user_id: int | None = None,
    commit: bool = True,
) -> list[LedgerEntry]:
    """
    Post a business event as one balanced piece.

    Returns the created entries ([] when the event has nothing to post,
    e.g. a disposal type without outflow account).

    Raises:
        AlreadyPostedError: entries already exist for this event
        UnbalancedPieceError: the event's plan does not net to zero
    """
    resolver = resolver or AccountMappingResolver()

    with unit_of_work(commit=commit):
        event.lock()
        if event.posted_entries().first() is not None:
            raise AlreadyPostedError(
                f"{event.entity_type} {event.entity_id} is already posted",
                piece_number=event.existing_piece_number(),
            )

        plan = event.to_ledger_accounts(resolver)
        if plan is None:
            return []
        plan.check_balanced()

        fiscal_year = plan.fiscal_year
        # A number recorded without entries (earlier failed posting) is reused, never reissued
        piece_number = event.existing_piece_number()
        if not piece_number:
            piece_number = sequence_service.next_piece_number(plan.piece_prefix, fiscal_year)
            # The counter row is now held until commit; re-check against postings committed meanwhile
            if event.posted_entries().first() is not None:
                raise AlreadyPostedError(
                    f"{event.entity_type} {event.entity_id} is already posted",
                    piece_number=event.existing_piece_number(),
                )
        event.assign_piece_number(piece_number, plan.entry_date)

        journal_label = resolver.journal_label(plan.journal_code)
        entry_number = f"{plan.journal_code}{fiscal_year}-{piece_number}"

        entries = [
            LedgerEntry(
                journal_code=plan.journal_code,
                journal_label=journal_label,
                fiscal_year=fiscal_year,
                piece_number=piece_number,
                entry_number=entry_number,
                entry_date=plan.entry_date,
                account_number=line.account_number,
                account_label=line.account_label or resolver.account_label(line.account_number),
                auxiliary_account=line.auxiliary_account,
                label=line.label or plan.label,
                debit=line.debit,
                credit=line.credit,
                analytic_section=plan.analytic_section,
                event_type=plan.event_type,
                membership_payment_id=plan.membership_payment_id,
                disposal_lot_id=plan.disposal_lot_id,
                disposal_item_id=plan.disposal_item_id,
                reverses_piece=plan.reverses_piece,
            )
            for line in plan.lines
        ]
        db.session.add_all(entries)
        db.session.flush()

        total, _ = plan.totals()
        append_audit_event(
            event_type="ledger.piece_reversed" if plan.reverses_piece else "ledger.piece_generated",
            entity_type=event.entity_type,
            entity_id=event.entity_id,
            actor_user_id=operator_user_id,
            note=plan.label,
            payload={
                "journal_code": plan.journal_code,
                "fiscal_year": fiscal_year,
                "piece_number": piece_number,
                "reverses_piece": plan.reverses_piece,
                "total": total,
                "lines": len(entries),
            },
        )

    current_app.logger.info(
        "Ledger piece %s/%s/%s generated for %s %s (%s lines, total %s)",
        plan.journal_code, fiscal_year, piece_number, event.entity_type, event.entity_id, len(entries), total,
    )
    return entries


def generate_for_membership_payment(payment_id: int, *, operator_user_id: int | None = None,
                                    commit: bool = True) -> list[LedgerEntry]:
    payment = db.session.get(MembershipPayment, payment_id)
    if not payment:
        raise NotFoundError(f"Membership payment {payment_id} not found")
    return generate(MembershipPaymentEvent(payment), operator_user_id=operator_user_id, commit=commit)


def generate_reversal(
    journal_code: str,
    fiscal_year: int,
    piece_number: str,
    reason: str | None = None,
    *,
    operator_user_id: int | None = None,
    reversal_date: date | None = None,
    commit: bool = True,
) -> list[LedgerEntry]:
    """
    Write the contra-piece of an existing piece under a new REV number.

    The original entries are left untouched. A piece can be reversed once.
    """
    journal_code = require_text(journal_code, "journal_code", max_length=8)
    piece_number = require_text(piece_number, "piece_number", max_length=32)
    if not isinstance(fiscal_year, int) or isinstance(fiscal_year, bool):
        raise ValidationError("fiscal_year must be an integer")

    event = ReversalEvent(journal_code, fiscal_year, piece_number, reason, reversal_date)
    return generate(event, operator_user_id=operator_user_id, commit=commit)


def generate_many(payment_ids: list[int], *, operator_user_id: int | None = None) -> dict:
    """
    Post several membership payments, each in its own transaction.

    One failure never blocks the others.
    """
    results = {"succeeded": [], "failed": []}
    for payment_id in payment_ids:
        try:
            entries = generate_for_membership_payment(payment_id, operator_user_id=operator_user_id)
        except LudocomptaError as exc:
            current_app.logger.warning("Posting membership payment %s failed: %s", payment_id, exc.message)
            results["failed"].append({"id": payment_id, "error": exc.message, "code": exc.code})
            continue
        results["succeeded"].append({
            "id": payment_id,
            "piece_number": entries[0].piece_number if entries else None,
            "entries": len(entries),
        })
    return results


# =============================================================================
# QUERIES
# =============================================================================

def has_entries(event: LedgerEvent) -> bool:
    return event.posted_entries().first() is not None


def entries_for_piece(journal_code: str, fiscal_year: int, piece_number: str) -> list[LedgerEntry]:
    return (
        db.session.query(LedgerEntry)
        .filter_by(journal_code=journal_code, fiscal_year=fiscal_year, piece_number=piece_number)
        .order_by(LedgerEntry.id)
        .all()
    )


def entries_for_membership_payment(payment_id: int) -> list[LedgerEntry]:
    """Original piece and any contra-piece for a payment."""
    return (
        db.session.query(LedgerEntry)
        .filter_by(membership_payment_id=payment_id)
        .order_by(LedgerEntry.id)
        .all()
    )


def piece_balance(journal_code: str, fiscal_year: int, piece_number: str) -> Decimal:
    """sum(debit) - sum(credit); zero for every piece this module writes."""
    debit, credit = (
        db.session.query(
            func.coalesce(func.sum(LedgerEntry.debit), 0),
            func.coalesce(func.sum(LedgerEntry.credit), 0),
        )
        .filter_by(journal_code=journal_code, fiscal_year=fiscal_year, piece_number=piece_number)
        .one()
    )
    return Decimal(debit) - Decimal(credit)
