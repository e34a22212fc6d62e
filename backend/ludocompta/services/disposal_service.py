# Overview: Inventory disposal lots (desherbage) and their ledger postings.

"""
Disposal Service

WHY: Games and books leaving the collection (scrapped, donated, sold)
reduce the stock value; the accounting side is an outflow piece.

LIFECYCLE: draft -> validated -> exported
           draft -> cancelled

DESIGN PRINCIPLES:
- Items are added or removed only while the lot is a draft
- Export posts the lot once (same transaction as the status change)
- An item returned to stock after export gets its own contra-piece (REI)
"""

from __future__ import annotations

from datetime import date
from decimal import Decimal

from flask import current_app
from sqlalchemy import func

from ..errors import BusinessRuleError, ConflictError, InvalidStateError, NotFoundError
from ..extensions import db
from ..models import DisposalItem, DisposalLot, DisposalType
from ..time_utils import fiscal_year_of, today, utcnow
from ..validation import coerce_date, optional_text, parse_amount, require_choice, require_id, require_text
from . import ledger_service, sequence_service
from .audit_service import append_audit_event
from .concurrency import lock_for_update, unit_of_work


LOT_PREFIX = "LOT"
LOT_NUMBER_PAD = 4

STATUS_DRAFT = "draft"
STATUS_VALIDATED = "validated"
STATUS_EXPORTED = "exported"
STATUS_CANCELLED = "cancelled"

ITEM_TYPES = ["game", "book", "film", "record"]


# =============================================================================
# DISPOSAL TYPES
# =============================================================================

def create_disposal_type(
    code: str,
    label: str,
    *,
    outflow_account: str | None = None,
    journal_code: str = "OD",
    piece_prefix: str = "SOR",
    generate_entries: bool = True,
) -> DisposalType:
    code = require_text(code, "code", max_length=32)
    if db.session.query(DisposalType).filter_by(code=code).first():
        raise ConflictError(f"Disposal type '{code}' already exists")

    disposal_type = DisposalType(
        code=code,
        label=require_text(label, "label", max_length=100),
        outflow_account=optional_text(outflow_account, "outflow_account", max_length=20),
        journal_code=require_text(journal_code, "journal_code", max_length=8),
        piece_prefix=require_text(piece_prefix, "piece_prefix", max_length=16),
        generate_entries=generate_entries,
        is_active=True,
    )
    db.session.add(disposal_type)
    db.session.commit()
    return disposal_type


# =============================================================================
# LOTS
# =============================================================================

def create_disposal_lot(
    disposal_type_id: int,
    created_by_user_id: int,
    *,
    disposal_date: date | str | None = None,
    destination: str | None = None,
    comment: str | None = None,
) -> DisposalLot:
    """Open a draft lot numbered LOT-YYYY-NNNN."""
    disposal_type = db.session.get(DisposalType, disposal_type_id)
    if not disposal_type or not disposal_type.is_active:
        raise NotFoundError(f"Disposal type {disposal_type_id} not found")
    when = coerce_date(disposal_date, "disposal_date") if disposal_date is not None else today()

    with unit_of_work():
        fiscal_year = fiscal_year_of(when)
        number = sequence_service.next_piece_number(LOT_PREFIX, fiscal_year, pad=LOT_NUMBER_PAD)
        lot = DisposalLot(
            number=number,
            disposal_type_id=disposal_type.id,
            disposal_date=when,
            destination=optional_text(destination, "destination", max_length=255),
            comment=comment,
            total_value=Decimal("0.00"),
            item_count=0,
            status=STATUS_DRAFT,
            created_by_user_id=created_by_user_id,
        )
        db.session.add(lot)
        db.session.flush()
        _audit(lot, "disposal.lot_created", created_by_user_id)

    current_app.logger.info("Disposal lot %s created (type %s)", lot.number, disposal_type.code)
    return lot


def add_disposal_item(lot_id: int, item_type: str, item_id, value=0) -> DisposalItem:
    require_choice(item_type, ITEM_TYPES, "item_type")
    item_id = require_id(item_id, "item_id")
    amount = parse_amount(value, "value", allow_zero=True)

    with unit_of_work():
        lot = _get_lot_locked(lot_id)
        _require_status(lot, STATUS_DRAFT, "add items to")

        duplicate = db.session.query(DisposalItem).filter_by(
            disposal_lot_id=lot.id, item_type=item_type, item_id=item_id,
        ).first()
        if duplicate:
            raise ConflictError(f"{item_type} #{item_id} is already in lot {lot.number}")

        item = DisposalItem(disposal_lot_id=lot.id, item_type=item_type, item_id=item_id, value=amount)
        db.session.add(item)
        db.session.flush()
        _recompute_lot_totals(lot)

    return item


def remove_disposal_item(lot_id: int, item_id: int) -> DisposalLot:
    with unit_of_work():
        lot = _get_lot_locked(lot_id)
        _require_status(lot, STATUS_DRAFT, "remove items from")
        item = db.session.query(DisposalItem).filter_by(id=item_id, disposal_lot_id=lot.id).first()
        if not item:
            raise NotFoundError(f"Item {item_id} not found in lot {lot.number}")
        db.session.delete(item)
        db.session.flush()
        _recompute_lot_totals(lot)
    return lot


def validate_disposal_lot(lot_id: int, operator_user_id: int) -> DisposalLot:
    with unit_of_work():
        lot = _get_lot_locked(lot_id)
        _require_status(lot, STATUS_DRAFT, "validate")
        if not lot.item_count:
            raise BusinessRuleError(f"Lot {lot.number} has no items")

        lot.status = STATUS_VALIDATED
        lot.validated_at = utcnow()
        lot.validated_by_user_id = operator_user_id
        _audit(lot, "disposal.lot_validated", operator_user_id)

    current_app.logger.info("Disposal lot %s validated by user %s", lot.number, operator_user_id)
    return lot


def export_disposal_lot(lot_id: int, operator_user_id: int) -> DisposalLot:
    """
    Mark a validated lot exported and post it, atomically.

    A type without outflow account exports without entries.
    """
    with unit_of_work():
        lot = _get_lot_locked(lot_id)
        _require_status(lot, STATUS_VALIDATED, "export")

        entries = ledger_service.generate(
            ledger_service.DisposalLotEvent(lot),
            operator_user_id=operator_user_id,
            commit=False,
        )

        lot.status = STATUS_EXPORTED
        lot.exported_at = utcnow()
        _audit(lot, "disposal.lot_exported", operator_user_id, piece_number=lot.piece_number, entries=len(entries))

    current_app.logger.info("Disposal lot %s exported (piece %s)", lot.number, lot.piece_number)
    return lot


def cancel_disposal_lot(lot_id: int, operator_user_id: int) -> DisposalLot:
    with unit_of_work():
        lot = _get_lot_locked(lot_id)
        _require_status(lot, STATUS_DRAFT, "cancel")
        lot.status = STATUS_CANCELLED
        _audit(lot, "disposal.lot_cancelled", operator_user_id)
    return lot


def reinstate_disposal_item(item_id: int, operator_user_id: int) -> DisposalItem:
    """
    Return a disposed item to stock.

    If the lot was already posted, the item's value is reversed with a
    contra-piece; the lot's own piece is never touched.
    """
    with unit_of_work():
        lot_id = db.session.query(DisposalItem.disposal_lot_id).filter_by(id=item_id).scalar()
        if lot_id is None:
            raise NotFoundError(f"Disposal item {item_id} not found")
        # Lot before item, the order every lot mutation takes
        lot = _get_lot_locked(lot_id)
        item = lock_for_update(db.session.query(DisposalItem).filter_by(id=item_id)).populate_existing().one()
        if item.reinstated:
            raise InvalidStateError(f"Item {item_id} is already reinstated")
        if item.lot.status == STATUS_CANCELLED:
            raise InvalidStateError(f"Lot {item.lot.number} is cancelled")

        if item.lot.status == STATUS_EXPORTED:
            ledger_service.generate(
                ledger_service.DisposalItemReinstatementEvent(item),
                operator_user_id=operator_user_id,
                commit=False,
            )

        item.reinstated = True
        item.reinstated_at = utcnow()
        item.reinstated_by_user_id = operator_user_id
        db.session.flush()
        _recompute_lot_totals(lot)
        _audit(item.lot, "disposal.item_reinstated", operator_user_id, item_id=item.id)

    current_app.logger.info("Disposal item %s reinstated by user %s", item_id, operator_user_id)
    return item


def get_disposal_lot(lot_id: int) -> DisposalLot:
    lot = db.session.get(DisposalLot, lot_id)
    if not lot:
        raise NotFoundError(f"Disposal lot {lot_id} not found")
    return lot


def _recompute_lot_totals(lot: DisposalLot) -> None:
    count, total = (
        db.session.query(func.count(DisposalItem.id), func.coalesce(func.sum(DisposalItem.value), 0))
        .filter(DisposalItem.disposal_lot_id == lot.id, DisposalItem.reinstated.is_(False))
        .one()
    )
    lot.item_count = count
    lot.total_value = Decimal(total).quantize(Decimal("0.01"))


def _get_lot_locked(lot_id: int) -> DisposalLot:
    lot = lock_for_update(db.session.query(DisposalLot).filter_by(id=lot_id)).first()
    if not lot:
        raise NotFoundError(f"Disposal lot {lot_id} not found")
    return lot


def _require_status(lot: DisposalLot, expected: str, action: str) -> None:
    if lot.status != expected:
        raise InvalidStateError(f"Cannot {action} lot {lot.number}: status is {lot.status}")


def _audit(lot: DisposalLot, event_type: str, operator_user_id: int | None, **payload) -> None:
    append_audit_event(
        event_type=event_type,
        entity_type="disposal_lot",
        entity_id=lot.id,
        actor_user_id=operator_user_id,
        note=lot.number,
        payload={"status": lot.status, "total_value": lot.total_value, **payload},
    )
