from __future__ import annotations

from ..extensions import db
from ludocompta.time_utils import to_iso_date, to_utc_z


def _money(value):
    return str(value) if value is not None else None


class MembershipPayment(db.Model):
    """
    Membership fee paid by a member (cotisation).

    piece_number / posted_at are set exactly once, when the payment is
    posted to the ledger.
    """
    __tablename__ = "membership_payments"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    member_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)

    amount_paid = db.Column(db.Numeric(12, 2), nullable=False)
    payment_method = db.Column(db.String(32), nullable=False, default="cash")
    payment_date = db.Column(db.Date, nullable=False, index=True)
    period_start = db.Column(db.Date, nullable=True)
    period_end = db.Column(db.Date, nullable=True)

    status = db.Column(db.String(16), nullable=False, default="active", index=True)  # active, cancelled
    cancelled_at = db.Column(db.DateTime(timezone=True), nullable=True)
    cancel_reason = db.Column(db.String(255), nullable=True)

    piece_number = db.Column(db.String(32), nullable=True, index=True)
    posted_at = db.Column(db.Date, nullable=True)

    created_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    member = db.relationship("User", foreign_keys=[member_user_id])

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "member_user_id": self.member_user_id,
            "amount_paid": _money(self.amount_paid),
            "payment_method": self.payment_method,
            "payment_date": to_iso_date(self.payment_date),
            "period_start": to_iso_date(self.period_start),
            "period_end": to_iso_date(self.period_end),
            "status": self.status,
            "cancelled_at": to_utc_z(self.cancelled_at),
            "cancel_reason": self.cancel_reason,
            "piece_number": self.piece_number,
            "posted_at": to_iso_date(self.posted_at),
            "created_by_user_id": self.created_by_user_id,
            "created_at": to_utc_z(self.created_at),
        }


class DisposalType(db.Model):
    """
    Kind of inventory disposal (weeding): scrapped, donated, sold...

    outflow_account is the charge/product account debited when a lot is
    exported; without it no entries are generated for the type.
    """
    __tablename__ = "disposal_types"
    __table_args__ = (
        db.UniqueConstraint("code", name="uq_disposal_types_code"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    code = db.Column(db.String(32), nullable=False)
    label = db.Column(db.String(100), nullable=False)
    outflow_account = db.Column(db.String(20), nullable=True)
    journal_code = db.Column(db.String(8), nullable=False, default="OD")
    piece_prefix = db.Column(db.String(16), nullable=False, default="SOR")
    generate_entries = db.Column(db.Boolean, nullable=False, default=True)
    is_active = db.Column(db.Boolean, nullable=False, default=True)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "code": self.code,
            "label": self.label,
            "outflow_account": self.outflow_account,
            "journal_code": self.journal_code,
            "piece_prefix": self.piece_prefix,
            "generate_entries": self.generate_entries,
            "is_active": self.is_active,
        }


class DisposalLot(db.Model):
    """
    Batch of items leaving the collection.

    LIFECYCLE: draft -> validated -> exported; draft -> cancelled.
    Export posts the lot to the ledger (once).
    """
    __tablename__ = "disposal_lots"
    __table_args__ = (
        db.UniqueConstraint("number", name="uq_disposal_lots_number"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    number = db.Column(db.String(32), nullable=False, index=True)
    disposal_type_id = db.Column(db.Integer, db.ForeignKey("disposal_types.id"), nullable=False, index=True)
    disposal_date = db.Column(db.Date, nullable=False)
    destination = db.Column(db.String(255), nullable=True)
    comment = db.Column(db.Text, nullable=True)

    total_value = db.Column(db.Numeric(12, 2), nullable=False, default=0)
    item_count = db.Column(db.Integer, nullable=False, default=0)

    status = db.Column(db.String(16), nullable=False, default="draft", index=True)
    exported_at = db.Column(db.DateTime(timezone=True), nullable=True)
    piece_number = db.Column(db.String(32), nullable=True)

    created_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False)
    validated_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    validated_at = db.Column(db.DateTime(timezone=True), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    disposal_type = db.relationship("DisposalType")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "number": self.number,
            "disposal_type_id": self.disposal_type_id,
            "disposal_date": to_iso_date(self.disposal_date),
            "destination": self.destination,
            "comment": self.comment,
            "total_value": _money(self.total_value),
            "item_count": self.item_count,
            "status": self.status,
            "exported_at": to_utc_z(self.exported_at),
            "piece_number": self.piece_number,
            "created_by_user_id": self.created_by_user_id,
            "validated_by_user_id": self.validated_by_user_id,
            "validated_at": to_utc_z(self.validated_at),
        }


class DisposalItem(db.Model):
    __tablename__ = "disposal_items"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    disposal_lot_id = db.Column(db.Integer, db.ForeignKey("disposal_lots.id"), nullable=False, index=True)
    item_type = db.Column(db.String(16), nullable=False)  # game, book, film, record
    item_id = db.Column(db.Integer, nullable=False)
    value = db.Column(db.Numeric(12, 2), nullable=False, default=0)

    # Returned to stock after disposal
    reinstated = db.Column(db.Boolean, nullable=False, default=False, index=True)
    reinstated_at = db.Column(db.DateTime(timezone=True), nullable=True)
    reinstated_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)

    lot = db.relationship("DisposalLot", backref=db.backref("items", lazy=True, order_by="DisposalItem.id"))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "disposal_lot_id": self.disposal_lot_id,
            "item_type": self.item_type,
            "item_id": self.item_id,
            "value": _money(self.value),
            "reinstated": self.reinstated,
            "reinstated_at": to_utc_z(self.reinstated_at),
            "reinstated_by_user_id": self.reinstated_by_user_id,
        }
