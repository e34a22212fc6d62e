from __future__ import annotations

from sqlalchemy import event

from ..extensions import db
from ludocompta.errors import BusinessRuleError
from ludocompta.time_utils import to_iso_date, to_utc_z


class PieceSequence(db.Model):
    """
    Atomic per-(document type, fiscal year) piece counters.

    WHY: Piece numbers must never repeat for a key, even under concurrent
    issuance. The row is incremented in place inside the caller's
    transaction; the row lock serializes concurrent issuers.
    Rows are never deleted.
    """
    __tablename__ = "piece_sequences"
    __table_args__ = (
        db.UniqueConstraint("document_type", "fiscal_year", name="uq_piece_sequences_type_year"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    document_type = db.Column(db.String(16), nullable=False, index=True)
    fiscal_year = db.Column(db.Integer, nullable=False)
    last_number = db.Column(db.Integer, nullable=False, default=0)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "document_type": self.document_type,
            "fiscal_year": self.fiscal_year,
            "last_number": self.last_number,
            "updated_at": to_utc_z(self.updated_at),
        }


class LedgerEntry(db.Model):
    """
    One debit or credit line of an accounting piece (ecriture comptable).

    INVARIANTS:
    - exactly one of debit/credit is non-zero, both are >= 0
    - for a piece (journal_code, fiscal_year, piece_number): sum(debit) == sum(credit)
    - never updated, never deleted; corrections are contra-pieces
      (reverses_piece points at the cancelled piece)
    """
    __tablename__ = "ledger_entries"
    __table_args__ = (
        db.CheckConstraint("debit >= 0 AND credit >= 0", name="ck_ledger_entries_non_negative"),
        db.CheckConstraint(
            "(debit = 0 AND credit > 0) OR (debit > 0 AND credit = 0)",
            name="ck_ledger_entries_one_side",
        ),
        db.Index("ix_ledger_entries_piece", "journal_code", "fiscal_year", "piece_number"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    # Piece identity
    journal_code = db.Column(db.String(8), nullable=False, index=True)
    journal_label = db.Column(db.String(100), nullable=True)
    fiscal_year = db.Column(db.Integer, nullable=False, index=True)
    piece_number = db.Column(db.String(32), nullable=False, index=True)
    entry_number = db.Column(db.String(48), nullable=False)  # <journal><year>-<piece>
    entry_date = db.Column(db.Date, nullable=False, index=True)

    # Line
    account_number = db.Column(db.String(20), nullable=False, index=True)
    account_label = db.Column(db.String(255), nullable=True)
    auxiliary_account = db.Column(db.String(20), nullable=True)
    label = db.Column(db.String(255), nullable=False)
    debit = db.Column(db.Numeric(12, 2), nullable=False, default=0)
    credit = db.Column(db.Numeric(12, 2), nullable=False, default=0)
    analytic_section = db.Column(db.String(32), nullable=True)

    # Business event behind the piece
    event_type = db.Column(db.String(32), nullable=False, index=True)
    membership_payment_id = db.Column(db.Integer, db.ForeignKey("membership_payments.id"), nullable=True, index=True)
    disposal_lot_id = db.Column(db.Integer, db.ForeignKey("disposal_lots.id"), nullable=True, index=True)
    disposal_item_id = db.Column(db.Integer, db.ForeignKey("disposal_items.id"), nullable=True)
    reverses_piece = db.Column(db.String(32), nullable=True, index=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "journal_code": self.journal_code,
            "journal_label": self.journal_label,
            "fiscal_year": self.fiscal_year,
            "piece_number": self.piece_number,
            "entry_number": self.entry_number,
            "entry_date": to_iso_date(self.entry_date),
            "account_number": self.account_number,
            "account_label": self.account_label,
            "auxiliary_account": self.auxiliary_account,
            "label": self.label,
            "debit": str(self.debit),
            "credit": str(self.credit),
            "analytic_section": self.analytic_section,
            "event_type": self.event_type,
            "membership_payment_id": self.membership_payment_id,
            "disposal_lot_id": self.disposal_lot_id,
            "disposal_item_id": self.disposal_item_id,
            "reverses_piece": self.reverses_piece,
            "created_at": to_utc_z(self.created_at),
        }


@event.listens_for(LedgerEntry, "before_update")
def _refuse_entry_update(mapper, connection, target):
    raise BusinessRuleError("Ledger entries are immutable; post a contra-piece instead")


@event.listens_for(LedgerEntry, "before_delete")
def _refuse_entry_delete(mapper, connection, target):
    raise BusinessRuleError("Ledger entries are never deleted; post a contra-piece instead")


class AccountMappingRule(db.Model):
    """
    Accounting configuration per business event type (parametrage comptable).

    Missing or inactive rows fall back to built-in defaults, so bookkeeping
    never blocks day-to-day operations.
    """
    __tablename__ = "account_mapping_rules"
    __table_args__ = (
        db.UniqueConstraint("event_type", name="uq_account_mapping_rules_event_type"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    event_type = db.Column(db.String(32), nullable=False, index=True)
    label = db.Column(db.String(128), nullable=True)

    journal_code = db.Column(db.String(8), nullable=False)
    product_account = db.Column(db.String(20), nullable=False)
    product_account_label = db.Column(db.String(255), nullable=True)
    piece_prefix = db.Column(db.String(16), nullable=False)
    analytic_section = db.Column(db.String(32), nullable=True)

    generate_entries = db.Column(db.Boolean, nullable=False, default=True)
    is_active = db.Column(db.Boolean, nullable=False, default=True)

    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "event_type": self.event_type,
            "label": self.label,
            "journal_code": self.journal_code,
            "product_account": self.product_account,
            "product_account_label": self.product_account_label,
            "piece_prefix": self.piece_prefix,
            "analytic_section": self.analytic_section,
            "generate_entries": self.generate_entries,
            "is_active": self.is_active,
            "updated_at": to_utc_z(self.updated_at),
        }


class EncashmentAccount(db.Model):
    """Treasury account receiving a payment method (cash -> 5300, cheque -> 5112...)."""
    __tablename__ = "encashment_accounts"
    __table_args__ = (
        db.UniqueConstraint("payment_method", name="uq_encashment_accounts_method"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    payment_method = db.Column(db.String(32), nullable=False, index=True)
    account_number = db.Column(db.String(20), nullable=False)
    account_label = db.Column(db.String(255), nullable=True)
    journal_code = db.Column(db.String(8), nullable=True)
    is_active = db.Column(db.Boolean, nullable=False, default=True)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "payment_method": self.payment_method,
            "account_number": self.account_number,
            "account_label": self.account_label,
            "journal_code": self.journal_code,
            "is_active": self.is_active,
        }


class Journal(db.Model):
    __tablename__ = "journals"
    __table_args__ = (
        db.UniqueConstraint("code", name="uq_journals_code"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    code = db.Column(db.String(8), nullable=False)
    label = db.Column(db.String(100), nullable=False)
    is_active = db.Column(db.Boolean, nullable=False, default=True)

    def to_dict(self) -> dict:
        return {"id": self.id, "code": self.code, "label": self.label, "is_active": self.is_active}


class Account(db.Model):
    """Chart of accounts entry (used for labels only)."""
    __tablename__ = "accounts"
    __table_args__ = (
        db.UniqueConstraint("number", name="uq_accounts_number"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    number = db.Column(db.String(20), nullable=False)
    label = db.Column(db.String(255), nullable=False)
    is_active = db.Column(db.Boolean, nullable=False, default=True)

    def to_dict(self) -> dict:
        return {"id": self.id, "number": self.number, "label": self.label, "is_active": self.is_active}
