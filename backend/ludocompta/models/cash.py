from __future__ import annotations

from sqlalchemy import event

from ..extensions import db
from ludocompta.errors import BusinessRuleError
from ludocompta.time_utils import to_utc_z


def _money(value):
    return str(value) if value is not None else None


SESSION_OPEN = "open"
SESSION_CLOSED = "closed"
SESSION_VOIDED = "voided"

MOVEMENT_IN = "in"
MOVEMENT_OUT = "out"

MOVEMENT_VALID = "valid"
MOVEMENT_VOIDED = "voided"


class CashRegister(db.Model):
    """
    Physical cash drawer (caisse).

    WHY: Balance "truth" is handed from one session to the next through
    current_balance: close writes the declared count, the next open reads it.

    DESIGN: Registers are persistent (deactivated, never deleted).
    """
    __tablename__ = "cash_registers"
    __table_args__ = (
        db.UniqueConstraint("code", name="uq_cash_registers_code"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    # Human-readable identifier (e.g., "CAISSE_PRINC", "ACCUEIL")
    code = db.Column(db.String(32), nullable=False, index=True)
    name = db.Column(db.String(128), nullable=False)
    site = db.Column(db.String(128), nullable=True)
    description = db.Column(db.Text, nullable=True)

    opening_balance = db.Column(db.Numeric(12, 2), nullable=False, default=0)
    current_balance = db.Column(db.Numeric(12, 2), nullable=False, default=0)

    # Treasury account of the drawer in the chart of accounts
    accounting_account = db.Column(db.String(20), nullable=False, default="5300")

    responsible_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)

    is_active = db.Column(db.Boolean, nullable=False, default=True, index=True)
    version_id = db.Column(db.Integer, nullable=False, default=1)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())

    responsible = db.relationship("User", foreign_keys=[responsible_user_id])
    __mapper_args__ = {"version_id_col": version_id}

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "code": self.code,
            "name": self.name,
            "site": self.site,
            "description": self.description,
            "opening_balance": _money(self.opening_balance),
            "current_balance": _money(self.current_balance),
            "accounting_account": self.accounting_account,
            "responsible_user_id": self.responsible_user_id,
            "is_active": self.is_active,
            "version_id": self.version_id,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


class CashSession(db.Model):
    """
    Till session: one open-to-close lifecycle of a register.

    LIFECYCLE:
    - open: movements can be recorded and voided
    - closed: reconciled (theoretical vs declared), terminal
    - voided: cancelled without any money flow, terminal

    At most one open session per register (partial unique index below,
    also checked under a register row lock when opening).
    """
    __tablename__ = "cash_sessions"
    __table_args__ = (
        db.Index(
            "uq_cash_sessions_one_open_per_register",
            "register_id",
            unique=True,
            sqlite_where=db.text("status = 'open'"),
            postgresql_where=db.text("status = 'open'"),
        ),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    register_id = db.Column(db.Integer, db.ForeignKey("cash_registers.id"), nullable=False, index=True)
    opened_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)
    closed_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)

    status = db.Column(db.String(16), nullable=False, default=SESSION_OPEN, index=True)

    opened_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), index=True)
    closed_at = db.Column(db.DateTime(timezone=True), nullable=True)

    # Balances
    opening_balance = db.Column(db.Numeric(12, 2), nullable=False, default=0)
    theoretical_closing_balance = db.Column(db.Numeric(12, 2), nullable=True)
    declared_closing_balance = db.Column(db.Numeric(12, 2), nullable=True)
    variance = db.Column(db.Numeric(12, 2), nullable=True)  # declared - theoretical

    # Aggregates over valid movements (recomputed, never incremented)
    movement_count = db.Column(db.Integer, nullable=False, default=0)
    total_in = db.Column(db.Numeric(12, 2), nullable=False, default=0)
    total_out = db.Column(db.Numeric(12, 2), nullable=False, default=0)

    # Physical count by denomination, e.g. {"20.00": 3, "0.50": 4}
    count_detail = db.Column(db.JSON, nullable=True)

    opening_comment = db.Column(db.Text, nullable=True)
    closing_comment = db.Column(db.Text, nullable=True)
    version_id = db.Column(db.Integer, nullable=False, default=1)

    register = db.relationship("CashRegister", backref=db.backref("sessions", lazy=True))
    opened_by = db.relationship("User", foreign_keys=[opened_by_user_id])
    closed_by = db.relationship("User", foreign_keys=[closed_by_user_id])
    __mapper_args__ = {"version_id_col": version_id}

    @property
    def is_open(self) -> bool:
        return self.status == SESSION_OPEN

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "register_id": self.register_id,
            "opened_by_user_id": self.opened_by_user_id,
            "closed_by_user_id": self.closed_by_user_id,
            "status": self.status,
            "opened_at": to_utc_z(self.opened_at),
            "closed_at": to_utc_z(self.closed_at),
            "opening_balance": _money(self.opening_balance),
            "theoretical_closing_balance": _money(self.theoretical_closing_balance),
            "declared_closing_balance": _money(self.declared_closing_balance),
            "variance": _money(self.variance),
            "movement_count": self.movement_count,
            "total_in": _money(self.total_in),
            "total_out": _money(self.total_out),
            "count_detail": self.count_detail,
            "opening_comment": self.opening_comment,
            "closing_comment": self.closing_comment,
            "version_id": self.version_id,
        }


class CashMovement(db.Model):
    """
    One entry or exit of money within a session.

    Never deleted: cancellation is a status change (valid -> voided) that
    is only allowed while the session is open.
    """
    __tablename__ = "cash_movements"
    __table_args__ = (
        db.CheckConstraint("amount > 0", name="ck_cash_movements_amount_positive"),
        db.Index("ix_cash_movements_session_status", "cash_session_id", "status"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    cash_session_id = db.Column(db.Integer, db.ForeignKey("cash_sessions.id"), nullable=False, index=True)

    movement_type = db.Column(db.String(8), nullable=False)  # in, out
    category = db.Column(db.String(32), nullable=False, default="other", index=True)
    amount = db.Column(db.Numeric(12, 2), nullable=False)
    payment_method = db.Column(db.String(32), nullable=False, default="cash")

    # Optional pointers to the business event behind the movement
    membership_payment_id = db.Column(db.Integer, db.ForeignKey("membership_payments.id"), nullable=True, index=True)
    member_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)

    operator_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)

    reference = db.Column(db.String(50), nullable=True)  # cheque number, card auth code...
    label = db.Column(db.String(255), nullable=False)
    comment = db.Column(db.Text, nullable=True)

    occurred_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), index=True)

    status = db.Column(db.String(16), nullable=False, default=MOVEMENT_VALID, index=True)
    voided_at = db.Column(db.DateTime(timezone=True), nullable=True)
    voided_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    void_reason = db.Column(db.String(255), nullable=True)

    bank_deposit_id = db.Column(db.Integer, db.ForeignKey("bank_deposits.id"), nullable=True, index=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    session = db.relationship("CashSession", backref=db.backref("movements", lazy=True, order_by="CashMovement.id"))
    operator = db.relationship("User", foreign_keys=[operator_user_id])
    bank_deposit = db.relationship("BankDeposit", backref=db.backref("movements", lazy=True))

    @property
    def is_valid(self) -> bool:
        return self.status == MOVEMENT_VALID

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "cash_session_id": self.cash_session_id,
            "movement_type": self.movement_type,
            "category": self.category,
            "amount": _money(self.amount),
            "payment_method": self.payment_method,
            "membership_payment_id": self.membership_payment_id,
            "member_user_id": self.member_user_id,
            "operator_user_id": self.operator_user_id,
            "reference": self.reference,
            "label": self.label,
            "comment": self.comment,
            "occurred_at": to_utc_z(self.occurred_at),
            "status": self.status,
            "voided_at": to_utc_z(self.voided_at),
            "voided_by_user_id": self.voided_by_user_id,
            "void_reason": self.void_reason,
            "bank_deposit_id": self.bank_deposit_id,
        }


class BankDeposit(db.Model):
    """
    Bank deposit slip (remise en banque) grouping cash/cheque encashments.

    LIFECYCLE: preparing -> deposited -> validated; cancelled from any
    state but validated (cancelling releases the movements).
    """
    __tablename__ = "bank_deposits"
    __table_args__ = (
        db.UniqueConstraint("number", name="uq_bank_deposits_number"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    number = db.Column(db.String(32), nullable=False, index=True)
    register_id = db.Column(db.Integer, db.ForeignKey("cash_registers.id"), nullable=False, index=True)

    status = db.Column(db.String(16), nullable=False, default="preparing", index=True)

    total_amount = db.Column(db.Numeric(12, 2), nullable=False, default=0)
    movement_count = db.Column(db.Integer, nullable=False, default=0)
    totals_by_method = db.Column(db.JSON, nullable=True)

    bank_account = db.Column(db.String(64), nullable=True)
    slip_reference = db.Column(db.String(64), nullable=True)
    comment = db.Column(db.Text, nullable=True)

    operator_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False)
    validated_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    deposited_at = db.Column(db.DateTime(timezone=True), nullable=True)
    validated_at = db.Column(db.DateTime(timezone=True), nullable=True)
    cancelled_at = db.Column(db.DateTime(timezone=True), nullable=True)

    register = db.relationship("CashRegister", backref=db.backref("bank_deposits", lazy=True))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "number": self.number,
            "register_id": self.register_id,
            "status": self.status,
            "total_amount": _money(self.total_amount),
            "movement_count": self.movement_count,
            "totals_by_method": self.totals_by_method,
            "bank_account": self.bank_account,
            "slip_reference": self.slip_reference,
            "comment": self.comment,
            "operator_user_id": self.operator_user_id,
            "validated_by_user_id": self.validated_by_user_id,
            "created_at": to_utc_z(self.created_at),
            "deposited_at": to_utc_z(self.deposited_at),
            "validated_at": to_utc_z(self.validated_at),
            "cancelled_at": to_utc_z(self.cancelled_at),
        }


@event.listens_for(CashMovement, "before_delete")
def _refuse_movement_delete(mapper, connection, target):
    raise BusinessRuleError("Cash movements are never deleted; void them instead")
