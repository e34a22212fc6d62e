# Overview: Pytest coverage for cash registers, session lifecycle, movements and reconciliation.

"""
Cash Session Tests

Covers:
- One open session per register
- Reconciliation: theoretical = opening + in - out, variance = declared - theoretical
- Closed and voided sessions are immutable
- Voiding a session requires zero valid movements
- Balance handoff register -> session -> register
"""

import pytest
from decimal import Decimal

from ludocompta.errors import (
    BusinessRuleError,
    ConflictError,
    InvalidStateError,
    NotFoundError,
    ValidationError,
)
from ludocompta.models import AuditEvent, CashMovement, CashSession
from ludocompta.services import cash_service


class TestRegisters:
    def test_create_register_seeds_current_balance(self, db_session):
        register = cash_service.create_register("ACCUEIL", "Accueil", opening_balance="75.50")
        assert register.current_balance == Decimal("75.50")
        assert register.opening_balance == Decimal("75.50")
        assert register.is_active is True

    def test_duplicate_code_conflicts(self, db_session, register):
        with pytest.raises(ConflictError):
            cash_service.create_register("CAISSE_PRINC", "Autre")

    def test_negative_opening_balance_rejected(self, db_session):
        with pytest.raises(ValidationError):
            cash_service.create_register("NEG", "Negative", opening_balance="-1")

    def test_update_register_rejects_balance_fields(self, db_session, register):
        with pytest.raises(ValidationError):
            cash_service.update_register(register.id, current_balance="1000")

        updated = cash_service.update_register(register.id, name="Caisse du hall", site="Hall")
        assert updated.name == "Caisse du hall"
        assert updated.site == "Hall"

    def test_deactivate_with_open_session_refused(self, db_session, register, open_session):
        with pytest.raises(InvalidStateError):
            cash_service.deactivate_register(register.id)

    def test_inactive_register_cannot_open(self, db_session, register, operator):
        cash_service.deactivate_register(register.id)
        with pytest.raises(InvalidStateError):
            cash_service.open_session(register.id, operator.id)
        assert cash_service.list_registers() == []
        assert len(cash_service.list_registers(include_inactive=True)) == 1

    def test_get_register_unknown(self, db_session):
        with pytest.raises(NotFoundError):
            cash_service.get_register(424242)


class TestSessionSingleton:
    def test_second_open_conflicts_and_creates_no_row(self, db_session, register, operator, open_session):
        with pytest.raises(ConflictError):
            cash_service.open_session(register.id, operator.id)

        sessions = db_session.query(CashSession).filter_by(register_id=register.id).all()
        assert len(sessions) == 1
        assert sessions[0].id == open_session.id

    def test_unique_index_rejection_is_conflict(self, db_session, register, operator, open_session, monkeypatch):
        """A racing open that slips past the lookup is stopped by the partial unique index."""
        register_id = register.id
        open_session_id = open_session.id
        monkeypatch.setattr(cash_service, "get_open_session", lambda register_id: None)

        with pytest.raises(ConflictError) as exc_info:
            cash_service.open_session(register_id, operator.id)

        assert "CAISSE_PRINC" in exc_info.value.message
        sessions = db_session.query(CashSession).filter_by(register_id=register_id).all()
        assert [s.id for s in sessions] == [open_session_id]

    def test_open_after_close_is_allowed(self, db_session, register, operator, open_session):
        cash_service.close_session(open_session.id, operator.id, "0")
        second = cash_service.open_session(register.id, operator.id)
        assert second.id != open_session.id
        assert cash_service.get_open_session(register.id).id == second.id

    def test_open_copies_register_balance(self, db_session, operator):
        register = cash_service.create_register("FOND", "Fond de caisse", opening_balance="120.00")
        session = cash_service.open_session(register.id, operator.id)
        assert session.opening_balance == Decimal("120.00")
        assert session.status == "open"


class TestMovements:
    def test_record_movement_updates_aggregates(self, db_session, operator, open_session):
        cash_service.record_encashment(open_session.id, operator.id, "12.00", category="rental")
        cash_service.record_disbursement(open_session.id, operator.id, "2.50", category="deposit_refund")

        session = cash_service.get_session(open_session.id)
        assert session.movement_count == 2
        assert session.total_in == Decimal("12.00")
        assert session.total_out == Decimal("2.50")

    @pytest.mark.parametrize("amount", ["0", "-5", "abc", "1.234", None, True])
    def test_invalid_amount_rejected_before_write(self, db_session, operator, open_session, amount):
        with pytest.raises(ValidationError):
            cash_service.record_movement(open_session.id, operator.id, "in", amount)
        assert db_session.query(CashMovement).count() == 0

    def test_unknown_category_and_method_rejected(self, db_session, operator, open_session):
        with pytest.raises(ValidationError):
            cash_service.record_movement(open_session.id, operator.id, "in", "5", category="lottery")
        with pytest.raises(ValidationError):
            cash_service.record_movement(open_session.id, operator.id, "in", "5", payment_method="bitcoin")
        with pytest.raises(ValidationError):
            cash_service.record_movement(open_session.id, operator.id, "sideways", "5")

    def test_default_label(self, db_session, operator, open_session):
        movement = cash_service.record_encashment(open_session.id, operator.id, "3", category="fine")
        assert movement.label == "Encashment (fine)"
        assert movement.status == "valid"

    def test_void_movement_keeps_row(self, db_session, operator, open_session):
        movement = cash_service.record_encashment(open_session.id, operator.id, "30")
        cash_service.void_movement(movement.id, operator.id, "wrong amount")

        row = db_session.get(CashMovement, movement.id)
        assert row is not None
        assert row.status == "voided"
        assert row.void_reason == "wrong amount"
        assert row.voided_by_user_id == operator.id

        session = cash_service.get_session(open_session.id)
        assert session.movement_count == 0
        assert session.total_in == Decimal("0")

    def test_void_twice_is_invalid_state(self, db_session, operator, open_session):
        movement = cash_service.record_encashment(open_session.id, operator.id, "30")
        cash_service.void_movement(movement.id, operator.id)
        with pytest.raises(InvalidStateError):
            cash_service.void_movement(movement.id, operator.id)

    def test_void_with_wrong_session_is_not_found(self, db_session, operator, open_session):
        movement = cash_service.record_encashment(open_session.id, operator.id, "30")
        with pytest.raises(NotFoundError):
            cash_service.void_movement(movement.id, operator.id, session_id=open_session.id + 1)

    def test_movements_cannot_be_deleted(self, db_session, operator, open_session):
        movement = cash_service.record_encashment(open_session.id, operator.id, "30")
        db_session.delete(movement)
        with pytest.raises(BusinessRuleError):
            db_session.flush()
        db_session.rollback()
        assert db_session.query(CashMovement).count() == 1

    def test_list_movements_hides_voided_by_default(self, db_session, operator, open_session):
        keep = cash_service.record_encashment(open_session.id, operator.id, "10")
        drop = cash_service.record_encashment(open_session.id, operator.id, "20")
        cash_service.void_movement(drop.id, operator.id)

        assert [m.id for m in cash_service.list_movements(open_session.id)] == [keep.id]
        assert len(cash_service.list_movements(open_session.id, include_voided=True)) == 2


class TestReconciliation:
    def test_scenario_open_record_void_close(self, db_session, register, operator):
        """Balance 0, +50, +30, void the 30, declare 50: no variance."""
        session = cash_service.open_session(register.id, operator.id)
        cash_service.record_encashment(session.id, operator.id, "50")
        thirty = cash_service.record_encashment(session.id, operator.id, "30")
        cash_service.void_movement(thirty.id, operator.id, "duplicate")

        closed = cash_service.close_session(session.id, operator.id, "50")

        assert closed.status == "closed"
        assert closed.theoretical_closing_balance == Decimal("50.00")
        assert closed.variance == Decimal("0.00")
        assert cash_service.get_register(register.id).current_balance == Decimal("50.00")

    def test_reconciliation_identity_with_variance(self, db_session, operator):
        register = cash_service.create_register("R2", "Register 2", opening_balance="100.00")
        session = cash_service.open_session(register.id, operator.id)
        cash_service.record_encashment(session.id, operator.id, "40.10")
        cash_service.record_encashment(session.id, operator.id, "9.95", payment_method="cheque")
        cash_service.record_disbursement(session.id, operator.id, "15.05")

        closed = cash_service.close_session(
            session.id, operator.id, "134.00",
            count_detail={"20.00": 6, "10.00": 1, "2.00": 2},
            comment="missing a coin",
        )

        # 100.00 + 40.10 + 9.95 - 15.05
        assert closed.theoretical_closing_balance == Decimal("135.00")
        assert closed.declared_closing_balance == Decimal("134.00")
        assert closed.variance == Decimal("-1.00")
        assert closed.count_detail == {"20.00": 6, "10.00": 1, "2.00": 2}
        assert closed.closed_by_user_id == operator.id

    def test_declared_balance_rolls_into_next_session(self, db_session, register, operator):
        first = cash_service.open_session(register.id, operator.id)
        cash_service.record_encashment(first.id, operator.id, "25")
        cash_service.close_session(first.id, operator.id, "24.50")

        second = cash_service.open_session(register.id, operator.id)
        assert second.opening_balance == Decimal("24.50")

    def test_close_closed_session_leaves_register_untouched(self, db_session, register, operator, open_session):
        cash_service.record_encashment(open_session.id, operator.id, "50")
        cash_service.close_session(open_session.id, operator.id, "50")
        balance_before = cash_service.get_register(register.id).current_balance

        with pytest.raises(InvalidStateError):
            cash_service.close_session(open_session.id, operator.id, "999")

        assert cash_service.get_register(register.id).current_balance == balance_before
        assert cash_service.get_session(open_session.id).declared_closing_balance == Decimal("50.00")

    def test_invalid_declared_balance(self, db_session, operator, open_session):
        with pytest.raises(ValidationError):
            cash_service.close_session(open_session.id, operator.id, "-3")
        with pytest.raises(ValidationError):
            cash_service.close_session(open_session.id, operator.id, "10", count_detail={"5.00": -1})
        assert cash_service.get_session(open_session.id).status == "open"

    def test_close_with_zero_declared(self, db_session, operator, open_session):
        closed = cash_service.close_session(open_session.id, operator.id, 0)
        assert closed.variance == Decimal("0.00")


class TestImmutabilityAfterClose:
    def test_no_movement_after_close(self, db_session, operator, open_session):
        movement = cash_service.record_encashment(open_session.id, operator.id, "10")
        cash_service.close_session(open_session.id, operator.id, "10")

        with pytest.raises(InvalidStateError):
            cash_service.record_encashment(open_session.id, operator.id, "5")
        with pytest.raises(InvalidStateError):
            cash_service.void_movement(movement.id, operator.id)

        assert db_session.get(CashMovement, movement.id).status == "valid"

    def test_no_transition_out_of_closed(self, db_session, operator, open_session):
        cash_service.close_session(open_session.id, operator.id, "0")
        with pytest.raises(InvalidStateError):
            cash_service.void_session(open_session.id, operator.id)


class TestVoidSession:
    def test_void_empty_session(self, db_session, register, operator, open_session):
        voided = cash_service.void_session(open_session.id, operator.id, "opened by mistake")
        assert voided.status == "voided"
        assert "opened by mistake" in voided.closing_comment
        assert cash_service.get_open_session(register.id) is None
        assert cash_service.get_register(register.id).current_balance == Decimal("0.00")

    def test_void_refused_with_valid_movement(self, db_session, operator, open_session):
        cash_service.record_encashment(open_session.id, operator.id, "10")
        with pytest.raises(BusinessRuleError):
            cash_service.void_session(open_session.id, operator.id)
        assert db_session.query(CashMovement).count() == 1
        assert cash_service.get_session(open_session.id).status == "open"

    def test_void_allowed_when_all_movements_voided(self, db_session, operator, open_session):
        movement = cash_service.record_encashment(open_session.id, operator.id, "10")
        cash_service.void_movement(movement.id, operator.id)
        cash_service.void_session(open_session.id, operator.id)
        assert db_session.query(CashMovement).count() == 1

    def test_voided_session_accepts_no_movement(self, db_session, operator, open_session):
        cash_service.void_session(open_session.id, operator.id)
        with pytest.raises(InvalidStateError):
            cash_service.record_encashment(open_session.id, operator.id, "1")
        with pytest.raises(InvalidStateError):
            cash_service.close_session(open_session.id, operator.id, "0")


class TestTotalsAndStatistics:
    def test_session_totals_per_payment_method(self, db_session, operator, open_session):
        cash_service.record_encashment(open_session.id, operator.id, "10", payment_method="cash")
        cash_service.record_encashment(open_session.id, operator.id, "15", payment_method="cheque")
        cash_service.record_disbursement(open_session.id, operator.id, "4", payment_method="cash")
        voided = cash_service.record_encashment(open_session.id, operator.id, "100", payment_method="card")
        cash_service.void_movement(voided.id, operator.id)

        totals = cash_service.compute_session_totals(open_session.id)
        assert totals.total_in == Decimal("25.00")
        assert totals.total_out == Decimal("4.00")
        assert totals.net == Decimal("21.00")
        assert totals.movement_count == 3
        assert totals.by_payment_method["cash"] == {"in": Decimal("10.00"), "out": Decimal("4.00")}
        assert "card" not in totals.by_payment_method
        assert cash_service.theoretical_balance(open_session.id) == Decimal("21.00")

    def test_register_statistics(self, db_session, register, operator):
        first = cash_service.open_session(register.id, operator.id)
        cash_service.record_encashment(first.id, operator.id, "30")
        cash_service.close_session(first.id, operator.id, "29")
        second = cash_service.open_session(register.id, operator.id)
        cash_service.record_disbursement(second.id, operator.id, "5")
        cash_service.close_session(second.id, operator.id, "24")

        stats = cash_service.register_statistics(register.id)
        assert stats["session_count"] == 2
        assert stats["total_in"] == Decimal("30.00")
        assert stats["total_out"] == Decimal("5.00")
        assert stats["movement_count"] == 2
        assert stats["total_variance"] == Decimal("-1.00")

    def test_list_sessions_with_limit(self, db_session, register, operator):
        ids = []
        for _ in range(3):
            session = cash_service.open_session(register.id, operator.id)
            cash_service.close_session(session.id, operator.id, "0")
            ids.append(session.id)
        listed = [s.id for s in cash_service.list_sessions(register.id)]
        assert set(listed) == set(ids)
        assert len(cash_service.list_sessions(register.id, limit=2)) == 2


class TestAuditTrail:
    def test_lifecycle_is_audited(self, db_session, operator, open_session):
        movement = cash_service.record_encashment(open_session.id, operator.id, "10")
        cash_service.void_movement(movement.id, operator.id, "typo")
        cash_service.close_session(open_session.id, operator.id, "0")

        types = [e.event_type for e in db_session.query(AuditEvent).order_by(AuditEvent.id)]
        assert types == [
            "cash.session_opened",
            "cash.movement_recorded",
            "cash.movement_voided",
            "cash.session_closed",
        ]

    def test_refused_operation_leaves_no_audit(self, db_session, operator, open_session):
        cash_service.record_encashment(open_session.id, operator.id, "10")
        before = db_session.query(AuditEvent).count()

        with pytest.raises(BusinessRuleError):
            cash_service.void_session(open_session.id, operator.id)

        assert db_session.query(AuditEvent).count() == before


class TestMembershipEncashment:
    def test_recorded_in_open_main_register(self, db_session, operator, open_session, make_payment):
        payment = make_payment("25.00", payment_method="cheque")
        movement = cash_service.record_membership_payment_encashment(payment, operator.id)

        assert movement is not None
        assert movement.category == "membership"
        assert movement.payment_method == "cheque"
        assert movement.membership_payment_id == payment.id
        assert movement.amount == Decimal("25.00")

    def test_none_without_open_session(self, db_session, operator, register, make_payment):
        payment = make_payment()
        assert cash_service.record_membership_payment_encashment(payment, operator.id) is None

    def test_none_without_main_register(self, db_session, operator, make_payment):
        payment = make_payment()
        assert cash_service.record_membership_payment_encashment(payment, operator.id) is None
