"""
Bank deposit slip tests.

Only valid cash/cheque encashments of the register can be deposited,
each at most once. Cancelling a slip releases its movements.
"""

import pytest
from decimal import Decimal

from ludocompta.errors import BusinessRuleError, InvalidStateError, ValidationError
from ludocompta.models import CashMovement
from ludocompta.services import bank_deposit_service, cash_service


@pytest.fixture
def encashments(operator, open_session):
    cash = cash_service.record_encashment(open_session.id, operator.id, "40.00", payment_method="cash")
    cheque = cash_service.record_encashment(open_session.id, operator.id, "25.00", payment_method="cheque")
    card = cash_service.record_encashment(open_session.id, operator.id, "15.00", payment_method="card")
    refund = cash_service.record_disbursement(open_session.id, operator.id, "5.00", category="deposit_refund")
    return {"cash": cash, "cheque": cheque, "card": card, "refund": refund}


class TestEligibility:
    def test_only_cash_and_cheque_encashments(self, db_session, register, encashments):
        eligible = bank_deposit_service.eligible_deposit_movements(register.id)
        assert {m.id for m in eligible} == {encashments["cash"].id, encashments["cheque"].id}

    def test_voided_movement_not_eligible(self, db_session, register, operator, encashments):
        cash_service.void_movement(encashments["cash"].id, operator.id)
        eligible = bank_deposit_service.eligible_deposit_movements(register.id)
        assert [m.id for m in eligible] == [encashments["cheque"].id]


class TestCreateDeposit:
    def test_groups_movements(self, db_session, register, operator, encashments):
        ids = [encashments["cash"].id, encashments["cheque"].id]
        deposit = bank_deposit_service.create_bank_deposit(register.id, ids, operator.id, bank_account="FR76 0001")

        assert deposit.number.startswith("REM-")
        assert deposit.status == "preparing"
        assert deposit.total_amount == Decimal("65.00")
        assert deposit.movement_count == 2
        assert deposit.totals_by_method == {"cash": "40.00", "cheque": "25.00"}
        assert {m.bank_deposit_id for m in db_session.query(CashMovement).filter(CashMovement.id.in_(ids))} == {deposit.id}
        assert bank_deposit_service.eligible_deposit_movements(register.id) == []

    def test_requires_movements(self, db_session, register, operator):
        with pytest.raises(ValidationError):
            bank_deposit_service.create_bank_deposit(register.id, [], operator.id)

    def test_ineligible_movement_rejected(self, db_session, register, operator, encashments):
        ids = [encashments["cash"].id, encashments["card"].id, encashments["refund"].id]
        with pytest.raises(BusinessRuleError) as exc_info:
            bank_deposit_service.create_bank_deposit(register.id, ids, operator.id)

        assert sorted(exc_info.value.details["movement_ids"]) == sorted([encashments["card"].id, encashments["refund"].id])
        assert bank_deposit_service.list_deposits(register.id) == []

    def test_movement_deposited_once(self, db_session, register, operator, encashments):
        bank_deposit_service.create_bank_deposit(register.id, [encashments["cash"].id], operator.id)
        with pytest.raises(BusinessRuleError):
            bank_deposit_service.create_bank_deposit(register.id, [encashments["cash"].id], operator.id)

    def test_deposited_movement_cannot_be_voided(self, db_session, register, operator, encashments):
        bank_deposit_service.create_bank_deposit(register.id, [encashments["cash"].id], operator.id)
        with pytest.raises(BusinessRuleError):
            cash_service.void_movement(encashments["cash"].id, operator.id)

    def test_numbers_are_sequential(self, db_session, register, operator, encashments):
        first = bank_deposit_service.create_bank_deposit(register.id, [encashments["cash"].id], operator.id)
        second = bank_deposit_service.create_bank_deposit(register.id, [encashments["cheque"].id], operator.id)
        assert first.number.endswith("-000001")
        assert second.number.endswith("-000002")


class TestLifecycle:
    def test_deposit_then_validate(self, db_session, register, operator, encashments):
        deposit = bank_deposit_service.create_bank_deposit(register.id, [encashments["cash"].id], operator.id)

        bank_deposit_service.mark_deposited(deposit.id, operator.id, slip_reference="BORD-118")
        deposit = bank_deposit_service.validate_deposit(deposit.id, operator.id)

        assert deposit.status == "validated"
        assert deposit.slip_reference == "BORD-118"
        assert deposit.validated_by_user_id == operator.id
        assert deposit.deposited_at is not None

    def test_validate_requires_deposited(self, db_session, register, operator, encashments):
        deposit = bank_deposit_service.create_bank_deposit(register.id, [encashments["cash"].id], operator.id)
        with pytest.raises(InvalidStateError):
            bank_deposit_service.validate_deposit(deposit.id, operator.id)

    def test_cancel_releases_movements(self, db_session, register, operator, encashments):
        deposit = bank_deposit_service.create_bank_deposit(
            register.id, [encashments["cash"].id, encashments["cheque"].id], operator.id,
        )
        bank_deposit_service.mark_deposited(deposit.id, operator.id)

        cancelled = bank_deposit_service.cancel_deposit(deposit.id, operator.id, "wrong slip")

        assert cancelled.status == "cancelled"
        assert len(bank_deposit_service.eligible_deposit_movements(register.id)) == 2

    def test_validated_deposit_cannot_be_cancelled(self, db_session, register, operator, encashments):
        deposit = bank_deposit_service.create_bank_deposit(register.id, [encashments["cash"].id], operator.id)
        bank_deposit_service.mark_deposited(deposit.id, operator.id)
        bank_deposit_service.validate_deposit(deposit.id, operator.id)

        with pytest.raises(InvalidStateError):
            bank_deposit_service.cancel_deposit(deposit.id, operator.id)
        assert bank_deposit_service.eligible_deposit_movements(register.id) == []
