"""
Pytest fixtures for ludocompta backend tests.

Provides the app on in-memory SQLite, a per-test table wipe, users,
a main register and a test client.
"""

import pytest
from datetime import date
from decimal import Decimal

from ludocompta import create_app
from ludocompta.config import TestConfig
from ludocompta.extensions import db
from ludocompta.models import MembershipPayment, User
from ludocompta.services import cash_service


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app(TestConfig)

    with app.app_context():
        db.create_all()
        yield app
        db.drop_all()


@pytest.fixture(scope='function')
def client(app):
    """Create test client."""
    return app.test_client()


@pytest.fixture(scope='function')
def db_session(app):
    """Create fresh database for each test."""
    with app.app_context():
        # Clear all data but keep schema (Core deletes bypass the ORM delete guards)
        meta = db.metadata
        for table in reversed(meta.sorted_tables):
            db.session.execute(table.delete())
        db.session.commit()

        yield db.session

        # Cleanup after test
        db.session.rollback()


@pytest.fixture(scope='function')
def operator(db_session):
    """Volunteer running the till."""
    user = User(username="benevole", first_name="Alice", last_name="Martin", email="alice@ludo.local")
    db_session.add(user)
    db_session.commit()
    return user


@pytest.fixture(scope='function')
def member(db_session):
    """Member paying fees."""
    user = User(username="adherent", first_name="Paul", last_name="Durand")
    db_session.add(user)
    db_session.commit()
    return user


@pytest.fixture(scope='function')
def register(db_session):
    """Main register (receives automatic membership encashments)."""
    return cash_service.create_register("CAISSE_PRINC", "Caisse principale")


@pytest.fixture(scope='function')
def open_session(register, operator):
    return cash_service.open_session(register.id, operator.id, "Ouverture")


@pytest.fixture(scope='function')
def make_payment(db_session, member):
    """Factory for unposted, committed membership payments."""
    def _make(amount="20.00", payment_method="cash", payment_date=None):
        payment = MembershipPayment(
            member_user_id=member.id,
            amount_paid=Decimal(amount),
            payment_method=payment_method,
            payment_date=payment_date or date(2026, 3, 14),
            period_start=date(2026, 1, 1),
            period_end=date(2026, 12, 31),
            status="active",
        )
        db_session.add(payment)
        db_session.commit()
        return payment
    return _make
