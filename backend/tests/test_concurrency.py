# Overview: Threaded tests for piece numbering, concurrent posting and the single open session rule.

"""
Concurrency tests on a file-backed SQLite database.

Each worker thread runs in its own app context (its own session and
connection). Lock contention surfaces as TransientStorageError and is
replayed with run_with_retry, the way the CLI does it.
"""
import os
import tempfile
import threading
import unittest
from unittest import mock
from datetime import date
from decimal import Decimal
from functools import partial

from ludocompta import create_app
from ludocompta.config import TestConfig
from ludocompta.errors import AlreadyPostedError, ConflictError
from ludocompta.extensions import db
from ludocompta.models import CashSession, LedgerEntry, MembershipPayment, PieceSequence, User
from ludocompta.services import cash_service, ledger_service, sequence_service
from ludocompta.services.concurrency import run_with_retry, unit_of_work


class ConcurrencyTests(unittest.TestCase):
    def setUp(self):
        self.tmpdir = tempfile.TemporaryDirectory()
        db_path = os.path.join(self.tmpdir.name, "concurrency.db")
        config = type("FileConfig", (TestConfig,), {
            "SQLALCHEMY_DATABASE_URI": f"sqlite:///{db_path}",
            "SQLALCHEMY_ENGINE_OPTIONS": {"connect_args": {"timeout": 30}},
        })
        self.app = create_app(config)

        with self.app.app_context():
            db.create_all()

            user = User(username="benevole", first_name="Alice", last_name="Martin")
            db.session.add(user)
            db.session.commit()
            self.user_id = user.id

    def tearDown(self):
        with self.app.app_context():
            db.session.remove()
            db.drop_all()
            db.session.remove()
            db.engine.dispose()
        self.tmpdir.cleanup()

    def _run_threads(self, target, args_list):
        results = []
        errors = []
        lock = threading.Lock()

        def worker(*args):
            with self.app.app_context():
                try:
                    value = target(*args)
                    with lock:
                        results.append(value)
                except Exception as exc:
                    with lock:
                        errors.append(exc)
                finally:
                    db.session.remove()

        threads = [threading.Thread(target=worker, args=args) for args in args_list]
        for t in threads:
            t.start()
        for t in threads:
            t.join()
        return results, errors

    def test_sequence_numbers_unique_under_contention(self):
        with self.app.app_context():
            db.session.add(PieceSequence(document_type="COT", fiscal_year=2026, last_number=0))
            db.session.commit()

        def issue():
            with unit_of_work():
                number = sequence_service.next_number("COT", 2026)
            return number

        def worker(_):
            return [run_with_retry(issue, attempts=10, backoff_base=0.05) for _ in range(5)]

        results, errors = self._run_threads(worker, [(i,) for i in range(8)])

        self.assertFalse(errors)
        numbers = [n for batch in results for n in batch]
        self.assertEqual(len(numbers), 40)
        self.assertEqual(sorted(numbers), list(range(1, 41)))

        with self.app.app_context():
            self.assertEqual(sequence_service.last_number("COT", 2026), 40)

    def test_concurrent_postings_get_distinct_balanced_pieces(self):
        with self.app.app_context():
            db.session.add(PieceSequence(document_type="COT", fiscal_year=2026, last_number=0))
            payment_ids = []
            for i in range(6):
                payment = MembershipPayment(
                    member_user_id=self.user_id,
                    amount_paid=Decimal("20.00") + i,
                    payment_method="cash",
                    payment_date=date(2026, 3, 14),
                    status="active",
                )
                db.session.add(payment)
                db.session.flush()
                payment_ids.append(payment.id)
            db.session.commit()

        def post(payment_id):
            entries = run_with_retry(
                partial(ledger_service.generate_for_membership_payment, payment_id),
                attempts=10,
                backoff_base=0.05,
            )
            return payment_id, entries[0].piece_number

        results, errors = self._run_threads(post, [(pid,) for pid in payment_ids])

        self.assertFalse(errors)
        pieces = dict(results)
        self.assertEqual(len(pieces), 6)
        self.assertEqual(len(set(pieces.values())), 6)

        with self.app.app_context():
            for payment_id, piece in pieces.items():
                entries = ledger_service.entries_for_piece("VT", 2026, piece)
                self.assertEqual(len(entries), 2)
                self.assertEqual({e.membership_payment_id for e in entries}, {payment_id})
                self.assertEqual(ledger_service.piece_balance("VT", 2026, piece), Decimal("0"))
                self.assertEqual(db.session.get(MembershipPayment, payment_id).piece_number, piece)
            self.assertEqual(db.session.query(LedgerEntry).count(), 12)

    def test_concurrent_reversals_write_one_contra_piece(self):
        with self.app.app_context():
            db.session.add(PieceSequence(document_type="COT", fiscal_year=2026, last_number=0))
            db.session.add(PieceSequence(document_type="REV", fiscal_year=2026, last_number=0))
            payment = MembershipPayment(
                member_user_id=self.user_id,
                amount_paid=Decimal("20.00"),
                payment_method="cash",
                payment_date=date(2026, 3, 14),
                status="active",
            )
            db.session.add(payment)
            db.session.commit()
            piece = ledger_service.generate_for_membership_payment(payment.id)[0].piece_number

        # Both callers finish the "already reversed?" read before either writes
        barrier = threading.Barrier(2, timeout=10)
        build_plan = ledger_service.ReversalEvent.to_ledger_accounts

        def plan_after_both_checked(event, resolver):
            barrier.wait()
            return build_plan(event, resolver)

        def reverse(_):
            return run_with_retry(
                partial(ledger_service.generate_reversal, "VT", 2026, piece, reversal_date=date(2026, 4, 2)),
                attempts=10,
                backoff_base=0.05,
            )[0].piece_number

        with mock.patch.object(ledger_service.ReversalEvent, "to_ledger_accounts", plan_after_both_checked):
            results, errors = self._run_threads(reverse, [(i,) for i in range(2)])

        self.assertEqual(results, ["REV-2026-000001"])
        self.assertEqual(len(errors), 1)
        self.assertIsInstance(errors[0], AlreadyPostedError)

        with self.app.app_context():
            reversal = db.session.query(LedgerEntry).filter_by(reverses_piece=piece).all()
            self.assertEqual(len(reversal), 2)
            self.assertEqual(ledger_service.piece_balance("VT", 2026, "REV-2026-000001"), Decimal("0"))

    def test_concurrent_opens_leave_one_open_session(self):
        with self.app.app_context():
            register = cash_service.create_register("CAISSE_PRINC", "Caisse principale")
            register_id = register.id

        def open_once(_):
            return run_with_retry(
                partial(cash_service.open_session, register_id, self.user_id),
                attempts=10,
                backoff_base=0.05,
            ).id

        results, errors = self._run_threads(open_once, [(i,) for i in range(5)])

        self.assertEqual(len(results), 1)
        self.assertEqual(len(errors), 4)
        self.assertTrue(all(isinstance(e, ConflictError) for e in errors))

        with self.app.app_context():
            open_sessions = db.session.query(CashSession).filter_by(register_id=register_id, status="open").all()
            self.assertEqual([s.id for s in open_sessions], results)


if __name__ == "__main__":
    unittest.main()
