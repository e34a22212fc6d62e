# Overview: Transaction, locking and retry helpers shared by the cash and ledger services.

from __future__ import annotations

import time
from contextlib import contextmanager

from sqlalchemy.exc import OperationalError
from sqlalchemy.orm.exc import StaleDataError

from ..errors import TransientStorageError
from ..extensions import db


def lock_for_update(query):
    """
    Apply row-level locking for critical operations.

    NOTE: SQLite ignores SELECT ... FOR UPDATE, but other DBs will honor it.
    """
    return query.with_for_update()


@contextmanager
def translate_storage_errors():
    """Surface lock waits, deadlocks and optimistic-lock conflicts as TransientStorageError."""
    try:
        yield
    except (OperationalError, StaleDataError) as exc:
        raise TransientStorageError(f"Storage temporarily unavailable: {exc.__class__.__name__}") from exc


@contextmanager
def unit_of_work(*, commit: bool = True):
    """
    Run a mutating operation as one all-or-nothing transaction.

    commit=True: commit on success, roll back on any error.
    commit=False: flush only; the caller owns the surrounding transaction
    (and its rollback).
    """
    try:
        with translate_storage_errors():
            yield db.session
            if commit:
                db.session.commit()
            else:
                db.session.flush()
    except Exception:
        if commit:
            db.session.rollback()
        raise


def run_with_retry(func, *, attempts: int = 3, backoff_base: float = 0.1):
    """
    Caller-side retry on TransientStorageError.

    Services never call this themselves; only entry points (CLI, batch
    jobs) decide that an operation is safe to replay. Every service call
    either commits fully or rolls back fully, so a replay starts clean.
    """
    for attempt in range(attempts):
        try:
            return func()
        except TransientStorageError:
            db.session.rollback()
            if attempt >= attempts - 1:
                raise
            time.sleep(backoff_base * (2 ** attempt))
