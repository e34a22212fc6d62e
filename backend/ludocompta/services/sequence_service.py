# Overview: Gap-tolerant, never-duplicated piece numbering per (document type, fiscal year).

from __future__ import annotations

from flask import current_app
from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError

from ..errors import TransientStorageError, ValidationError
from ..extensions import db
from ..models import PieceSequence
from .concurrency import translate_storage_errors


def next_number(document_type: str, fiscal_year: int) -> int:
    """
    Atomically issue the next number for (document_type, fiscal_year).

    Must run inside the caller's transaction: the counter row stays locked
    until that transaction commits or rolls back, which serializes
    concurrent issuers for the same key only. A rolled-back caller leaves
    a permanent gap; a number is never handed out twice.
    """
    if not document_type:
        raise ValidationError("document_type is required")
    if not isinstance(fiscal_year, int) or isinstance(fiscal_year, bool) or fiscal_year <= 0:
        raise ValidationError("fiscal_year must be a positive integer")

    stmt = (
        update(PieceSequence)
        .where(
            PieceSequence.document_type == document_type,
            PieceSequence.fiscal_year == fiscal_year,
        )
        .values(last_number=PieceSequence.last_number + 1)
        .execution_options(synchronize_session=False)
    )

    with translate_storage_errors():
        result = db.session.execute(stmt)
        if not result.rowcount:
            _create_counter(document_type, fiscal_year)
            result = db.session.execute(stmt)
            if not result.rowcount:
                raise TransientStorageError(
                    f"Piece counter {document_type}/{fiscal_year} could not be incremented"
                )

        return db.session.execute(
            select(PieceSequence.last_number).where(
                PieceSequence.document_type == document_type,
                PieceSequence.fiscal_year == fiscal_year,
            )
        ).scalar_one()


def _create_counter(document_type: str, fiscal_year: int) -> None:
    """
    Insert the counter row at 0 unless a concurrent transaction won the race.

    The savepoint keeps the caller's transaction usable when the unique
    constraint rejects our insert.
    """
    try:
        with db.session.begin_nested():
            db.session.add(PieceSequence(document_type=document_type, fiscal_year=fiscal_year, last_number=0))
    except IntegrityError:
        current_app.logger.info("Piece counter %s/%s created concurrently", document_type, fiscal_year)


def last_number(document_type: str, fiscal_year: int) -> int:
    """Last issued number for a key (0 when nothing was issued yet)."""
    value = db.session.execute(
        select(PieceSequence.last_number).where(
            PieceSequence.document_type == document_type,
            PieceSequence.fiscal_year == fiscal_year,
        )
    ).scalar_one_or_none()
    return value or 0


def format_piece_number(prefix: str, fiscal_year: int, number: int, pad: int | None = None) -> str:
    if pad is None:
        pad = current_app.config.get("PIECE_NUMBER_PAD", 6)
    return f"{prefix}-{fiscal_year}-{number:0{pad}d}"


def next_piece_number(prefix: str, fiscal_year: int, *, pad: int | None = None) -> str:
    """Issue and format in one step, e.g. COT-2026-000042."""
    return format_piece_number(prefix, fiscal_year, next_number(prefix, fiscal_year), pad=pad)
