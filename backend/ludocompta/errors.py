# Overview: Domain error taxonomy shared by services, routes and the CLI.

"""
Every error raised by the cash and ledger services derives from
LudocomptaError. Routes translate them to HTTP responses using
`http_status` and `code`; nothing else in the hierarchy carries
transport concerns.

Only TransientStorageError is retryable, and retrying is always the
caller's decision: the services never retry on their own.
"""

from __future__ import annotations


class LudocomptaError(Exception):
    """Base class for domain errors."""

    code = "error"
    http_status = 400
    retryable = False

    def __init__(self, message: str, **details):
        super().__init__(message)
        self.message = message
        self.details = details

    def to_dict(self) -> dict:
        payload = {"error": self.message, "code": self.code}
        if self.details:
            payload["details"] = self.details
        return payload


class ValidationError(LudocomptaError, ValueError):
    """400-level input problem (rejected before any write)."""

    code = "validation_error"
    http_status = 400


class NotFoundError(LudocomptaError, LookupError):
    code = "not_found"
    http_status = 404


class InvalidStateError(LudocomptaError):
    """Operation attempted against a state machine in the wrong state."""

    code = "invalid_state"
    http_status = 409


class ConflictError(LudocomptaError):
    """Uniqueness or singleton invariant violated (e.g. second open session)."""

    code = "conflict"
    http_status = 409


class BusinessRuleError(LudocomptaError):
    """Individually valid operation that breaks a domain rule."""

    code = "business_rule"
    http_status = 422


class AlreadyPostedError(BusinessRuleError):
    """Business event already has a recorded accounting piece."""

    code = "already_posted"


class UnbalancedPieceError(BusinessRuleError):
    """Piece whose debits and credits do not net to zero."""

    code = "unbalanced_piece"


class TransientStorageError(LudocomptaError):
    """Lock wait timeout, deadlock or optimistic-lock conflict."""

    code = "transient_storage"
    http_status = 503
    retryable = True
