# Overview: Shared helpers for the JSON blueprints (body parsing, error mapping).

from flask import Blueprint, current_app, jsonify, request
from werkzeug.exceptions import HTTPException

from ..errors import LudocomptaError, ValidationError
from ..validation import require_id


def json_body() -> dict:
    data = request.get_json(silent=True)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValidationError("Request body must be a JSON object")
    return data


def operator_id(data: dict) -> int:
    """Authenticated user id, supplied by the identity layer in front of this API."""
    return require_id(data.get("operator_id"), "operator_id")


def register_error_handlers(bp: Blueprint) -> None:
    """Map domain errors to {"error", "code"} with their HTTP status."""

    @bp.errorhandler(LudocomptaError)
    def handle_domain_error(exc: LudocomptaError):
        return jsonify(exc.to_dict()), exc.http_status

    @bp.errorhandler(Exception)
    def handle_unexpected(exc: Exception):
        if isinstance(exc, HTTPException):
            return exc
        current_app.logger.exception("Unhandled error on %s %s", request.method, request.path)
        return jsonify({"error": "Internal server error", "code": "internal_error"}), 500
