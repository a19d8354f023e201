# Overview: Maps service exceptions to JSON error responses for the blueprints.

from flask import current_app, jsonify
from sqlalchemy.orm.exc import StaleDataError

from .services.errors import (
    ConcurrencyFailure,
    ConsistencyFailure,
    InventoryError,
    NotFoundFailure,
    ValidationFailure,
)


STATUS_BY_FAMILY = (
    (ValidationFailure, 400),
    (NotFoundFailure, 404),
    (ConcurrencyFailure, 409),
    (ConsistencyFailure, 500),
)


def status_for(exc: InventoryError) -> int:
    for family, status in STATUS_BY_FAMILY:
        if isinstance(exc, family):
            return status
    return 500


def error_response(exc: InventoryError):
    status = status_for(exc)
    if status == 500:
        current_app.logger.error("Consistency failure: %s", exc.message)
    return jsonify(exc.to_dict()), status


def stale_response(exc: StaleDataError):
    """A task or line row was changed by another request mid-flight."""
    current_app.logger.warning("Stale task/line row: %s", exc)
    return jsonify({
        "error": "Record was modified by another request; reload and retry",
        "code": "stale_record",
    }), 409


def bad_request(message: str, code: str = "bad_request"):
    return jsonify({"error": message, "code": code}), 400


def unexpected_error(message: str):
    current_app.logger.exception(message)
    return jsonify({"error": "Internal server error", "code": "internal_error"}), 500
