# Overview: Shared request parsing and error responses for the JSON blueprints.

from flask import current_app, jsonify, request

from ..errors import CoreError, StorageUnavailableError, ValidationError
from ..validation import coerce_int


def actor_id() -> int | None:
    """
    Acting user from the X-Actor-Id header.

    Authentication happens upstream; the core only records who acted.
    """
    raw = request.headers.get("X-Actor-Id")
    if raw is None or raw.strip() == "":
        return None
    return coerce_int(raw, "X-Actor-Id")


def json_body() -> dict:
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        raise ValidationError("Invalid JSON payload")
    return data


def flag_arg(name: str) -> bool:
    return (request.args.get(name) or "").strip().lower() in ("1", "true", "yes")


def error_response(exc: Exception, failure: str):
    """Map an exception raised by a service call to a JSON response."""
    if isinstance(exc, CoreError):
        return jsonify(exc.to_dict()), exc.status_code
    if isinstance(exc, KeyError):
        return jsonify({"error": f"Missing required field: {exc.args[0]}", "kind": "ValidationError"}), 400
    if isinstance(exc, StorageUnavailableError):
        current_app.logger.error("%s: %s", failure, exc)
        return jsonify({"error": "Storage temporarily unavailable", "kind": "StorageUnavailableError"}), 503
    current_app.logger.exception(failure)
    return jsonify({"error": "Internal server error"}), 500
