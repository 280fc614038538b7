# Overview: Request helpers and the error-mapping decorator shared by API routes.

from functools import wraps

from flask import current_app, jsonify, request

from .services.errors import (
    ConversionAmbiguous,
    EntityNotFound,
    InsufficientStock,
    InvalidStateTransition,
    LockTimeout,
    PriceNotFound,
    ReferentialConflict,
    SettlementError,
)

_STATUS_BY_ERROR = (
    (EntityNotFound, 404),
    (InsufficientStock, 422),
    (ConversionAmbiguous, 422),
    (PriceNotFound, 422),
    (InvalidStateTransition, 409),
    (ReferentialConflict, 409),
    (LockTimeout, 503),
)


def status_for(error: SettlementError) -> int:
    for error_type, status in _STATUS_BY_ERROR:
        if isinstance(error, error_type):
            return status
    return 400


def actor_user_id() -> int | None:
    """
    Acting user for attribution, from the X-Actor-Id header.

    Authentication lives in front of this service; the header is trusted
    as-is and only used for created_by/approved_by columns and audit events.
    """
    raw = request.headers.get("X-Actor-Id")
    if raw is None or not raw.strip():
        return None
    try:
        return int(raw)
    except ValueError:
        return None


def json_body() -> dict:
    payload = request.get_json(silent=True)
    if payload is None:
        return {}
    if not isinstance(payload, dict):
        raise ValueError("request body must be a JSON object")
    return payload


def settlement_endpoint(f):
    """
    Map engine errors to JSON responses.

    - SettlementError -> {"error", "code", "details"} with its HTTP status
    - ValueError      -> 400
    - anything else   -> logged, 500
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        try:
            return f(*args, **kwargs)
        except SettlementError as e:
            return jsonify(e.to_dict()), status_for(e)
        except ValueError as e:
            return jsonify({"error": str(e), "code": "INVALID_INPUT", "details": {}}), 400
        except Exception:
            current_app.logger.exception("Unhandled error in %s", request.path)
            return jsonify({"error": "Internal server error", "code": "INTERNAL", "details": {}}), 500

    return decorated_function
