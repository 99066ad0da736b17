"""Standardised API error responses.

Usage
-----
    from pattern_testing.utils.errors import api_error, E

    return api_error(E.NOT_FOUND, "Assignment not found")
    return api_error(E.VALIDATION_REQUIRED, "pattern_id is required")
    return api_error(E.CONFLICT_STATE, "Cannot start", details={"current": "pending"})
"""

from __future__ import annotations

from flask import jsonify

from pattern_testing.core.exceptions import (
    AlreadyCompletedError,
    ConflictError,
    DuplicatePendingApplication,
    InvalidTransitionError,
    NotFoundError,
    PermissionDenied,
    ValidationError,
)


# ── Error code constants ──────────────────────────────────────────────
class E:
    """Machine-readable error code constants. All carry the ERR_ prefix."""

    # Malformed input – HTTP 400
    VALIDATION_REQUIRED = "ERR_VALIDATION_REQUIRED"
    VALIDATION_INVALID = "ERR_VALIDATION_INVALID"

    # Business-rule violation – HTTP 422
    VALIDATION_CONSTRAINT = "ERR_VALIDATION_CONSTRAINT"
    INVALID_TRANSITION = "ERR_INVALID_TRANSITION"

    # Not-found – HTTP 404
    NOT_FOUND = "ERR_NOT_FOUND"

    # Conflict – HTTP 409
    CONFLICT_DUPLICATE = "ERR_CONFLICT_DUPLICATE"
    CONFLICT_STATE = "ERR_CONFLICT_STATE"
    ALREADY_COMPLETED = "ERR_ALREADY_COMPLETED"

    # Permissions – HTTP 403
    FORBIDDEN = "ERR_FORBIDDEN"

    # Server – HTTP 500
    DATABASE = "ERR_DATABASE"
    INTERNAL = "ERR_INTERNAL"


# ── Default HTTP status mapping ───────────────────────────────────────
_DEFAULT_STATUS: dict[str, int] = {
    E.VALIDATION_REQUIRED: 400,
    E.VALIDATION_INVALID: 400,
    E.VALIDATION_CONSTRAINT: 422,
    E.INVALID_TRANSITION: 422,
    E.NOT_FOUND: 404,
    E.CONFLICT_DUPLICATE: 409,
    E.CONFLICT_STATE: 409,
    E.ALREADY_COMPLETED: 409,
    E.FORBIDDEN: 403,
    E.DATABASE: 500,
    E.INTERNAL: 500,
}


def api_error(
    code: str,
    message: str,
    *,
    status: int | None = None,
    details: dict | None = None,
):
    """Return a standard JSON error response.

    Parameters
    ----------
    code : str
        Machine-readable error code (use ``E.*`` constants).
    message : str
        Human-readable explanation for developers / UI.
    status : int, optional
        HTTP status override.  Falls back to ``_DEFAULT_STATUS[code]``,
        then to ``400``.
    details : dict, optional
        Extra structured payload (current status, offending fields, etc.).

    Returns
    -------
    tuple[Response, int]
        ``(jsonify(body), http_status)`` – drop-in for Flask views.
    """

    http_status = status or _DEFAULT_STATUS.get(code, 400)

    body: dict = {
        "error": message,
        "code": code,
    }
    if details:
        body["details"] = details

    return jsonify(body), http_status


def domain_error(exc: Exception):
    """Translate a domain exception from the service layer into a response.

    Subclasses are checked before their bases so that, for example, an
    AlreadyCompletedError keeps its own code instead of the generic conflict.
    """
    if isinstance(exc, NotFoundError):
        return api_error(E.NOT_FOUND, str(exc))
    if isinstance(exc, PermissionDenied):
        return api_error(E.FORBIDDEN, str(exc))
    if isinstance(exc, InvalidTransitionError):
        return api_error(E.INVALID_TRANSITION, str(exc), details=exc.details)
    if isinstance(exc, ValidationError):
        return api_error(E.VALIDATION_CONSTRAINT, str(exc), details=exc.details)
    if isinstance(exc, AlreadyCompletedError):
        return api_error(E.ALREADY_COMPLETED, str(exc), details=exc.details)
    if isinstance(exc, DuplicatePendingApplication):
        return api_error(E.CONFLICT_DUPLICATE, str(exc), details=exc.details)
    if isinstance(exc, ConflictError):
        return api_error(E.CONFLICT_STATE, str(exc), details=exc.details)
    raise TypeError(f"Not a domain exception: {type(exc).__name__}")
