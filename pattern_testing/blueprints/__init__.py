"""
Pattern Testing Engine
Blueprint registry and shared request helpers.

Every workflow blueprint is a thin JSON transport: it parses input, calls one
service function and serialises the result. Domain exceptions raised by the
services are mapped to HTTP responses by ``register_error_handlers``.
"""

import logging

from flask import request
from werkzeug.exceptions import HTTPException

from pattern_testing.core.exceptions import (
    ConflictError,
    NotFoundError,
    PermissionDenied,
    ValidationError,
)
from pattern_testing.utils.errors import E, api_error, domain_error

logger = logging.getLogger(__name__)

API_PREFIX = "/api/v1/pattern-testing"


def register_error_handlers(bp):
    """Attach domain-exception and catch-all handlers to *bp*."""

    @bp.errorhandler(NotFoundError)
    @bp.errorhandler(ValidationError)
    @bp.errorhandler(ConflictError)
    @bp.errorhandler(PermissionDenied)
    def _handle_domain(error):
        return domain_error(error)

    @bp.errorhandler(Exception)
    def _handle_unexpected(error: Exception):
        if isinstance(error, HTTPException):
            return error
        logger.exception("Unexpected error in %s endpoint=%s", bp.name, request.endpoint)
        return api_error(E.INTERNAL, "Internal server error")

    return bp


def json_body() -> dict:
    """Request JSON as a dict; {} for an empty or non-object body."""
    data = request.get_json(silent=True)
    return data if isinstance(data, dict) else {}


def require_fields(data: dict, *names):
    """Return a 400 error tuple naming missing fields, or None."""
    missing = [n for n in names if data.get(n) in (None, "")]
    if missing:
        return api_error(
            E.VALIDATION_REQUIRED,
            f"Missing required fields: {', '.join(missing)}",
            details={"missing": missing},
        )
    return None


def int_value(data: dict, name: str, required: bool = True):
    """Read an integer field from a body or args mapping.

    Returns (value, None) or (None, error_tuple). Accepts numeric strings
    (query parameters) but not booleans or floats with a fraction.
    """
    raw = data.get(name)
    if raw in (None, ""):
        if required:
            return None, api_error(E.VALIDATION_REQUIRED, f"{name} is required")
        return None, None
    if isinstance(raw, bool):
        return None, api_error(E.VALIDATION_INVALID, f"{name} must be an integer")
    if isinstance(raw, int):
        return raw, None
    if isinstance(raw, float) and raw.is_integer():
        return int(raw), None
    try:
        return int(str(raw).strip()), None
    except ValueError:
        return None, api_error(E.VALIDATION_INVALID, f"{name} must be an integer")


def text_value(data: dict, name: str, required: bool = False):
    """Read a string field. Returns (value, None) or (None, error_tuple)."""
    raw = data.get(name)
    if raw is None:
        if required:
            return None, api_error(E.VALIDATION_REQUIRED, f"{name} is required")
        return None, None
    if not isinstance(raw, str):
        return None, api_error(E.VALIDATION_INVALID, f"{name} must be a string")
    return raw, None


def paginate_list(items, default_limit=200, max_limit=1000):
    """Apply limit/offset query params to an already-loaded list.

    Returns:
        (page_items, total_count)
    """
    total = len(items)
    try:
        limit = min(int(request.args.get("limit", default_limit)), max_limit)
    except (ValueError, TypeError):
        limit = default_limit
    try:
        offset = max(int(request.args.get("offset", 0)), 0)
    except (ValueError, TypeError):
        offset = 0
    return items[offset:offset + max(limit, 0)], total
