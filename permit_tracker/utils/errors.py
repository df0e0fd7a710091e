"""Request-shape error responses.

Workflow errors raised by services are translated by the blueprint error
handlers. ``api_error`` covers problems a view catches itself before any
service runs: missing body, unknown export format, missing query args.

    return api_error(E.VALIDATION_REQUIRED, "role and email are required")
"""

from __future__ import annotations

from flask import jsonify


class E:
    """Machine-readable error codes for request-shape failures."""

    VALIDATION_REQUIRED = "ERR_VALIDATION_REQUIRED"
    VALIDATION_INVALID = "ERR_VALIDATION_INVALID"


_DEFAULT_STATUS: dict[str, int] = {
    E.VALIDATION_REQUIRED: 400,
    E.VALIDATION_INVALID: 400,
}


def api_error(code: str, message: str, *, status: int | None = None, details: dict | None = None):
    """Return ``(jsonify(body), status)`` in the ``{success, error, message}`` envelope."""
    body: dict = {"success": False, "error": code, "message": message}
    if details:
        body["details"] = details
    return jsonify(body), status or _DEFAULT_STATUS.get(code, 400)
