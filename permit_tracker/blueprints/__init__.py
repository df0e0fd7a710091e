"""
Work Permit Tracker
Blueprint registry and shared error translation.
"""

import logging

from flask import jsonify, request
from werkzeug.exceptions import HTTPException

from permit_tracker.core.exceptions import PermitWorkflowError

logger = logging.getLogger(__name__)


def register_workflow_error_handlers(bp) -> None:
    """Translate service exceptions to ``{success: false, error, message}``."""

    @bp.errorhandler(PermitWorkflowError)
    def _handle_workflow_error(error: PermitWorkflowError):
        if error.http_status >= 500:
            logger.error("%s on %s: %s", error.kind, request.path, error)
        else:
            logger.info("%s on %s: %s", error.kind, request.path, error)
        return jsonify(error.to_response()), error.http_status

    @bp.errorhandler(Exception)
    def _handle_unexpected(error: Exception):
        if isinstance(error, HTTPException):
            return error
        logger.exception("Unexpected error in %s endpoint=%s", bp.name, request.endpoint)
        return jsonify({"success": False, "error": "InternalError",
                        "message": "Internal server error"}), 500


def json_body() -> dict:
    """Request JSON as a dict; empty dict when the body is missing."""
    data = request.get_json(silent=True)
    return data if isinstance(data, dict) else {}
