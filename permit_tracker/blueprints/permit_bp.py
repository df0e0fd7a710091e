"""
Permit blueprint — creation, lifecycle actions and dashboard reads.

Endpoints:
    POST /api/v1/permits                          create (optionally submit)
    GET  /api/v1/permits?role=&email=             dashboard for one actor
    GET  /api/v1/permits/stats                    counts by status / work type
    GET  /api/v1/permits/map                      active permits with coordinates
    GET  /api/v1/permits/<permit_id>              full permit with renewals
    GET  /api/v1/permits/<permit_id>/actions      actions available to ?role=
    POST /api/v1/permits/<permit_id>/actions      run an action envelope
    GET  /api/v1/permits/<permit_id>/renewals     renewal log
    GET  /api/v1/permits/<permit_id>/audit        audit trail
"""

import logging

from flask import Blueprint, jsonify, request

from permit_tracker.blueprints import json_body, register_workflow_error_handlers
from permit_tracker.models.audit import audit_trail
from permit_tracker.services import permit_service
from permit_tracker.services.permit_lifecycle import available_actions, execute_action
from permit_tracker.services.record_store import permit_store
from permit_tracker.utils.errors import E, api_error

logger = logging.getLogger(__name__)

permit_bp = Blueprint("permit", __name__, url_prefix="/api/v1")
register_workflow_error_handlers(permit_bp)


@permit_bp.route("/permits", methods=["POST"])
def create_permit():
    data = json_body()
    if not data:
        return api_error(E.VALIDATION_REQUIRED, "Request body is required")
    permit = permit_service.create_permit(data)
    return jsonify(permit), 201


@permit_bp.route("/permits", methods=["GET"])
def list_permits():
    """Dashboard rows for ``role`` + ``email``."""
    role = request.args.get("role", "").strip()
    email = request.args.get("email", "").strip()
    if not role or not email:
        return api_error(E.VALIDATION_REQUIRED, "role and email query parameters are required")
    items = permit_service.list_permits_for_role(role, email)
    return jsonify({"items": items, "total": len(items)})


@permit_bp.route("/permits/stats", methods=["GET"])
def permit_stats():
    return jsonify({"success": True, **permit_service.permit_stats()})


@permit_bp.route("/permits/map", methods=["GET"])
def permit_map():
    return jsonify(permit_service.map_data())


@permit_bp.route("/permits/<permit_id>", methods=["GET"])
def get_permit(permit_id):
    return jsonify(permit_service.get_permit(permit_id))


@permit_bp.route("/permits/<permit_id>/actions", methods=["GET"])
def list_actions(permit_id):
    role = request.args.get("role", "").strip()
    if not role:
        return api_error(E.VALIDATION_REQUIRED, "role query parameter is required")
    record = permit_store.get(permit_id)
    return jsonify({
        "permit_id": permit_id,
        "status": record.status,
        "role": role,
        "actions": available_actions(record, role),
    })


@permit_bp.route("/permits/<permit_id>/actions", methods=["POST"])
def run_action(permit_id):
    """Execute ``{role, actor_name, action, payload, actor_email?}`` on a permit."""
    data = json_body()
    envelope = {
        "permit_id": permit_id,
        "role": data.get("role"),
        "actor_name": data.get("actor_name"),
        "action": data.get("action"),
        "payload": data.get("payload") or {},
        "actor_email": data.get("actor_email"),
    }
    return jsonify(execute_action(envelope))


@permit_bp.route("/permits/<permit_id>/renewals", methods=["GET"])
def list_renewals(permit_id):
    renewals = permit_service.list_renewals(permit_id)
    return jsonify({"permit_id": permit_id, "renewals": renewals, "total": len(renewals)})


@permit_bp.route("/permits/<permit_id>/audit", methods=["GET"])
def permit_audit(permit_id):
    permit_store.get_row(permit_id)
    return jsonify([log.to_dict() for log in audit_trail("permit", permit_id)])
