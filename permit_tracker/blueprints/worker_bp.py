"""
Worker blueprint — worker records and their approval chain.

Endpoints:
    POST /api/v1/workers                         register (pending_review)
    GET  /api/v1/workers?status=                 list
    GET  /api/v1/workers/<worker_id>             detail
    PUT  /api/v1/workers/<worker_id>             propose an edit
    POST /api/v1/workers/<worker_id>/actions     review / approve / reject
"""

import logging

from flask import Blueprint, jsonify, request

from permit_tracker.blueprints import json_body, register_workflow_error_handlers
from permit_tracker.services import worker_lifecycle
from permit_tracker.utils.errors import E, api_error

logger = logging.getLogger(__name__)

worker_bp = Blueprint("worker", __name__, url_prefix="/api/v1")
register_workflow_error_handlers(worker_bp)


@worker_bp.route("/workers", methods=["POST"])
def register_worker():
    data = json_body()
    if not data.get("fields"):
        return api_error(E.VALIDATION_REQUIRED, "fields is required")
    worker = worker_lifecycle.register_worker(data["fields"], data.get("actor_name"))
    return jsonify(worker), 201


@worker_bp.route("/workers", methods=["GET"])
def list_workers():
    items = worker_lifecycle.list_workers(request.args.get("status"))
    return jsonify({"items": items, "total": len(items)})


@worker_bp.route("/workers/<worker_id>", methods=["GET"])
def get_worker(worker_id):
    return jsonify(worker_lifecycle.get_worker(worker_id))


@worker_bp.route("/workers/<worker_id>", methods=["PUT"])
def propose_edit(worker_id):
    data = json_body()
    if not data.get("fields") or not data.get("actor_name"):
        return api_error(E.VALIDATION_REQUIRED, "fields and actor_name are required")
    return jsonify(worker_lifecycle.propose_worker_edit(worker_id, data["fields"], data["actor_name"]))


@worker_bp.route("/workers/<worker_id>/actions", methods=["POST"])
def run_action(worker_id):
    data = json_body()
    missing = [k for k in ("role", "action", "actor_name") if not data.get(k)]
    if missing:
        return api_error(E.VALIDATION_REQUIRED, f"Missing required field(s): {', '.join(missing)}",
                         details={"missing": missing})
    result = worker_lifecycle.transition_worker(
        worker_id, data["role"], data["action"], data["actor_name"], data.get("payload") or {},
    )
    return jsonify(result)
