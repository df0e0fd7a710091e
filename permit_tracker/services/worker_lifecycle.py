"""
Worker Lifecycle Service

Workers follow the same three-role chain as permits, applied to a field
set instead of a whole document:

    submit  (Requester)          pending ← proposed fields, status pending_review
    review  (Reviewer)           pending_review → pending_approval
    approve (Approver)           pending_approval → approved, current ← pending
    reject  (Reviewer/Approver)  → rejected, pending discarded, current kept

Usage:
    from permit_tracker.services.worker_lifecycle import register_worker, transition_worker

    worker = register_worker({"name": "A. Kumar", "trade": "Welder"}, actor_name="S. Rao")
    transition_worker(worker["worker_id"], "Reviewer", "review", "R. Iyer")
"""

import logging
from datetime import datetime

from sqlalchemy import select

from permit_tracker.core.exceptions import InvalidTransitionError, ValidationError
from permit_tracker.models import db
from permit_tracker.models.audit import write_audit
from permit_tracker.models.permit import ROLE_REQUESTER, ROLES, format_timestamp, make_signature
from permit_tracker.models.worker import (
    WORKER_FIELDS,
    WORKER_PENDING_REVIEW,
    WORKER_STATUSES,
    WORKER_TRANSITIONS,
    Worker,
    WorkerRecord,
)
from permit_tracker.services.record_store import worker_store
from permit_tracker.utils.helpers import site_now

logger = logging.getLogger(__name__)


def _clean_fields(fields: dict | None) -> dict:
    fields = fields or {}
    unknown = sorted(set(fields) - WORKER_FIELDS)
    if unknown:
        logger.warning("Dropped unknown worker fields: %s", ", ".join(unknown))
    return {k: v for k, v in fields.items() if k in WORKER_FIELDS}


def validate_worker_transition(record: WorkerRecord, role: str, action: str) -> dict:
    """
    Returns:
        {"valid": bool, "from": str|None, "to": str|None, "reason": str|None}
    """
    rule = WORKER_TRANSITIONS.get(action)
    if not rule:
        return {"valid": False, "from": record.status, "to": None,
                "reason": f"Unknown action: {action}"}
    if role not in rule["roles"]:
        return {"valid": False, "from": record.status, "to": None,
                "reason": f"{role} cannot '{action}' a worker"}
    if record.status not in rule["from"]:
        return {"valid": False, "from": record.status, "to": rule["to"],
                "reason": f"Cannot '{action}' from status '{record.status}'"}
    return {"valid": True, "from": record.status, "to": rule["to"], "reason": None}


def apply_worker_action(
    record: WorkerRecord,
    role: str,
    action: str,
    actor_name: str,
    payload: dict | None = None,
    *,
    now: datetime,
) -> WorkerRecord:
    """Pure worker transition on a detached record."""
    payload = payload or {}
    if role not in ROLES:
        raise InvalidTransitionError(record.worker_id, role, action, record.status,
                                     f"Unknown role: {role}")
    check = validate_worker_transition(record, role, action)
    if not check["valid"]:
        raise InvalidTransitionError(record.worker_id, role, action, record.status, check["reason"])

    sig = make_signature(actor_name, now)
    if action == "submit":
        fields = _clean_fields(payload.get("fields"))
        if not fields:
            raise ValidationError("No worker fields to submit",
                                  details={"allowed": sorted(WORKER_FIELDS)})
        base = record.pending if record.status == WORKER_PENDING_REVIEW and record.pending else record.current
        record.pending = {**(base or {}), **fields}
        record.rejection = None
        record.signatures = {"requester": sig, "reviewer": None, "approver": None}
    elif action == "review":
        record.signatures["reviewer"] = sig
    elif action == "approve":
        record.signatures["approver"] = sig
        record.current = record.pending
        record.pending = None
    elif action == "reject":
        record.pending = None
        record.rejection = {
            "by": actor_name,
            "at": format_timestamp(now),
            "reason": payload.get("reason") or payload.get("comment"),
            "rejected_at_role": role,
        }

    record.status = check["to"]
    return record


def register_worker(fields: dict, actor_name: str) -> dict:
    """Create a worker with its first proposed field set, status pending_review."""
    if not actor_name:
        raise ValidationError("actor_name is required", details={"missing": ["actor_name"]})
    now = site_now()
    draft = apply_worker_action(
        WorkerRecord(worker_id="", status=None), ROLE_REQUESTER, "submit", actor_name,
        {"fields": fields}, now=now,
    )

    def build(worker_id: str) -> Worker:
        return Worker(
            worker_id=worker_id,
            status=draft.status,
            current=None,
            pending=draft.pending,
            signatures=draft.signatures,
        )

    def after_create(row: Worker) -> None:
        write_audit(
            entity_type="worker",
            entity_id=row.worker_id,
            action="worker.submit",
            actor=actor_name,
            actor_role=ROLE_REQUESTER,
            diff={"status": {"old": None, "new": row.status}, "fields": sorted(draft.pending)},
        )

    row = worker_store.create(build, after_create=after_create)
    logger.info("Worker %s registered", row.worker_id, extra={"worker_id": row.worker_id})
    return row.to_dict()


def transition_worker(
    worker_id: str,
    role: str,
    action: str,
    actor_name: str,
    payload: dict | None = None,
) -> dict:
    """
    Execute a worker lifecycle action atomically.

    Returns:
        {"success", "worker_id", "previous_status", "new_status", "action"}
    """
    payload = dict(payload or {})
    now = site_now()

    def mutator(record: WorkerRecord) -> WorkerRecord:
        return apply_worker_action(record, role, action, actor_name, payload, now=now)

    def after_apply(before: WorkerRecord, after: WorkerRecord) -> None:
        diff = {"status": {"old": before.status, "new": after.status}}
        if action == "submit":
            diff["fields"] = sorted((after.pending or {}).keys())
        write_audit(
            entity_type="worker",
            entity_id=worker_id,
            action=f"worker.{action}",
            actor=actor_name,
            actor_role=role,
            diff=diff,
        )

    result = worker_store.put_atomic(worker_id, mutator, after_apply=after_apply)
    logger.info(
        "Worker %s: %s by %s (%s → %s)",
        worker_id, action, role, result.before.status, result.after.status,
        extra={"worker_id": worker_id, "action": action, "role": role,
               "old_status": result.before.status, "new_status": result.after.status},
    )
    return {
        "success": True,
        "worker_id": worker_id,
        "previous_status": result.before.status,
        "new_status": result.after.status,
        "action": action,
    }


def propose_worker_edit(worker_id: str, fields: dict, actor_name: str) -> dict:
    return transition_worker(worker_id, ROLE_REQUESTER, "submit", actor_name, {"fields": fields})


def get_worker(worker_id: str) -> dict:
    return worker_store.get_row(worker_id).to_dict()


def list_workers(status: str | None = None) -> list[dict]:
    stmt = select(Worker).order_by(Worker.id)
    if status:
        if status not in WORKER_STATUSES:
            raise ValidationError(f"Unknown worker status: {status}",
                                  details={"allowed": list(WORKER_STATUSES)})
        stmt = stmt.where(Worker.status == status)
    return [w.to_dict() for w in db.session.execute(stmt).scalars().all()]
