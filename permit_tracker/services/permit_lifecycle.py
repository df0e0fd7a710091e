"""
Permit Lifecycle Service — Status Transition Engine

Manages permit status transitions with:
  - Closed-first check (Closed is absorbing)
  - Role binding against the permit's ``role_emails``
  - Transition validation (PERMIT_TRANSITIONS)
  - Field locking via ``field_policy``
  - Renewal actions delegated to ``renewal_workflow``
  - Audit row written in the same transaction as the change

Transitions:
  submit, review, reject, approve, initiate_closure, approve_closure,
  reject_closure
Renewal actions:
  propose_renewal, approve_renewal, reject_renewal

Usage:
    from permit_tracker.services.permit_lifecycle import execute_action

    result = execute_action({
        "permit_id": "WP-1001",
        "role": "Reviewer",
        "actor_name": "R. Iyer",
        "action": "review",
        "payload": {"comment": "Gas test OK"},
    })
"""

import logging
from datetime import datetime

from flask import current_app

from permit_tracker.core.exceptions import (
    InvalidTransitionError,
    PermitClosedError,
    RoleBindingError,
    ValidationError,
)
from permit_tracker.models.audit import write_audit
from permit_tracker.models.permit import (
    ROLE_APPROVER,
    ROLE_REQUESTER,
    ROLE_REVIEWER,
    ROLES,
    STATUS_ACTIVE,
    STATUS_CLOSED,
    STATUS_CLOSURE_PENDING_APPROVAL,
    STATUS_CLOSURE_PENDING_REVIEW,
    STATUS_NEW,
    STATUS_PENDING_APPROVAL,
    STATUS_PENDING_REVIEW,
    STATUS_REJECTED,
    PermitRecord,
    format_timestamp,
    make_signature,
)
from permit_tracker.services import renewal_workflow
from permit_tracker.services.field_policy import filter_payload, indexed_columns, merge_document
from permit_tracker.services.record_store import permit_store
from permit_tracker.utils.helpers import site_now

logger = logging.getLogger(__name__)


# ── Transition table ─────────────────────────────────────────────────────────
# action → list of {"roles", "from", "to"}; roles × from is a cross product.

PERMIT_TRANSITIONS = {
    "submit": [
        {"roles": {ROLE_REQUESTER},
         "from": {STATUS_NEW, STATUS_PENDING_REVIEW},
         "to": STATUS_PENDING_REVIEW},
    ],
    "review": [
        {"roles": {ROLE_REVIEWER},
         "from": {STATUS_PENDING_REVIEW},
         "to": STATUS_PENDING_APPROVAL},
    ],
    "reject": [
        {"roles": {ROLE_REVIEWER, ROLE_APPROVER},
         "from": {STATUS_PENDING_REVIEW, STATUS_PENDING_APPROVAL},
         "to": STATUS_REJECTED},
    ],
    "approve": [
        {"roles": {ROLE_APPROVER},
         "from": {STATUS_PENDING_APPROVAL},
         "to": STATUS_ACTIVE},
        {"roles": {ROLE_APPROVER},
         "from": {STATUS_CLOSURE_PENDING_APPROVAL},
         "to": STATUS_CLOSED},
    ],
    "initiate_closure": [
        {"roles": {ROLE_REQUESTER},
         "from": {STATUS_ACTIVE},
         "to": STATUS_CLOSURE_PENDING_REVIEW},
    ],
    "approve_closure": [
        {"roles": {ROLE_REVIEWER},
         "from": {STATUS_CLOSURE_PENDING_REVIEW},
         "to": STATUS_CLOSURE_PENDING_APPROVAL},
    ],
    "reject_closure": [
        {"roles": {ROLE_REVIEWER, ROLE_APPROVER},
         "from": {STATUS_CLOSURE_PENDING_REVIEW, STATUS_CLOSURE_PENDING_APPROVAL},
         "to": STATUS_ACTIVE},
    ],
}

ALL_ACTIONS = tuple(PERMIT_TRANSITIONS) + tuple(renewal_workflow.RENEWAL_ACTIONS)

_REMARKS_FIELD = {ROLE_REVIEWER: "Reviewer_Remarks", ROLE_APPROVER: "Approver_Remarks"}
_CLOSURE_REMARKS_FIELD = {
    ROLE_REVIEWER: "Closure_Reviewer_Remarks",
    ROLE_APPROVER: "Closure_Approver_Remarks",
}
_CLOSURE_DATE_FIELD = {
    ROLE_REVIEWER: "Closure_Reviewer_Date",
    ROLE_APPROVER: "Closure_Approver_Date",
}


def validate_transition(record: PermitRecord, role: str, action: str) -> dict:
    """
    Validate whether *role* may take *action* in the record's current status.

    Returns:
        {"valid": bool, "from": str, "to": str|None, "reason": str|None}
    """
    rules = PERMIT_TRANSITIONS.get(action)
    if not rules:
        return {"valid": False, "from": record.status, "to": None,
                "reason": f"Unknown action: {action}"}

    for rule in rules:
        if role in rule["roles"] and record.status in rule["from"]:
            return {"valid": True, "from": record.status, "to": rule["to"], "reason": None}

    if not any(role in rule["roles"] for rule in rules):
        reason = f"{role} cannot '{action}'"
    else:
        reason = f"Cannot '{action}' from status '{record.status}'"
    return {"valid": False, "from": record.status, "to": None, "reason": reason}


def check_role_binding(record: PermitRecord, role: str, actor_email: str | None) -> None:
    """Raise RoleBindingError if *actor_email* is not bound to *role*."""
    if actor_email is None:
        return
    bound = record.email_for(role)
    if not bound or bound.strip().lower() != actor_email.strip().lower():
        raise RoleBindingError(record.permit_id, role)


# ── Side effects per action ──────────────────────────────────────────────────


def _append_rejection_remark(document: dict, role: str, actor_name: str, comment: str | None) -> None:
    field = _REMARKS_FIELD[role]
    note = f"[Rejected by {actor_name}: {comment or ''}]"
    existing = document.get(field)
    document[field] = f"{existing}\n{note}" if existing else note


def _apply_side_effects(
    record: PermitRecord,
    role: str,
    action: str,
    target: str,
    actor_name: str,
    payload: dict,
    now: datetime,
) -> None:
    doc = record.document
    comment = payload.get("comment")
    stamp = format_timestamp(now)
    sig = make_signature(actor_name, now)

    if action == "submit":
        doc = merge_document(doc, role, action, record.status, payload)
        columns = indexed_columns(doc)
        record.work_type = columns["work_type"]
        record.latitude = columns["latitude"]
        record.longitude = columns["longitude"]

    elif action == "review":
        doc["Reviewer_Sig"] = sig
        doc["Reviewer_Remarks"] = comment
        renewal_workflow.decide_bundled_renewal(record, role, actor_name, payload, now=now)

    elif action == "reject":
        _append_rejection_remark(doc, role, actor_name, comment)
        doc["Rejection"] = {"by": actor_name, "role": role, "at": stamp, "reason": comment}
        renewal_workflow.cascade_parent_rejection(record, role, actor_name, now)

    elif action == "approve" and target == STATUS_ACTIVE:
        doc["Approver_Sig"] = sig
        doc["Approver_Remarks"] = comment
        renewal_workflow.decide_bundled_renewal(record, role, actor_name, payload, now=now)

    elif action == "initiate_closure":
        doc = merge_document(doc, role, action, record.status, payload)
        doc["Closure_Receiver_Sig"] = sig
        doc["Site_Restored_Check"] = "Yes"
        doc["Closure_Requestor_Date"] = stamp

    elif action == "approve_closure":
        doc = merge_document(doc, role, action, record.status, payload)
        doc["Closure_Reviewer_Sig"] = sig
        doc["Closure_Reviewer_Date"] = stamp

    elif action == "approve" and target == STATUS_CLOSED:
        doc = merge_document(doc, role, action, record.status, payload)
        doc["Closure_Issuer_Sig"] = sig
        doc["Closure_Issuer_Remarks"] = comment
        doc["Closure_Approver_Date"] = stamp

    elif action == "reject_closure":
        field = _CLOSURE_REMARKS_FIELD[role]
        remarks = filter_payload(role, action, record.status, payload).get(field) or comment or ""
        doc[field] = f"[REJECTED by {actor_name}]: {remarks}"
        doc[_CLOSURE_DATE_FIELD[role]] = stamp

    record.document = doc


# ── Pure dispatch ────────────────────────────────────────────────────────────


def apply_action(
    record: PermitRecord,
    role: str,
    action: str,
    actor_name: str,
    payload: dict | None = None,
    *,
    actor_email: str | None = None,
    now: datetime,
    max_hours: float = renewal_workflow.DEFAULT_MAX_HOURS,
) -> PermitRecord:
    """
    Apply one action to a detached record and return it.

    Order of checks: Closed, role, role binding, transition, payload.
    Raises before mutating anything visible to the caller's store.
    """
    payload = payload or {}

    if record.status == STATUS_CLOSED:
        raise PermitClosedError(record.permit_id)
    if role not in ROLES:
        raise InvalidTransitionError(record.permit_id, role, action, record.status,
                                     f"Unknown role: {role}")
    check_role_binding(record, role, actor_email)

    if action in renewal_workflow.RENEWAL_ACTIONS:
        if role not in renewal_workflow.RENEWAL_ACTIONS[action]:
            raise InvalidTransitionError(record.permit_id, role, action, record.status,
                                         f"{role} cannot '{action}'")
        if action == "propose_renewal":
            return renewal_workflow.propose_renewal(
                record, actor_name, payload, now=now, max_hours=max_hours)
        return renewal_workflow.decide_renewal(record, role, action, actor_name, payload, now=now)

    check = validate_transition(record, role, action)
    if not check["valid"]:
        raise InvalidTransitionError(record.permit_id, role, action, record.status, check["reason"])

    _apply_side_effects(record, role, action, check["to"], actor_name, payload, now)
    record.status = check["to"]
    return record


def available_actions(record: PermitRecord, role: str) -> list[str]:
    """List the actions *role* can legally take on *record* right now."""
    if record.status == STATUS_CLOSED or role not in ROLES:
        return []
    actions = [
        action for action in PERMIT_TRANSITIONS
        if validate_transition(record, role, action)["valid"]
    ]
    actions.extend(
        action for action in renewal_workflow.RENEWAL_ACTIONS
        if renewal_workflow.renewal_action_allowed(record, role, action)
    )
    return actions


# ── Transactional entry point ────────────────────────────────────────────────


def _audit_diff(before: PermitRecord, after: PermitRecord, role: str, payload: dict) -> dict:
    diff = {"status": {"old": before.status, "new": after.status}, "role": role}
    if len(after.renewals) != len(before.renewals) or (
        after.tail_renewal and before.tail_renewal
        and after.tail_renewal["status"] != before.tail_renewal["status"]
    ):
        diff["renewal"] = {
            "index": len(after.renewals) - 1,
            "old": before.tail_renewal["status"] if len(before.renewals) == len(after.renewals) else None,
            "new": after.tail_renewal["status"],
        }
    if payload.get("comment"):
        diff["comment"] = payload["comment"]
    return diff


def transition_permit(
    permit_id: str,
    role: str,
    action: str,
    actor_name: str,
    payload: dict | None = None,
    *,
    actor_email: str | None = None,
) -> dict:
    """
    Execute a permit lifecycle action as one atomic read-modify-write.

    Returns:
        {"success", "permit_id", "previous_status", "new_status", "action"}

    Raises:
        NotFoundError, PermitClosedError, InvalidTransitionError,
        RoleBindingError, ValidationError (and renewal subclasses),
        ConflictError, StorageUnavailableError
    """
    payload = dict(payload or {})
    now = site_now()
    max_hours = current_app.config.get("RENEWAL_MAX_HOURS", renewal_workflow.DEFAULT_MAX_HOURS)

    def mutator(record: PermitRecord) -> PermitRecord:
        return apply_action(record, role, action, actor_name, payload,
                            actor_email=actor_email, now=now, max_hours=max_hours)

    def after_apply(before: PermitRecord, after: PermitRecord) -> None:
        write_audit(
            entity_type="permit",
            entity_id=permit_id,
            action=f"permit.{action}",
            actor=actor_name,
            actor_role=role,
            diff=_audit_diff(before, after, role, payload),
        )

    result = permit_store.put_atomic(permit_id, mutator, after_apply=after_apply)

    logger.info(
        "Permit %s: %s by %s (%s → %s)",
        permit_id, action, role, result.before.status, result.after.status,
        extra={
            "permit_id": permit_id,
            "action": action,
            "role": role,
            "old_status": result.before.status,
            "new_status": result.after.status,
            "attempt": result.attempts,
        },
    )
    return {
        "success": True,
        "permit_id": permit_id,
        "previous_status": result.before.status,
        "new_status": result.after.status,
        "action": action,
    }


def execute_action(envelope: dict) -> dict:
    """Run an action envelope ``{permit_id, role, actor_name, action, payload, actor_email?}``."""
    envelope = envelope or {}
    missing = [key for key in ("permit_id", "role", "actor_name", "action") if not envelope.get(key)]
    if missing:
        raise ValidationError(
            f"Missing required field(s): {', '.join(missing)}",
            details={"missing": missing},
        )
    payload = envelope.get("payload") or {}
    if not isinstance(payload, dict):
        raise ValidationError("payload must be an object")

    return transition_permit(
        envelope["permit_id"],
        envelope["role"],
        envelope["action"],
        envelope["actor_name"],
        payload,
        actor_email=envelope.get("actor_email"),
    )
