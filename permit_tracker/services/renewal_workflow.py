"""
Renewal Sub-Workflow

A permit's ``renewals`` list is an append-only log of time-boxed clearance
extensions. Only the last element (the tail) is ever mutated, and the
parent status follows the tail:

    pending_review    → Renewal Pending Review
    pending_approval  → Renewal Pending Approval
    approved|rejected → Active

Proposal validation order:
    InvalidRenewalWindowError → OutOfBoundsError → DurationExceededError
    → PendingRenewalExistsError → OverlapError

Every function here is pure: it takes a detached ``PermitRecord`` and
returns it mutated, without touching the session. The lifecycle engine
runs them inside ``RecordStore.put_atomic``.
"""

import logging
from datetime import datetime, timedelta

from permit_tracker.core.exceptions import (
    DurationExceededError,
    InvalidRenewalWindowError,
    InvalidTransitionError,
    NotFoundError,
    OutOfBoundsError,
    OverlapError,
    PendingRenewalExistsError,
    ValidationError,
)
from permit_tracker.models.permit import (
    FIRST_CYCLE_STATUSES,
    RENEWAL_APPROVED,
    RENEWAL_PENDING_APPROVAL,
    RENEWAL_PENDING_REVIEW,
    RENEWAL_PENDING_STATUSES,
    RENEWAL_REJECTED,
    RENEWAL_TO_PERMIT_STATUS,
    ROLE_APPROVER,
    ROLE_REQUESTER,
    ROLE_REVIEWER,
    STATUS_ACTIVE,
    STATUS_RENEWAL_PENDING_APPROVAL,
    STATUS_RENEWAL_PENDING_REVIEW,
    PermitRecord,
    format_timestamp,
    make_signature,
)
from permit_tracker.utils.helpers import parse_datetime_input

logger = logging.getLogger(__name__)

DEFAULT_MAX_HOURS = 8

PARENT_REJECTED_REASON = "Parent Permit Rejected"

RENEWAL_ACTIONS = {
    "propose_renewal": {ROLE_REQUESTER},
    "approve_renewal": {ROLE_REVIEWER, ROLE_APPROVER},
    "reject_renewal": {ROLE_REVIEWER, ROLE_APPROVER},
}

# Permit statuses in which a Requester may propose a renewal. Pending
# Review / Pending Approval only cover the bundled first renewal.
PROPOSAL_STATUSES = frozenset({
    STATUS_ACTIVE,
    STATUS_RENEWAL_PENDING_REVIEW,
    STATUS_RENEWAL_PENDING_APPROVAL,
}) | FIRST_CYCLE_STATUSES

RENEWAL_DECISION_STATUSES = frozenset({
    STATUS_RENEWAL_PENDING_REVIEW,
    STATUS_RENEWAL_PENDING_APPROVAL,
})

# Tail status each role advances on approve_renewal
_APPROVE_STEP = {
    ROLE_REVIEWER: (RENEWAL_PENDING_REVIEW, RENEWAL_PENDING_APPROVAL),
    ROLE_APPROVER: (RENEWAL_PENDING_APPROVAL, RENEWAL_APPROVED),
}

READING_KEYS = ("hc", "toxic", "oxygen")

DECISION_ACCEPT = "accept"
DECISION_REJECT = "reject"
DECISIONS = (DECISION_ACCEPT, DECISION_REJECT)


# ── Helpers ──────────────────────────────────────────────────────────────────


def _signature_key(role: str) -> str:
    return role.lower()


def new_renewal(
    start: datetime,
    end: datetime,
    requester_name: str,
    now: datetime,
    readings: dict | None = None,
    precautions: str | None = None,
) -> dict:
    """Build a fresh ``pending_review`` renewal element."""
    readings = readings or {}
    return {
        "status": RENEWAL_PENDING_REVIEW,
        "window": {"from": format_timestamp(start), "to": format_timestamp(end)},
        "readings": {key: readings.get(key) for key in READING_KEYS},
        "precautions": precautions,
        "actor_signatures": {
            "requester": make_signature(requester_name, now),
            "reviewer": None,
            "approver": None,
        },
        "remarks": {"reviewer": None, "approver": None},
        "rejection": None,
    }


def renewal_window(renewal: dict) -> tuple[datetime, datetime]:
    window = renewal.get("window") or {}
    return datetime.fromisoformat(window["from"]), datetime.fromisoformat(window["to"])


def _parse_window(payload: dict) -> tuple[datetime, datetime]:
    window = payload.get("window") or {}
    if not isinstance(window, dict):
        raise InvalidRenewalWindowError("window must be an object with from/to")
    try:
        start = parse_datetime_input(window.get("from"))
        end = parse_datetime_input(window.get("to"))
    except ValueError as exc:
        raise InvalidRenewalWindowError(str(exc)) from exc
    return start, end


def validate_renewal_window(
    record: PermitRecord,
    start: datetime,
    end: datetime,
    max_hours: float = DEFAULT_MAX_HOURS,
) -> None:
    """
    Check a proposed window against the permit and its renewal log.

    Raises the first failing check in the documented order.
    """
    if end <= start:
        raise InvalidRenewalWindowError()
    if start < record.valid_from or end > record.valid_to:
        raise OutOfBoundsError()
    if end - start > timedelta(hours=max_hours):
        raise DurationExceededError(max_hours)

    prior = record.tail_renewal
    if prior is None:
        return
    if prior["status"] in RENEWAL_PENDING_STATUSES:
        raise PendingRenewalExistsError()
    if prior["status"] == RENEWAL_APPROVED:
        _, prior_end = renewal_window(prior)
        if start < prior_end:
            raise OverlapError()


def sync_parent_status(record: PermitRecord) -> PermitRecord:
    """Set the permit status from its tail renewal (outside the first cycle)."""
    tail = record.tail_renewal
    if tail is not None and record.status not in FIRST_CYCLE_STATUSES:
        record.status = RENEWAL_TO_PERMIT_STATUS[tail["status"]]
    return record


def is_bundled(record: PermitRecord) -> bool:
    """True while a single renewal rides along with the first review cycle."""
    return record.status in FIRST_CYCLE_STATUSES and len(record.renewals) == 1


def _reject_tail(tail: dict, role: str, actor_name: str, reason: str | None, now: datetime) -> None:
    tail["status"] = RENEWAL_REJECTED
    tail["rejection"] = {
        "by": actor_name,
        "at": format_timestamp(now),
        "reason": reason,
        "rejected_at_role": role,
    }


def _sign_tail(tail: dict, role: str, actor_name: str, remarks: str | None, now: datetime) -> None:
    key = _signature_key(role)
    tail["actor_signatures"][key] = make_signature(actor_name, now)
    tail["remarks"][key] = remarks


# ── Proposal ─────────────────────────────────────────────────────────────────


def propose_renewal(
    record: PermitRecord,
    actor_name: str,
    payload: dict,
    *,
    now: datetime,
    max_hours: float = DEFAULT_MAX_HOURS,
) -> PermitRecord:
    """Append a new renewal to *record* after validating its window.

    While the permit is Active the parent moves to Renewal Pending Review.
    During the first review cycle the renewal is bundled and the parent
    status is left alone.
    """
    if record.status not in PROPOSAL_STATUSES:
        raise InvalidTransitionError(
            record.permit_id, ROLE_REQUESTER, "propose_renewal", record.status,
            "renewals need an active permit",
        )

    start, end = _parse_window(payload)
    validate_renewal_window(record, start, end, max_hours)

    if record.status in FIRST_CYCLE_STATUSES and record.renewals:
        raise InvalidTransitionError(
            record.permit_id, ROLE_REQUESTER, "propose_renewal", record.status,
            "only one renewal may accompany the first review cycle",
        )

    readings = payload.get("readings") or {key: payload.get(key) for key in READING_KEYS}
    if not isinstance(readings, dict):
        raise ValidationError("readings must be an object", details={"readings": "invalid"})
    record.renewals.append(
        new_renewal(start, end, actor_name, now,
                    readings=readings, precautions=payload.get("precautions"))
    )
    return sync_parent_status(record)


# ── Progression on the tail ──────────────────────────────────────────────────


def decide_renewal(
    record: PermitRecord,
    role: str,
    action: str,
    actor_name: str,
    payload: dict,
    *,
    now: datetime,
) -> PermitRecord:
    """Apply ``approve_renewal`` / ``reject_renewal`` to the tail renewal."""
    if record.status not in RENEWAL_DECISION_STATUSES:
        raise InvalidTransitionError(
            record.permit_id, role, action, record.status, "no renewal awaiting a decision",
        )
    tail = record.tail_renewal
    if tail is None:
        raise NotFoundError(resource="Renewal", resource_id=record.permit_id)

    remarks = payload.get("remarks") or payload.get("comment")

    if action == "reject_renewal":
        if tail["status"] not in RENEWAL_PENDING_STATUSES:
            raise InvalidTransitionError(
                record.permit_id, role, action, record.status, "renewal is not pending",
            )
        reason = payload.get("reason") or remarks
        _reject_tail(tail, role, actor_name, reason, now)
        return sync_parent_status(record)

    expected, target = _APPROVE_STEP[role]
    if tail["status"] != expected:
        raise InvalidTransitionError(
            record.permit_id, role, action, record.status,
            f"renewal is {tail['status']}, {role} acts on {expected}",
        )
    tail["status"] = target
    _sign_tail(tail, role, actor_name, remarks, now)
    return sync_parent_status(record)


def decide_bundled_renewal(
    record: PermitRecord,
    role: str,
    actor_name: str,
    payload: dict,
    *,
    now: datetime,
) -> PermitRecord:
    """
    Decide the bundled first renewal as part of a permit-level review/approve.

    ``payload["renewal_decision"]`` must be ``accept`` or ``reject`` while the
    renewal is pending. A renewal the Reviewer already rejected cannot be
    accepted by the Approver.
    """
    if not is_bundled(record):
        return record

    tail = record.tail_renewal
    decision = payload.get("renewal_decision")
    if decision is not None and decision not in DECISIONS:
        raise ValidationError(
            f"renewal_decision must be one of {', '.join(DECISIONS)}",
            details={"renewal_decision": decision},
        )

    if tail["status"] == RENEWAL_REJECTED:
        if decision == DECISION_ACCEPT:
            raise InvalidTransitionError(
                record.permit_id, role, "accept_renewal", record.status,
                "renewal was already rejected",
            )
        return record
    if tail["status"] not in RENEWAL_PENDING_STATUSES:
        return record

    if decision is None:
        raise ValidationError(
            "renewal_decision is required while the bundled renewal is pending",
            details={"renewal_decision": "required"},
        )

    if role == ROLE_REVIEWER and tail["status"] != RENEWAL_PENDING_REVIEW:
        raise InvalidTransitionError(
            record.permit_id, role, "decide_renewal", record.status,
            f"renewal is {tail['status']}",
        )

    remarks = payload.get("remarks") or payload.get("comment")
    if decision == DECISION_REJECT:
        _reject_tail(tail, role, actor_name, payload.get("reason") or remarks, now)
    else:
        # Approver acceptance is final, even if the renewal arrived after review.
        tail["status"] = RENEWAL_PENDING_APPROVAL if role == ROLE_REVIEWER else RENEWAL_APPROVED
        _sign_tail(tail, role, actor_name, remarks, now)
    return record


def cascade_parent_rejection(record: PermitRecord, role: str, actor_name: str, now: datetime) -> PermitRecord:
    """Force-reject a pending tail renewal because its permit was rejected."""
    tail = record.tail_renewal
    if tail is not None and tail["status"] in RENEWAL_PENDING_STATUSES:
        _reject_tail(tail, role, actor_name, PARENT_REJECTED_REASON, now)
        logger.info("Cascade-rejected renewal %d", len(record.renewals),
                    extra={"permit_id": record.permit_id})
    return record


def renewal_action_allowed(record: PermitRecord, role: str, action: str) -> bool:
    """Cheap pre-check used to list the renewal actions a role can take."""
    if role not in RENEWAL_ACTIONS.get(action, ()):
        return False
    tail = record.tail_renewal
    if action == "propose_renewal":
        if record.status not in PROPOSAL_STATUSES:
            return False
        if record.status in FIRST_CYCLE_STATUSES:
            return not record.renewals
        return tail is None or tail["status"] not in RENEWAL_PENDING_STATUSES
    if record.status not in RENEWAL_DECISION_STATUSES or tail is None:
        return False
    if action == "reject_renewal":
        return tail["status"] in RENEWAL_PENDING_STATUSES
    return tail["status"] == _APPROVE_STEP[role][0]
