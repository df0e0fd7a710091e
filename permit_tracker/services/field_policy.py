"""
Field-locking policy for the permit document.

The document is a JSON mapping, but no caller writes it directly: each
action merges only the keys this module allows for it.

    submit (New / Pending Review)   requester fields, minus RESERVED_FIELDS
    initiate_closure                Closure_Requestor_Remarks
    Reviewer approve_closure /
      reject_closure                Closure_Reviewer_Remarks
    Approver approve (closing) /
      reject_closure                Closure_Approver_Remarks
    anything else                   nothing

Reserved fields are written only by the lifecycle engine. Rejection
remarks on reject_closure are read through the allow-list and then stamped
with the rejecting actor.

WorkType, Latitude and Longitude are also mirrored into indexed columns;
``indexed_columns`` coerces them to text and enforces the column widths.
"""

import logging

from permit_tracker.core.exceptions import ValidationError
from permit_tracker.models.permit import (
    ROLE_APPROVER,
    ROLE_REQUESTER,
    ROLE_REVIEWER,
    STATUS_CLOSURE_PENDING_APPROVAL,
    STATUS_CLOSURE_PENDING_REVIEW,
)

logger = logging.getLogger(__name__)

SIGNATURE_FIELDS = frozenset({
    "Reviewer_Sig",
    "Approver_Sig",
    "Closure_Receiver_Sig",
    "Closure_Reviewer_Sig",
    "Closure_Issuer_Sig",
})

REMARK_FIELDS = frozenset({
    "Reviewer_Remarks",
    "Approver_Remarks",
    "Closure_Requestor_Remarks",
    "Closure_Reviewer_Remarks",
    "Closure_Approver_Remarks",
    "Closure_Issuer_Remarks",
})

DATE_FIELDS = frozenset({
    "Closure_Requestor_Date",
    "Closure_Reviewer_Date",
    "Closure_Approver_Date",
})

IDENTITY_FIELDS = frozenset({
    "PermitID",
    "Status",
    "ValidFrom",
    "ValidTo",
    "RequesterEmail",
    "ReviewerEmail",
    "ApproverEmail",
})

RESERVED_FIELDS = (
    SIGNATURE_FIELDS
    | REMARK_FIELDS
    | DATE_FIELDS
    | IDENTITY_FIELDS
    | {"Rejection", "Site_Restored_Check", "Renewals"}
)

# Payload keys that steer the engine and are never merged into the document.
CONTROL_KEYS = frozenset({"comment", "remarks", "reason", "renewal_decision", "renewal", "submit"})

_CLOSURE_STATUSES = frozenset({STATUS_CLOSURE_PENDING_REVIEW, STATUS_CLOSURE_PENDING_APPROVAL})

# (role, action) → keys a non-submit action may merge
_ACTION_ALLOW_LIST = {
    (ROLE_REQUESTER, "initiate_closure"): frozenset({"Closure_Requestor_Remarks"}),
    (ROLE_REVIEWER, "approve_closure"): frozenset({"Closure_Reviewer_Remarks"}),
    (ROLE_REVIEWER, "reject_closure"): frozenset({"Closure_Reviewer_Remarks"}),
    (ROLE_APPROVER, "reject_closure"): frozenset({"Closure_Approver_Remarks"}),
}


def allowed_fields(role: str, action: str, status: str) -> frozenset | None:
    """
    Return the keys *role* may merge for *action* in *status*.

    ``None`` means "any key that is not reserved" (requester submit);
    an empty set means nothing may be merged.
    """
    if role == ROLE_REQUESTER and action == "submit":
        return None
    if role == ROLE_APPROVER and action == "approve" and status in _CLOSURE_STATUSES:
        return frozenset({"Closure_Approver_Remarks"})
    return _ACTION_ALLOW_LIST.get((role, action), frozenset())


def filter_payload(role: str, action: str, status: str, payload: dict | None) -> dict:
    """Return the subset of *payload* that may be merged into the document."""
    payload = payload or {}
    allowed = allowed_fields(role, action, status)
    accepted = {}
    dropped = []
    for key, value in payload.items():
        if key in CONTROL_KEYS:
            continue
        if allowed is None:
            ok = key not in RESERVED_FIELDS
        else:
            ok = key in allowed
        if ok:
            accepted[key] = value
        else:
            dropped.append(key)
    if dropped:
        logger.warning(
            "Dropped locked fields for %s %s: %s", role, action, ", ".join(sorted(dropped)),
            extra={"role": role, "action": action},
        )
    return accepted


def merge_document(document: dict, role: str, action: str, status: str, payload: dict | None) -> dict:
    """Return a new document with the allowed part of *payload* merged in."""
    merged = dict(document)
    merged.update(filter_payload(role, action, status, payload))
    return merged


# document key → (column, max length)
_INDEXED_FIELDS = {
    "WorkType": ("work_type", 100),
    "Latitude": ("latitude", 40),
    "Longitude": ("longitude", 40),
}


def indexed_columns(document: dict) -> dict:
    """Return ``{work_type, latitude, longitude}`` as text for the permit columns.

    Raises ValidationError when a value is not a scalar or is too long.
    """
    columns = {}
    invalid = {}
    for key, (column, max_len) in _INDEXED_FIELDS.items():
        value = document.get(key)
        if value is None:
            columns[column] = None
            continue
        if isinstance(value, (dict, list, bool)):
            invalid[key] = "must be text or a number"
            continue
        text = str(value).strip()
        if len(text) > max_len:
            invalid[key] = f"must be at most {max_len} characters"
            continue
        columns[column] = text
    if invalid:
        raise ValidationError(
            f"Invalid permit field(s): {', '.join(sorted(invalid))}",
            details=invalid,
        )
    return columns
