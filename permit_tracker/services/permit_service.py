"""
Permit service — creation and read-side projections.

Creation validates the validity window (``to > from``, span ≤
``PERMIT_MAX_DAYS``), allocates ``WP-<n>`` and stores the requester's
document through the field-locking filter. Everything after creation goes
through ``permit_lifecycle``.

Read side:
    snapshot(record)                 export projection (never mutates)
    list_permits_for_role(role, email)
    permit_stats()
    map_data()
"""

import copy
import logging
from datetime import timedelta

from flask import current_app
from sqlalchemy import func, select

from permit_tracker.core.exceptions import ValidationError
from permit_tracker.models import db
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
    STATUS_PENDING_REVIEW,
    STATUS_RENEWAL_PENDING_APPROVAL,
    STATUS_RENEWAL_PENDING_REVIEW,
    Permit,
    PermitRecord,
    format_timestamp,
)
from permit_tracker.services.field_policy import filter_payload, indexed_columns
from permit_tracker.services.permit_lifecycle import transition_permit
from permit_tracker.services.record_store import permit_store
from permit_tracker.utils.helpers import parse_datetime_input

logger = logging.getLogger(__name__)

DEFAULT_MAX_DAYS = 7

# Statuses a bound Reviewer sees on the dashboard
REVIEWER_VISIBLE_STATUSES = frozenset({
    STATUS_PENDING_REVIEW,
    STATUS_CLOSURE_PENDING_REVIEW,
    STATUS_CLOSURE_PENDING_APPROVAL,
    STATUS_CLOSED,
    STATUS_RENEWAL_PENDING_REVIEW,
    STATUS_RENEWAL_PENDING_APPROVAL,
})


def _require(data: dict, *keys: str) -> None:
    missing = [k for k in keys if not data.get(k)]
    if missing:
        raise ValidationError(
            f"Missing required field(s): {', '.join(missing)}",
            details={"missing": missing},
        )


def validate_permit_window(valid_from, valid_to):
    """Parse and check a permit validity window; returns naive datetimes."""
    try:
        start = parse_datetime_input(valid_from)
        end = parse_datetime_input(valid_to)
    except ValueError as exc:
        raise ValidationError(str(exc), details={"window": "invalid"}) from exc

    if end <= start:
        raise ValidationError("Permit end time must be after its start time",
                              details={"window": "inverted"})
    max_days = current_app.config.get("PERMIT_MAX_DAYS", DEFAULT_MAX_DAYS)
    if end - start > timedelta(days=max_days):
        raise ValidationError(f"Permit validity cannot exceed {max_days} days",
                              details={"window": "too_long"})
    return start, end


# ── Creation ─────────────────────────────────────────────────────────────────


def create_permit(data: dict) -> dict:
    """
    Create a permit in status New, optionally submitting it right away.

    Expected keys:
        valid_from, valid_to     ISO timestamps
        role_emails              {requester, reviewer, approver}
        actor_name               Requester's display name
        document                 requester form fields (optional)
        submit                   true to move straight to Pending Review

    Returns the permit as ``Permit.to_dict()``.
    """
    data = data or {}
    role_emails = data.get("role_emails") or {}
    _require(data, "valid_from", "valid_to", "actor_name")
    _require(role_emails, "requester", "reviewer", "approver")

    start, end = validate_permit_window(data["valid_from"], data["valid_to"])
    raw_document = data.get("document") or {}
    if not isinstance(raw_document, dict):
        raise ValidationError("document must be an object", details={"document": "invalid"})
    document = filter_payload(ROLE_REQUESTER, "submit", STATUS_NEW, raw_document)
    columns = indexed_columns(document)
    actor_name = data["actor_name"]

    def build(permit_id: str) -> Permit:
        return Permit(
            permit_id=permit_id,
            status=STATUS_NEW,
            work_type=columns["work_type"],
            requester_email=role_emails["requester"].strip(),
            reviewer_email=role_emails["reviewer"].strip(),
            approver_email=role_emails["approver"].strip(),
            valid_from=start,
            valid_to=end,
            latitude=columns["latitude"],
            longitude=columns["longitude"],
            document=document,
            renewals=[],
        )

    def after_create(row: Permit) -> None:
        write_audit(
            entity_type="permit",
            entity_id=row.permit_id,
            action="permit.create",
            actor=actor_name,
            actor_role=ROLE_REQUESTER,
            diff={"status": {"old": None, "new": STATUS_NEW},
                  "window": {"from": format_timestamp(start), "to": format_timestamp(end)}},
        )

    row = permit_store.create(build, after_create=after_create)
    permit_id = row.permit_id
    logger.info("Permit %s created", permit_id, extra={"permit_id": permit_id})

    if data.get("submit"):
        transition_permit(permit_id, ROLE_REQUESTER, "submit", actor_name, {})

    return permit_store.get_row(permit_id).to_dict()


# ── Read side ────────────────────────────────────────────────────────────────


def get_permit(permit_id: str) -> dict:
    return permit_store.get_row(permit_id).to_dict()


def snapshot(record: PermitRecord) -> dict:
    """Read-only projection handed to export adapters."""
    return {
        "identity": {
            "permit_id": record.permit_id,
            "role_emails": dict(record.role_emails),
            "work_type": record.work_type,
            "latitude": record.latitude,
            "longitude": record.longitude,
            "created_at": record.created_at.isoformat() if record.created_at else None,
        },
        "status": record.status,
        "window": {
            "from": format_timestamp(record.valid_from),
            "to": format_timestamp(record.valid_to),
        },
        "document": copy.deepcopy(record.document),
        "renewals": copy.deepcopy(record.renewals),
    }


def get_snapshot(permit_id: str) -> dict:
    return snapshot(permit_store.get(permit_id))


def all_snapshots() -> list[dict]:
    rows = db.session.execute(select(Permit).order_by(Permit.id.desc())).scalars().all()
    return [snapshot(row.to_record()) for row in rows]


def _numeric_id(permit_id: str) -> int:
    try:
        return int(permit_id.rsplit("-", 1)[-1])
    except ValueError:
        return 0


def _summary(row: Permit) -> dict:
    doc = row.document or {}
    return {
        "permit_id": row.permit_id,
        "status": row.status,
        "work_type": row.work_type,
        "requester": doc.get("RequesterName"),
        "location": doc.get("ExactLocation"),
        "valid_from": format_timestamp(row.valid_from),
        "valid_to": format_timestamp(row.valid_to),
        "role_emails": row.role_emails,
        "renewal_count": len(row.renewals or []),
    }


def list_permits_for_role(role: str, email: str) -> list[dict]:
    """
    Dashboard rows for one actor. Visibility follows the permit's
    ``role_emails`` binding only.

    Requester: own permits. Reviewer: bound permits in review, closure,
    renewal or closed states. Approver: bound permits.
    """
    if role not in ROLES:
        raise ValidationError(f"Unknown role: {role}", details={"role": role})
    if not email:
        raise ValidationError("email is required", details={"missing": ["email"]})

    email = email.strip()
    column = {
        ROLE_REQUESTER: Permit.requester_email,
        ROLE_REVIEWER: Permit.reviewer_email,
        ROLE_APPROVER: Permit.approver_email,
    }[role]
    stmt = select(Permit).where(func.lower(column) == email.lower())
    if role == ROLE_REVIEWER:
        stmt = stmt.where(Permit.status.in_(REVIEWER_VISIBLE_STATUSES))

    rows = db.session.execute(stmt).scalars().all()
    rows.sort(key=lambda r: _numeric_id(r.permit_id), reverse=True)
    return [_summary(r) for r in rows]


def permit_stats() -> dict:
    """Counts by status and by work type."""
    status_counts = dict(
        db.session.execute(
            select(Permit.status, func.count(Permit.id)).group_by(Permit.status)
        ).all()
    )
    type_counts = {
        (work_type or "Unspecified"): count
        for work_type, count in db.session.execute(
            select(Permit.work_type, func.count(Permit.id)).group_by(Permit.work_type)
        ).all()
    }
    return {
        "total": sum(status_counts.values()),
        "status_counts": status_counts,
        "type_counts": type_counts,
    }


def _coordinate(value) -> float | None:
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def map_data() -> list[dict]:
    """Active permits with parseable coordinates."""
    rows = db.session.execute(
        select(Permit).where(Permit.status == STATUS_ACTIVE).order_by(Permit.id)
    ).scalars().all()
    points = []
    for row in rows:
        lat, lng = _coordinate(row.latitude), _coordinate(row.longitude)
        if lat is None or lng is None:
            continue
        doc = row.document or {}
        points.append({
            "permit_id": row.permit_id,
            "lat": lat,
            "lng": lng,
            "work_type": row.work_type,
            "location": doc.get("ExactLocation"),
            "description": doc.get("Desc"),
        })
    return points


def list_renewals(permit_id: str) -> list[dict]:
    return permit_store.get(permit_id).renewals
