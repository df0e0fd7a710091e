"""
Work Permit Tracker
Permit domain model.

Models:
    - Permit:        one row per work-permit request. Identity, status,
                     validity window and role bindings are relational
                     columns; the form payload and the renewal log are JSON.
    - PermitRecord:  detached value object the lifecycle engine mutates.
                     Built from a row by ``Permit.to_record()`` and written
                     back by ``Permit.apply_record()``.

Lifecycle states:
    New → Pending Review → Pending Approval → Active
    Pending Review | Pending Approval → Rejected
    Active → Closure Pending Review → Closure Pending Approval → Closed
    Active → Renewal Pending Review → Renewal Pending Approval → Active

Renewal states (per element of ``renewals``):
    pending_review → pending_approval → approved
    pending_review | pending_approval → rejected
"""

import copy
from dataclasses import dataclass, field
from datetime import datetime, timezone

from permit_tracker.models import db

# ── Permit statuses (persisted verbatim) ─────────────────────────────────────

STATUS_NEW = "New"
STATUS_PENDING_REVIEW = "Pending Review"
STATUS_PENDING_APPROVAL = "Pending Approval"
STATUS_ACTIVE = "Active"
STATUS_REJECTED = "Rejected"
STATUS_CLOSURE_PENDING_REVIEW = "Closure Pending Review"
STATUS_CLOSURE_PENDING_APPROVAL = "Closure Pending Approval"
STATUS_CLOSED = "Closed"
STATUS_RENEWAL_PENDING_REVIEW = "Renewal Pending Review"
STATUS_RENEWAL_PENDING_APPROVAL = "Renewal Pending Approval"

PERMIT_STATUSES = (
    STATUS_NEW,
    STATUS_PENDING_REVIEW,
    STATUS_PENDING_APPROVAL,
    STATUS_ACTIVE,
    STATUS_REJECTED,
    STATUS_CLOSURE_PENDING_REVIEW,
    STATUS_CLOSURE_PENDING_APPROVAL,
    STATUS_CLOSED,
    STATUS_RENEWAL_PENDING_REVIEW,
    STATUS_RENEWAL_PENDING_APPROVAL,
)

# Requester may overlay the document only while the permit is in draft.
EDITABLE_STATUSES = frozenset({STATUS_NEW, STATUS_PENDING_REVIEW})

FIRST_CYCLE_STATUSES = frozenset({STATUS_PENDING_REVIEW, STATUS_PENDING_APPROVAL})

# ── Roles ────────────────────────────────────────────────────────────────────

ROLE_REQUESTER = "Requester"
ROLE_REVIEWER = "Reviewer"
ROLE_APPROVER = "Approver"

ROLES = (ROLE_REQUESTER, ROLE_REVIEWER, ROLE_APPROVER)

ROLE_EMAIL_KEYS = {
    ROLE_REQUESTER: "requester",
    ROLE_REVIEWER: "reviewer",
    ROLE_APPROVER: "approver",
}

# ── Renewal statuses ─────────────────────────────────────────────────────────

RENEWAL_PENDING_REVIEW = "pending_review"
RENEWAL_PENDING_APPROVAL = "pending_approval"
RENEWAL_APPROVED = "approved"
RENEWAL_REJECTED = "rejected"

RENEWAL_STATUSES = (
    RENEWAL_PENDING_REVIEW,
    RENEWAL_PENDING_APPROVAL,
    RENEWAL_APPROVED,
    RENEWAL_REJECTED,
)
RENEWAL_PENDING_STATUSES = frozenset({RENEWAL_PENDING_REVIEW, RENEWAL_PENDING_APPROVAL})
RENEWAL_TERMINAL_STATUSES = frozenset({RENEWAL_APPROVED, RENEWAL_REJECTED})

# Parent status implied by the tail renewal's status.
RENEWAL_TO_PERMIT_STATUS = {
    RENEWAL_PENDING_REVIEW: STATUS_RENEWAL_PENDING_REVIEW,
    RENEWAL_PENDING_APPROVAL: STATUS_RENEWAL_PENDING_APPROVAL,
    RENEWAL_APPROVED: STATUS_ACTIVE,
    RENEWAL_REJECTED: STATUS_ACTIVE,
}


def make_signature(name: str, at: datetime) -> dict:
    """Build a structured signature value."""
    return {"name": name, "timestamp": at.isoformat(timespec="seconds")}


def format_timestamp(value: datetime | None) -> str | None:
    return value.isoformat(timespec="seconds") if value else None


# ── Value object ─────────────────────────────────────────────────────────────


@dataclass
class PermitRecord:
    """Detached permit state.

    ``document`` and ``renewals`` are owned by the record: ``to_record()``
    deep-copies them out of the row, so mutating a record never touches the
    session until ``apply_record()`` is called.
    """

    permit_id: str
    status: str
    valid_from: datetime
    valid_to: datetime
    role_emails: dict
    document: dict = field(default_factory=dict)
    renewals: list = field(default_factory=list)
    work_type: str | None = None
    latitude: str | None = None
    longitude: str | None = None
    version: int = 1
    created_at: datetime | None = None

    @property
    def tail_renewal(self) -> dict | None:
        return self.renewals[-1] if self.renewals else None

    def email_for(self, role: str) -> str | None:
        key = ROLE_EMAIL_KEYS.get(role)
        return self.role_emails.get(key) if key else None

    def copy(self) -> "PermitRecord":
        return copy.deepcopy(self)


# ── ORM model ────────────────────────────────────────────────────────────────


class Permit(db.Model):
    """
    Work permit row.

    ``version_id`` is the optimistic-concurrency counter: SQLAlchemy adds
    ``WHERE version_id = :old`` to every UPDATE and raises StaleDataError
    when another writer got there first.
    """

    __tablename__ = "permits"
    __table_args__ = (
        db.Index("ix_permits_status", "status"),
        db.Index("ix_permits_requester", "requester_email"),
        db.Index("ix_permits_reviewer", "reviewer_email"),
        db.Index("ix_permits_approver", "approver_email"),
    )

    id = db.Column(db.Integer, primary_key=True)
    permit_id = db.Column(
        db.String(20), nullable=False, unique=True,
        comment="WP-<n>, allocated from the 'permit' id sequence",
    )
    status = db.Column(db.String(40), nullable=False, default=STATUS_NEW)
    work_type = db.Column(db.String(100), nullable=True)

    # Role bindings, fixed at creation
    requester_email = db.Column(db.String(255), nullable=False)
    reviewer_email = db.Column(db.String(255), nullable=False)
    approver_email = db.Column(db.String(255), nullable=False)

    # Validity window, fixed at creation (site-local, naive)
    valid_from = db.Column(db.DateTime, nullable=False)
    valid_to = db.Column(db.DateTime, nullable=False)

    latitude = db.Column(db.String(40), nullable=True)
    longitude = db.Column(db.String(40), nullable=True)

    document = db.Column(db.JSON, nullable=False, default=dict)
    renewals = db.Column(db.JSON, nullable=False, default=list)

    version_id = db.Column(db.Integer, nullable=False)

    created_at = db.Column(
        db.DateTime(timezone=True), nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )
    updated_at = db.Column(
        db.DateTime(timezone=True), nullable=True,
        default=lambda: datetime.now(timezone.utc),
    )

    __mapper_args__ = {"version_id_col": version_id}

    @property
    def role_emails(self) -> dict:
        return {
            "requester": self.requester_email,
            "reviewer": self.reviewer_email,
            "approver": self.approver_email,
        }

    def to_record(self) -> PermitRecord:
        return PermitRecord(
            permit_id=self.permit_id,
            status=self.status,
            valid_from=self.valid_from,
            valid_to=self.valid_to,
            role_emails=self.role_emails,
            document=copy.deepcopy(self.document or {}),
            renewals=copy.deepcopy(self.renewals or []),
            work_type=self.work_type,
            latitude=self.latitude,
            longitude=self.longitude,
            version=self.version_id,
            created_at=self.created_at,
        )

    def apply_record(self, record: PermitRecord) -> None:
        """Write the mutable parts of *record* back onto the row.

        Identity, window and role bindings are fixed at creation and not copied.
        """
        self.status = record.status
        self.work_type = record.work_type
        self.latitude = record.latitude
        self.longitude = record.longitude
        self.document = copy.deepcopy(record.document)
        self.renewals = copy.deepcopy(record.renewals)
        self.updated_at = datetime.now(timezone.utc)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "permit_id": self.permit_id,
            "status": self.status,
            "work_type": self.work_type,
            "valid_from": format_timestamp(self.valid_from),
            "valid_to": format_timestamp(self.valid_to),
            "role_emails": self.role_emails,
            "latitude": self.latitude,
            "longitude": self.longitude,
            "document": self.document or {},
            "renewals": self.renewals or [],
            "version": self.version_id,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }

    def __repr__(self):
        return f"<Permit {self.permit_id}: {self.status}>"
