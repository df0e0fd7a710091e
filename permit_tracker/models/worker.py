"""
Work Permit Tracker
Worker domain model.

Workers are listed on permits and go through the same three-role approval
chain as permits, but per field set: a proposed edit is kept in ``pending``
and only replaces ``current`` once the Approver signs it off.

Lifecycle states:
    pending_review → pending_approval → approved
    pending_review | pending_approval → rejected
    approved | rejected → pending_review   (new edit proposed)
"""

import copy
from dataclasses import dataclass, field
from datetime import datetime, timezone

from permit_tracker.models import db

WORKER_PENDING_REVIEW = "pending_review"
WORKER_PENDING_APPROVAL = "pending_approval"
WORKER_APPROVED = "approved"
WORKER_REJECTED = "rejected"

WORKER_STATUSES = (
    WORKER_PENDING_REVIEW,
    WORKER_PENDING_APPROVAL,
    WORKER_APPROVED,
    WORKER_REJECTED,
)

# Fields a Requester may propose for a worker; anything else is dropped.
WORKER_FIELDS = frozenset({
    "name",
    "company",
    "trade",
    "contact_number",
    "id_proof_type",
    "id_proof_number",
    "medical_fitness_until",
    "induction_date",
})

WORKER_TRANSITIONS = {
    "submit": {"roles": {"Requester"},
               "from": {None, WORKER_PENDING_REVIEW, WORKER_APPROVED, WORKER_REJECTED},
               "to": WORKER_PENDING_REVIEW},
    "review": {"roles": {"Reviewer"},
               "from": {WORKER_PENDING_REVIEW},
               "to": WORKER_PENDING_APPROVAL},
    "approve": {"roles": {"Approver"},
                "from": {WORKER_PENDING_APPROVAL},
                "to": WORKER_APPROVED},
    "reject": {"roles": {"Reviewer", "Approver"},
               "from": {WORKER_PENDING_REVIEW, WORKER_PENDING_APPROVAL},
               "to": WORKER_REJECTED},
}


@dataclass
class WorkerRecord:
    worker_id: str
    status: str | None
    current: dict | None = None
    pending: dict | None = None
    rejection: dict | None = None
    signatures: dict = field(default_factory=dict)
    version: int = 1

    def copy(self) -> "WorkerRecord":
        return copy.deepcopy(self)


class Worker(db.Model):
    """Worker row with approved snapshot and pending overlay."""

    __tablename__ = "workers"
    __table_args__ = (
        db.Index("ix_workers_status", "status"),
    )

    id = db.Column(db.Integer, primary_key=True)
    worker_id = db.Column(db.String(20), nullable=False, unique=True, comment="W-<n>")
    status = db.Column(db.String(30), nullable=False, default=WORKER_PENDING_REVIEW)

    current = db.Column(db.JSON, nullable=True, comment="Last approved field set")
    pending = db.Column(db.JSON, nullable=True, comment="Proposed edit awaiting approval")
    rejection = db.Column(db.JSON, nullable=True)
    signatures = db.Column(db.JSON, nullable=False, default=dict)

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

    def to_record(self) -> WorkerRecord:
        return WorkerRecord(
            worker_id=self.worker_id,
            status=self.status,
            current=copy.deepcopy(self.current),
            pending=copy.deepcopy(self.pending),
            rejection=copy.deepcopy(self.rejection),
            signatures=copy.deepcopy(self.signatures or {}),
            version=self.version_id,
        )

    def apply_record(self, record: WorkerRecord) -> None:
        self.status = record.status
        self.current = copy.deepcopy(record.current)
        self.pending = copy.deepcopy(record.pending)
        self.rejection = copy.deepcopy(record.rejection)
        self.signatures = copy.deepcopy(record.signatures)
        self.updated_at = datetime.now(timezone.utc)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "worker_id": self.worker_id,
            "status": self.status,
            "current": self.current,
            "pending": self.pending,
            "rejection": self.rejection,
            "signatures": self.signatures or {},
            "version": self.version_id,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }

    def __repr__(self):
        return f"<Worker {self.worker_id}: {self.status}>"
