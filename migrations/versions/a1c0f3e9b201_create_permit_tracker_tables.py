"""create_permit_tracker_tables

Creates the work permit tracker schema:
  - permits       — permit rows (role bindings, window, document, renewals)
  - workers       — worker records with approved / pending field sets
  - id_sequences  — named counters for WP-<n> / W-<n> ids
  - audit_logs    — append-only lifecycle audit trail

Tables created conditionally (IF NOT EXISTS semantics) to support idempotent
execution against databases that already received these tables via db.create_all()
in a development environment.

Revision ID: a1c0f3e9b201
Revises:
Create Date: 2026-10-19 09:12:40.118902
"""
from alembic import op
import sqlalchemy as sa
from sqlalchemy import inspect as sa_inspect


# revision identifiers, used by Alembic.
revision = 'a1c0f3e9b201'
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    bind = op.get_bind()
    inspector = sa_inspect(bind)
    existing = set(inspector.get_table_names())

    # ── Permits ───────────────────────────────────────────────────────────
    if "permits" not in existing:
        op.create_table(
            "permits",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("permit_id", sa.String(length=20), nullable=False,
                      comment="WP-<n>, allocated from the 'permit' id sequence"),
            sa.Column("status", sa.String(length=40), nullable=False),
            sa.Column("work_type", sa.String(length=100), nullable=True),
            sa.Column("requester_email", sa.String(length=255), nullable=False),
            sa.Column("reviewer_email", sa.String(length=255), nullable=False),
            sa.Column("approver_email", sa.String(length=255), nullable=False),
            sa.Column("valid_from", sa.DateTime(), nullable=False),
            sa.Column("valid_to", sa.DateTime(), nullable=False),
            sa.Column("latitude", sa.String(length=40), nullable=True),
            sa.Column("longitude", sa.String(length=40), nullable=True),
            sa.Column("document", sa.JSON(), nullable=False),
            sa.Column("renewals", sa.JSON(), nullable=False),
            sa.Column("version_id", sa.Integer(), nullable=False),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
            sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("permit_id"),
        )
        op.create_index("ix_permits_status", "permits", ["status"])
        op.create_index("ix_permits_requester", "permits", ["requester_email"])
        op.create_index("ix_permits_reviewer", "permits", ["reviewer_email"])
        op.create_index("ix_permits_approver", "permits", ["approver_email"])

    # ── Workers ───────────────────────────────────────────────────────────
    if "workers" not in existing:
        op.create_table(
            "workers",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("worker_id", sa.String(length=20), nullable=False, comment="W-<n>"),
            sa.Column("status", sa.String(length=30), nullable=False),
            sa.Column("current", sa.JSON(), nullable=True, comment="Last approved field set"),
            sa.Column("pending", sa.JSON(), nullable=True, comment="Proposed edit awaiting approval"),
            sa.Column("rejection", sa.JSON(), nullable=True),
            sa.Column("signatures", sa.JSON(), nullable=False),
            sa.Column("version_id", sa.Integer(), nullable=False),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
            sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("worker_id"),
        )
        op.create_index("ix_workers_status", "workers", ["status"])

    # ── Id sequences ──────────────────────────────────────────────────────
    if "id_sequences" not in existing:
        op.create_table(
            "id_sequences",
            sa.Column("name", sa.String(length=40), nullable=False),
            sa.Column("last_value", sa.Integer(), nullable=False),
            sa.PrimaryKeyConstraint("name"),
        )

    # ── Audit logs ────────────────────────────────────────────────────────
    if "audit_logs" not in existing:
        op.create_table(
            "audit_logs",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("entity_type", sa.String(length=30), nullable=False,
                      comment="permit | worker"),
            sa.Column("entity_id", sa.String(length=36), nullable=False),
            sa.Column("action", sa.String(length=60), nullable=False),
            sa.Column("actor", sa.String(length=150), nullable=False),
            sa.Column("actor_role", sa.String(length=20), nullable=True),
            sa.Column("diff_json", sa.Text(), nullable=True),
            sa.Column("timestamp", sa.DateTime(timezone=True), nullable=False),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("idx_audit_entity", "audit_logs", ["entity_type", "entity_id"])
        op.create_index("idx_audit_actor", "audit_logs", ["actor"])
        op.create_index("idx_audit_action", "audit_logs", ["action"])
        op.create_index("idx_audit_ts", "audit_logs", ["timestamp"])


def downgrade():
    op.drop_table("audit_logs")
    op.drop_table("id_sequences")
    op.drop_table("workers")
    op.drop_table("permits")
