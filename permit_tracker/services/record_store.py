"""
Record Store — transactional read-modify-write over permit and worker rows.

Every lifecycle write goes through ``RecordStore.put_atomic``:

    1. SELECT the row (FOR UPDATE where the backend supports it)
    2. build a detached record and hand a copy to the mutator
    3. write the mutator's result back; SQLAlchemy's ``version_id_col``
       turns the UPDATE into a compare-and-swap on ``version_id``
    4. run ``after_apply`` (audit rows) and commit

A concurrent writer makes step 3 match zero rows and raise
``StaleDataError``; the whole cycle is then retried on a fresh read, at
most ``PERMIT_WRITE_MAX_RETRIES`` times, before ``ConflictError``.

Usage:
    from permit_tracker.services.record_store import permit_store

    result = permit_store.put_atomic("WP-1001", mutator)
    result.before.status, result.after.status, result.attempts
"""

import logging
from dataclasses import dataclass
from typing import Any, Callable

from flask import current_app
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.orm.exc import StaleDataError

from permit_tracker.core.exceptions import (
    ConflictError,
    NotFoundError,
    StorageUnavailableError,
)
from permit_tracker.models import db
from permit_tracker.models.permit import Permit
from permit_tracker.models.sequence import next_sequence_code
from permit_tracker.models.worker import Worker

logger = logging.getLogger(__name__)

DEFAULT_MAX_RETRIES = 3

# sequence name → (prefix config key, start config key)
SEQUENCES = {
    "permit": ("PERMIT_ID_PREFIX", "PERMIT_ID_START"),
    "worker": ("WORKER_ID_PREFIX", "WORKER_ID_START"),
}

_SEQUENCE_DEFAULTS = {
    "permit": ("WP", 1000),
    "worker": ("W", 0),
}


@dataclass
class WriteResult:
    """Outcome of a committed ``put_atomic`` call."""

    before: Any
    after: Any
    attempts: int


def sequence_settings(sequence_name: str) -> tuple[str, int]:
    """Return ``(prefix, start)`` for a named id sequence."""
    if sequence_name not in SEQUENCES:
        raise KeyError(f"Unknown id sequence: {sequence_name}")
    prefix_key, start_key = SEQUENCES[sequence_name]
    default_prefix, default_start = _SEQUENCE_DEFAULTS[sequence_name]
    cfg = current_app.config
    return cfg.get(prefix_key, default_prefix), int(cfg.get(start_key, default_start))


def next_id(sequence_name: str) -> str:
    """Allocate the next ``<prefix>-<n>`` id inside the current transaction."""
    prefix, start = sequence_settings(sequence_name)
    return next_sequence_code(sequence_name, prefix, start)


class RecordStore:
    """Keyed access to one versioned model.

    Args:
        model: ORM class with ``to_record()`` / ``apply_record()`` and a
            ``version_id_col`` mapper argument.
        key_attr: Name of the business-key column (``permit_id``).
        resource: Human-readable name used in errors.
        sequence: Id sequence used by ``next_id`` and ``create``.
    """

    def __init__(self, model, key_attr: str, resource: str, sequence: str):
        self.model = model
        self.key_attr = key_attr
        self.resource = resource
        self.sequence = sequence

    # ── Reads ────────────────────────────────────────────────────────────

    def _key_column(self):
        return getattr(self.model, self.key_attr)

    def get_row(self, key: str, *, for_update: bool = False):
        stmt = select(self.model).where(self._key_column() == key)
        if for_update:
            stmt = stmt.with_for_update()
        try:
            row = db.session.execute(stmt).scalar_one_or_none()
        except OperationalError as exc:
            db.session.rollback()
            logger.exception("Record store read failed for %s %s", self.resource, key)
            raise StorageUnavailableError() from exc
        if row is None:
            raise NotFoundError(resource=self.resource, resource_id=key)
        return row

    def get(self, key: str):
        """Return a detached record for *key* or raise NotFoundError."""
        return self.get_row(key).to_record()

    def next_id(self) -> str:
        return next_id(self.sequence)

    # ── Writes ───────────────────────────────────────────────────────────

    def create(self, build: Callable[[str], Any], after_create: Callable[[Any], None] | None = None):
        """Allocate an id, insert ``build(new_id)`` and commit.

        ``after_create(row)`` runs inside the same transaction (audit).
        Returns the committed row.
        """
        try:
            row = build(self.next_id())
            db.session.add(row)
            db.session.flush()
            if after_create is not None:
                after_create(row)
            db.session.commit()
            return row
        except OperationalError as exc:
            db.session.rollback()
            logger.exception("Record store unavailable while creating %s", self.resource)
            raise StorageUnavailableError() from exc
        except IntegrityError as exc:
            db.session.rollback()
            logger.warning("Duplicate %s id on create: %s", self.resource, exc.orig)
            raise ConflictError(self.resource, "<new>", 1) from exc
        except Exception:
            db.session.rollback()
            raise

    def put_atomic(
        self,
        key: str,
        mutator: Callable[[Any], Any],
        *,
        after_apply: Callable[[Any, Any], None] | None = None,
    ) -> WriteResult:
        """
        Load *key*, apply ``mutator(record)`` and persist the result atomically.

        The mutator receives a detached copy and returns the new record. It
        must not touch the session; anything it raises rolls the
        transaction back and propagates unchanged.

        Raises:
            NotFoundError, ConflictError, StorageUnavailableError, and
            whatever the mutator raises.
        """
        max_attempts = max(1, int(current_app.config.get(
            "PERMIT_WRITE_MAX_RETRIES", DEFAULT_MAX_RETRIES)))

        for attempt in range(1, max_attempts + 1):
            try:
                row = self.get_row(key, for_update=True)
                before = row.to_record()
                after = mutator(before.copy())
                row.apply_record(after)
                db.session.flush()
                if after_apply is not None:
                    after_apply(before, after)
                db.session.commit()
            except StaleDataError:
                db.session.rollback()
                logger.warning(
                    "Concurrent write on %s %s (attempt %d/%d)",
                    self.resource, key, attempt, max_attempts,
                    extra={"attempt": attempt, self.key_attr: key},
                )
                continue
            except OperationalError as exc:
                db.session.rollback()
                logger.exception("Record store unavailable writing %s %s", self.resource, key)
                raise StorageUnavailableError() from exc
            except Exception:
                db.session.rollback()
                raise
            return WriteResult(before=before, after=row.to_record(), attempts=attempt)

        raise ConflictError(self.resource, key, max_attempts)


permit_store = RecordStore(Permit, "permit_id", "Permit", sequence="permit")
worker_store = RecordStore(Worker, "worker_id", "Worker", sequence="worker")
