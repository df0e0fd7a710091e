"""
Work Permit Tracker
Identifier sequences.

Permit and worker ids (WP-1001, W-1, ...) come from a named counter row.
The counter is bumped with a single ``UPDATE ... SET last_value =
last_value + 1`` so concurrent creators never read the same value.
"""

from sqlalchemy import select, update

from permit_tracker.models import db


class IdSequence(db.Model):
    """Named monotonically increasing counter."""

    __tablename__ = "id_sequences"

    name = db.Column(db.String(40), primary_key=True)
    last_value = db.Column(db.Integer, nullable=False, default=0)

    def __repr__(self):
        return f"<IdSequence {self.name}={self.last_value}>"


def ensure_sequence(name: str, start: int) -> None:
    """Create the counter row if missing. ``start`` is the value before the first id."""
    if db.session.get(IdSequence, name) is None:
        db.session.add(IdSequence(name=name, last_value=start))
        db.session.flush()


def next_sequence_code(name: str, prefix: str, start: int = 0) -> str:
    """
    Allocate the next id for *name* and return it as ``{prefix}-{n}``.

    Runs inside the caller's transaction: if the caller rolls back, the
    number is released as well.
    """
    result = db.session.execute(
        update(IdSequence)
        .where(IdSequence.name == name)
        .values(last_value=IdSequence.last_value + 1)
    )
    if result.rowcount == 0:
        db.session.add(IdSequence(name=name, last_value=start + 1))
        db.session.flush()

    value = db.session.execute(
        select(IdSequence.last_value).where(IdSequence.name == name)
    ).scalar_one()
    return f"{prefix}-{value}"
