from __future__ import annotations

from ..extensions import db
from salesdist.time_utils import to_utc_z


class ReferenceSequence(db.Model):
    """
    Atomic per-(prefix, day) counters for human-readable reference numbers.

    WHY: "count today's rows + 1" hands out duplicates under concurrent
    creation. The counter row is incremented inside the same DB transaction
    as the entity insert, so a rolled-back insert also gives its number back.
    """
    __tablename__ = "reference_sequences"
    __table_args__ = (
        db.UniqueConstraint("prefix", "sequence_date", name="uq_reference_sequences_prefix_date"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    prefix = db.Column(db.String(8), nullable=False, index=True)
    sequence_date = db.Column(db.Date, nullable=False)
    next_number = db.Column(db.Integer, nullable=False, default=1)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "prefix": self.prefix,
            "sequence_date": self.sequence_date.isoformat() if self.sequence_date else None,
            "next_number": self.next_number,
            "updated_at": to_utc_z(self.updated_at),
        }
