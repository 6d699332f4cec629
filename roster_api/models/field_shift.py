from datetime import datetime
from roster_api.extensions import db


class FieldShift(db.Model):
    """
    A shift actually opened in the field (written by the mobile/sync side).
    The roster core only reads these rows.
    """
    __tablename__ = "field_shifts"

    id = db.Column(db.Integer, primary_key=True)
    crew_id = db.Column(db.Integer, nullable=False, index=True)
    opened_at = db.Column(db.DateTime, nullable=False, index=True)
    closed_at = db.Column(db.DateTime, nullable=True)  # null = still open
    created_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)

    members = db.relationship("FieldShiftMember", cascade="all, delete-orphan", lazy="selectin")

    @property
    def electrician_ids(self):
        return [m.electrician_id for m in self.members]


class FieldShiftMember(db.Model):
    __tablename__ = "field_shift_members"

    id = db.Column(db.Integer, primary_key=True)
    shift_id = db.Column(db.Integer, db.ForeignKey("field_shifts.id", ondelete="CASCADE"), nullable=False, index=True)
    electrician_id = db.Column(db.Integer, nullable=False, index=True)

    __table_args__ = (
        db.UniqueConstraint("shift_id", "electrician_id", name="uq_field_shift_member"),
    )
