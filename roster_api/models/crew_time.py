from roster_api.extensions import db
from roster_api.models.mixins import AuditMixin


class CrewTimeWindow(AuditMixin, db.Model):
    """Shift start / duration in force for a crew over [valid_from, valid_to]."""
    __tablename__ = "crew_time_windows"

    id = db.Column(db.Integer, primary_key=True)
    crew_id = db.Column(db.Integer, nullable=False, index=True)
    start_time = db.Column(db.Time, nullable=False)
    duration_hours = db.Column(db.Numeric(5, 2), nullable=False)
    valid_from = db.Column(db.Date, nullable=False, index=True)
    valid_to = db.Column(db.Date, nullable=True, index=True)  # null = open-ended

    # soft retire only; rows are never physically deleted
    retired_at = db.Column(db.DateTime, nullable=True)
    retired_by = db.Column(db.String(64), nullable=True)

    __table_args__ = (
        db.Index("ix_crew_time_range", "crew_id", "valid_from", "valid_to"),
    )

    def to_dict(self):
        return {
            "id": self.id,
            "crew_id": self.crew_id,
            "start_time": self.start_time.strftime("%H:%M") if self.start_time else None,
            "duration_hours": float(self.duration_hours) if self.duration_hours is not None else None,
            "valid_from": self.valid_from.isoformat() if self.valid_from else None,
            "valid_to": self.valid_to.isoformat() if self.valid_to else None,
            "retired_at": self.retired_at.isoformat() if self.retired_at else None,
        }
