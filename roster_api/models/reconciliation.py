from datetime import datetime
from roster_api.extensions import db
from roster_api.models.mixins import AuditMixin

ABSENCE_PENDING = "PENDING"
ABSENCE_JUSTIFIED = "JUSTIFIED"
ABSENCE_REJECTED = "REJECTED"

OVERTIME_PENDING = "PENDING"
OVERTIME_APPROVED = "APPROVED"
OVERTIME_REJECTED = "REJECTED"

OVERTIME_DAY_OFF_WORKED = "DAY_OFF_WORKED"
OVERTIME_UNSCHEDULED = "UNSCHEDULED"
OVERTIME_LATE_COMPENSATED = "LATE_COMPENSATED"

DEVIATION_CREW_MISMATCH = "crew_mismatch"
ABSENCE_MISSED_OPENING = "missed_opening"
ABSENCE_FLAGGED_SLOT = "flagged_slot"

RUN_TOLERANT = "TOLERANT"
RUN_FORCED = "FORCED"


class _ReviewMixin:
    reviewed_by = db.Column(db.String(64))
    reviewed_at = db.Column(db.DateTime)
    review_note = db.Column(db.Text)


class AbsenceRecord(AuditMixin, _ReviewMixin, db.Model):
    __tablename__ = "reconciliation_absences"

    id = db.Column(db.Integer, primary_key=True)
    electrician_id = db.Column(db.Integer, nullable=False, index=True)
    reference_date = db.Column(db.Date, nullable=False, index=True)
    crew_id = db.Column(db.Integer, nullable=False, index=True)
    slot_id = db.Column(db.Integer, db.ForeignKey("schedule_slots.id", ondelete="SET NULL"), nullable=True)
    reason = db.Column(db.String(30), nullable=False, default=ABSENCE_MISSED_OPENING)
    status = db.Column(db.String(10), nullable=False, default=ABSENCE_PENDING)  # PENDING|JUSTIFIED|REJECTED

    __table_args__ = (
        db.UniqueConstraint("electrician_id", "reference_date", name="uq_absence_electrician_day"),
    )

    def to_dict(self):
        return {
            "id": self.id,
            "kind": "absence",
            "electrician_id": self.electrician_id,
            "reference_date": self.reference_date.isoformat(),
            "crew_id": self.crew_id,
            "slot_id": self.slot_id,
            "reason": self.reason,
            "status": self.status,
            "reviewed_by": self.reviewed_by,
            "review_note": self.review_note,
            "created_by": self.created_by,
        }


class DeviationRecord(AuditMixin, db.Model):
    __tablename__ = "reconciliation_deviations"

    id = db.Column(db.Integer, primary_key=True)
    electrician_id = db.Column(db.Integer, nullable=False, index=True)
    reference_date = db.Column(db.Date, nullable=False, index=True)
    expected_crew_id = db.Column(db.Integer, nullable=False)
    actual_crew_id = db.Column(db.Integer, nullable=False)
    kind = db.Column(db.String(20), nullable=False, default=DEVIATION_CREW_MISMATCH)
    detail = db.Column(db.Text)

    __table_args__ = (
        db.UniqueConstraint("electrician_id", "reference_date", name="uq_deviation_electrician_day"),
    )

    def to_dict(self):
        return {
            "id": self.id,
            "kind": "deviation",
            "electrician_id": self.electrician_id,
            "reference_date": self.reference_date.isoformat(),
            "expected_crew_id": self.expected_crew_id,
            "actual_crew_id": self.actual_crew_id,
            "deviation_kind": self.kind,
            "detail": self.detail,
            "created_by": self.created_by,
        }


class OvertimeRecord(AuditMixin, _ReviewMixin, db.Model):
    __tablename__ = "reconciliation_overtime"

    id = db.Column(db.Integer, primary_key=True)
    electrician_id = db.Column(db.Integer, nullable=False, index=True)
    reference_date = db.Column(db.Date, nullable=False, index=True)
    crew_id = db.Column(db.Integer, nullable=False)  # crew the shift was worked on
    kind = db.Column(db.String(20), nullable=False)  # DAY_OFF_WORKED|UNSCHEDULED|LATE_COMPENSATED
    field_shift_id = db.Column(db.Integer, db.ForeignKey("field_shifts.id", ondelete="SET NULL"), nullable=True)
    slot_id = db.Column(db.Integer, db.ForeignKey("schedule_slots.id", ondelete="SET NULL"), nullable=True)
    predicted_hours = db.Column(db.Numeric(6, 2), nullable=False, default=0)
    worked_hours = db.Column(db.Numeric(6, 2), nullable=False, default=0)
    difference_hours = db.Column(db.Numeric(6, 2), nullable=False, default=0)
    status = db.Column(db.String(10), nullable=False, default=OVERTIME_PENDING)
    notes = db.Column(db.Text)

    __table_args__ = (
        db.UniqueConstraint("electrician_id", "reference_date", name="uq_overtime_electrician_day"),
    )

    def to_dict(self):
        return {
            "id": self.id,
            "kind": "overtime",
            "electrician_id": self.electrician_id,
            "reference_date": self.reference_date.isoformat(),
            "crew_id": self.crew_id,
            "overtime_kind": self.kind,
            "field_shift_id": self.field_shift_id,
            "slot_id": self.slot_id,
            "predicted_hours": float(self.predicted_hours or 0),
            "worked_hours": float(self.worked_hours or 0),
            "difference_hours": float(self.difference_hours or 0),
            "status": self.status,
            "notes": self.notes,
            "reviewed_by": self.reviewed_by,
        }


class ReconciliationRun(db.Model):
    __tablename__ = "reconciliation_runs"

    id = db.Column(db.Integer, primary_key=True)
    run_id = db.Column(db.String(40), nullable=False, unique=True)
    mode = db.Column(db.String(10), nullable=False)  # TOLERANT|FORCED
    triggered_by = db.Column(db.String(64), nullable=False)
    date_from = db.Column(db.Date, nullable=False)
    date_to = db.Column(db.Date, nullable=False)
    crew_id = db.Column(db.Integer, nullable=True)
    absences_created = db.Column(db.Integer, nullable=False, default=0)
    deviations_created = db.Column(db.Integer, nullable=False, default=0)
    overtime_created = db.Column(db.Integer, nullable=False, default=0)
    already_reconciled = db.Column(db.Integer, nullable=False, default=0)
    deferred = db.Column(db.Integer, nullable=False, default=0)
    dates_processed = db.Column(db.Integer, nullable=False, default=0)
    errors = db.Column(db.JSON)
    outcome = db.Column(db.String(20), nullable=False)  # SUCCESS|SUCCESS_CHANGES|PARTIAL|CANCELLED
    started_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)
    finished_at = db.Column(db.DateTime)

    def to_dict(self):
        return {
            "run_id": self.run_id,
            "mode": self.mode,
            "triggered_by": self.triggered_by,
            "date_from": self.date_from.isoformat(),
            "date_to": self.date_to.isoformat(),
            "crew_id": self.crew_id,
            "absences_created": self.absences_created,
            "deviations_created": self.deviations_created,
            "overtime_created": self.overtime_created,
            "already_reconciled": self.already_reconciled,
            "deferred": self.deferred,
            "dates_processed": self.dates_processed,
            "errors": self.errors or [],
            "outcome": self.outcome,
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "finished_at": self.finished_at.isoformat() if self.finished_at else None,
        }
