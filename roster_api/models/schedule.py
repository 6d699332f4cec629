from datetime import datetime
from roster_api.extensions import db
from roster_api.models.mixins import AuditMixin

PERIOD_DRAFT = "DRAFT"
PERIOD_UNDER_REVIEW = "UNDER_REVIEW"
PERIOD_PUBLISHED = "PUBLISHED"
PERIOD_ARCHIVED = "ARCHIVED"
PERIOD_STATUSES = (PERIOD_DRAFT, PERIOD_UNDER_REVIEW, PERIOD_PUBLISHED, PERIOD_ARCHIVED)
EDITABLE_STATUSES = (PERIOD_DRAFT, PERIOD_UNDER_REVIEW)

SLOT_WORK = "WORK"
SLOT_OFF = "OFF"
SLOT_ABSENT = "ABSENT"
SLOT_EXCEPTION = "EXCEPTION"
SLOT_STATES = (SLOT_WORK, SLOT_OFF, SLOT_ABSENT, SLOT_EXCEPTION)

ORIGIN_GENERATED = "GENERATED"
ORIGIN_MANUAL = "MANUAL"
ORIGIN_REBALANCED = "REBALANCED"
SLOT_ORIGINS = (ORIGIN_GENERATED, ORIGIN_MANUAL, ORIGIN_REBALANCED)

COVERAGE_ABSENCE = "ABSENCE"
COVERAGE_SWAP = "SWAP"
COVERAGE_TRANSFER = "TRANSFER"
COVERED = "COVERED"
UNCOVERED = "UNCOVERED"


class SchedulePeriod(AuditMixin, db.Model):
    __tablename__ = "schedule_periods"

    id = db.Column(db.Integer, primary_key=True)
    crew_id = db.Column(db.Integer, nullable=False, index=True)
    pattern_id = db.Column(db.Integer, db.ForeignKey("schedule_patterns.id", ondelete="RESTRICT"), nullable=False, index=True)
    period_start = db.Column(db.Date, nullable=False)
    period_end = db.Column(db.Date, nullable=False)
    status = db.Column(db.String(20), nullable=False, default=PERIOD_DRAFT)
    version = db.Column(db.Integer, nullable=False, default=1)
    notes = db.Column(db.Text)
    published_at = db.Column(db.DateTime)
    archived_at = db.Column(db.DateTime)

    pattern = db.relationship("PatternDefinition", lazy="joined")

    __table_args__ = (
        db.CheckConstraint("period_start <= period_end", name="ck_period_range"),
        db.Index("ix_schedule_period_crew_range", "crew_id", "period_start", "period_end"),
        db.Index("ix_schedule_period_status", "status"),
    )

    def covers(self, day) -> bool:
        return self.period_start <= day <= self.period_end

    def to_dict(self):
        return {
            "id": self.id,
            "crew_id": self.crew_id,
            "pattern_id": self.pattern_id,
            "period_start": self.period_start.isoformat(),
            "period_end": self.period_end.isoformat(),
            "status": self.status,
            "version": self.version,
            "notes": self.notes,
            "published_at": self.published_at.isoformat() if self.published_at else None,
            "archived_at": self.archived_at.isoformat() if self.archived_at else None,
            "created_by": self.created_by,
            "updated_by": self.updated_by,
        }


class PeriodAllocation(AuditMixin, db.Model):
    """Operator-declared next day off and the phase anchor derived from it."""
    __tablename__ = "schedule_period_allocations"

    id = db.Column(db.Integer, primary_key=True)
    period_id = db.Column(db.Integer, db.ForeignKey("schedule_periods.id", ondelete="CASCADE"), nullable=False, index=True)
    electrician_id = db.Column(db.Integer, nullable=False, index=True)
    next_day_off = db.Column(db.Date, nullable=False)
    phase_anchor = db.Column(db.Date, nullable=False)
    phase_offset = db.Column(db.Integer, nullable=False, default=0)  # days (CYCLE_DAYS) or weeks (WEEK_DEPENDENT)

    __table_args__ = (
        db.UniqueConstraint("period_id", "electrician_id", name="uq_period_allocation"),
    )

    def to_dict(self):
        return {
            "electrician_id": self.electrician_id,
            "next_day_off": self.next_day_off.isoformat(),
            "phase_anchor": self.phase_anchor.isoformat(),
            "phase_offset": self.phase_offset,
        }


class Slot(AuditMixin, db.Model):
    __tablename__ = "schedule_slots"

    id = db.Column(db.Integer, primary_key=True)
    period_id = db.Column(db.Integer, db.ForeignKey("schedule_periods.id", ondelete="CASCADE"), nullable=False, index=True)
    day = db.Column(db.Date, nullable=False, index=True)
    electrician_id = db.Column(db.Integer, nullable=False, index=True)
    state = db.Column(db.String(10), nullable=False)                 # WORK|OFF|ABSENT|EXCEPTION
    predicted_start = db.Column(db.Time, nullable=True)
    predicted_duration_hours = db.Column(db.Numeric(5, 2), nullable=True)
    origin = db.Column(db.String(12), nullable=False, default=ORIGIN_GENERATED)
    day_note = db.Column(db.Text)

    period = db.relationship("SchedulePeriod", lazy="joined")

    __table_args__ = (
        db.UniqueConstraint("period_id", "day", "electrician_id", name="uq_slot_period_day_electrician"),
        db.Index("ix_slot_day_state", "day", "state"),
    )

    def to_dict(self):
        return {
            "id": self.id,
            "period_id": self.period_id,
            "date": self.day.isoformat(),
            "electrician_id": self.electrician_id,
            "state": self.state,
            "predicted_start": self.predicted_start.strftime("%H:%M") if self.predicted_start else None,
            "predicted_duration_hours": (
                float(self.predicted_duration_hours) if self.predicted_duration_hours is not None else None
            ),
            "origin": self.origin,
            "day_note": self.day_note,
        }


class CoverageEvent(db.Model):
    """Audit row for every post-publish slot change (absence, swap, transfer)."""
    __tablename__ = "schedule_coverage_events"

    id = db.Column(db.Integer, primary_key=True)
    slot_id = db.Column(db.Integer, db.ForeignKey("schedule_slots.id", ondelete="CASCADE"), nullable=False, index=True)
    kind = db.Column(db.String(10), nullable=False)        # ABSENCE|SWAP|TRANSFER
    outcome = db.Column(db.String(10), nullable=False)     # COVERED|UNCOVERED
    covering_electrician_id = db.Column(db.Integer, nullable=True)
    justification = db.Column(db.Text)
    registered_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)
    created_by = db.Column(db.String(64), nullable=False, default="system")

    def to_dict(self):
        return {
            "id": self.id,
            "slot_id": self.slot_id,
            "kind": self.kind,
            "outcome": self.outcome,
            "covering_electrician_id": self.covering_electrician_id,
            "justification": self.justification,
            "registered_at": self.registered_at.isoformat() if self.registered_at else None,
            "created_by": self.created_by,
        }
