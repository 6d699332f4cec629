from datetime import datetime
from roster_api.extensions import db
from roster_api.models.mixins import AuditMixin

MODE_CYCLE_DAYS = "CYCLE_DAYS"
MODE_WEEK_DEPENDENT = "WEEK_DEPENDENT"
PATTERN_MODES = (MODE_CYCLE_DAYS, MODE_WEEK_DEPENDENT)

DAY_WORK = "WORK"
DAY_OFF = "OFF"
DAY_STATUSES = (DAY_WORK, DAY_OFF)

WEEKDAYS = ("MON", "TUE", "WED", "THU", "FRI", "SAT", "SUN")  # index == date.weekday()


class PatternDefinition(AuditMixin, db.Model):
    __tablename__ = "schedule_patterns"

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(80), nullable=False, unique=True)
    mode = db.Column(db.String(20), nullable=False)               # CYCLE_DAYS | WEEK_DEPENDENT
    cycle_length = db.Column(db.SmallInteger, nullable=True)      # CYCLE_DAYS only
    weeks_in_cycle = db.Column(db.SmallInteger, nullable=True)    # WEEK_DEPENDENT only
    required_headcount = db.Column(db.SmallInteger, nullable=False, default=1)
    active = db.Column(db.Boolean, nullable=False, default=True)
    notes = db.Column(db.Text)

    positions = db.relationship(
        "PatternPosition", cascade="all, delete-orphan",
        order_by="PatternPosition.position", lazy="selectin",
    )
    week_masks = db.relationship(
        "PatternWeekMask", cascade="all, delete-orphan",
        order_by=lambda: [PatternWeekMask.week_index, PatternWeekMask.id], lazy="selectin",
    )

    __table_args__ = (
        db.CheckConstraint("required_headcount >= 1", name="ck_pattern_headcount"),
    )

    def to_spec(self):
        from roster_api.services.pattern_catalog import PatternSpec

        return PatternSpec(
            id=self.id,
            name=self.name,
            mode=self.mode,
            cycle_length=self.cycle_length,
            weeks_in_cycle=self.weeks_in_cycle,
            required_headcount=self.required_headcount,
            positions={p.position: p.status for p in self.positions},
            week_cells={(m.week_index, m.weekday): m.status for m in self.week_masks},
        )

    def to_dict(self):
        return {
            "id": self.id,
            "name": self.name,
            "mode": self.mode,
            "cycle_length": self.cycle_length,
            "weeks_in_cycle": self.weeks_in_cycle,
            "required_headcount": self.required_headcount,
            "active": self.active,
            "notes": self.notes,
            "positions": [{"position": p.position, "status": p.status} for p in self.positions],
            "week_masks": [
                {"week_index": m.week_index, "weekday": m.weekday, "status": m.status}
                for m in self.week_masks
            ],
        }


class PatternPosition(db.Model):
    __tablename__ = "schedule_pattern_positions"

    id = db.Column(db.Integer, primary_key=True)
    pattern_id = db.Column(db.Integer, db.ForeignKey("schedule_patterns.id", ondelete="CASCADE"), nullable=False, index=True)
    position = db.Column(db.SmallInteger, nullable=False)  # 0..cycle_length-1
    status = db.Column(db.String(4), nullable=False)        # WORK | OFF
    created_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)
    created_by = db.Column(db.String(64), nullable=False, default="system")

    __table_args__ = (
        db.UniqueConstraint("pattern_id", "position", name="uq_pattern_position"),
    )


class PatternWeekMask(db.Model):
    __tablename__ = "schedule_pattern_week_masks"

    id = db.Column(db.Integer, primary_key=True)
    pattern_id = db.Column(db.Integer, db.ForeignKey("schedule_patterns.id", ondelete="CASCADE"), nullable=False, index=True)
    week_index = db.Column(db.SmallInteger, nullable=False)  # 0..weeks_in_cycle-1
    weekday = db.Column(db.String(3), nullable=False)        # MON..SUN
    status = db.Column(db.String(4), nullable=False)
    created_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)
    created_by = db.Column(db.String(64), nullable=False, default="system")

    __table_args__ = (
        db.UniqueConstraint("pattern_id", "week_index", "weekday", name="uq_pattern_week_cell"),
    )
