# roster_api/services/reconciliation.py
"""
Plan-vs-actual reconciliation.

For each date, every slot of a PUBLISHED period covering that date is compared
with the field shifts attributed to that day. A shift opened within the grace
margin of a planned start belongs to that slot's day even when it crosses
midnight; any other shift belongs to the day it was opened.

  WORK, no shift at all             -> AbsenceRecord (PENDING)
  WORK, shifts only on other crews  -> DeviationRecord
  WORK, shift on the slot's crew    -> nothing, unless the shift started late
                                       and the worked hours still cover the
                                       plan (LATE_COMPENSATED overtime)
  OFF, shift exists                 -> OvertimeRecord (DAY_OFF_WORKED)
  no published slot, shift exists   -> OvertimeRecord (UNSCHEDULED)
  ABSENT / EXCEPTION, no shift      -> AbsenceRecord (PENDING)
  ABSENT / EXCEPTION, shift exists  -> operator-handled, skipped

Each date is committed on its own. Absence / deviation / overtime rows are
unique per (electrician, reference date); a concurrent run that wrote first
shows up as an IntegrityError, after which the date is replayed record by
record and every conflict is counted as "already reconciled".

Usage:
    from roster_api.services.reconciliation import reconcile, reconcile_forced

    summary = reconcile(date(2025, 2, 1))
    summary = reconcile_forced(date(2025, 1, 1), date(2025, 1, 31), crew_id=7)
"""
from __future__ import annotations

from collections import Counter, defaultdict
from dataclasses import dataclass, field
from datetime import date, datetime, time as _time, timedelta
from decimal import ROUND_HALF_UP, Decimal
from typing import Callable, Dict, List, Optional
import logging
import uuid

from flask import current_app
from sqlalchemy.exc import IntegrityError

from roster_api.common.auth import SYSTEM_ACTOR
from roster_api.extensions import db
from roster_api.models.field_shift import FieldShift
from roster_api.models.reconciliation import (
    ABSENCE_FLAGGED_SLOT,
    ABSENCE_MISSED_OPENING,
    ABSENCE_PENDING,
    DEVIATION_CREW_MISMATCH,
    OVERTIME_DAY_OFF_WORKED,
    OVERTIME_LATE_COMPENSATED,
    OVERTIME_PENDING,
    OVERTIME_UNSCHEDULED,
    RUN_FORCED,
    RUN_TOLERANT,
    AbsenceRecord,
    DeviationRecord,
    OvertimeRecord,
    ReconciliationRun,
)
from roster_api.models.schedule import (
    PERIOD_PUBLISHED,
    SLOT_ABSENT,
    SLOT_EXCEPTION,
    SLOT_OFF,
    SLOT_WORK,
    SchedulePeriod,
    Slot,
)
from roster_api.services.allocation_planner import daterange
from roster_api.services.clock import get_clock
from roster_api.services.exceptions import ValidationError

log = logging.getLogger(__name__)

DEFAULT_GRACE_MINUTES = 30
DEFAULT_LATE_TOLERANCE_MINUTES = 30
DEFAULT_LOOKBACK_DAYS = 30

KIND_ABSENCE = "absence"
KIND_DEVIATION = "deviation"
KIND_OVERTIME = "overtime"

_MODELS = {
    KIND_ABSENCE: AbsenceRecord,
    KIND_DEVIATION: DeviationRecord,
    KIND_OVERTIME: OvertimeRecord,
}

_TWO = Decimal("0.01")

# slot states that still expect the electrician to open a shift
_EXPECTED_ON_SHIFT = (SLOT_WORK, SLOT_ABSENT, SLOT_EXCEPTION)


def _cfg(key: str, default: int) -> int:
    return int(current_app.config.get(key, default))


def _hours(start: datetime, end: datetime) -> Decimal:
    secs = max((end - start).total_seconds(), 0)
    return (Decimal(str(secs)) / Decimal(3600)).quantize(_TWO, rounding=ROUND_HALF_UP)


# ---------- result types ----------

@dataclass
class Finding:
    """One record the comparison wants to exist."""
    kind: str
    electrician_id: int
    reference_date: date
    values: Dict = field(default_factory=dict)

    def build(self, actor: str):
        return _MODELS[self.kind](
            electrician_id=self.electrician_id,
            reference_date=self.reference_date,
            created_by=actor,
            **self.values,
        )

    def exists(self) -> bool:
        model = _MODELS[self.kind]
        return db.session.query(model.id).filter(
            model.electrician_id == self.electrician_id,
            model.reference_date == self.reference_date,
        ).first() is not None


@dataclass
class ReconciliationSummary:
    run_id: str
    mode: str
    date_from: date
    date_to: date
    crew_id: Optional[int] = None
    triggered_by: str = SYSTEM_ACTOR
    dry_run: bool = False
    absences_created: int = 0
    deviations_created: int = 0
    overtime_created: int = 0
    already_reconciled: int = 0
    deferred: int = 0
    dates_processed: int = 0
    errors: List[Dict] = field(default_factory=list)
    cancelled: bool = False
    started_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None

    @property
    def created(self) -> int:
        return self.absences_created + self.deviations_created + self.overtime_created

    @property
    def outcome(self) -> str:
        if self.cancelled:
            return "CANCELLED"
        if self.errors:
            return "PARTIAL"
        return "SUCCESS_CHANGES" if self.created else "SUCCESS"

    def add_created(self, counts: Counter):
        self.absences_created += counts.get(KIND_ABSENCE, 0)
        self.deviations_created += counts.get(KIND_DEVIATION, 0)
        self.overtime_created += counts.get(KIND_OVERTIME, 0)

    def to_dict(self):
        return {
            "run_id": self.run_id,
            "mode": self.mode,
            "date_from": self.date_from.isoformat(),
            "date_to": self.date_to.isoformat(),
            "crew_id": self.crew_id,
            "triggered_by": self.triggered_by,
            "dry_run": self.dry_run,
            "absences_created": self.absences_created,
            "deviations_created": self.deviations_created,
            "overtime_created": self.overtime_created,
            "already_reconciled": self.already_reconciled,
            "deferred": self.deferred,
            "dates_processed": self.dates_processed,
            "dates_failed": len(self.errors),
            "errors": self.errors,
            "cancelled": self.cancelled,
            "outcome": self.outcome,
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "finished_at": self.finished_at.isoformat() if self.finished_at else None,
        }


# ---------- comparison ----------

def _published_slots(day: date, crew_id: Optional[int]):
    q = (
        db.session.query(Slot, SchedulePeriod.crew_id)
        .join(SchedulePeriod, SchedulePeriod.id == Slot.period_id)
        .filter(
            Slot.day == day,
            SchedulePeriod.status == PERIOD_PUBLISHED,
            SchedulePeriod.period_start <= day,
            SchedulePeriod.period_end >= day,
        )
    )
    if crew_id:
        q = q.filter(SchedulePeriod.crew_id == crew_id)
    return q.order_by(SchedulePeriod.crew_id.asc(), Slot.electrician_id.asc()).all()


def _scheduled_electricians(day: date) -> set:
    rows = (
        db.session.query(Slot.electrician_id)
        .join(SchedulePeriod, SchedulePeriod.id == Slot.period_id)
        .filter(Slot.day == day, SchedulePeriod.status == PERIOD_PUBLISHED)
        .distinct()
        .all()
    )
    return {r[0] for r in rows}


def _planned_starts(days: List[date]) -> Dict[int, List[datetime]]:
    """Predicted starts of every published slot that expects the electrician on shift."""
    rows = (
        db.session.query(Slot.electrician_id, Slot.day, Slot.predicted_start)
        .join(SchedulePeriod, SchedulePeriod.id == Slot.period_id)
        .filter(
            Slot.day.in_(days),
            Slot.state.in_(_EXPECTED_ON_SHIFT),
            Slot.predicted_start.isnot(None),
            SchedulePeriod.status == PERIOD_PUBLISHED,
        )
        .all()
    )
    out: Dict[int, List[datetime]] = defaultdict(list)
    for eid, d, start in rows:
        out[eid].append(datetime.combine(d, start))
    return out


def _attributed_day(opened_at: datetime, planned: List[datetime], grace: timedelta) -> date:
    # a shift opened within the grace margin of a planned start belongs to that
    # slot's day, even across midnight; otherwise to the day it was opened
    best = None
    for start in planned:
        gap = abs(opened_at - start)
        if gap <= grace and (best is None or gap < best[0]):
            best = (gap, start.date())
    return best[1] if best else opened_at.date()


def _shifts_by_electrician(day: date, grace: timedelta) -> Dict[int, List[FieldShift]]:
    start = datetime.combine(day, _time.min)
    shifts = (
        FieldShift.query.filter(
            FieldShift.opened_at >= start - grace,
            FieldShift.opened_at < start + timedelta(days=1) + grace,
        )
        .order_by(FieldShift.opened_at.asc(), FieldShift.id.asc())
        .all()
    )
    planned = _planned_starts([day - timedelta(days=1), day, day + timedelta(days=1)])
    out: Dict[int, List[FieldShift]] = defaultdict(list)
    for s in shifts:
        for eid in s.electrician_ids:
            if _attributed_day(s.opened_at, planned.get(eid, []), grace) == day:
                out[eid].append(s)
    return out


def _slot_cutoff(slot: Slot, grace: timedelta) -> datetime:
    if slot.predicted_start is None:
        # manual WORK slot without a time: judge it once the day is over
        return datetime.combine(slot.day + timedelta(days=1), _time.min)
    return datetime.combine(slot.day, slot.predicted_start) + grace


def evaluate_day(
    day: date,
    crew_id: Optional[int] = None,
    clock=None,
    honour_grace: bool = True,
) -> tuple:
    """
    Pure read: the findings for ``day`` and how many WORK slots were deferred
    because their start + grace margin is still ahead of the clock.
    """
    now = get_clock(clock).now()
    grace = timedelta(minutes=_cfg("RECONCILE_GRACE_MINUTES", DEFAULT_GRACE_MINUTES))
    late_tol = timedelta(minutes=_cfg("RECONCILE_LATE_TOLERANCE_MINUTES", DEFAULT_LATE_TOLERANCE_MINUTES))

    slots = _published_slots(day, crew_id)
    shifts = _shifts_by_electrician(day, grace)
    findings: Dict[tuple, Finding] = {}
    deferred = 0

    def want(f: Finding):
        findings.setdefault((f.kind, f.electrician_id), f)

    for slot, slot_crew in slots:
        eid = slot.electrician_id
        mine = shifts.get(eid, [])

        if slot.state in _EXPECTED_ON_SHIFT:
            if honour_grace and now < _slot_cutoff(slot, grace):
                deferred += 1
                continue
            if not mine:
                want(Finding(KIND_ABSENCE, eid, day, {
                    "crew_id": slot_crew,
                    "slot_id": slot.id,
                    "reason": ABSENCE_MISSED_OPENING if slot.state == SLOT_WORK else ABSENCE_FLAGGED_SLOT,
                    "status": ABSENCE_PENDING,
                }))
                continue
            if slot.state != SLOT_WORK:
                # flagged slot worked anyway: left to the operator who flagged it
                continue
            on_crew = [s for s in mine if s.crew_id == slot_crew]
            if not on_crew:
                want(Finding(KIND_DEVIATION, eid, day, {
                    "expected_crew_id": slot_crew,
                    "actual_crew_id": mine[0].crew_id,
                    "kind": DEVIATION_CREW_MISMATCH,
                    "detail": f"shift {mine[0].id} opened at {mine[0].opened_at.strftime('%H:%M')}",
                }))
                continue
            late = _late_compensated(slot, on_crew[0], late_tol, now)
            if late:
                want(late)

        elif slot.state == SLOT_OFF and mine:
            shift = next((s for s in mine if s.crew_id == slot_crew), mine[0])
            worked = _hours(shift.opened_at, shift.closed_at or now)
            want(Finding(KIND_OVERTIME, eid, day, {
                "crew_id": shift.crew_id,
                "kind": OVERTIME_DAY_OFF_WORKED,
                "field_shift_id": shift.id,
                "slot_id": slot.id,
                "predicted_hours": Decimal("0.00"),
                "worked_hours": worked,
                "difference_hours": worked,
                "status": OVERTIME_PENDING,
            }))

    scheduled = _scheduled_electricians(day)
    for eid, mine in shifts.items():
        if eid in scheduled:
            continue
        if crew_id:
            mine = [s for s in mine if s.crew_id == crew_id]
            if not mine:
                continue
        worked = sum((_hours(s.opened_at, s.closed_at or now) for s in mine), Decimal("0.00"))
        want(Finding(KIND_OVERTIME, eid, day, {
            "crew_id": mine[0].crew_id,
            "kind": OVERTIME_UNSCHEDULED,
            "field_shift_id": mine[0].id,
            "predicted_hours": Decimal("0.00"),
            "worked_hours": worked,
            "difference_hours": worked,
            "status": OVERTIME_PENDING,
            "notes": f"{len(mine)} shift(s) without a published slot",
        }))

    return list(findings.values()), deferred


def _late_compensated(slot: Slot, shift: FieldShift, tolerance: timedelta, now: datetime) -> Optional[Finding]:
    if slot.predicted_start is None:
        return None
    planned = datetime.combine(slot.day, slot.predicted_start)
    if shift.opened_at <= planned + tolerance:
        return None
    minutes_late = int((shift.opened_at - planned).total_seconds() // 60)
    predicted = Decimal(str(slot.predicted_duration_hours or 0)).quantize(_TWO)
    if shift.closed_at is None:
        # still open: judge the compensation once the shift is closed
        return None
    worked = _hours(shift.opened_at, shift.closed_at)
    diff = worked - predicted
    if diff < 0:
        log.warning(
            "[reconcile] electrician %s started %s min late on %s and did not compensate (%s h short)",
            slot.electrician_id, minutes_late, slot.day, -diff,
        )
        return None
    return Finding(KIND_OVERTIME, slot.electrician_id, slot.day, {
        "crew_id": shift.crew_id,
        "kind": OVERTIME_LATE_COMPENSATED,
        "field_shift_id": shift.id,
        "slot_id": slot.id,
        "predicted_hours": predicted,
        "worked_hours": worked,
        "difference_hours": diff,
        "status": OVERTIME_PENDING,
        "notes": f"{minutes_late} minutes late, compensated",
    })


# ---------- persistence ----------

def _persist_day(findings: List[Finding], actor: str, dry_run: bool, run_id: str, day: date):
    """Returns (created Counter, already_reconciled). One transaction, replayed on conflict."""
    created, already = Counter(), 0
    try:
        for f in findings:
            if f.exists():
                already += 1
                continue
            db.session.add(f.build(actor))
            created[f.kind] += 1
        if dry_run:
            db.session.rollback()
        else:
            db.session.commit()
        return created, already
    except IntegrityError:
        db.session.rollback()
        log.info("[%s] %s: concurrent writer detected, replaying record by record", run_id, day)

    created, already = Counter(), 0
    for f in findings:
        if f.exists():
            already += 1
            continue
        try:
            db.session.add(f.build(actor))
            db.session.commit()
            created[f.kind] += 1
        except IntegrityError:
            db.session.rollback()
            already += 1
            log.info("[%s] %s already reconciled for electrician %s on %s",
                     run_id, f.kind, f.electrician_id, day)
    return created, already


def _save_run(summary: ReconciliationSummary):
    run = ReconciliationRun(
        run_id=summary.run_id,
        mode=summary.mode,
        triggered_by=summary.triggered_by,
        date_from=summary.date_from,
        date_to=summary.date_to,
        crew_id=summary.crew_id,
        absences_created=summary.absences_created,
        deviations_created=summary.deviations_created,
        overtime_created=summary.overtime_created,
        already_reconciled=summary.already_reconciled,
        deferred=summary.deferred,
        dates_processed=summary.dates_processed,
        errors=summary.errors,
        outcome=summary.outcome,
        started_at=summary.started_at,
        finished_at=summary.finished_at,
    )
    try:
        db.session.add(run)
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise
    return run


def _run(
    mode: str,
    date_from: date,
    date_to: date,
    crew_id: Optional[int],
    actor: str,
    clock,
    honour_grace: bool,
    deadline: Optional[datetime] = None,
    should_cancel: Optional[Callable[[], bool]] = None,
    dry_run: bool = False,
) -> ReconciliationSummary:
    if date_to < date_from:
        raise ValidationError("date_to is before date_from", date_from=date_from, date_to=date_to)
    clk = get_clock(clock)
    summary = ReconciliationSummary(
        run_id=f"run-{uuid.uuid4().hex[:12]}",
        mode=mode,
        date_from=date_from,
        date_to=date_to,
        crew_id=crew_id,
        triggered_by=actor,
        dry_run=dry_run,
        started_at=clk.now(),
    )
    log.info("[%s] %s reconciliation %s..%s crew=%s by %s%s", summary.run_id, mode,
             date_from, date_to, crew_id or "all", actor, " (dry run)" if dry_run else "")

    for day in daterange(date_from, date_to):
        if (deadline is not None and clk.now() >= deadline) or (should_cancel and should_cancel()):
            summary.cancelled = True
            log.warning("[%s] cancelled before %s; %s date(s) already committed",
                        summary.run_id, day, summary.dates_processed)
            break
        try:
            findings, deferred = evaluate_day(day, crew_id, clk, honour_grace)
            created, already = _persist_day(findings, actor, dry_run, summary.run_id, day)
        except Exception as e:
            db.session.rollback()
            log.exception("[%s] %s failed", summary.run_id, day)
            summary.errors.append({"date": day.isoformat(), "error": str(e), "type": type(e).__name__})
            continue
        summary.add_created(created)
        summary.already_reconciled += already
        summary.deferred += deferred
        summary.dates_processed += 1
        log.info("[%s] %s: +%s absence, +%s deviation, +%s overtime, %s already, %s deferred",
                 summary.run_id, day, created.get(KIND_ABSENCE, 0), created.get(KIND_DEVIATION, 0),
                 created.get(KIND_OVERTIME, 0), already, deferred)

    summary.finished_at = clk.now()
    if not dry_run:
        _save_run(summary)
    log.info("[%s] finished %s: %s created, %s already reconciled, %s deferred, %s failed date(s)",
             summary.run_id, summary.outcome, summary.created, summary.already_reconciled,
             summary.deferred, len(summary.errors))
    return summary


# ---------- entry points ----------

def reconcile(date_ref: date, crew_id: int | None = None, actor: str = SYSTEM_ACTOR,
              clock=None, dry_run: bool = False) -> ReconciliationSummary:
    """Tolerant pass over one date: WORK slots inside the grace margin are deferred."""
    return _run(RUN_TOLERANT, date_ref, date_ref, crew_id, actor, clock,
                honour_grace=True, dry_run=dry_run)


def reconcile_forced(
    date_from: date,
    date_to: date,
    crew_id: int | None = None,
    actor: str = SYSTEM_ACTOR,
    clock=None,
    deadline: datetime | None = None,
    should_cancel: Callable[[], bool] | None = None,
    dry_run: bool = False,
) -> ReconciliationSummary:
    """
    Backfill pass: no grace margin, every date in the window is re-scanned.
    Records are only ever added, never revoked. ``deadline`` / ``should_cancel``
    are checked between dates; dates already done stay committed.
    """
    return _run(RUN_FORCED, date_from, date_to, crew_id, actor, clock,
                honour_grace=False, deadline=deadline, should_cancel=should_cancel, dry_run=dry_run)


def reconcile_recent(lookback_days: int | None = None, crew_id: int | None = None,
                     actor: str = SYSTEM_ACTOR, clock=None) -> ReconciliationSummary:
    """Nightly tolerant job over the last ``lookback_days`` days up to today."""
    clk = get_clock(clock)
    days = lookback_days if lookback_days is not None else _cfg("RECONCILE_LOOKBACK_DAYS", DEFAULT_LOOKBACK_DAYS)
    if days < 0:
        raise ValidationError("lookback_days must be >= 0", lookback_days=days)
    today = clk.today()
    return _run(RUN_TOLERANT, today - timedelta(days=days), today, crew_id, actor, clk, honour_grace=True)


def list_runs(limit: int = 50) -> List[ReconciliationRun]:
    return ReconciliationRun.query.order_by(ReconciliationRun.started_at.desc()).limit(limit).all()
