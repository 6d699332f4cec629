# roster_api/services/period_lifecycle.py
"""
Schedule period state machine and the pre-publish edits that hang off it.

    DRAFT -> UNDER_REVIEW -> PUBLISHED -> ARCHIVED
               |
               +-> DRAFT  (sent back for edits)

Every transition re-reads the period under a row lock and checks both the
current status and the transition's precondition inside the same
transaction as the status write.
"""
from __future__ import annotations

from collections import Counter, defaultdict
from datetime import date
from typing import Dict, List
import logging

from sqlalchemy import and_, func, or_

from roster_api.extensions import db
from roster_api.models.pattern import PatternDefinition
from roster_api.models.schedule import (
    EDITABLE_STATUSES,
    ORIGIN_GENERATED,
    ORIGIN_MANUAL,
    PERIOD_ARCHIVED,
    PERIOD_DRAFT,
    PERIOD_PUBLISHED,
    PERIOD_UNDER_REVIEW,
    SLOT_ABSENT,
    SLOT_STATES,
    SLOT_WORK,
    CoverageEvent,
    PeriodAllocation,
    SchedulePeriod,
    Slot,
)
from roster_api.services.allocation_planner import ElectricianPhase, carry_forward, daterange
from roster_api.services.clock import get_clock
from roster_api.services.exceptions import (
    HeadcountMismatch,
    InvalidAnchor,
    InvalidTransition,
    NotFound,
    OverlapError,
    PeriodLocked,
    PublishValidationError,
    ValidationError,
)
from roster_api.services.shift_times import resolve_shift_time
from roster_api.services.slot_generator import lock_period

log = logging.getLogger(__name__)

_ALLOWED = {
    PERIOD_DRAFT: (PERIOD_UNDER_REVIEW,),
    PERIOD_UNDER_REVIEW: (PERIOD_DRAFT, PERIOD_PUBLISHED),
    PERIOD_PUBLISHED: (PERIOD_ARCHIVED,),
    PERIOD_ARCHIVED: (),
}


# ---------- reads ----------

def get_period(period_id: int) -> SchedulePeriod:
    p = db.session.get(SchedulePeriod, period_id)
    if not p:
        raise NotFound("SchedulePeriod", period_id)
    return p


def list_periods(crew_id: int | None = None, status: str | None = None,
                 on: date | None = None) -> List[SchedulePeriod]:
    q = SchedulePeriod.query
    if crew_id:
        q = q.filter(SchedulePeriod.crew_id == crew_id)
    if status:
        q = q.filter(SchedulePeriod.status == status)
    if on:
        q = q.filter(SchedulePeriod.period_start <= on, SchedulePeriod.period_end >= on)
    return q.order_by(SchedulePeriod.period_start.desc(), SchedulePeriod.id.desc()).all()


def list_slots(period_id: int, day_from: date | None = None, day_to: date | None = None,
               electrician_id: int | None = None) -> List[Slot]:
    get_period(period_id)
    q = Slot.query.filter(Slot.period_id == period_id)
    if day_from:
        q = q.filter(Slot.day >= day_from)
    if day_to:
        q = q.filter(Slot.day <= day_to)
    if electrician_id:
        q = q.filter(Slot.electrician_id == electrician_id)
    return q.order_by(Slot.day.asc(), Slot.electrician_id.asc()).all()


def list_allocations(period_id: int) -> List[PeriodAllocation]:
    return (
        PeriodAllocation.query.filter_by(period_id=period_id)
        .order_by(PeriodAllocation.electrician_id.asc())
        .all()
    )


def _overlapping_periods(crew_id: int, start: date, end: date, exclude_id: int | None = None):
    q = SchedulePeriod.query.filter(
        SchedulePeriod.crew_id == crew_id,
        SchedulePeriod.status != PERIOD_ARCHIVED,
        and_(SchedulePeriod.period_start <= end, SchedulePeriod.period_end >= start),
    )
    if exclude_id:
        q = q.filter(SchedulePeriod.id != exclude_id)
    return q.all()


def _check_range(crew_id: int, start: date, end: date, exclude_id: int | None = None):
    if not start or not end:
        raise ValidationError("period_start and period_end are required")
    if start > end:
        raise ValidationError("period_start must be on or before period_end",
                              period_start=start, period_end=end)
    clash = _overlapping_periods(crew_id, start, end, exclude_id)
    if clash:
        c = clash[0]
        raise OverlapError(
            f"Crew {crew_id} already has period {c.id} over {c.period_start.isoformat()}..{c.period_end.isoformat()}",
            crew_id=crew_id, period_id=c.id, period_start=c.period_start, period_end=c.period_end,
        )


# ---------- create ----------

def create_period(crew_id: int, pattern_id: int, period_start: date, period_end: date,
                  actor: str, notes: str | None = None) -> SchedulePeriod:
    pattern = db.session.get(PatternDefinition, pattern_id)
    if not pattern:
        raise NotFound("Pattern", pattern_id)
    if not pattern.active:
        raise ValidationError(f"Pattern {pattern.name!r} is inactive", pattern_id=pattern_id)
    _check_range(crew_id, period_start, period_end)

    p = SchedulePeriod(
        crew_id=crew_id,
        pattern_id=pattern_id,
        period_start=period_start,
        period_end=period_end,
        status=PERIOD_DRAFT,
        version=1,
        notes=notes,
        created_by=actor,
    )
    db.session.add(p)
    db.session.commit()
    log.info("[periods] crew %s period %s %s..%s created by %s",
             crew_id, p.id, period_start, period_end, actor)
    return p


# ---------- transitions ----------

def _transition(period_id: int, requested: str, actor: str, guard=None) -> SchedulePeriod:
    try:
        p = lock_period(period_id)
        if requested not in _ALLOWED.get(p.status, ()):
            raise InvalidTransition(p.status, requested)
        if guard:
            guard(p)
        previous = p.status
        p.status = requested
        p.touch(actor)
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise
    log.info("[periods] period %s %s -> %s by %s", p.id, previous, requested, actor)
    return p


def _require_full_slots(p: SchedulePeriod):
    slots = Slot.query.filter(Slot.period_id == p.id).all()
    if not slots:
        raise InvalidTransition(p.status, PERIOD_UNDER_REVIEW, reason="no slots generated")
    allocated = [a.electrician_id for a in list_allocations(p.id)]
    have = {(s.day, s.electrician_id) for s in slots}
    days_with_slots = {s.day for s in slots}
    for day in daterange(p.period_start, p.period_end):
        if day not in days_with_slots:
            raise InvalidTransition(p.status, PERIOD_UNDER_REVIEW,
                                    reason=f"no slots on {day.isoformat()}")
        for eid in allocated:
            if (day, eid) not in have:
                raise InvalidTransition(
                    p.status, PERIOD_UNDER_REVIEW,
                    reason=f"electrician {eid} has no slot on {day.isoformat()}",
                )


def _require_publishable(p: SchedulePeriod):
    """Headcount is re-counted from the rows as they are now, manual edits included."""
    required = p.pattern.required_headcount
    absent = (
        Slot.query.filter(Slot.period_id == p.id, Slot.state == SLOT_ABSENT)
        .order_by(Slot.day.asc())
        .first()
    )
    if absent:
        raise PublishValidationError(
            f"Electrician {absent.electrician_id} is ABSENT on {absent.day.isoformat()}; "
            "resolve absences before publishing",
            period_id=p.id, date=absent.day, electrician_id=absent.electrician_id,
        )
    counts = dict(
        db.session.query(Slot.day, func.count(Slot.id))
        .filter(Slot.period_id == p.id, Slot.state == SLOT_WORK)
        .group_by(Slot.day)
        .all()
    )
    for day in daterange(p.period_start, p.period_end):
        actual = counts.get(day, 0)
        if actual != required:
            raise HeadcountMismatch(day, actual, required, period_id=p.id)


def submit_for_review(period_id: int, actor: str) -> SchedulePeriod:
    return _transition(period_id, PERIOD_UNDER_REVIEW, actor, _require_full_slots)


def return_to_draft(period_id: int, actor: str) -> SchedulePeriod:
    return _transition(period_id, PERIOD_DRAFT, actor)


def publish(period_id: int, actor: str, clock=None) -> SchedulePeriod:
    now = get_clock(clock).now()

    def guard(p):
        _require_publishable(p)
        p.version = (p.version or 0) + 1
        p.published_at = now

    return _transition(period_id, PERIOD_PUBLISHED, actor, guard)


def archive(period_id: int, actor: str, clock=None) -> SchedulePeriod:
    clk = get_clock(clock)

    def guard(p):
        if not clk.today() > p.period_end:
            raise InvalidTransition(
                p.status, PERIOD_ARCHIVED,
                reason=f"period runs until {p.period_end.isoformat()}",
            )
        p.archived_at = clk.now()

    return _transition(period_id, PERIOD_ARCHIVED, actor, guard)


_BY_TARGET = {
    PERIOD_UNDER_REVIEW: lambda pid, actor, clock: submit_for_review(pid, actor),
    PERIOD_DRAFT: lambda pid, actor, clock: return_to_draft(pid, actor),
    PERIOD_PUBLISHED: publish,
    PERIOD_ARCHIVED: archive,
}


def transition(period_id: int, requested: str, actor: str, clock=None) -> SchedulePeriod:
    """Dispatch a requested target status; unknown targets are invalid transitions too."""
    requested = (requested or "").strip().upper()
    fn = _BY_TARGET.get(requested)
    if fn is None:
        p = get_period(period_id)
        raise InvalidTransition(p.status, requested or "?")
    return fn(period_id, actor, clock)


def archive_expired_periods(actor: str, clock=None) -> List[int]:
    """Archive every PUBLISHED period whose end date has passed. Returns the ids archived."""
    clk = get_clock(clock)
    ids = [
        p.id for p in SchedulePeriod.query.filter(
            SchedulePeriod.status == PERIOD_PUBLISHED,
            SchedulePeriod.period_end < clk.today(),
        ).order_by(SchedulePeriod.id.asc()).all()
    ]
    done = []
    for pid in ids:
        try:
            archive(pid, actor, clock=clk)
            done.append(pid)
        except InvalidTransition as e:
            # someone else moved it between the scan and the lock
            log.info("[periods] skip archive of %s: %s", pid, e.message)
    return done


# ---------- pre-publish edits ----------

def _parse_state(state: str) -> str:
    s = (state or "").strip().upper()
    if s not in SLOT_STATES:
        raise ValidationError("state must be one of WORK, OFF, ABSENT, EXCEPTION", state=state)
    return s


def edit_slot(
    period_id: int,
    day: date,
    electrician_id: int,
    state: str,
    actor: str,
    day_note: str | None = None,
    predicted_start=None,
    predicted_duration_hours=None,
) -> Slot:
    """
    Hand override of one (day, electrician) cell before publish. The slot
    becomes MANUAL so later regenerations leave it alone.
    """
    state = _parse_state(state)
    try:
        p = lock_period(period_id)
        if p.status not in EDITABLE_STATUSES:
            raise PeriodLocked(p.id, p.status, "edit slots")
        if not p.covers(day):
            raise ValidationError(f"{day.isoformat()} is outside the period", period_id=p.id, date=day)

        slot = Slot.query.filter_by(period_id=p.id, day=day, electrician_id=electrician_id).first()
        if slot is None:
            slot = Slot(period_id=p.id, day=day, electrician_id=electrician_id, created_by=actor)
            db.session.add(slot)

        slot.state = state
        slot.origin = ORIGIN_MANUAL
        if day_note is not None:
            slot.day_note = day_note
        if state == SLOT_WORK:
            if predicted_start is None or predicted_duration_hours is None:
                st = resolve_shift_time(p.crew_id, day)
                predicted_start = predicted_start or st.start
                predicted_duration_hours = predicted_duration_hours or st.duration_hours
            slot.predicted_start = predicted_start
            slot.predicted_duration_hours = predicted_duration_hours
        else:
            slot.predicted_start = None
            slot.predicted_duration_hours = None
        slot.touch(actor)
        p.touch(actor)
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise
    log.info("[periods] period %s slot %s / %s set to %s by %s", period_id, day, electrician_id, state, actor)
    return slot


def change_period_range(period_id: int, new_start: date, new_end: date, actor: str) -> SchedulePeriod:
    """
    Move the period's dates before publish. Generated slots are dropped and the
    period goes back to DRAFT: a new range needs a full regeneration, never an
    incremental extension. Manual slots inside the new range survive.
    """
    try:
        p = lock_period(period_id)
        if p.status not in EDITABLE_STATUSES:
            raise PeriodLocked(p.id, p.status, "change the date range")
        _check_range(p.crew_id, new_start, new_end, exclude_id=p.id)
        spec = p.pattern.to_spec()

        Slot.query.filter(Slot.period_id == p.id, Slot.origin == ORIGIN_GENERATED).delete()
        Slot.query.filter(
            Slot.period_id == p.id,
            or_(Slot.day < new_start, Slot.day > new_end),
        ).delete()

        for a in list_allocations(p.id):
            if new_start <= a.next_day_off <= new_end:
                continue
            phase = ElectricianPhase(a.electrician_id, a.next_day_off, a.phase_anchor, a.phase_offset)
            moved = carry_forward(spec, phase, new_start, new_end)
            if moved is None:
                raise InvalidAnchor(a.electrician_id, "no day off inside the new range")
            a.next_day_off = moved
            a.touch(actor)

        p.period_start, p.period_end = new_start, new_end
        p.status = PERIOD_DRAFT
        p.version = (p.version or 0) + 1
        p.touch(actor)
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise
    log.info("[periods] period %s range now %s..%s (regeneration required) by %s",
             p.id, new_start, new_end, actor)
    return p


def duplicate_period(period_id: int, new_start: date, new_end: date, actor: str,
                     notes: str | None = None) -> SchedulePeriod:
    """
    New DRAFT period for the same crew and pattern over another range. Each
    electrician keeps their phase, so the rotation continues where the source
    left off; slots still have to be generated.
    """
    src = get_period(period_id)
    pattern = src.pattern
    if not pattern.active:
        raise ValidationError(f"Pattern {pattern.name!r} is inactive", pattern_id=pattern.id)
    _check_range(src.crew_id, new_start, new_end)
    spec = pattern.to_spec()

    carried = []
    for a in list_allocations(src.id):
        phase = ElectricianPhase(a.electrician_id, a.next_day_off, a.phase_anchor, a.phase_offset)
        ndo = carry_forward(spec, phase, new_start, new_end)
        if ndo is None:
            raise InvalidAnchor(a.electrician_id, "no day off inside the new range")
        carried.append((phase, ndo))

    try:
        p = SchedulePeriod(
            crew_id=src.crew_id,
            pattern_id=src.pattern_id,
            period_start=new_start,
            period_end=new_end,
            status=PERIOD_DRAFT,
            version=1,
            notes=notes if notes is not None else src.notes,
            created_by=actor,
        )
        db.session.add(p)
        db.session.flush()
        for phase, ndo in carried:
            db.session.add(PeriodAllocation(
                period_id=p.id,
                electrician_id=phase.electrician_id,
                next_day_off=ndo,
                phase_anchor=phase.phase_anchor,
                phase_offset=phase.phase_offset,
                created_by=actor,
            ))
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise
    log.info("[periods] period %s duplicated as %s (%s..%s) by %s", src.id, p.id, new_start, new_end, actor)
    return p


# ---------- stats ----------

def period_overview(period_id: int) -> Dict:
    p = get_period(period_id)
    slots = Slot.query.filter(Slot.period_id == p.id).all()
    by_state = Counter(s.state for s in slots)
    by_origin = Counter(s.origin for s in slots)
    work_by_day: Dict[date, int] = defaultdict(int)
    for s in slots:
        if s.state == SLOT_WORK:
            work_by_day[s.day] += 1

    required = p.pattern.required_headcount
    days = list(daterange(p.period_start, p.period_end))
    short = [d.isoformat() for d in days if work_by_day.get(d, 0) < required]
    over = [d.isoformat() for d in days if work_by_day.get(d, 0) > required]
    events = (
        db.session.query(func.count(CoverageEvent.id))
        .join(Slot, Slot.id == CoverageEvent.slot_id)
        .filter(Slot.period_id == p.id)
        .scalar()
    ) or 0

    return {
        "period": p.to_dict(),
        "days": len(days),
        "electricians": sorted({s.electrician_id for s in slots}),
        "slots_total": len(slots),
        "slots_by_state": {st: by_state.get(st, 0) for st in SLOT_STATES},
        "slots_by_origin": dict(by_origin),
        "required_headcount": required,
        "work_by_day": {d.isoformat(): work_by_day.get(d, 0) for d in days},
        "days_short": short,
        "days_over": over,
        "coverage_events": events,
    }
