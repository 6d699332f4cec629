# roster_api/services/slot_generator.py
from __future__ import annotations

from dataclasses import asdict, dataclass
from datetime import date, time as _time
from decimal import Decimal
from typing import Iterable, List, Optional
import logging

from flask import current_app

from roster_api.extensions import db
from roster_api.models.schedule import (
    EDITABLE_STATUSES,
    ORIGIN_GENERATED,
    SLOT_OFF,
    SLOT_WORK,
    PeriodAllocation,
    SchedulePeriod,
    Slot,
)
from roster_api.models.pattern import DAY_WORK
from roster_api.services.allocation_planner import (
    AllocationPlan,
    daterange,
    plan_from_rows,
    plan_allocation,
)
from roster_api.services.exceptions import NotFound, PeriodLocked, ValidationError
from roster_api.services.pattern_catalog import ensure_complete, resolve_day_status
from roster_api.services.shift_times import load_windows, resolve_from

log = logging.getLogger(__name__)

DEFAULT_MAX_DAYS = 730


@dataclass(frozen=True)
class SlotDraft:
    day: date
    electrician_id: int
    state: str
    predicted_start: Optional[_time] = None
    predicted_duration_hours: Optional[Decimal] = None


@dataclass
class GenerationResult:
    period_id: int
    version: int
    written: int
    preserved: int
    deleted: int
    electricians: int

    def to_dict(self):
        return asdict(self)


def _load_period(period_id: int) -> SchedulePeriod:
    period = db.session.get(SchedulePeriod, period_id)
    if not period:
        raise NotFound("SchedulePeriod", period_id)
    return period


def _stored_plan(period: SchedulePeriod, spec) -> AllocationPlan:
    rows = (
        PeriodAllocation.query.filter_by(period_id=period.id)
        .order_by(PeriodAllocation.electrician_id.asc())
        .all()
    )
    if not rows:
        raise ValidationError(
            "No allocation stored for this period; supply next-day-off anchors",
            period_id=period.id,
        )
    return plan_from_rows(spec, rows, period.period_start, period.period_end, period_id=period.id)


def build_slots(period: SchedulePeriod, plan: AllocationPlan, spec) -> List[SlotDraft]:
    """
    Every (day, electrician) cell of the period, in memory. Time windows are
    read once; a WORK day without one raises NoActiveTimeWindow here, before
    anything is written.
    """
    windows = load_windows(period.crew_id, period.period_start, period.period_end)
    drafts = []
    for day in daterange(period.period_start, period.period_end):
        for ph in plan.phases:
            status = resolve_day_status(spec, day, ph.phase_anchor)
            if status == DAY_WORK:
                st = resolve_from(windows, period.crew_id, day)
                drafts.append(SlotDraft(day, ph.electrician_id, SLOT_WORK, st.start, st.duration_hours))
            else:
                drafts.append(SlotDraft(day, ph.electrician_id, SLOT_OFF))
    return drafts


def _slot_row(draft: SlotDraft, period_id: int, actor: str) -> Slot:
    return Slot(
        period_id=period_id,
        day=draft.day,
        electrician_id=draft.electrician_id,
        state=draft.state,
        predicted_start=draft.predicted_start,
        predicted_duration_hours=draft.predicted_duration_hours,
        origin=ORIGIN_GENERATED,
        created_by=actor,
    )


def lock_period(period_id: int) -> SchedulePeriod:
    """Re-read the period with a row lock (no-op on SQLite) and fresh attributes."""
    period = (
        db.session.query(SchedulePeriod)
        .filter(SchedulePeriod.id == period_id)
        .with_for_update()
        .populate_existing()
        .one_or_none()
    )
    if not period:
        raise NotFound("SchedulePeriod", period_id)
    return period


def generate_slots(period_id: int, actor: str, anchors: Iterable | None = None) -> GenerationResult:
    """
    (Re)generate the period's slots.

    ``anchors`` are (electrician_id, next_day_off) pairs; when omitted the
    period's stored allocation is reused. GENERATED slots are replaced,
    MANUAL / REBALANCED slots stay where they are. All-or-nothing.
    """
    period = _load_period(period_id)
    if period.status not in EDITABLE_STATUSES:
        raise PeriodLocked(period.id, period.status, "generate slots")

    max_days = int(current_app.config.get("GENERATION_MAX_DAYS", DEFAULT_MAX_DAYS))
    span = (period.period_end - period.period_start).days + 1
    if span > max_days:
        raise ValidationError(
            f"Period spans {span} days; generation is limited to {max_days}",
            period_id=period.id, days=span, limit=max_days,
        )

    pattern = period.pattern
    if not pattern.active:
        raise ValidationError(f"Pattern {pattern.name!r} is inactive", pattern_id=pattern.id)
    spec = pattern.to_spec()
    ensure_complete(spec)

    if anchors is not None:
        plan = plan_allocation(spec, period.period_start, period.period_end, anchors)
    else:
        plan = _stored_plan(period, spec)
    drafts = build_slots(period, plan, spec)
    planned_range = (period.period_start, period.period_end)

    # ---- write phase: one transaction ----
    preserved = 0
    try:
        period = lock_period(period_id)
        if period.status not in EDITABLE_STATUSES:
            raise PeriodLocked(period.id, period.status, "generate slots")
        if (period.period_start, period.period_end) != planned_range:
            raise ValidationError("Period range changed while generating; retry", period_id=period.id)

        if anchors is not None:
            PeriodAllocation.query.filter_by(period_id=period.id).delete()
            for ph in plan.phases:
                db.session.add(PeriodAllocation(
                    period_id=period.id,
                    electrician_id=ph.electrician_id,
                    next_day_off=ph.next_day_off,
                    phase_anchor=ph.phase_anchor,
                    phase_offset=ph.phase_offset,
                    created_by=actor,
                ))

        held = {
            (s.day, s.electrician_id)
            for s in Slot.query.filter(Slot.period_id == period.id, Slot.origin != ORIGIN_GENERATED)
        }
        deleted = Slot.query.filter_by(period_id=period.id, origin=ORIGIN_GENERATED).delete()

        written = 0
        for d in drafts:
            if (d.day, d.electrician_id) in held:
                preserved += 1
                continue
            db.session.add(_slot_row(d, period.id, actor))
            written += 1

        period.version = (period.version or 0) + 1
        period.touch(actor)
        db.session.commit()
    except Exception:
        db.session.rollback()
        log.warning("[slot_generator] period %s generation rolled back", period_id)
        raise

    log.info(
        "[slot_generator] period %s v%s: %s written, %s manual kept, %s replaced (by %s)",
        period.id, period.version, written, preserved, deleted, actor,
    )
    return GenerationResult(
        period_id=period.id,
        version=period.version,
        written=written,
        preserved=preserved,
        deleted=deleted,
        electricians=len(plan.phases),
    )
