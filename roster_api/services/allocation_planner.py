# roster_api/services/allocation_planner.py
"""
Turn each electrician's declared "next day off" into a personal phase anchor
for the pattern, then prove the resulting roster meets the required headcount
on every day of the period.

Anchors are fed straight to ``pattern_catalog.resolve_day_status``:

  CYCLE_DAYS      phase_anchor = next_day_off - off_block_start   (days)
  WEEK_DEPENDENT  phase_anchor = monday(period_start) - k weeks,
                  first k in 0..weeks_in_cycle-1 that puts next_day_off on OFF

The headcount check walks the whole range, not a single cycle, because week
masks drift across week boundaries when phases are picked carelessly.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, timedelta
from typing import Dict, Iterable, List, Tuple

from roster_api.models.pattern import DAY_OFF, DAY_WORK, MODE_CYCLE_DAYS, MODE_WEEK_DEPENDENT
from roster_api.services.exceptions import HeadcountMismatch, InvalidAnchor, ValidationError
from roster_api.services.pattern_catalog import (
    PatternSpec,
    off_block_start,
    resolve_day_status,
    week_start,
)


@dataclass(frozen=True)
class ElectricianPhase:
    electrician_id: int
    next_day_off: date
    phase_anchor: date
    phase_offset: int  # days (CYCLE_DAYS) or weeks (WEEK_DEPENDENT)


@dataclass
class AllocationPlan:
    phases: List[ElectricianPhase] = field(default_factory=list)
    workers_by_day: Dict[date, List[int]] = field(default_factory=dict)

    def anchor_for(self, electrician_id: int) -> date:
        for ph in self.phases:
            if ph.electrician_id == electrician_id:
                return ph.phase_anchor
        raise KeyError(electrician_id)

    @property
    def electrician_ids(self) -> List[int]:
        return [ph.electrician_id for ph in self.phases]


def daterange(start: date, end: date):
    d = start
    while d <= end:
        yield d
        d += timedelta(days=1)


def _cycle_phase(spec: PatternSpec, electrician_id: int, next_day_off: date) -> ElectricianPhase:
    offset = off_block_start(spec)
    if offset is None:
        # no OFF position at all: everyone runs the cycle from their declared day
        offset = 0
    return ElectricianPhase(electrician_id, next_day_off, next_day_off - timedelta(days=offset), offset)


def _week_phase(spec: PatternSpec, electrician_id: int, next_day_off: date,
                period_start: date) -> ElectricianPhase:
    base = week_start(period_start)
    for k in range(spec.weeks_in_cycle):
        anchor = base - timedelta(weeks=k)
        if resolve_day_status(spec, next_day_off, anchor) == DAY_OFF:
            return ElectricianPhase(electrician_id, next_day_off, anchor, k)
    raise InvalidAnchor(
        electrician_id,
        f"{next_day_off.isoformat()} is a working day in every week of the pattern",
        day=next_day_off,
    )


def _normalise_anchors(anchors: Iterable) -> List[Tuple[int, date]]:
    """Accept (electrician_id, date) pairs or {"electrician_id", "next_day_off"} dicts."""
    out = []
    for a in anchors:
        if isinstance(a, dict):
            eid, ndo = a.get("electrician_id"), a.get("next_day_off")
        else:
            eid, ndo = a
        if eid is None or ndo is None:
            raise ValidationError("each anchor needs electrician_id and next_day_off")
        if isinstance(ndo, str):
            try:
                ndo = date.fromisoformat(ndo)
            except ValueError:
                raise InvalidAnchor(int(eid), f"next_day_off {ndo!r} is not YYYY-MM-DD")
        out.append((int(eid), ndo))
    return out


def plan_allocation(
    spec: PatternSpec,
    period_start: date,
    period_end: date,
    anchors: Iterable,
    required_headcount: int | None = None,
) -> AllocationPlan:
    """
    Compute each electrician's phase and validate daily headcount.

    Raises InvalidAnchor for an anchor outside the period, a repeated
    electrician, or a WEEK_DEPENDENT day that is never OFF; HeadcountMismatch
    naming the first date whose WORK count differs from the requirement.
    """
    if period_end < period_start:
        raise ValidationError("period_end is before period_start",
                              period_start=period_start, period_end=period_end)
    expected = required_headcount if required_headcount is not None else spec.required_headcount
    pairs = _normalise_anchors(anchors)
    if not pairs:
        raise ValidationError("allocation needs at least one electrician")

    plan = AllocationPlan()
    seen = set()
    for eid, ndo in pairs:
        if eid in seen:
            raise InvalidAnchor(eid, "electrician listed twice in the allocation", day=ndo)
        seen.add(eid)
        if not period_start <= ndo <= period_end:
            raise InvalidAnchor(
                eid,
                f"next day off {ndo.isoformat()} is outside {period_start.isoformat()}..{period_end.isoformat()}",
                day=ndo,
            )
        if spec.mode == MODE_CYCLE_DAYS:
            plan.phases.append(_cycle_phase(spec, eid, ndo))
        elif spec.mode == MODE_WEEK_DEPENDENT:
            plan.phases.append(_week_phase(spec, eid, ndo, period_start))
        else:
            raise ValidationError(f"Unknown pattern mode {spec.mode!r}", pattern_id=spec.id)

    return check_headcount(spec, plan, period_start, period_end, expected)


def check_headcount(spec: PatternSpec, plan: AllocationPlan, period_start: date, period_end: date,
                    expected: int, period_id: int | None = None) -> AllocationPlan:
    """Fill ``plan.workers_by_day``; HeadcountMismatch on the first date that is off."""
    plan.workers_by_day = {}
    for day in daterange(period_start, period_end):
        working = [
            ph.electrician_id for ph in plan.phases
            if resolve_day_status(spec, day, ph.phase_anchor) == DAY_WORK
        ]
        if len(working) != expected:
            raise HeadcountMismatch(day, len(working), expected, period_id=period_id)
        plan.workers_by_day[day] = working
    return plan


def plan_from_rows(spec: PatternSpec, rows, period_start: date, period_end: date,
                   period_id: int | None = None) -> AllocationPlan:
    """Rebuild and re-validate a plan from stored PeriodAllocation rows."""
    plan = AllocationPlan(phases=[
        ElectricianPhase(r.electrician_id, r.next_day_off, r.phase_anchor, r.phase_offset)
        for r in rows
    ])
    return check_headcount(spec, plan, period_start, period_end, spec.required_headcount, period_id)


def carry_forward(spec: PatternSpec, phase: ElectricianPhase, new_start: date, new_end: date) -> date | None:
    """
    First day in [new_start, new_end] that the electrician's existing phase puts
    on OFF; used when a period is duplicated onto a later range.
    """
    for day in daterange(new_start, new_end):
        if resolve_day_status(spec, day, phase.phase_anchor) == DAY_OFF:
            return day
    return None
