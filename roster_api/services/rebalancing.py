# roster_api/services/rebalancing.py
"""
Changes to a PUBLISHED roster. Slots are frozen after publish; these three
operations are the only way to touch them, and each one leaves a
CoverageEvent behind.
"""
from __future__ import annotations

from datetime import date
from typing import Dict, Optional, Tuple
import logging

from roster_api.extensions import db
from roster_api.models.schedule import (
    COVERAGE_ABSENCE,
    COVERAGE_SWAP,
    COVERAGE_TRANSFER,
    COVERED,
    ORIGIN_REBALANCED,
    PERIOD_ARCHIVED,
    PERIOD_PUBLISHED,
    SLOT_ABSENT,
    SLOT_WORK,
    UNCOVERED,
    CoverageEvent,
    SchedulePeriod,
    Slot,
)
from roster_api.services.clock import get_clock
from roster_api.services.exceptions import NotFound, PeriodLocked, ValidationError
from roster_api.services.slot_generator import lock_period

log = logging.getLogger(__name__)


def _published(period_id: int, action: str) -> SchedulePeriod:
    p = lock_period(period_id)
    if p.status != PERIOD_PUBLISHED:
        raise PeriodLocked(p.id, p.status, action)
    return p


def _slot(period_id: int, day: date, electrician_id: int) -> Slot:
    s = Slot.query.filter_by(period_id=period_id, day=day, electrician_id=electrician_id).first()
    if not s:
        raise NotFound(f"Slot for electrician {electrician_id} on {day.isoformat()}")
    return s


def _event(slot: Slot, kind: str, outcome: str, actor: str, now,
           covering: int | None = None, justification: str | None = None) -> CoverageEvent:
    ev = CoverageEvent(
        slot_id=slot.id,
        kind=kind,
        outcome=outcome,
        covering_electrician_id=covering,
        justification=justification,
        registered_at=now,
        created_by=actor,
    )
    db.session.add(ev)
    return ev


def list_events(period_id: int):
    return (
        CoverageEvent.query.join(Slot, Slot.id == CoverageEvent.slot_id)
        .filter(Slot.period_id == period_id)
        .order_by(CoverageEvent.registered_at.asc(), CoverageEvent.id.asc())
        .all()
    )


def mark_absent(
    period_id: int,
    day: date,
    electrician_id: int,
    actor: str,
    covering_electrician_id: int | None = None,
    justification: str | None = None,
    clock=None,
) -> Tuple[Slot, CoverageEvent]:
    """Flag a planned day as ABSENT. Outcome is COVERED when someone stands in."""
    now = get_clock(clock).now()
    try:
        _published(period_id, "mark absences")
        slot = _slot(period_id, day, electrician_id)
        if covering_electrician_id is not None and covering_electrician_id == electrician_id:
            raise ValidationError("An electrician cannot cover their own absence")
        slot.state = SLOT_ABSENT
        slot.origin = ORIGIN_REBALANCED
        slot.touch(actor)
        ev = _event(
            slot, COVERAGE_ABSENCE,
            COVERED if covering_electrician_id else UNCOVERED,
            actor, now, covering_electrician_id, justification,
        )
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise
    log.info("[rebalancing] period %s: %s absent on %s (%s) by %s",
             period_id, electrician_id, day, ev.outcome, actor)
    return slot, ev


def register_swap(
    period_id: int,
    day: date,
    holder_id: int,
    executor_id: int,
    actor: str,
    justification: str | None = None,
    clock=None,
) -> Tuple[Slot, CoverageEvent]:
    """
    Executor works the holder's shift on ``day``. The two slots trade state
    and predicted times, so reconciliation expects the executor in the field.
    """
    now = get_clock(clock).now()
    if holder_id == executor_id:
        raise ValidationError("holder and executor must differ")
    try:
        _published(period_id, "register swaps")
        holder = _slot(period_id, day, holder_id)
        executor = _slot(period_id, day, executor_id)
        if holder.state != SLOT_WORK:
            raise ValidationError(f"Electrician {holder_id} is not working on {day.isoformat()}",
                                  electrician_id=holder_id, date=day, state=holder.state)
        if executor.state == SLOT_WORK:
            raise ValidationError(f"Electrician {executor_id} already works on {day.isoformat()}",
                                  electrician_id=executor_id, date=day)

        holder.state, executor.state = executor.state, holder.state
        holder.predicted_start, executor.predicted_start = executor.predicted_start, holder.predicted_start
        holder.predicted_duration_hours, executor.predicted_duration_hours = (
            executor.predicted_duration_hours, holder.predicted_duration_hours,
        )
        for s in (holder, executor):
            s.origin = ORIGIN_REBALANCED
            s.touch(actor)
        ev = _event(holder, COVERAGE_SWAP, COVERED, actor, now, executor_id, justification)
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise
    log.info("[rebalancing] period %s: %s covers %s on %s by %s",
             period_id, executor_id, holder_id, day, actor)
    return holder, ev


def transfer_slots(
    period_id: int,
    from_electrician_id: int,
    to_electrician_id: int,
    start_day: date,
    actor: str,
    clock=None,
) -> Dict[str, int]:
    """
    Hand the rest of one electrician's roster (``start_day`` to period end) to
    another. ``start_day`` must be in the future. The destination's own slots
    in that stretch of this period are replaced; a destination already rostered
    in another live period over the same days is refused.
    """
    clk = get_clock(clock)
    now = clk.now()
    if from_electrician_id == to_electrician_id:
        raise ValidationError("source and destination electrician must differ")
    if start_day <= clk.today():
        raise ValidationError("Transfers must start tomorrow or later", start_day=start_day)

    try:
        p = _published(period_id, "transfer slots")
        if not p.covers(start_day):
            raise ValidationError(f"{start_day.isoformat()} is outside the period",
                                  period_id=p.id, start_day=start_day)

        source = (
            Slot.query.filter(
                Slot.period_id == p.id,
                Slot.electrician_id == from_electrician_id,
                Slot.day >= start_day,
                Slot.day <= p.period_end,
            )
            .order_by(Slot.day.asc())
            .all()
        )
        if not source:
            raise ValidationError(
                f"Electrician {from_electrician_id} has no slots from {start_day.isoformat()}",
                electrician_id=from_electrician_id,
            )

        elsewhere: Optional[Slot] = (
            Slot.query.join(SchedulePeriod, SchedulePeriod.id == Slot.period_id)
            .filter(
                Slot.electrician_id == to_electrician_id,
                Slot.period_id != p.id,
                Slot.day >= start_day,
                Slot.day <= p.period_end,
                SchedulePeriod.status != PERIOD_ARCHIVED,
            )
            .order_by(Slot.day.asc())
            .first()
        )
        if elsewhere:
            raise ValidationError(
                f"Electrician {to_electrician_id} is rostered in period {elsewhere.period_id} "
                f"on {elsewhere.day.isoformat()}",
                electrician_id=to_electrician_id, period_id=elsewhere.period_id, date=elsewhere.day,
            )

        replaced = Slot.query.filter(
            Slot.period_id == p.id,
            Slot.electrician_id == to_electrician_id,
            Slot.day >= start_day,
            Slot.day <= p.period_end,
        ).delete()
        db.session.flush()

        note = f"Transferred from electrician {from_electrician_id} on {start_day.isoformat()}"
        for s in source:
            s.electrician_id = to_electrician_id
            s.origin = ORIGIN_REBALANCED
            s.day_note = note
            s.touch(actor)
            if s.state == SLOT_WORK:
                _event(s, COVERAGE_TRANSFER, COVERED, actor, now, to_electrician_id, note)
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise

    log.info("[rebalancing] period %s: %s slots moved %s -> %s from %s (%s replaced) by %s",
             period_id, len(source), from_electrician_id, to_electrician_id, start_day, replaced, actor)
    return {"transferred": len(source), "replaced": replaced}
