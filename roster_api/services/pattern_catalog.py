# roster_api/services/pattern_catalog.py
"""
Rotation pattern catalog.

A pattern is plain data: either a fixed-length day cycle (position -> WORK/OFF)
or a week-indexed weekday mask ((week, weekday) -> WORK/OFF). One pure
evaluator per mode, ``resolve_day_status``, answers "does someone anchored at
``anchor`` work on ``day``?". Generation, allocation and publish checks all go
through it, which is what makes regeneration deterministic.

The second half of the module maintains catalog rows (create, replace
positions / masks, deactivate, seed the standard rotations).
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, timedelta
from typing import Dict, Iterable, List, Optional, Tuple
import logging

from roster_api.extensions import db
from roster_api.models.pattern import (
    DAY_OFF,
    DAY_STATUSES,
    DAY_WORK,
    MODE_CYCLE_DAYS,
    MODE_WEEK_DEPENDENT,
    PATTERN_MODES,
    WEEKDAYS,
    PatternDefinition,
    PatternPosition,
    PatternWeekMask,
)
from roster_api.services.exceptions import IncompletePattern, NotFound, ValidationError

log = logging.getLogger(__name__)


@dataclass(frozen=True)
class PatternSpec:
    id: Optional[int]
    name: str
    mode: str
    cycle_length: Optional[int] = None
    weeks_in_cycle: Optional[int] = None
    required_headcount: int = 1
    positions: Dict[int, str] = field(default_factory=dict)
    week_cells: Dict[Tuple[int, str], str] = field(default_factory=dict)


def week_start(d: date) -> date:
    """Monday of the week containing d."""
    return d - timedelta(days=d.weekday())


def resolve_day_status(spec: PatternSpec, day: date, anchor: date) -> str:
    if spec.mode == MODE_CYCLE_DAYS:
        position = (day - anchor).days % spec.cycle_length
        status = spec.positions.get(position)
        if status is None:
            raise IncompletePattern(spec.id, position=position)
        return status

    if spec.mode == MODE_WEEK_DEPENDENT:
        week_index = ((day - week_start(anchor)).days // 7) % spec.weeks_in_cycle
        weekday = WEEKDAYS[day.weekday()]
        status = spec.week_cells.get((week_index, weekday))
        if status is None:
            raise IncompletePattern(spec.id, week_index=week_index, weekday=weekday)
        return status

    raise ValidationError(f"Unknown pattern mode {spec.mode!r}", pattern_id=spec.id)


def missing_cells(spec: PatternSpec) -> List[dict]:
    """Every undefined position / (week, weekday) cell in the declared range."""
    out = []
    if spec.mode == MODE_CYCLE_DAYS:
        for pos in range(spec.cycle_length or 0):
            if pos not in spec.positions:
                out.append({"position": pos})
    elif spec.mode == MODE_WEEK_DEPENDENT:
        for wk in range(spec.weeks_in_cycle or 0):
            for wd in WEEKDAYS:
                if (wk, wd) not in spec.week_cells:
                    out.append({"week_index": wk, "weekday": wd})
    return out


def ensure_complete(spec: PatternSpec) -> None:
    """Raise IncompletePattern for the first undefined cell."""
    if spec.mode == MODE_CYCLE_DAYS and not spec.cycle_length:
        raise ValidationError("cycle_length must be >= 1", pattern_id=spec.id)
    if spec.mode == MODE_WEEK_DEPENDENT and not spec.weeks_in_cycle:
        raise ValidationError("weeks_in_cycle must be >= 1", pattern_id=spec.id)
    gaps = missing_cells(spec)
    if gaps:
        raise IncompletePattern(spec.id, **gaps[0])


def off_block_start(spec: PatternSpec) -> Optional[int]:
    """
    Cycle position where an OFF run begins (previous position is WORK).
    Falls back to the lowest OFF position; None when the cycle has no OFF day.
    """
    n = spec.cycle_length
    offs = sorted(p for p, s in spec.positions.items() if s == DAY_OFF)
    if not offs:
        return None
    for p in offs:
        if spec.positions.get((p - 1) % n) == DAY_WORK:
            return p
    return offs[0]


# ---------- catalog maintenance ----------

def _norm_status(v, where: str) -> str:
    s = str(v or "").strip().upper()
    if s not in DAY_STATUSES:
        raise ValidationError(f"{where}: status must be WORK or OFF", value=v)
    return s


def _norm_weekday(v) -> str:
    s = str(v or "").strip().upper()[:3]
    if s not in WEEKDAYS:
        raise ValidationError("weekday must be one of MON..SUN", value=v)
    return s


def _positions_rows(pattern: PatternDefinition, positions: Iterable, actor: str) -> List[PatternPosition]:
    rows, seen = [], set()
    for i, item in enumerate(positions):
        # accept ["WORK", "OFF", ...] or [{"position": 0, "status": "WORK"}, ...]
        if isinstance(item, dict):
            try:
                pos = int(item.get("position"))
            except (TypeError, ValueError):
                raise ValidationError(f"entry {i}: position must be an integer", value=item.get("position"))
            status = _norm_status(item.get("status"), f"position {pos}")
        else:
            pos, status = i, _norm_status(item, f"position {i}")
        if not 0 <= pos < pattern.cycle_length:
            raise ValidationError(f"position {pos} outside cycle 0..{pattern.cycle_length - 1}", position=pos)
        if pos in seen:
            raise ValidationError(f"position {pos} given twice", position=pos)
        seen.add(pos)
        rows.append(PatternPosition(position=pos, status=status, created_by=actor))
    return rows


def _mask_rows(pattern: PatternDefinition, masks: Iterable[dict], actor: str) -> List[PatternWeekMask]:
    rows, seen = [], set()
    for item in masks:
        wk = int(item.get("week_index", 0))
        wd = _norm_weekday(item.get("weekday"))
        if not 0 <= wk < pattern.weeks_in_cycle:
            raise ValidationError(f"week_index {wk} outside 0..{pattern.weeks_in_cycle - 1}", week_index=wk)
        if (wk, wd) in seen:
            raise ValidationError(f"week {wk} / {wd} given twice", week_index=wk, weekday=wd)
        seen.add((wk, wd))
        rows.append(PatternWeekMask(week_index=wk, weekday=wd,
                                    status=_norm_status(item.get("status"), f"week {wk} / {wd}"),
                                    created_by=actor))
    return rows


def get_pattern(pattern_id: int) -> PatternDefinition:
    p = db.session.get(PatternDefinition, pattern_id)
    if not p:
        raise NotFound("Pattern", pattern_id)
    return p


def list_patterns(active_only: bool = False) -> List[PatternDefinition]:
    q = PatternDefinition.query
    if active_only:
        q = q.filter(PatternDefinition.active.is_(True))
    return q.order_by(PatternDefinition.name.asc()).all()


def create_pattern(
    name: str,
    mode: str,
    required_headcount: int,
    actor: str,
    cycle_length: int | None = None,
    weeks_in_cycle: int | None = None,
    positions: Iterable | None = None,
    week_masks: Iterable[dict] | None = None,
    notes: str | None = None,
) -> PatternDefinition:
    mode = (mode or "").strip().upper()
    if mode not in PATTERN_MODES:
        raise ValidationError("mode must be CYCLE_DAYS or WEEK_DEPENDENT", mode=mode)
    if not name:
        raise ValidationError("name is required")
    if int(required_headcount or 0) < 1:
        raise ValidationError("required_headcount must be >= 1")
    if mode == MODE_CYCLE_DAYS and int(cycle_length or 0) < 1:
        raise ValidationError("cycle_length must be >= 1 for CYCLE_DAYS")
    if mode == MODE_WEEK_DEPENDENT and int(weeks_in_cycle or 0) < 1:
        raise ValidationError("weeks_in_cycle must be >= 1 for WEEK_DEPENDENT")
    if PatternDefinition.query.filter_by(name=name).first():
        raise ValidationError(f"Pattern named {name!r} already exists", name=name)

    p = PatternDefinition(
        name=name,
        mode=mode,
        cycle_length=int(cycle_length) if mode == MODE_CYCLE_DAYS else None,
        weeks_in_cycle=int(weeks_in_cycle) if mode == MODE_WEEK_DEPENDENT else None,
        required_headcount=int(required_headcount),
        notes=notes,
        created_by=actor,
    )
    if positions and mode == MODE_CYCLE_DAYS:
        p.positions = _positions_rows(p, positions, actor)
    if week_masks and mode == MODE_WEEK_DEPENDENT:
        p.week_masks = _mask_rows(p, week_masks, actor)

    db.session.add(p)
    db.session.commit()
    log.info("[patterns] created %s (%s) by %s", p.name, p.mode, actor)
    return p


def replace_positions(pattern_id: int, positions: Iterable, actor: str) -> PatternDefinition:
    """Delete-and-recreate the cycle positions in one transaction."""
    p = get_pattern(pattern_id)
    if p.mode != MODE_CYCLE_DAYS:
        raise ValidationError("Pattern does not use a day cycle", pattern_id=pattern_id)
    rows = _positions_rows(p, positions, actor)
    try:
        p.positions = []
        db.session.flush()
        p.positions = rows
        p.touch(actor)
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise
    return p


def replace_week_masks(pattern_id: int, masks: Iterable[dict], actor: str) -> PatternDefinition:
    p = get_pattern(pattern_id)
    if p.mode != MODE_WEEK_DEPENDENT:
        raise ValidationError("Pattern does not use week masks", pattern_id=pattern_id)
    rows = _mask_rows(p, masks, actor)
    try:
        p.week_masks = []
        db.session.flush()
        p.week_masks = rows
        p.touch(actor)
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise
    return p


def set_active(pattern_id: int, active: bool, actor: str) -> PatternDefinition:
    p = get_pattern(pattern_id)
    p.active = bool(active)
    p.touch(actor)
    db.session.commit()
    return p


# name, mode, size, headcount, cells
_STANDARD_PATTERNS = (
    ("4x2", MODE_CYCLE_DAYS, 6, 2, ["WORK"] * 4 + ["OFF"] * 2),
    ("5x1", MODE_CYCLE_DAYS, 6, 5, ["WORK"] * 5 + ["OFF"]),
    ("5x2 weekly", MODE_WEEK_DEPENDENT, 1, 1, {
        0: {"MON": "WORK", "TUE": "WORK", "WED": "WORK", "THU": "WORK", "FRI": "WORK",
            "SAT": "OFF", "SUN": "OFF"},
    }),
    # alternating long / short week
    ("Spanish", MODE_WEEK_DEPENDENT, 2, 1, {
        0: {"MON": "WORK", "TUE": "WORK", "WED": "WORK", "THU": "WORK", "FRI": "WORK",
            "SAT": "WORK", "SUN": "OFF"},
        1: {"MON": "WORK", "TUE": "WORK", "WED": "WORK", "THU": "WORK", "FRI": "WORK",
            "SAT": "OFF", "SUN": "OFF"},
    }),
)


def seed_standard_patterns(actor: str) -> List[str]:
    """Install the standard rotations that are not in the catalog yet. Returns names created."""
    created = []
    for name, mode, size, headcount, cells in _STANDARD_PATTERNS:
        if PatternDefinition.query.filter_by(name=name).first():
            continue
        if mode == MODE_CYCLE_DAYS:
            create_pattern(name, mode, headcount, actor, cycle_length=size, positions=cells)
        else:
            masks = [
                {"week_index": wk, "weekday": wd, "status": st}
                for wk, days in cells.items() for wd, st in days.items()
            ]
            create_pattern(name, mode, headcount, actor, weeks_in_cycle=size, week_masks=masks)
        created.append(name)
    return created
