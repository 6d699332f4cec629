# roster_api/services/shift_times.py
from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime, time as _time, timedelta
from decimal import Decimal
from typing import List, Optional
import logging

from sqlalchemy import or_

from roster_api.extensions import db
from roster_api.models.crew_time import CrewTimeWindow
from roster_api.services.exceptions import NoActiveTimeWindow, NotFound, OverlapError, ValidationError

log = logging.getLogger(__name__)


@dataclass(frozen=True)
class ShiftTime:
    start: _time
    duration_hours: Decimal

    @property
    def end(self) -> _time:
        """Predicted end time of day (wraps past midnight for night crews)."""
        minutes = int(round(float(self.duration_hours) * 60))
        return (datetime.combine(date.min, self.start) + timedelta(minutes=minutes)).time()

    def starts_at(self, day: date) -> datetime:
        return datetime.combine(day, self.start)


def _live():
    return CrewTimeWindow.query.filter(CrewTimeWindow.retired_at.is_(None))


def _covering(crew_id: int, day: date):
    return _live().filter(
        CrewTimeWindow.crew_id == crew_id,
        CrewTimeWindow.valid_from <= day,
        or_(CrewTimeWindow.valid_to == None, CrewTimeWindow.valid_to >= day),  # noqa: E711
    )


def resolve_shift_time(crew_id: int, day: date) -> ShiftTime:
    """Start time and duration in force for the crew on ``day``; NoActiveTimeWindow if none."""
    w = _covering(crew_id, day).order_by(CrewTimeWindow.valid_from.desc()).first()
    if not w:
        raise NoActiveTimeWindow(crew_id, day)
    return ShiftTime(w.start_time, Decimal(str(w.duration_hours)))


def load_windows(crew_id: int, start: date, end: date) -> List[CrewTimeWindow]:
    """All live windows of the crew overlapping [start, end], newest first."""
    return (
        _live()
        .filter(
            CrewTimeWindow.crew_id == crew_id,
            CrewTimeWindow.valid_from <= end,
            or_(CrewTimeWindow.valid_to == None, CrewTimeWindow.valid_to >= start),  # noqa: E711
        )
        .order_by(CrewTimeWindow.valid_from.desc())
        .all()
    )


def resolve_from(windows: List[CrewTimeWindow], crew_id: int, day: date) -> ShiftTime:
    """Same selection rule as resolve_shift_time over windows already loaded."""
    for w in windows:
        if w.valid_from <= day and (w.valid_to is None or w.valid_to >= day):
            return ShiftTime(w.start_time, Decimal(str(w.duration_hours)))
    raise NoActiveTimeWindow(crew_id, day)


def _overlapping(crew_id: int, s1: date, e1: Optional[date], exclude_id: int | None = None):
    """
    Overlap rule:
      existing.start <= e1 (or infinite) AND
      existing.end   >= s1 (or infinite)
    """
    q = _live().filter(CrewTimeWindow.crew_id == crew_id)
    if exclude_id:
        q = q.filter(CrewTimeWindow.id != exclude_id)
    q = q.filter(or_(CrewTimeWindow.valid_to == None, CrewTimeWindow.valid_to >= s1))  # noqa: E711
    if e1:
        q = q.filter(CrewTimeWindow.valid_from <= e1)
    return q.order_by(CrewTimeWindow.valid_from.asc()).all()


def open_time_window(
    crew_id: int,
    start_time: _time,
    duration_hours,
    valid_from: date,
    actor: str,
    valid_to: date | None = None,
    auto_close: bool = True,
) -> CrewTimeWindow:
    """
    Add a time window for the crew.

    If the only overlap is the crew's current window that started earlier and
    ``auto_close`` is set, that window is closed the day before ``valid_from``
    (the usual "new timetable from next Monday" edit). A bounded window
    (``valid_to`` set) never closes the open-ended one, since the crew would
    have no timetable after it ends; any other overlap is rejected.
    """
    dur = Decimal(str(duration_hours))
    if dur <= 0 or dur > 24:
        raise ValidationError("duration_hours must be within (0, 24]", duration_hours=str(dur))
    if valid_to and valid_to < valid_from:
        raise ValidationError("valid_to cannot be before valid_from")

    overlaps = _overlapping(crew_id, valid_from, valid_to)
    for ov in overlaps:
        closable = auto_close and valid_to is None and ov.valid_from < valid_from and ov.valid_to is None
        if not closable:
            raise OverlapError(
                f"Crew {crew_id} already has a time window from {ov.valid_from.isoformat()}",
                crew_id=crew_id, window_id=ov.id, valid_from=ov.valid_from, valid_to=ov.valid_to,
            )

    try:
        for ov in overlaps:
            ov.valid_to = valid_from - timedelta(days=1)
            ov.touch(actor)
        w = CrewTimeWindow(
            crew_id=crew_id,
            start_time=start_time,
            duration_hours=dur,
            valid_from=valid_from,
            valid_to=valid_to,
            created_by=actor,
        )
        db.session.add(w)
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise
    log.info("[shift_times] crew %s window from %s (%s, %sh) by %s",
             crew_id, valid_from, start_time, dur, actor)
    return w


def retire_time_window(window_id: int, actor: str, crew_id: int | None = None) -> CrewTimeWindow:
    w = db.session.get(CrewTimeWindow, window_id)
    if not w or w.retired_at is not None or (crew_id is not None and w.crew_id != crew_id):
        raise NotFound("CrewTimeWindow", window_id)
    w.retired_at = datetime.utcnow()
    w.retired_by = actor
    w.touch(actor)
    db.session.commit()
    return w


def list_windows(crew_id: int, include_retired: bool = False) -> List[CrewTimeWindow]:
    q = CrewTimeWindow.query.filter(CrewTimeWindow.crew_id == crew_id)
    if not include_retired:
        q = q.filter(CrewTimeWindow.retired_at.is_(None))
    return q.order_by(CrewTimeWindow.valid_from.asc()).all()
