"""
Roster error taxonomy.

Every error raised by the scheduling and reconciliation services derives from
RosterError. Each carries a stable ``code``, the HTTP ``status`` the blueprint
layer answers with, and a ``detail`` dict naming the exact date / position /
crew at fault so an operator can fix configuration without digging.

Usage:
    from roster_api.services.exceptions import InvalidTransition

    raise InvalidTransition(current="DRAFT", requested="PUBLISHED")
"""
from __future__ import annotations

from datetime import date
from typing import Any


def _iso(v):
    return v.isoformat() if isinstance(v, date) else v


class RosterError(Exception):
    code = "ROSTER_ERROR"
    status = 400

    def __init__(self, message: str, **detail: Any) -> None:
        super().__init__(message)
        self.message = message
        self.detail = {k: _iso(v) for k, v in detail.items() if v is not None}


# ---------- definitional ----------

class IncompletePattern(RosterError):
    """A pattern position / week cell needed to resolve a day is undefined."""
    code = "INCOMPLETE_PATTERN"
    status = 422

    def __init__(self, pattern_id, position: int | None = None,
                 week_index: int | None = None, weekday: str | None = None):
        if position is not None:
            where = f"position {position}"
        else:
            where = f"week {week_index} / {weekday}"
        super().__init__(
            f"Pattern {pattern_id} has no status defined for {where}",
            pattern_id=pattern_id, position=position, week_index=week_index, weekday=weekday,
        )
        self.pattern_id = pattern_id
        self.position = position
        self.week_index = week_index
        self.weekday = weekday


class NoActiveTimeWindow(RosterError):
    code = "NO_ACTIVE_TIME_WINDOW"
    status = 422

    def __init__(self, crew_id: int, day: date):
        super().__init__(f"Crew {crew_id} has no shift time window in force on {day.isoformat()}",
                         crew_id=crew_id, date=day)
        self.crew_id = crew_id
        self.day = day


# ---------- allocation ----------

class AllocationError(RosterError):
    code = "ALLOCATION_ERROR"
    status = 422


class HeadcountMismatch(AllocationError):
    code = "HEADCOUNT_MISMATCH"

    def __init__(self, day: date, actual: int, expected: int, period_id: int | None = None):
        super().__init__(
            f"{day.isoformat()}: {actual} electrician(s) working, pattern requires {expected}",
            date=day, actual=actual, expected=expected, period_id=period_id,
        )
        self.day = day
        self.actual = actual
        self.expected = expected


class InvalidAnchor(AllocationError):
    code = "INVALID_ANCHOR"

    def __init__(self, electrician_id: int, message: str, day: date | None = None):
        super().__init__(f"Electrician {electrician_id}: {message}",
                         electrician_id=electrician_id, date=day)
        self.electrician_id = electrician_id


# ---------- lifecycle ----------

class InvalidTransition(RosterError):
    code = "INVALID_TRANSITION"
    status = 409

    def __init__(self, current: str, requested: str, reason: str | None = None):
        msg = f"Cannot move schedule period from {current} to {requested}"
        if reason:
            msg += f": {reason}"
        super().__init__(msg, current=current, requested=requested, reason=reason)
        self.current = current
        self.requested = requested


class PeriodLocked(RosterError):
    """Slot / allocation mutation attempted outside DRAFT or UNDER_REVIEW (or outside PUBLISHED for rebalancing)."""
    code = "PERIOD_LOCKED"
    status = 409

    def __init__(self, period_id: int, status: str, action: str):
        super().__init__(f"Schedule period {period_id} is {status}; cannot {action}",
                         period_id=period_id, status=status, action=action)
        self.period_id = period_id
        self.period_status = status


class PublishValidationError(RosterError):
    code = "PUBLISH_VALIDATION"
    status = 422


class OverlapError(RosterError):
    code = "OVERLAP"
    status = 409


# ---------- generic ----------

class NotFound(RosterError):
    code = "NOT_FOUND"
    status = 404

    def __init__(self, resource: str, resource_id=None):
        msg = resource
        if resource_id is not None:
            msg += f" id={resource_id}"
        super().__init__(msg + " not found", resource=resource, id=resource_id)


class ValidationError(RosterError):
    code = "VALIDATION_ERROR"
    status = 422
