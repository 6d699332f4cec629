# roster_api/services/clock.py
from __future__ import annotations

from datetime import date, datetime, timedelta


class SystemClock:
    """Wall clock in field-local (naive) time, the same convention the shift records use."""

    def now(self) -> datetime:
        return datetime.now()

    def today(self) -> date:
        return self.now().date()


class FixedClock(SystemClock):
    """Frozen clock for jobs replaying a moment in time, and for tests."""

    def __init__(self, at: datetime):
        self.at = at

    def now(self) -> datetime:
        return self.at

    def advance(self, **delta) -> "FixedClock":
        self.at = self.at + timedelta(**delta)
        return self


def get_clock(clock=None):
    """Explicit clock wins; otherwise the app may register one under config['ROSTER_CLOCK']."""
    if clock is not None:
        return clock
    try:
        from flask import current_app
        configured = current_app.config.get("ROSTER_CLOCK")
    except RuntimeError:
        configured = None
    return configured or SystemClock()
