from datetime import date, time
from decimal import Decimal

import pytest

from roster_api.services.exceptions import NoActiveTimeWindow, NotFound, OverlapError, ValidationError
from roster_api.services.shift_times import (
    ShiftTime,
    list_windows,
    load_windows,
    open_time_window,
    resolve_from,
    resolve_shift_time,
    retire_time_window,
)


def test_open_ended_window_resolves(app):
    open_time_window(7, time(8, 0), 8, date(2025, 1, 1), "tester")
    st = resolve_shift_time(7, date(2025, 3, 10))
    assert st.start == time(8, 0)
    assert st.duration_hours == Decimal("8")


def test_no_window_before_valid_from(app):
    open_time_window(7, time(8, 0), 8, date(2025, 1, 1), "tester")
    with pytest.raises(NoActiveTimeWindow) as ei:
        resolve_shift_time(7, date(2024, 12, 31))
    assert ei.value.crew_id == 7
    assert ei.value.detail["date"] == "2024-12-31"


def test_auto_close_hands_over_to_new_window(app):
    old = open_time_window(7, time(8, 0), 8, date(2025, 1, 1), "tester")
    open_time_window(7, time(6, 30), Decimal("9.5"), date(2025, 3, 1), "tester")

    assert old.valid_to == date(2025, 2, 28)
    assert resolve_shift_time(7, date(2025, 2, 28)).start == time(8, 0)
    later = resolve_shift_time(7, date(2025, 3, 1))
    assert later.start == time(6, 30)
    assert later.duration_hours == Decimal("9.5")


def test_overlap_without_auto_close_is_rejected(app):
    open_time_window(7, time(8, 0), 8, date(2025, 1, 1), "tester")
    with pytest.raises(OverlapError):
        open_time_window(7, time(9, 0), 8, date(2025, 2, 1), "tester", auto_close=False)
    # a bounded window inside an existing bounded one is never auto-closed
    open_time_window(8, time(8, 0), 8, date(2025, 1, 1), "tester", valid_to=date(2025, 1, 31))
    with pytest.raises(OverlapError):
        open_time_window(8, time(8, 0), 8, date(2025, 1, 15), "tester")


def test_duration_bounds(app):
    with pytest.raises(ValidationError):
        open_time_window(7, time(8, 0), 0, date(2025, 1, 1), "tester")
    with pytest.raises(ValidationError):
        open_time_window(7, time(8, 0), 25, date(2025, 1, 1), "tester")


def test_retired_window_no_longer_resolves(app):
    w = open_time_window(7, time(8, 0), 8, date(2025, 1, 1), "tester")
    retire_time_window(w.id, "u9", crew_id=7)

    with pytest.raises(NoActiveTimeWindow):
        resolve_shift_time(7, date(2025, 3, 10))
    assert list_windows(7) == []
    assert [x.retired_by for x in list_windows(7, include_retired=True)] == ["u9"]
    with pytest.raises(NotFound):
        retire_time_window(w.id, "u9")


def test_retire_checks_crew(app):
    w = open_time_window(7, time(8, 0), 8, date(2025, 1, 1), "tester")
    with pytest.raises(NotFound):
        retire_time_window(w.id, "u9", crew_id=8)


def test_in_memory_resolution_matches_query(app):
    open_time_window(7, time(8, 0), 8, date(2025, 1, 1), "tester")
    open_time_window(7, time(7, 0), 10, date(2025, 2, 10), "tester")
    windows = load_windows(7, date(2025, 2, 1), date(2025, 2, 28))
    for d in (date(2025, 2, 9), date(2025, 2, 10), date(2025, 2, 28)):
        assert resolve_from(windows, 7, d) == resolve_shift_time(7, d)


def test_night_shift_end_wraps_midnight():
    assert ShiftTime(time(22, 0), Decimal("8")).end == time(6, 0)
    assert ShiftTime(time(8, 0), Decimal("8.5")).end == time(16, 30)


def test_bounded_window_does_not_close_the_open_ended_one(app):
    base = open_time_window(7, time(8, 0), 8, date(2025, 1, 1), "tester")
    with pytest.raises(OverlapError):
        open_time_window(7, time(6, 0), 10, date(2025, 3, 1), "tester", valid_to=date(2025, 3, 31))
    assert base.valid_to is None
    assert resolve_shift_time(7, date(2025, 4, 2)).start == time(8, 0)
