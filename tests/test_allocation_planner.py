from datetime import date, timedelta

import pytest

from roster_api.services.allocation_planner import carry_forward, daterange, plan_allocation
from roster_api.services.exceptions import HeadcountMismatch, InvalidAnchor, ValidationError
from roster_api.services.pattern_catalog import PatternSpec, resolve_day_status

FOUR_TWO = PatternSpec(
    id=1, name="4x2", mode="CYCLE_DAYS", cycle_length=6, required_headcount=2,
    positions={0: "WORK", 1: "WORK", 2: "WORK", 3: "WORK", 4: "OFF", 5: "OFF"},
)

_ALL = ("MON", "TUE", "WED", "THU", "FRI", "SAT", "SUN")
# one week on, one week off
WEEK_ON_OFF = PatternSpec(
    id=2, name="week on / week off", mode="WEEK_DEPENDENT", weeks_in_cycle=2, required_headcount=1,
    week_cells={**{(0, d): "WORK" for d in _ALL}, **{(1, d): "OFF" for d in _ALL}},
)

START = date(2025, 3, 3)
END = START + timedelta(days=13)


def test_three_electricians_cover_two_per_day():
    anchors = [(1, START), (2, START + timedelta(days=2)), (3, START + timedelta(days=4))]
    plan = plan_allocation(FOUR_TWO, START, END, anchors)

    assert len(plan.workers_by_day) == 14
    for day in daterange(START, END):
        working = [
            ph.electrician_id for ph in plan.phases
            if resolve_day_status(FOUR_TWO, day, ph.phase_anchor) == "WORK"
        ]
        assert len(working) == 2, day
        assert sorted(plan.workers_by_day[day]) == sorted(working)


def test_declared_day_off_is_off():
    anchors = [(1, START), (2, START + timedelta(days=2)), (3, START + timedelta(days=4))]
    plan = plan_allocation(FOUR_TWO, START, END, anchors)
    for ph in plan.phases:
        assert resolve_day_status(FOUR_TWO, ph.next_day_off, ph.phase_anchor) == "OFF"
        assert ph.phase_anchor == ph.next_day_off - timedelta(days=4)


def test_same_anchor_for_everyone_fails_headcount():
    anchors = [(1, START), (2, START), (3, START)]
    with pytest.raises(HeadcountMismatch) as ei:
        plan_allocation(FOUR_TWO, START, END, anchors)
    err = ei.value
    assert err.day == START
    assert (err.actual, err.expected) == (0, 2)


def test_explicit_headcount_overrides_pattern():
    with pytest.raises(HeadcountMismatch) as ei:
        plan_allocation(FOUR_TWO, START, END, [(1, START), (2, START + timedelta(days=2))],
                        required_headcount=2)
    assert ei.value.day == START


def test_anchor_outside_period():
    with pytest.raises(InvalidAnchor) as ei:
        plan_allocation(FOUR_TWO, START, END, [(1, END + timedelta(days=1))])
    assert ei.value.electrician_id == 1


def test_electrician_listed_twice():
    with pytest.raises(InvalidAnchor):
        plan_allocation(FOUR_TWO, START, END, [(1, START), (1, START + timedelta(days=2))])


def test_empty_allocation_and_bad_range():
    with pytest.raises(ValidationError):
        plan_allocation(FOUR_TWO, START, END, [])
    with pytest.raises(ValidationError):
        plan_allocation(FOUR_TWO, END, START, [(1, START)])


def test_dict_anchors_with_iso_dates():
    anchors = [
        {"electrician_id": 1, "next_day_off": START.isoformat()},
        {"electrician_id": 2, "next_day_off": (START + timedelta(days=2)).isoformat()},
        {"electrician_id": 3, "next_day_off": (START + timedelta(days=4)).isoformat()},
    ]
    plan = plan_allocation(FOUR_TWO, START, END, anchors)
    assert plan.electrician_ids == [1, 2, 3]
    assert plan.anchor_for(3) == START


def test_week_dependent_phases():
    # 3 March 2025 is a Monday: A's day off falls in the second week, B's in the first
    plan = plan_allocation(WEEK_ON_OFF, START, END, [(1, START + timedelta(days=7)), (2, START)])
    a, b = plan.phases
    assert (a.phase_anchor, a.phase_offset) == (START, 0)
    assert (b.phase_anchor, b.phase_offset) == (START - timedelta(weeks=1), 1)
    assert plan.workers_by_day[START] == [1]
    assert plan.workers_by_day[START + timedelta(days=7)] == [2]


def test_week_dependent_day_never_off():
    weekdays_only = PatternSpec(
        id=3, name="5x2 weekly", mode="WEEK_DEPENDENT", weeks_in_cycle=1, required_headcount=1,
        week_cells={(0, d): ("OFF" if d in ("SAT", "SUN") else "WORK") for d in _ALL},
    )
    with pytest.raises(InvalidAnchor):
        plan_allocation(weekdays_only, START, END, [(1, START)])  # a Monday


def test_carry_forward_continues_rotation():
    plan = plan_allocation(FOUR_TWO, START, END, [(1, START), (2, START + timedelta(days=2)),
                                                  (3, START + timedelta(days=4))])
    nxt_start = END + timedelta(days=1)
    for ph in plan.phases:
        ndo = carry_forward(FOUR_TWO, ph, nxt_start, nxt_start + timedelta(days=13))
        assert ndo is not None
        assert resolve_day_status(FOUR_TWO, ndo, ph.phase_anchor) == "OFF"
