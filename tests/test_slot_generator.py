from datetime import date, time

import pytest

from roster_api.extensions import db
from roster_api.models.schedule import PeriodAllocation, SchedulePeriod, Slot
from roster_api.services import period_lifecycle as lifecycle
from roster_api.services import slot_generator
from roster_api.services.exceptions import (
    HeadcountMismatch,
    IncompletePattern,
    NoActiveTimeWindow,
    PeriodLocked,
    ValidationError,
)
from roster_api.services.pattern_catalog import create_pattern
from roster_api.services.slot_generator import generate_slots

from conftest import CREW, DEFAULT_ANCHORS, E1, E2, FEB1, FEB7, OTHER_CREW


def _slots(period_id):
    return {
        (s.day, s.electrician_id): s
        for s in Slot.query.filter_by(period_id=period_id).all()
    }


def test_generate_fills_every_cell(make_period):
    p = make_period(status="DRAFT")
    slots = _slots(p.id)

    assert len(slots) == 14
    assert slots[(FEB1, E1)].state == "WORK"
    assert slots[(FEB1, E2)].state == "OFF"
    assert slots[(FEB1, E1)].predicted_start == time(8, 0)
    assert float(slots[(FEB1, E1)].predicted_duration_hours) == 8.0
    assert slots[(FEB1, E2)].predicted_start is None
    assert {s.origin for s in slots.values()} == {"GENERATED"}
    assert db.session.get(SchedulePeriod, p.id).version == 2
    assert PeriodAllocation.query.filter_by(period_id=p.id).count() == 2


def test_regeneration_reuses_stored_allocation(make_period):
    p = make_period(status="DRAFT")
    before = {k: s.state for k, s in _slots(p.id).items()}

    res = generate_slots(p.id, "tester")
    assert res.written == 14 and res.deleted == 14 and res.preserved == 0
    assert {k: s.state for k, s in _slots(p.id).items()} == before
    assert res.version == 3


def test_failure_mid_write_leaves_previous_slots(make_period, monkeypatch):
    p = make_period(status="DRAFT")
    before = {k: (s.state, s.origin) for k, s in _slots(p.id).items()}

    real = slot_generator._slot_row
    calls = []

    def flaky(draft, period_id, actor):
        calls.append(draft)
        if len(calls) == 5:
            raise RuntimeError("disk full")
        return real(draft, period_id, actor)

    monkeypatch.setattr(slot_generator, "_slot_row", flaky)
    swapped = ((E1, date(2025, 2, 1)), (E2, date(2025, 2, 2)))
    with pytest.raises(RuntimeError):
        generate_slots(p.id, "tester", anchors=swapped)

    assert {k: (s.state, s.origin) for k, s in _slots(p.id).items()} == before
    assert db.session.get(SchedulePeriod, p.id).version == 2
    stored = {a.electrician_id: a.next_day_off for a in PeriodAllocation.query.filter_by(period_id=p.id)}
    assert stored == dict(DEFAULT_ANCHORS)


def test_failure_on_first_generation_writes_nothing(app, clock, alternating, crew_window, monkeypatch):
    p = lifecycle.create_period(CREW, alternating.id, FEB1, FEB7, "tester")

    def boom(draft, period_id, actor):
        raise RuntimeError("connection dropped")

    monkeypatch.setattr(slot_generator, "_slot_row", boom)
    with pytest.raises(RuntimeError):
        generate_slots(p.id, "tester", anchors=DEFAULT_ANCHORS)
    assert Slot.query.count() == 0
    assert PeriodAllocation.query.count() == 0


def test_manual_override_survives_regeneration(make_period):
    p = make_period(status="DRAFT")
    lifecycle.edit_slot(p.id, date(2025, 2, 3), E1, "OFF", "u2", day_note="dentist")

    res = generate_slots(p.id, "tester")
    assert res.preserved == 1
    assert res.written == 13

    slot = _slots(p.id)[(date(2025, 2, 3), E1)]
    assert slot.state == "OFF"
    assert slot.origin == "MANUAL"
    assert slot.day_note == "dentist"


def test_missing_time_window_aborts_before_writing(app, clock, alternating):
    p = lifecycle.create_period(OTHER_CREW, alternating.id, FEB1, FEB7, "tester")
    with pytest.raises(NoActiveTimeWindow) as ei:
        generate_slots(p.id, "tester", anchors=DEFAULT_ANCHORS)
    assert ei.value.crew_id == OTHER_CREW
    assert ei.value.day == FEB1
    assert Slot.query.count() == 0
    assert PeriodAllocation.query.count() == 0
    assert db.session.get(SchedulePeriod, p.id).version == 1


def test_incomplete_pattern_aborts(app, clock, crew_window):
    gap = create_pattern("gap", "CYCLE_DAYS", 1, "tester", cycle_length=3,
                         positions=[{"position": 0, "status": "WORK"}, {"position": 1, "status": "OFF"}])
    p = lifecycle.create_period(CREW, gap.id, FEB1, FEB7, "tester")
    with pytest.raises(IncompletePattern) as ei:
        generate_slots(p.id, "tester", anchors=DEFAULT_ANCHORS)
    assert ei.value.position == 2
    assert Slot.query.count() == 0


def test_headcount_mismatch_aborts(app, clock, alternating, crew_window):
    p = lifecycle.create_period(CREW, alternating.id, FEB1, FEB7, "tester")
    with pytest.raises(HeadcountMismatch):
        generate_slots(p.id, "tester", anchors=((E1, FEB1), (E2, FEB1)))
    assert Slot.query.count() == 0


def test_stored_allocation_required_without_anchors(app, clock, alternating, crew_window):
    p = lifecycle.create_period(CREW, alternating.id, FEB1, FEB7, "tester")
    with pytest.raises(ValidationError):
        generate_slots(p.id, "tester")


def test_published_period_is_locked(make_period):
    p = make_period()
    with pytest.raises(PeriodLocked):
        generate_slots(p.id, "tester")


def test_range_limit(app, make_period):
    app.config["GENERATION_MAX_DAYS"] = 5
    with pytest.raises(ValidationError):
        make_period(status="DRAFT")
