from datetime import date, datetime, time

import pytest

from roster_api.extensions import db
from roster_api.models.schedule import PeriodAllocation, SchedulePeriod, Slot
from roster_api.services import period_lifecycle as lifecycle
from roster_api.services.exceptions import (
    HeadcountMismatch,
    InvalidTransition,
    OverlapError,
    PeriodLocked,
    PublishValidationError,
)
from roster_api.services.slot_generator import generate_slots

from conftest import CREW, E1, E2, FEB1, FEB7


def _status(pid):
    return db.session.get(SchedulePeriod, pid).status


def test_happy_path_to_published(make_period, clock):
    p = make_period()
    assert p.status == "PUBLISHED"
    assert p.published_at == clock.now()
    # created 1, generated 2, published 3
    assert p.version == 3


def test_submit_needs_slots(app, clock, alternating, crew_window):
    p = lifecycle.create_period(CREW, alternating.id, FEB1, FEB7, "tester")
    with pytest.raises(InvalidTransition) as ei:
        lifecycle.submit_for_review(p.id, "tester")
    assert ei.value.current == "DRAFT"
    assert _status(p.id) == "DRAFT"


def test_submit_needs_every_allocated_electrician(make_period):
    p = make_period(status="DRAFT")
    Slot.query.filter_by(period_id=p.id, day=date(2025, 2, 4), electrician_id=E2).delete()
    db.session.commit()
    with pytest.raises(InvalidTransition) as ei:
        lifecycle.submit_for_review(p.id, "tester")
    assert "2025-02-04" in ei.value.message


def test_direct_publish_from_draft_is_invalid(make_period):
    p = make_period(status="DRAFT")
    with pytest.raises(InvalidTransition) as ei:
        lifecycle.transition(p.id, "PUBLISHED", "tester")
    assert (ei.value.current, ei.value.requested) == ("DRAFT", "PUBLISHED")


def test_unknown_target_status(make_period):
    p = make_period(status="DRAFT")
    with pytest.raises(InvalidTransition):
        lifecycle.transition(p.id, "DONE", "tester")


def test_publish_rechecks_headcount_after_manual_edit(make_period):
    p = make_period(status="DRAFT")
    lifecycle.edit_slot(p.id, date(2025, 2, 3), E1, "OFF", "u2")
    lifecycle.submit_for_review(p.id, "tester")

    with pytest.raises(HeadcountMismatch) as ei:
        lifecycle.publish(p.id, "tester")
    assert ei.value.day == date(2025, 2, 3)
    assert ei.value.actual == 0
    assert _status(p.id) == "UNDER_REVIEW"

    lifecycle.return_to_draft(p.id, "tester")
    lifecycle.edit_slot(p.id, date(2025, 2, 3), E2, "WORK", "u2")
    lifecycle.submit_for_review(p.id, "tester")
    published = lifecycle.publish(p.id, "tester")
    assert published.status == "PUBLISHED"

    swapped = Slot.query.filter_by(period_id=p.id, day=date(2025, 2, 3), electrician_id=E2).one()
    assert swapped.predicted_start == time(8, 0)
    assert swapped.origin == "MANUAL"


def test_absent_slot_blocks_publish(make_period):
    p = make_period(status="DRAFT")
    lifecycle.edit_slot(p.id, date(2025, 2, 2), E1, "ABSENT", "u2")
    lifecycle.submit_for_review(p.id, "tester")
    with pytest.raises(PublishValidationError):
        lifecycle.publish(p.id, "tester")
    assert _status(p.id) == "UNDER_REVIEW"


def test_edit_after_publish_is_locked(make_period):
    p = make_period()
    with pytest.raises(PeriodLocked):
        lifecycle.edit_slot(p.id, date(2025, 2, 3), E1, "OFF", "u2")


def test_archive_only_after_period_end(make_period, clock):
    p = make_period()
    clock.at = datetime(2025, 2, 7, 23, 0)
    with pytest.raises(InvalidTransition) as ei:
        lifecycle.archive(p.id, "tester")
    assert "2025-02-07" in ei.value.message
    assert _status(p.id) == "PUBLISHED"

    clock.advance(hours=2)
    archived = lifecycle.archive(p.id, "tester")
    assert archived.status == "ARCHIVED"
    assert archived.archived_at == datetime(2025, 2, 8, 1, 0)

    with pytest.raises(InvalidTransition):
        lifecycle.transition(p.id, "PUBLISHED", "tester")


def test_archive_expired_periods(make_period, clock):
    done = make_period()
    running = make_period(start=date(2025, 2, 8), end=date(2025, 2, 20),
                          anchors=((E1, date(2025, 2, 9)), (E2, date(2025, 2, 8))))
    clock.at = datetime(2025, 2, 10, 0, 30)

    assert lifecycle.archive_expired_periods("system") == [done.id]
    assert _status(done.id) == "ARCHIVED"
    assert _status(running.id) == "PUBLISHED"


def test_overlapping_periods_rejected(make_period, alternating):
    make_period(status="DRAFT")
    with pytest.raises(OverlapError):
        lifecycle.create_period(CREW, alternating.id, date(2025, 2, 7), date(2025, 2, 10), "tester")
    # another crew may use the same dates
    other = lifecycle.create_period(CREW + 1, alternating.id, FEB1, FEB7, "tester")
    assert other.status == "DRAFT"


def test_change_range_requires_regeneration(make_period):
    p = make_period(status="DRAFT")
    lifecycle.edit_slot(p.id, date(2025, 2, 3), E1, "OFF", "u2")
    lifecycle.edit_slot(p.id, date(2025, 2, 3), E2, "WORK", "u2")

    moved = lifecycle.change_period_range(p.id, FEB1, date(2025, 2, 10), "tester")
    assert moved.status == "DRAFT"
    assert moved.version == 3
    # generated slots are gone, the two manual ones stay
    assert Slot.query.filter_by(period_id=p.id).count() == 2

    res = generate_slots(p.id, "tester")
    assert res.written == 18 and res.preserved == 2
    assert Slot.query.filter_by(period_id=p.id).count() == 20


def test_change_range_carries_anchor_forward(make_period):
    p = make_period(status="DRAFT")
    lifecycle.change_period_range(p.id, date(2025, 2, 3), date(2025, 2, 9), "tester")
    allocs = {a.electrician_id: a for a in PeriodAllocation.query.filter_by(period_id=p.id)}
    # E1 (works odd days) is first off on the 4th, E2 on the 3rd
    assert allocs[E1].next_day_off == date(2025, 2, 4)
    assert allocs[E2].next_day_off == date(2025, 2, 3)


def test_change_range_after_publish_is_locked(make_period):
    p = make_period()
    with pytest.raises(PeriodLocked):
        lifecycle.change_period_range(p.id, FEB1, date(2025, 2, 10), "tester")


def test_duplicate_continues_rotation(make_period):
    src = make_period()
    dup = lifecycle.duplicate_period(src.id, date(2025, 2, 8), date(2025, 2, 14), "tester")
    assert dup.status == "DRAFT" and dup.version == 1

    generate_slots(dup.id, "tester")
    slots = {(s.day, s.electrician_id): s.state for s in Slot.query.filter_by(period_id=dup.id)}
    # Feb 7 was E1's day, so Feb 8 belongs to E2
    assert slots[(date(2025, 2, 8), E2)] == "WORK"
    assert slots[(date(2025, 2, 8), E1)] == "OFF"
    assert slots[(date(2025, 2, 9), E1)] == "WORK"


def test_overview_counts(make_period):
    p = make_period(status="DRAFT")
    lifecycle.edit_slot(p.id, date(2025, 2, 3), E1, "OFF", "u2")
    ov = lifecycle.period_overview(p.id)

    assert ov["days"] == 7
    assert ov["slots_total"] == 14
    assert ov["electricians"] == [E1, E2]
    assert ov["slots_by_state"]["WORK"] == 6
    assert ov["slots_by_origin"] == {"GENERATED": 13, "MANUAL": 1}
    assert ov["days_short"] == ["2025-02-03"]
    assert ov["days_over"] == []
    assert ov["work_by_day"]["2025-02-01"] == 1
