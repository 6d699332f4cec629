from datetime import date, datetime, time
from decimal import Decimal

import pytest

from roster_api.models.reconciliation import (
    AbsenceRecord,
    DeviationRecord,
    OvertimeRecord,
    ReconciliationRun,
)
from roster_api.services import reconciliation
from roster_api.services.exceptions import ValidationError
from roster_api.services.rebalancing import mark_absent
from roster_api.services.reconciliation import (
    list_runs,
    reconcile,
    reconcile_forced,
    reconcile_recent,
)
from roster_api.services.shift_times import open_time_window

from conftest import CREW, E1, E2, FEB1, OTHER_CREW


@pytest.fixture
def published(make_period, clock):
    p = make_period()
    clock.at = datetime(2025, 2, 2, 6, 0)
    return p


def at(day, hh, mm=0):
    return datetime.combine(day, time(hh, mm))


def test_missing_worker_becomes_one_absence(published):
    first = reconcile(FEB1)
    assert first.absences_created == 1
    assert first.outcome == "SUCCESS_CHANGES"

    rec = AbsenceRecord.query.one()
    assert (rec.electrician_id, rec.reference_date, rec.status) == (E1, FEB1, "PENDING")
    assert rec.crew_id == CREW
    assert rec.created_by == "system"

    second = reconcile(FEB1)
    assert second.absences_created == 0
    assert second.already_reconciled == 1
    assert second.outcome == "SUCCESS"
    assert AbsenceRecord.query.count() == 1


def test_worked_day_off_becomes_overtime(published, shift):
    shift(CREW, at(FEB1, 8), at(FEB1, 16), members=(E1, E2))

    summary = reconcile(FEB1)
    assert summary.overtime_created == 1
    assert summary.absences_created == 0

    ot = OvertimeRecord.query.one()
    assert (ot.electrician_id, ot.reference_date, ot.kind) == (E2, FEB1, "DAY_OFF_WORKED")
    assert ot.crew_id == CREW
    assert ot.worked_hours == Decimal("8.00")
    assert ot.status == "PENDING"

    reconcile(FEB1)
    assert OvertimeRecord.query.count() == 1


def test_grace_margin_defers_then_forced_pass_decides(published, clock):
    clock.at = at(FEB1, 8, 10)

    tolerant = reconcile(FEB1)
    assert tolerant.deferred == 1
    assert AbsenceRecord.query.count() == 0

    forced = reconcile_forced(FEB1, FEB1)
    assert forced.deferred == 0
    assert forced.absences_created == 1

    clock.at = at(FEB1, 9, 0)
    again = reconcile(FEB1)
    assert again.absences_created == 0
    assert again.already_reconciled == 1
    assert AbsenceRecord.query.count() == 1


def test_forced_after_tolerant_adds_nothing(published):
    reconcile(FEB1)
    forced = reconcile_forced(FEB1, FEB1)
    assert forced.created == 0
    assert forced.already_reconciled == 1


def test_shift_on_another_crew_is_a_deviation(published, shift):
    shift(OTHER_CREW, at(FEB1, 8), at(FEB1, 16), members=(E1,))

    summary = reconcile(FEB1)
    assert summary.deviations_created == 1
    assert summary.absences_created == 0
    dev = DeviationRecord.query.one()
    assert (dev.expected_crew_id, dev.actual_crew_id) == (CREW, OTHER_CREW)
    assert dev.kind == "crew_mismatch"
    assert OvertimeRecord.query.count() == 0


def test_on_time_shift_produces_nothing(published, shift):
    shift(CREW, at(FEB1, 8, 5), at(FEB1, 16, 5), members=(E1,))
    summary = reconcile(FEB1)
    assert summary.created == 0
    assert summary.outcome == "SUCCESS"


def test_late_start_compensated(published, shift):
    shift(CREW, at(FEB1, 9), at(FEB1, 17, 30), members=(E1,))

    reconcile(FEB1)
    ot = OvertimeRecord.query.one()
    assert ot.kind == "LATE_COMPENSATED"
    assert ot.predicted_hours == Decimal("8.00")
    assert ot.worked_hours == Decimal("8.50")
    assert ot.difference_hours == Decimal("0.50")
    assert "60 minutes late" in ot.notes


def test_late_start_not_compensated_is_only_logged(published, shift, caplog):
    shift(CREW, at(FEB1, 9), at(FEB1, 16), members=(E1,))
    with caplog.at_level("WARNING", logger="roster_api.services.reconciliation"):
        summary = reconcile(FEB1)
    assert summary.created == 0
    assert "did not compensate" in caplog.text


def test_unscheduled_worker_sums_shifts(published, shift):
    shift(CREW, at(FEB1, 8), at(FEB1, 12), members=(E1, 99))
    shift(CREW, at(FEB1, 13), at(FEB1, 15), members=(99,))

    reconcile(FEB1)
    ot = OvertimeRecord.query.filter_by(electrician_id=99).one()
    assert ot.kind == "UNSCHEDULED"
    assert ot.worked_hours == Decimal("6.00")
    assert ot.slot_id is None


def test_open_shift_measured_until_now(published, shift, clock):
    clock.at = at(FEB1, 20)
    shift(CREW, at(FEB1, 8), None, members=(E1, E2))
    reconcile(FEB1)
    ot = OvertimeRecord.query.filter_by(electrician_id=E2).one()
    assert ot.worked_hours == Decimal("12.00")


def test_draft_periods_are_ignored(make_period, clock):
    make_period(status="DRAFT")
    clock.at = datetime(2025, 2, 2, 6, 0)
    summary = reconcile(FEB1)
    assert summary.created == 0
    assert AbsenceRecord.query.count() == 0


def test_crew_filter(published, shift):
    shift(OTHER_CREW, at(FEB1, 8), at(FEB1, 16), members=(55,))

    summary = reconcile(FEB1, crew_id=OTHER_CREW)
    assert summary.absences_created == 0
    assert summary.overtime_created == 1
    assert AbsenceRecord.query.count() == 0


def test_forced_window_can_be_cancelled_between_days(published, clock):
    clock.at = datetime(2025, 2, 10, 6, 0)
    calls = []

    def stop():
        calls.append(1)
        return len(calls) > 2

    summary = reconcile_forced(FEB1, date(2025, 2, 7), should_cancel=stop)
    assert summary.cancelled
    assert summary.outcome == "CANCELLED"
    assert summary.dates_processed == 2
    # the two completed days stay committed: E1 on the 1st, E2 on the 2nd
    assert sorted((a.electrician_id, a.reference_date.day) for a in AbsenceRecord.query) == [(E1, 1), (E2, 2)]


def test_deadline_in_the_past_cancels_immediately(published, clock):
    summary = reconcile_forced(FEB1, date(2025, 2, 7), deadline=clock.now())
    assert summary.cancelled
    assert summary.dates_processed == 0


def test_dry_run_writes_nothing(published):
    summary = reconcile(FEB1, dry_run=True)
    assert summary.absences_created == 1
    assert AbsenceRecord.query.count() == 0
    assert ReconciliationRun.query.count() == 0


def test_runs_are_recorded(published):
    summary = reconcile(FEB1, actor="u7")
    runs = list_runs()
    assert len(runs) == 1
    run = runs[0]
    assert run.run_id == summary.run_id
    assert (run.mode, run.triggered_by, run.outcome) == ("TOLERANT", "u7", "SUCCESS_CHANGES")
    assert run.absences_created == 1


def test_concurrent_writer_counts_as_already_reconciled(published, monkeypatch):
    reconcile(FEB1)
    # pretend the lookup raced and missed the row another run wrote
    monkeypatch.setattr(reconciliation.Finding, "exists", lambda self: False)

    summary = reconcile(FEB1)
    assert summary.errors == []
    assert summary.absences_created == 0
    assert summary.already_reconciled == 1
    assert AbsenceRecord.query.count() == 1


def test_failing_day_does_not_stop_the_window(published, monkeypatch):
    real = reconciliation.evaluate_day

    def flaky(day, crew_id=None, clock=None, honour_grace=True):
        if day == date(2025, 2, 2):
            raise RuntimeError("replica lag")
        return real(day, crew_id, clock, honour_grace)

    monkeypatch.setattr(reconciliation, "evaluate_day", flaky)
    summary = reconcile_forced(FEB1, date(2025, 2, 3))
    assert summary.outcome == "PARTIAL"
    assert summary.dates_processed == 2
    assert summary.errors[0]["date"] == "2025-02-02"
    assert summary.to_dict()["dates_failed"] == 1


def test_recent_window_uses_lookback(published, clock):
    clock.at = datetime(2025, 2, 8, 6, 0)
    summary = reconcile_recent(lookback_days=7)
    assert (summary.date_from, summary.date_to) == (FEB1, date(2025, 2, 8))
    # every planned day of the period was missed
    assert summary.absences_created == 7


def test_reversed_window_rejected(app, clock):
    with pytest.raises(ValidationError):
        reconcile_forced(date(2025, 2, 7), FEB1)


def test_night_shift_opened_after_midnight_counts_for_the_planned_day(make_period, clock, shift):
    open_time_window(OTHER_CREW, time(23, 45), 8, date(2025, 1, 1), "tester")
    make_period(crew_id=OTHER_CREW)
    clock.at = datetime(2025, 2, 10, 6, 0)
    feb2 = date(2025, 2, 2)
    # 20 minutes late for E1's Feb 1 slot, opened on the next calendar day
    shift(OTHER_CREW, at(feb2, 0, 5), at(feb2, 8), members=(E1,))

    summary = reconcile_forced(FEB1, feb2)
    assert summary.errors == []
    assert [(a.electrician_id, a.reference_date) for a in AbsenceRecord.query] == [(E2, feb2)]
    assert OvertimeRecord.query.count() == 0
    assert DeviationRecord.query.count() == 0


def test_flagged_absent_slot_without_a_shift_is_queued_for_review(published):
    mark_absent(published.id, FEB1, E1, "sup1")

    summary = reconcile_forced(FEB1, FEB1)
    assert summary.absences_created == 1
    rec = AbsenceRecord.query.one()
    assert (rec.electrician_id, rec.reason, rec.status) == (E1, "flagged_slot", "PENDING")


def test_flagged_absent_slot_worked_anyway_is_left_alone(published, shift):
    mark_absent(published.id, FEB1, E1, "sup1")
    shift(CREW, at(FEB1, 8), at(FEB1, 16), members=(E1,))

    summary = reconcile_forced(FEB1, FEB1)
    assert summary.created == 0
