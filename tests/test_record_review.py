from datetime import date, datetime, time

import pytest

from roster_api.models.reconciliation import AbsenceRecord, OvertimeRecord
from roster_api.services.exceptions import InvalidTransition, NotFound, ValidationError
from roster_api.services.reconciliation import reconcile
from roster_api.services.record_review import (
    justify_absence,
    list_absences,
    list_overtime,
    reject_absence,
    review_overtime,
)

from conftest import CREW, E1, E2, FEB1


@pytest.fixture
def reconciled(make_period, clock, shift):
    make_period()
    clock.at = datetime(2025, 2, 3, 6, 0)
    # E2 works Feb 1 on a day off; E1 misses Feb 1, E2 misses Feb 2
    shift(CREW, datetime.combine(FEB1, time(8)), datetime.combine(FEB1, time(12)), members=(E2,))
    reconcile(FEB1)
    reconcile(date(2025, 2, 2))


def test_justify_needs_a_note(reconciled):
    rec = AbsenceRecord.query.filter_by(electrician_id=E1).one()
    with pytest.raises(ValidationError):
        justify_absence(rec.id, "hr1", note="  ")

    done = justify_absence(rec.id, "hr1", note="medical certificate")
    assert done.status == "JUSTIFIED"
    assert done.reviewed_by == "hr1"
    assert done.review_note == "medical certificate"


def test_only_pending_records_are_reviewed(reconciled):
    rec = AbsenceRecord.query.filter_by(electrician_id=E1).one()
    reject_absence(rec.id, "hr1")
    with pytest.raises(InvalidTransition):
        justify_absence(rec.id, "hr1", note="late paperwork")
    with pytest.raises(NotFound):
        reject_absence(9999, "hr1")


def test_overtime_review(reconciled, clock):
    ot = OvertimeRecord.query.one()
    approved = review_overtime(ot.id, True, "mgr", note="storm callout")
    assert approved.status == "APPROVED"
    assert approved.reviewed_at == clock.now()
    with pytest.raises(InvalidTransition):
        review_overtime(ot.id, False, "mgr")


def test_listing_filters(reconciled):
    assert [a.electrician_id for a in list_absences()] == [E1, E2]
    assert [a.electrician_id for a in list_absences(date_from=date(2025, 2, 2))] == [E2]
    assert list_absences(crew_id=CREW + 1) == []
    assert len(list_absences(status="PENDING")) == 2
    assert [o.electrician_id for o in list_overtime(electrician_id=E2)] == [E2]
