import os
from datetime import date, datetime, time

import pytest

from roster_api import create_app
from roster_api.extensions import db
from roster_api.models.field_shift import FieldShift, FieldShiftMember
from roster_api.services import period_lifecycle as lifecycle
from roster_api.services.clock import FixedClock
from roster_api.services.pattern_catalog import create_pattern
from roster_api.services.shift_times import open_time_window
from roster_api.services.slot_generator import generate_slots

CREW = 7
OTHER_CREW = 8
E1, E2 = 11, 12
FEB1 = date(2025, 2, 1)
FEB7 = date(2025, 2, 7)

# E1 works Feb 1, 3, 5, 7; E2 works Feb 2, 4, 6
DEFAULT_ANCHORS = ((E1, date(2025, 2, 2)), (E2, date(2025, 2, 1)))


@pytest.fixture(scope="function")
def app():
    os.environ["DATABASE_URL"] = "sqlite:///:memory:"
    app = create_app()
    app.config["TESTING"] = True
    with app.app_context():
        db.create_all()
        yield app
        db.session.remove()
        db.drop_all()


@pytest.fixture(scope="function")
def session(app):
    yield db.session


@pytest.fixture
def clock(app):
    clk = FixedClock(datetime(2025, 2, 1, 6, 0))
    app.config["ROSTER_CLOCK"] = clk
    return clk


@pytest.fixture
def alternating(app):
    """One electrician on, one off: cycle [WORK, OFF], headcount 1."""
    return create_pattern("alternating", "CYCLE_DAYS", 1, "tester",
                          cycle_length=2, positions=["WORK", "OFF"])


@pytest.fixture
def crew_window(app):
    return open_time_window(CREW, time(8, 0), 8, date(2025, 1, 1), "tester")


@pytest.fixture
def make_period(app, clock, alternating, crew_window):
    def _make(crew_id=CREW, start=FEB1, end=FEB7, anchors=DEFAULT_ANCHORS, status="PUBLISHED"):
        p = lifecycle.create_period(crew_id, alternating.id, start, end, "tester")
        if status == "DRAFT" and anchors is None:
            return p
        generate_slots(p.id, "tester", anchors=anchors)
        if status in ("UNDER_REVIEW", "PUBLISHED"):
            lifecycle.submit_for_review(p.id, "tester")
        if status == "PUBLISHED":
            lifecycle.publish(p.id, "tester")
        return db.session.get(type(p), p.id)
    return _make


def add_shift(crew_id, opened_at, closed_at=None, members=(E1,)):
    s = FieldShift(
        crew_id=crew_id,
        opened_at=opened_at,
        closed_at=closed_at,
        members=[FieldShiftMember(electrician_id=e) for e in members],
    )
    db.session.add(s)
    db.session.commit()
    return s


@pytest.fixture
def shift():
    return add_shift
