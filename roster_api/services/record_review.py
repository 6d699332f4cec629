# roster_api/services/record_review.py
from __future__ import annotations

from datetime import date
from typing import List
import logging

from roster_api.extensions import db
from roster_api.models.reconciliation import (
    ABSENCE_JUSTIFIED,
    ABSENCE_PENDING,
    ABSENCE_REJECTED,
    OVERTIME_APPROVED,
    OVERTIME_PENDING,
    OVERTIME_REJECTED,
    AbsenceRecord,
    DeviationRecord,
    OvertimeRecord,
)
from roster_api.services.clock import get_clock
from roster_api.services.exceptions import InvalidTransition, NotFound, ValidationError

log = logging.getLogger(__name__)


def _review(model, record_id: int, expected: str, target: str, actor: str, note, clock):
    rec = db.session.get(model, record_id)
    if not rec:
        raise NotFound(model.__name__, record_id)
    if rec.status != expected:
        raise InvalidTransition(rec.status, target, reason="only pending records can be reviewed")
    rec.status = target
    rec.reviewed_by = actor
    rec.reviewed_at = get_clock(clock).now()
    rec.review_note = note
    rec.touch(actor)
    db.session.commit()
    log.info("[review] %s %s -> %s by %s", model.__tablename__, rec.id, target, actor)
    return rec


def justify_absence(absence_id: int, actor: str, note: str | None = None, clock=None) -> AbsenceRecord:
    if not (note or "").strip():
        raise ValidationError("A justification note is required")
    return _review(AbsenceRecord, absence_id, ABSENCE_PENDING, ABSENCE_JUSTIFIED, actor, note, clock)


def reject_absence(absence_id: int, actor: str, note: str | None = None, clock=None) -> AbsenceRecord:
    return _review(AbsenceRecord, absence_id, ABSENCE_PENDING, ABSENCE_REJECTED, actor, note, clock)


def review_overtime(overtime_id: int, approve: bool, actor: str, note: str | None = None,
                    clock=None) -> OvertimeRecord:
    target = OVERTIME_APPROVED if approve else OVERTIME_REJECTED
    return _review(OvertimeRecord, overtime_id, OVERTIME_PENDING, target, actor, note, clock)


def _between(q, model, date_from, date_to, electrician_id, crew_col=None, crew_id=None):
    if date_from:
        q = q.filter(model.reference_date >= date_from)
    if date_to:
        q = q.filter(model.reference_date <= date_to)
    if electrician_id:
        q = q.filter(model.electrician_id == electrician_id)
    if crew_col is not None and crew_id:
        q = q.filter(crew_col == crew_id)
    return q.order_by(model.reference_date.asc(), model.electrician_id.asc())


def list_absences(date_from: date | None = None, date_to: date | None = None,
                  electrician_id: int | None = None, crew_id: int | None = None,
                  status: str | None = None) -> List[AbsenceRecord]:
    q = AbsenceRecord.query
    if status:
        q = q.filter(AbsenceRecord.status == status)
    return _between(q, AbsenceRecord, date_from, date_to, electrician_id, AbsenceRecord.crew_id, crew_id).all()


def list_deviations(date_from: date | None = None, date_to: date | None = None,
                    electrician_id: int | None = None, crew_id: int | None = None) -> List[DeviationRecord]:
    return _between(DeviationRecord.query, DeviationRecord, date_from, date_to, electrician_id,
                    DeviationRecord.expected_crew_id, crew_id).all()


def list_overtime(date_from: date | None = None, date_to: date | None = None,
                  electrician_id: int | None = None, crew_id: int | None = None,
                  status: str | None = None) -> List[OvertimeRecord]:
    q = OvertimeRecord.query
    if status:
        q = q.filter(OvertimeRecord.status == status)
    return _between(q, OvertimeRecord, date_from, date_to, electrician_id, OvertimeRecord.crew_id, crew_id).all()
