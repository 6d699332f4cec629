from __future__ import annotations

from datetime import timedelta

from flask import Blueprint, request
from flask_jwt_extended import jwt_required

from roster_api.common.auth import current_actor, requires_roles
from roster_api.common.errors import APIError
from roster_api.common.http import ok
from roster_api.common.paging import paginate
from roster_api.common.params import arg_date, arg_int, as_int, body, parse_date_any, required, truthy
from roster_api.services import record_review as review
from roster_api.services.clock import get_clock
from roster_api.services.reconciliation import list_runs, reconcile, reconcile_forced

bp = Blueprint("roster_reconciliation", __name__, url_prefix="/api/v1/roster/reconciliation")


@bp.post("/run")
@requires_roles("roster_manager")
def run_tolerant():
    """
    POST /api/v1/roster/reconciliation/run

    Body:
    {
      "date": "2025-02-01",   // default: today
      "crew_id": 7,           // optional, default: every crew with a published period
      "dry_run": false
    }
    """
    d = body()
    day = parse_date_any(d.get("date")) or get_clock().today()
    summary = reconcile(
        day,
        crew_id=as_int(d.get("crew_id"), "crew_id"),
        actor=current_actor(),
        dry_run=truthy(d.get("dry_run", False)),
    )
    return ok(summary.to_dict())


@bp.post("/forced")
@requires_roles("roster_manager")
def run_forced():
    """
    POST /api/v1/roster/reconciliation/forced

    Body:
    {
      "date_from": "2025-01-01",
      "date_to": "2025-01-31",
      "crew_id": 7,             // optional
      "timeout_seconds": 120,   // optional; stops between dates once exceeded
      "dry_run": false
    }
    """
    d = body()
    required(d, "date_from", "date_to")
    timeout = as_int(d.get("timeout_seconds"), "timeout_seconds")
    if timeout is not None and timeout <= 0:
        raise APIError("INVALID_TIMEOUT", "timeout_seconds must be positive", 422)
    clock = get_clock()
    deadline = clock.now() + timedelta(seconds=timeout) if timeout else None
    summary = reconcile_forced(
        parse_date_any(d["date_from"]),
        parse_date_any(d["date_to"]),
        crew_id=as_int(d.get("crew_id"), "crew_id"),
        actor=current_actor(),
        clock=clock,
        deadline=deadline,
        dry_run=truthy(d.get("dry_run", False)),
    )
    return ok(summary.to_dict())


@bp.get("/runs")
@jwt_required()
def runs():
    limit = arg_int("limit") or 50
    items = list_runs(limit=min(max(limit, 1), 500))
    return ok([r.to_dict() for r in items], total=len(items))


def _filters():
    return dict(
        date_from=arg_date("from"),
        date_to=arg_date("to"),
        electrician_id=arg_int("electrician_id"),
        crew_id=arg_int("crew_id"),
    )


@bp.get("/absences")
@jwt_required()
def absences():
    items = review.list_absences(status=(request.args.get("status") or "").upper() or None, **_filters())
    page_items, meta = paginate(items)
    return ok([a.to_dict() for a in page_items], **meta)


@bp.get("/deviations")
@jwt_required()
def deviations():
    items = review.list_deviations(**_filters())
    page_items, meta = paginate(items)
    return ok([x.to_dict() for x in page_items], **meta)


@bp.get("/overtime")
@jwt_required()
def overtime():
    items = review.list_overtime(status=(request.args.get("status") or "").upper() or None, **_filters())
    page_items, meta = paginate(items)
    return ok([o.to_dict() for o in page_items], **meta)


@bp.post("/absences/<int:absence_id>/justify")
@requires_roles("roster_manager", "hr")
def justify(absence_id: int):
    d = body()
    return ok(review.justify_absence(absence_id, current_actor(), note=d.get("note")).to_dict())


@bp.post("/absences/<int:absence_id>/reject")
@requires_roles("roster_manager", "hr")
def reject(absence_id: int):
    d = body()
    return ok(review.reject_absence(absence_id, current_actor(), note=d.get("note")).to_dict())


@bp.post("/overtime/<int:overtime_id>/review")
@requires_roles("roster_manager", "hr")
def review_overtime(overtime_id: int):
    """
    POST /api/v1/roster/reconciliation/overtime/{id}/review   {"approve": true, "note": "..."}
    """
    d = body()
    required(d, "approve")
    rec = review.review_overtime(overtime_id, truthy(d["approve"]), current_actor(), note=d.get("note"))
    return ok(rec.to_dict())
