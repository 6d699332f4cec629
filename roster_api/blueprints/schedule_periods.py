from __future__ import annotations

from flask import Blueprint, request, send_file
from flask_jwt_extended import jwt_required

from roster_api.common.auth import current_actor, requires_roles
from roster_api.common.http import ok
from roster_api.common.paging import paginate
from roster_api.common.params import (
    arg_date,
    arg_int,
    as_int,
    body,
    parse_date_any,
    parse_time_any,
    required,
)
from roster_api.services import period_lifecycle as lifecycle
from roster_api.services import rebalancing
from roster_api.services.roster_export import XLSX_MIMETYPE, build_roster_workbook
from roster_api.services.slot_generator import generate_slots

bp = Blueprint("roster_periods", __name__, url_prefix="/api/v1/roster/periods")


# ---------- periods ----------

@bp.get("")
@jwt_required()
def list_periods():
    """
    GET /api/v1/roster/periods?crew_id=7&status=PUBLISHED&on=2025-02-01&page=1&limit=50
    """
    items = lifecycle.list_periods(
        crew_id=arg_int("crew_id"),
        status=(request.args.get("status") or "").strip().upper() or None,
        on=arg_date("on"),
    )
    page_items, meta = paginate(items)
    return ok([p.to_dict() for p in page_items], **meta)


@bp.post("")
@requires_roles("roster_manager")
def create_period():
    """
    POST /api/v1/roster/periods

    Body:
    {
      "crew_id": 7,
      "pattern_id": 1,
      "period_start": "2025-02-01",
      "period_end": "2025-02-28",
      "notes": "February"
    }
    """
    d = body()
    required(d, "crew_id", "pattern_id", "period_start", "period_end")
    p = lifecycle.create_period(
        crew_id=as_int(d["crew_id"], "crew_id"),
        pattern_id=as_int(d["pattern_id"], "pattern_id"),
        period_start=parse_date_any(d["period_start"]),
        period_end=parse_date_any(d["period_end"]),
        actor=current_actor(),
        notes=d.get("notes"),
    )
    return ok(p.to_dict(), status=201)


@bp.get("/<int:period_id>")
@jwt_required()
def get_period(period_id: int):
    p = lifecycle.get_period(period_id)
    data = p.to_dict()
    data["allocations"] = [a.to_dict() for a in lifecycle.list_allocations(period_id)]
    return ok(data)


@bp.get("/<int:period_id>/overview")
@jwt_required()
def overview(period_id: int):
    return ok(lifecycle.period_overview(period_id))


@bp.post("/<int:period_id>/generate")
@requires_roles("roster_manager")
def generate(period_id: int):
    """
    POST /api/v1/roster/periods/{id}/generate

    Body (optional; without anchors the stored allocation is reused):
    {
      "anchors": [
        {"electrician_id": 11, "next_day_off": "2025-02-01"},
        {"electrician_id": 12, "next_day_off": "2025-02-03"}
      ]
    }
    """
    d = body()
    anchors = d.get("anchors")
    result = generate_slots(period_id, current_actor(), anchors=anchors if anchors else None)
    return ok(result.to_dict(), status=201)


@bp.post("/<int:period_id>/transition")
@requires_roles("roster_manager")
def transition(period_id: int):
    """
    POST /api/v1/roster/periods/{id}/transition   {"status": "PUBLISHED"}
    """
    d = body()
    required(d, "status")
    p = lifecycle.transition(period_id, d["status"], current_actor())
    return ok(p.to_dict())


@bp.post("/<int:period_id>/range")
@requires_roles("roster_manager")
def change_range(period_id: int):
    d = body()
    required(d, "period_start", "period_end")
    p = lifecycle.change_period_range(
        period_id,
        parse_date_any(d["period_start"]),
        parse_date_any(d["period_end"]),
        current_actor(),
    )
    return ok(p.to_dict())


@bp.post("/<int:period_id>/duplicate")
@requires_roles("roster_manager")
def duplicate(period_id: int):
    d = body()
    required(d, "period_start", "period_end")
    p = lifecycle.duplicate_period(
        period_id,
        parse_date_any(d["period_start"]),
        parse_date_any(d["period_end"]),
        current_actor(),
        notes=d.get("notes"),
    )
    return ok(p.to_dict(), status=201)


# ---------- slots ----------

@bp.get("/<int:period_id>/slots")
@jwt_required()
def list_slots(period_id: int):
    """
    GET /api/v1/roster/periods/{id}/slots?from=2025-02-01&to=2025-02-07&electrician_id=11
    """
    items = lifecycle.list_slots(
        period_id,
        day_from=arg_date("from"),
        day_to=arg_date("to"),
        electrician_id=arg_int("electrician_id"),
    )
    page_items, meta = paginate(items)
    return ok([s.to_dict() for s in page_items], **meta)


@bp.put("/<int:period_id>/slots")
@requires_roles("roster_manager")
def edit_slot(period_id: int):
    """
    PUT /api/v1/roster/periods/{id}/slots

    Body:
    {
      "date": "2025-02-03",
      "electrician_id": 11,
      "state": "OFF",
      "day_note": "medical appointment",
      "predicted_start": "08:00",        // WORK only, optional
      "predicted_duration_hours": 8      // WORK only, optional
    }
    """
    d = body()
    required(d, "date", "electrician_id", "state")
    slot = lifecycle.edit_slot(
        period_id,
        parse_date_any(d["date"]),
        as_int(d["electrician_id"], "electrician_id"),
        d["state"],
        current_actor(),
        day_note=d.get("day_note"),
        predicted_start=parse_time_any(d.get("predicted_start")),
        predicted_duration_hours=d.get("predicted_duration_hours"),
    )
    return ok(slot.to_dict())


# ---------- post-publish rebalancing ----------

@bp.post("/<int:period_id>/absences")
@requires_roles("roster_manager", "supervisor")
def mark_absent(period_id: int):
    d = body()
    required(d, "date", "electrician_id")
    slot, ev = rebalancing.mark_absent(
        period_id,
        parse_date_any(d["date"]),
        as_int(d["electrician_id"], "electrician_id"),
        current_actor(),
        covering_electrician_id=as_int(d.get("covering_electrician_id"), "covering_electrician_id"),
        justification=d.get("justification"),
    )
    return ok({"slot": slot.to_dict(), "event": ev.to_dict()}, status=201)


@bp.post("/<int:period_id>/swaps")
@requires_roles("roster_manager", "supervisor")
def register_swap(period_id: int):
    d = body()
    required(d, "date", "holder_id", "executor_id")
    slot, ev = rebalancing.register_swap(
        period_id,
        parse_date_any(d["date"]),
        as_int(d["holder_id"], "holder_id"),
        as_int(d["executor_id"], "executor_id"),
        current_actor(),
        justification=d.get("justification"),
    )
    return ok({"slot": slot.to_dict(), "event": ev.to_dict()}, status=201)


@bp.post("/<int:period_id>/transfers")
@requires_roles("roster_manager")
def transfer(period_id: int):
    d = body()
    required(d, "from_electrician_id", "to_electrician_id", "start_date")
    result = rebalancing.transfer_slots(
        period_id,
        as_int(d["from_electrician_id"], "from_electrician_id"),
        as_int(d["to_electrician_id"], "to_electrician_id"),
        parse_date_any(d["start_date"]),
        current_actor(),
    )
    return ok(result)


@bp.get("/<int:period_id>/coverage-events")
@jwt_required()
def coverage_events(period_id: int):
    lifecycle.get_period(period_id)
    items = rebalancing.list_events(period_id)
    return ok([e.to_dict() for e in items], total=len(items))


# ---------- export ----------

@bp.get("/<int:period_id>/export.xlsx")
@jwt_required()
def export_xlsx(period_id: int):
    bio, filename = build_roster_workbook(period_id)
    return send_file(bio, mimetype=XLSX_MIMETYPE, as_attachment=True, download_name=filename)
