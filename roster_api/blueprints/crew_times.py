from __future__ import annotations

from flask import Blueprint, request
from flask_jwt_extended import jwt_required

from roster_api.common.auth import current_actor, requires_roles
from roster_api.common.errors import APIError
from roster_api.common.http import ok
from roster_api.common.params import arg_date, body, parse_date_any, parse_time_any, required, truthy
from roster_api.services import shift_times

bp = Blueprint("roster_crew_times", __name__, url_prefix="/api/v1/roster/crews/<int:crew_id>/time-windows")


@bp.get("")
@jwt_required()
def list_windows(crew_id: int):
    items = shift_times.list_windows(crew_id, include_retired=truthy(request.args.get("include_retired", "0")))
    return ok([w.to_dict() for w in items], total=len(items))


@bp.get("/resolve")
@jwt_required()
def resolve(crew_id: int):
    """
    GET /api/v1/roster/crews/{crew_id}/time-windows/resolve?date=2025-03-10
    """
    day = arg_date("date")
    if not day:
        raise APIError("MISSING_FIELDS", "date is required", 422)
    st = shift_times.resolve_shift_time(crew_id, day)
    return ok({
        "crew_id": crew_id,
        "date": day.isoformat(),
        "start": st.start.strftime("%H:%M"),
        "duration_hours": float(st.duration_hours),
        "end": st.end.strftime("%H:%M"),
    })


@bp.post("")
@requires_roles("roster_manager")
def create_window(crew_id: int):
    """
    POST /api/v1/roster/crews/{crew_id}/time-windows

    Body:
    {
      "start_time": "08:00",
      "duration_hours": 8,
      "valid_from": "2025-01-01",
      "valid_to": null,         // optional, null = open-ended
      "auto_close": true        // close the current open window the day before
    }
    """
    d = body()
    required(d, "start_time", "duration_hours", "valid_from")
    w = shift_times.open_time_window(
        crew_id=crew_id,
        start_time=parse_time_any(d["start_time"]),
        duration_hours=d["duration_hours"],
        valid_from=parse_date_any(d["valid_from"]),
        actor=current_actor(),
        valid_to=parse_date_any(d.get("valid_to")),
        auto_close=truthy(d.get("auto_close", True)),
    )
    return ok(w.to_dict(), status=201)


@bp.delete("/<int:window_id>")
@requires_roles("roster_manager")
def retire_window(crew_id: int, window_id: int):
    w = shift_times.retire_time_window(window_id, current_actor(), crew_id=crew_id)
    return ok(w.to_dict())
