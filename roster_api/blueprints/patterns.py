from __future__ import annotations

from flask import Blueprint, request
from flask_jwt_extended import jwt_required

from roster_api.common.auth import current_actor, requires_roles
from roster_api.common.http import ok
from roster_api.common.params import as_int, body, required, truthy
from roster_api.services import pattern_catalog as catalog

bp = Blueprint("roster_patterns", __name__, url_prefix="/api/v1/roster/patterns")


@bp.get("")
@jwt_required()
def list_patterns():
    """
    GET /api/v1/roster/patterns?active=1
    """
    items = catalog.list_patterns(active_only=truthy(request.args.get("active", "0")))
    return ok([p.to_dict() for p in items], total=len(items))


@bp.get("/<int:pattern_id>")
@jwt_required()
def get_pattern(pattern_id: int):
    p = catalog.get_pattern(pattern_id)
    data = p.to_dict()
    data["missing_cells"] = catalog.missing_cells(p.to_spec())
    return ok(data)


@bp.post("")
@requires_roles("roster_manager")
def create_pattern():
    """
    POST /api/v1/roster/patterns

    Body (CYCLE_DAYS):
    {
      "name": "4x2",
      "mode": "CYCLE_DAYS",
      "cycle_length": 6,
      "required_headcount": 2,
      "positions": ["WORK", "WORK", "WORK", "WORK", "OFF", "OFF"]
    }

    Body (WEEK_DEPENDENT):
    {
      "name": "Spanish",
      "mode": "WEEK_DEPENDENT",
      "weeks_in_cycle": 2,
      "required_headcount": 1,
      "week_masks": [{"week_index": 0, "weekday": "MON", "status": "WORK"}, ...]
    }
    """
    d = body()
    required(d, "name", "mode", "required_headcount")
    p = catalog.create_pattern(
        name=str(d["name"]).strip(),
        mode=d["mode"],
        required_headcount=as_int(d["required_headcount"], "required_headcount"),
        actor=current_actor(),
        cycle_length=as_int(d.get("cycle_length"), "cycle_length"),
        weeks_in_cycle=as_int(d.get("weeks_in_cycle"), "weeks_in_cycle"),
        positions=d.get("positions"),
        week_masks=d.get("week_masks"),
        notes=d.get("notes"),
    )
    return ok(p.to_dict(), status=201)


@bp.put("/<int:pattern_id>/positions")
@requires_roles("roster_manager")
def put_positions(pattern_id: int):
    d = body()
    required(d, "positions")
    p = catalog.replace_positions(pattern_id, d["positions"], current_actor())
    return ok(p.to_dict())


@bp.put("/<int:pattern_id>/week-masks")
@requires_roles("roster_manager")
def put_week_masks(pattern_id: int):
    d = body()
    required(d, "week_masks")
    p = catalog.replace_week_masks(pattern_id, d["week_masks"], current_actor())
    return ok(p.to_dict())


@bp.patch("/<int:pattern_id>")
@requires_roles("roster_manager")
def patch_pattern(pattern_id: int):
    """Only the active flag is mutable in place; structure changes go through the replace endpoints."""
    d = body()
    required(d, "active")
    p = catalog.set_active(pattern_id, truthy(d["active"]), current_actor())
    return ok(p.to_dict())


@bp.post("/seed")
@requires_roles("admin")
def seed():
    created = catalog.seed_standard_patterns(current_actor())
    return ok({"created": created}, status=201 if created else 200)
