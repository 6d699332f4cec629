# roster_api/common/params.py
from __future__ import annotations

from datetime import date, datetime, time as _time

from flask import request

from roster_api.common.errors import APIError


def body() -> dict:
    d = request.get_json(silent=True, force=True)
    return d if isinstance(d, dict) else {}


def parse_date_any(s) -> date | None:
    """
    Accepts:
      - 'YYYY-MM-DD'  (canonical)
      - 'DD-MM-YYYY'  (legacy support)
    """
    if s in (None, ""):
        return None
    if isinstance(s, date):
        return s
    for f in ("%Y-%m-%d", "%d-%m-%Y"):
        try:
            return datetime.strptime(str(s), f).date()
        except ValueError:
            pass
    raise APIError("INVALID_DATE", f"Invalid date {s!r}; use YYYY-MM-DD", 422)


def parse_time_any(s) -> _time | None:
    if s in (None, ""):
        return None
    for f in ("%H:%M", "%H:%M:%S"):
        try:
            return datetime.strptime(str(s), f).time()
        except ValueError:
            pass
    raise APIError("INVALID_TIME", f"Invalid time {s!r}; use HH:MM", 422)


def as_int(val, field: str) -> int | None:
    if val in (None, "", "null"):
        return None
    try:
        return int(val)
    except (TypeError, ValueError):
        raise APIError("INVALID_INT", f"{field} must be integer", 422)


def required(d: dict, *keys):
    missing = [k for k in keys if d.get(k) in (None, "")]
    if missing:
        raise APIError("MISSING_FIELDS", f"{', '.join(missing)} required", 422, {"missing": missing})


def arg_date(name: str) -> date | None:
    return parse_date_any(request.args.get(name))


def arg_int(name: str) -> int | None:
    return as_int(request.args.get(name), name)


def truthy(v) -> bool:
    return str(v).strip().lower() in ("1", "true", "yes", "y", "on")
