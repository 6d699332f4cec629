# roster_api/common/auth.py
from __future__ import annotations

from functools import wraps

from flask_jwt_extended import get_jwt, get_jwt_identity, jwt_required, verify_jwt_in_request

from roster_api.common.http import fail

# audit identity used when no human user is in context (CLI, nightly jobs)
SYSTEM_ACTOR = "system"


def current_actor() -> str:
    """Acting user id for audit columns; falls back to the system identity."""
    try:
        verify_jwt_in_request(optional=True)
        uid = get_jwt_identity()
    except Exception:
        uid = None
    return str(uid) if uid is not None else SYSTEM_ACTOR


def requires_roles(*codes: str):
    """
    Require that the current user has AT LEAST ONE of the given role codes.
    - Roles are read from the 'roles' JWT claim issued by the auth service.
    - 'admin' role always passes.
    """
    def outer(fn):
        @wraps(fn)
        @jwt_required()
        def inner(*args, **kwargs):
            claims = get_jwt() or {}
            roles = set(claims.get("roles") or [])
            if "admin" in roles:
                return fn(*args, **kwargs)

            if get_jwt_identity() is None:
                return fail("Unauthorized", status=401)

            if codes and not any(r in roles for r in codes):
                return fail("Forbidden", status=403)

            return fn(*args, **kwargs)
        return inner
    return outer
