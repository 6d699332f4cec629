from flask import Blueprint
from sqlalchemy import text

from roster_api.common.http import fail, ok
from roster_api.extensions import db

bp = Blueprint("health", __name__, url_prefix="/api/v1")


@bp.get("/health")
def health():
    try:
        db.session.execute(text("SELECT 1"))
    except Exception as e:
        db.session.rollback()
        return fail("database unavailable", status=503, detail={"error": str(e)})
    return ok({"status": "ok"})
