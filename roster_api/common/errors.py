# roster_api/common/errors.py
from sqlalchemy.exc import IntegrityError
from werkzeug.exceptions import HTTPException

from roster_api.common.http import fail
from roster_api.services.exceptions import RosterError


class APIError(Exception):
    """Request-level error raised by blueprints (bad query args, missing body fields)."""
    def __init__(self, code, message, status_code=400, payload=None):
        super().__init__(message)
        self.code = code
        self.message = message
        self.status_code = status_code
        self.payload = payload


def register_error_handlers(app):
    @app.errorhandler(RosterError)
    def _roster(e: RosterError):
        return fail(e.message, status=e.status, code=e.code, detail=e.detail or None)

    @app.errorhandler(APIError)
    def _api(e: APIError):
        return fail(e.message, status=e.status_code, code=e.code, detail=e.payload)

    @app.errorhandler(HTTPException)
    def _http(e: HTTPException):
        return fail(e.description or e.name, status=e.code or 500)

    @app.errorhandler(IntegrityError)
    def _dup(e: IntegrityError):
        from roster_api.extensions import db
        db.session.rollback()
        return fail("Duplicate or FK constraint failed", status=409, code="CONSTRAINT_ERROR")

    @app.errorhandler(Exception)
    def _500(e: Exception):
        app.logger.exception(e)
        return fail("Internal server error", status=500)
