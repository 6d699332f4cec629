from flask import jsonify


def ok(data=None, status=200, **meta):
    """Success envelope. Listing routes pass page/limit/total as ``meta``."""
    payload = {"success": True, "data": data}
    if meta:
        payload["meta"] = meta
    return jsonify(payload), status


def fail(message="Bad Request", status=400, code=None, detail=None, errors=None):
    """Error envelope; ``detail`` carries the roster date/crew/position at fault."""
    err = {"message": message}
    if code:
        err["code"] = code
    if detail:
        err["detail"] = detail
    if errors:
        err["errors"] = errors
    return jsonify({"success": False, "error": err}), status
