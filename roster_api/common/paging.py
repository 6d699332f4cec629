# roster_api/common/paging.py
from flask import request

DEFAULT_PAGE = 1
DEFAULT_SIZE = 50
MAX_SIZE = 500


def page_limit():
    try:
        page = max(int(request.args.get("page", DEFAULT_PAGE)), 1)
    except Exception:
        page = DEFAULT_PAGE
    raw = request.args.get("limit", request.args.get("size", DEFAULT_SIZE))
    try:
        size = max(1, min(int(raw), MAX_SIZE))
    except Exception:
        size = DEFAULT_SIZE
    return page, size


def paginate(items):
    """Slice an already-ordered list for the current page. Returns (page_items, meta)."""
    page, size = page_limit()
    total = len(items)
    start = (page - 1) * size
    return items[start:start + size], {"page": page, "size": size, "total": total}
