"""
Maintenance Period Platform
Blueprint registry and shared request helpers.
"""

from flask import request


def pagination_args(default_per_page=10, max_per_page=100):
    """Read page/per_page query params, falling back on bad input.

    Returns:
        (page, per_page)
    """
    try:
        page = max(int(request.args.get("page", 1)), 1)
    except (ValueError, TypeError):
        page = 1
    try:
        per_page = min(max(int(request.args.get("per_page", default_per_page)), 1), max_per_page)
    except (ValueError, TypeError):
        per_page = default_per_page
    return page, per_page


def bool_arg(name):
    """Tri-state boolean query param: True, False, or None when absent."""
    raw = request.args.get(name)
    if raw is None or raw == "":
        return None
    return raw.strip().lower() in ("1", "true", "yes")
