"""
Rate limiting configuration.

Applies per-blueprint limits using Flask-Limiter. The Limiter instance is
created in maintenance_app/__init__.py with no default limits; this module
applies granular limits per route category.

Usage:
    from maintenance_app.middleware.rate_limiter import init_rate_limits
    init_rate_limits(app, limiter)
"""

import logging

logger = logging.getLogger(__name__)

WRITE_LIMIT = "60/minute"
READ_LIMIT = "200/minute"
ADMIN_LIMIT = "10/minute"


def init_rate_limits(app, limiter):
    """
    Apply rate limits to API blueprints.

    Limits (per remote IP):
        - Period / completion endpoints: 60/minute
        - Collaborator device lists:    200/minute (polled by the mobile client)
        - Admin maintenance + jobs:     10/minute
        - Health probes:                exempt

    Rate limiting is disabled in testing mode.
    """
    if app.config.get("TESTING") or not app.config.get("RATELIMIT_ENABLED", True):
        app.logger.info("Rate limiter disabled")
        return

    for bp_name in ("periods", "completion_records"):
        bp = app.blueprints.get(bp_name)
        if bp:
            limiter.limit(WRITE_LIMIT)(bp)

    bp = app.blueprints.get("collaborators")
    if bp:
        limiter.limit(READ_LIMIT)(bp)

    bp = app.blueprints.get("admin")
    if bp:
        limiter.limit(ADMIN_LIMIT)(bp)

    bp = app.blueprints.get("health")
    if bp:
        limiter.exempt(bp)

    app.logger.info(
        "Rate limiter configured — write: %s, read: %s, admin: %s",
        WRITE_LIMIT, READ_LIMIT, ADMIN_LIMIT,
    )
