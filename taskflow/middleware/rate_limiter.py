"""
Rate limiting configuration.

The Limiter instance is created in ``taskflow/__init__.py`` with no default
limits; this module applies per-blueprint limits.

Usage:
    from taskflow.middleware.rate_limiter import init_rate_limits
    init_rate_limits(app, limiter)
"""

import logging

from flask import request as flask_request

logger = logging.getLogger(__name__)

WRITE_LIMIT = "60/minute"
READ_LIMIT = "200/minute"
REPORT_LIMIT = "10/minute"


def rate_limit_key():
    """Per-user key when ``X-User-Id`` is present, else remote IP."""
    user_id = flask_request.headers.get("X-User-Id")
    if user_id:
        return f"user:{user_id}"
    return flask_request.remote_addr or "unknown"


def init_rate_limits(app, limiter):
    """
    Limits:
        - Reports:            10/minute (remote function call)
        - Task / edit / user: 60/minute
        - Notifications:      200/minute
        - Health:             exempt

    Disabled when TESTING is set.
    """
    if app.config.get("TESTING"):
        app.logger.info("Rate limiter disabled (TESTING=True)")
        return

    bp = app.blueprints.get("report")
    if bp:
        limiter.limit(REPORT_LIMIT)(bp)

    for bp_name in ("task", "edit_request", "project", "user"):
        bp = app.blueprints.get(bp_name)
        if bp:
            limiter.limit(WRITE_LIMIT)(bp)

    bp = app.blueprints.get("notification")
    if bp:
        limiter.limit(READ_LIMIT)(bp)

    bp = app.blueprints.get("health")
    if bp:
        limiter.exempt(bp)

    app.logger.info("Rate limiter configured: report=%s write=%s read=%s", REPORT_LIMIT, WRITE_LIMIT, READ_LIMIT)
