"""
Rate limiting configuration.

The Limiter instance is created in ``expensedesk/__init__.py`` with no default
limits; this module applies per-blueprint limits keyed by the calling user
(falling back to the remote IP).

Usage:
    from expensedesk.middleware.rate_limiter import init_rate_limits
    init_rate_limits(app, limiter)
"""

import logging

from flask import request as flask_request

logger = logging.getLogger(__name__)

CHAT_LIMIT = "30/minute"
WRITE_LIMIT = "60/minute"
READ_LIMIT = "200/minute"


def rate_limit_key():
    """Limiter key: the X-User-Id header if present, else remote IP."""
    user_id = flask_request.headers.get("X-User-Id")
    if user_id:
        return f"user:{user_id}"
    return flask_request.remote_addr or "unknown"


def init_rate_limits(app, limiter):
    """
    Apply rate limits to API blueprints.

    Limits (per user):
        - Chat:             30/minute  (message bursts fan out push sends)
        - Write endpoints:  60/minute
        - Read endpoints:   200/minute
        - Health check:     exempt

    Rate limiting is disabled in testing mode.
    """

    if app.config.get("TESTING") or not app.config.get("RATELIMIT_ENABLED", True):
        logger.info("Rate limiter disabled")
        return

    bp = app.blueprints.get("chat")
    if bp:
        limiter.limit(CHAT_LIMIT)(bp)

    for bp_name in ("expense", "delegation", "project", "user"):
        bp = app.blueprints.get(bp_name)
        if bp:
            limiter.limit(WRITE_LIMIT)(bp)

    bp = app.blueprints.get("notification")
    if bp:
        limiter.limit(READ_LIMIT)(bp)

    bp = app.blueprints.get("health")
    if bp:
        limiter.exempt(bp)

    logger.info(
        "Rate limiter configured: chat=%s write=%s read=%s",
        CHAT_LIMIT, WRITE_LIMIT, READ_LIMIT,
    )
