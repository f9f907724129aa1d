"""
Rate limiting configuration.

Applies per-blueprint rate limits using Flask-Limiter.
The Limiter instance is created in ompro/__init__.py with no default limits;
this module applies granular limits per route category.

Usage:
    from ompro.middleware.rate_limiter import init_rate_limits
    init_rate_limits(app, limiter)
"""

import logging

logger = logging.getLogger(__name__)

LOGIN_LIMIT = "10/minute"
IMPORT_LIMIT = "20/minute"
WRITE_LIMIT = "120/minute"
READ_LIMIT = "300/minute"

# Listings and the task stream (SSE reconnects) stay unlimited
WRITE_METHODS = ["POST", "PATCH", "DELETE"]


def init_rate_limits(app, limiter):
    """
    Apply rate limits to API blueprints.

    Limits (per remote IP):
        - Login:            10/minute  (credential guessing)
        - Spreadsheet import: 20/minute (parsing is CPU-bound)
        - Task / group / user mutations: 120/minute (GET exempt)
        - Reports and overview: 300/minute
        - Health check:     exempt

    Rate limiting is disabled in testing mode.
    """

    if app.config.get("TESTING") or not app.config.get("RATELIMIT_ENABLED", True):
        app.logger.info("Rate limiter disabled (TESTING=True)")
        return

    bp = app.blueprints.get("auth")
    if bp:
        limiter.limit(LOGIN_LIMIT, methods=["POST"])(bp)

    bp = app.blueprints.get("task_import")
    if bp:
        limiter.limit(IMPORT_LIMIT)(bp)

    for bp_name in ("groups", "tasks", "users"):
        bp = app.blueprints.get(bp_name)
        if bp:
            limiter.limit(WRITE_LIMIT, methods=WRITE_METHODS)(bp)

    bp = app.blueprints.get("reports")
    if bp:
        limiter.limit(READ_LIMIT)(bp)

    bp = app.blueprints.get("health")
    if bp:
        limiter.exempt(bp)

    app.logger.info(
        "Rate limiter configured — login: %s, import: %s, write: %s, read: %s",
        LOGIN_LIMIT, IMPORT_LIMIT, WRITE_LIMIT, READ_LIMIT,
    )
