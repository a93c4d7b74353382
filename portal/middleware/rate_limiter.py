"""
Rate limiting configuration.

Applies per-blueprint rate limits using Flask-Limiter.
The Limiter instance is created in portal/__init__.py with no default limits;
this module applies limits per route category.

Usage:
    from portal.middleware.rate_limiter import init_rate_limits
    init_rate_limits(app, limiter)
"""

import logging

logger = logging.getLogger(__name__)


def init_rate_limits(app, limiter):
    """
    Apply rate limits to API blueprints.

    Limits (per remote IP):
        - Admin endpoints:         RATELIMIT_ADMIN  (provisioning, exports)
        - Client endpoints:        RATELIMIT_CLIENT (form edits, uploads)
        - Notification endpoints:  RATELIMIT_NOTIFICATIONS (bell polling)
        - Health check:            exempt

    Rate limiting is disabled in testing mode.
    """
    if app.config.get("TESTING"):
        logger.debug("Rate limiter disabled (TESTING=True)")
        return

    limits = {
        "admin_bp": app.config.get("RATELIMIT_ADMIN", "120/minute"),
        "client_bp": app.config.get("RATELIMIT_CLIENT", "120/minute"),
        "notification_bp": app.config.get("RATELIMIT_NOTIFICATIONS", "300/minute"),
    }
    for bp_name, limit in limits.items():
        bp = app.blueprints.get(bp_name)
        if bp:
            limiter.limit(limit)(bp)

    bp = app.blueprints.get("health_bp")
    if bp:
        limiter.exempt(bp)

    logger.info("Rate limiter configured — %s", ", ".join(f"{k}: {v}" for k, v in limits.items()))
