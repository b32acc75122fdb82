"""
Rate limiting configuration.

Applies per-blueprint rate limits using Flask-Limiter.
The Limiter instance is created in docops/__init__.py with no default
limits; this module applies granular limits per route category.

Usage:
    from docops.middleware.rate_limiter import init_rate_limits
    init_rate_limits(app, limiter)
"""

import logging

logger = logging.getLogger(__name__)

# blueprint name → limit string
BLUEPRINT_LIMITS = {
    "packages": "10/minute",     # archive builds are I/O heavy
    "documents": "120/minute",
    "matrix": "60/minute",
}


def init_rate_limits(app, limiter):
    """
    Apply rate limits to API blueprints.

    Limits (per remote IP):
        - Packages:   10/minute  (build / deliver)
        - Documents:  120/minute (transitions, signatures, validation)
        - Matrix:     60/minute  (rule catalog administration)
        - Health:     exempt

    Rate limiting is disabled in testing mode.
    """
    if app.config.get("TESTING"):
        app.logger.info("Rate limiter disabled (TESTING=True)")
        return

    for bp_name, limit in BLUEPRINT_LIMITS.items():
        bp = app.blueprints.get(bp_name)
        if bp:
            limiter.limit(limit)(bp)

    bp = app.blueprints.get("health")
    if bp:
        limiter.exempt(bp)

    app.logger.info(
        "Rate limiter configured — %s",
        ", ".join(f"{name}: {limit}" for name, limit in BLUEPRINT_LIMITS.items()),
    )
