"""
Rate limiting configuration for the AniShelf API.

Uses Flask-Limiter to keep clients from burning through the shared Jikan
quota (Jikan itself allows ~60 requests/minute per caller).

Rate Limit Tiers:
- Heavy: /api/anime/search, /top, /seasonal, /<id> (may hit the remote API)
- Light: /api/favorites, comments, cache stats (local store only)
"""

import os

from flask import jsonify
from flask_limiter import Limiter
from flask_limiter.util import get_remote_address

# Initialize limiter (will be attached to app in create_app)
limiter = Limiter(
    key_func=get_remote_address,
    default_limits=["1000 per day", "200 per hour"],
    storage_uri=os.environ.get("RATELIMIT_STORAGE_URI", "memory://"),
    strategy="fixed-window",
    headers_enabled=True,  # Add X-RateLimit-* headers to responses
)


# ==============================================================================
# RATE LIMIT TIERS
# ==============================================================================

# Remote-backed reads (cache misses reach Jikan)
HEAVY_LIMIT = "30 per minute"

# Local store reads/writes
LIGHT_LIMIT = "120 per minute"


def limit_heavy(f):
    """Apply heavy rate limit to remote-backed catalog reads."""
    return limiter.limit(HEAVY_LIMIT)(f)


def limit_light(f):
    """Apply light rate limit to cheap store operations."""
    return limiter.limit(LIGHT_LIMIT)(f)


# ==============================================================================
# ERROR HANDLER
# ==============================================================================

def rate_limit_exceeded_handler(e):
    """JSON body in the same shape as catalog results."""
    retry_after = getattr(e, 'retry_after', None) or 60
    response = jsonify({
        "status": "error",
        "code": "rate_limited",
        "message": "Too many requests. Please wait a moment before trying again.",
        "retry_after": retry_after
    })
    response.status_code = 429
    response.headers['Retry-After'] = str(retry_after)
    return response


# ==============================================================================
# INITIALIZATION
# ==============================================================================

def init_rate_limiting(app):
    """
    Initialize rate limiting for a Flask app.

    Call this in create_app() after app configuration.
    """
    if app.config.get('DISABLE_RATE_LIMITING'):
        app.config['RATELIMIT_ENABLED'] = False

    limiter.init_app(app)

    app.errorhandler(429)(rate_limit_exceeded_handler)

    return limiter
