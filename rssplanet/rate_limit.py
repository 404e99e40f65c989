"""
Rate limiting for the gateway.

Uses slowapi to limit requests per client address. Every proxied request
costs an outbound fetch, so an unthrottled caller can turn the gateway into
a traffic amplifier.
"""

import logging

from fastapi import Request
from slowapi import Limiter
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware
from slowapi.util import get_remote_address

from .config import config
from .pages import render_error

logger = logging.getLogger(__name__)


def get_rate_limit() -> str:
    """Get rate limit from config; zero or less disables limiting."""
    limit = config.RATE_LIMIT_PER_MINUTE
    if limit <= 0:
        return "1000000/minute"  # Effectively unlimited
    return f"{limit}/minute"


limiter = Limiter(
    key_func=get_remote_address,
    default_limits=[get_rate_limit()],
    storage_uri="memory://",  # In-memory storage (resets on restart)
)


def rate_limit_exceeded_handler(request: Request, exc: RateLimitExceeded):
    """Render the throttling error as an HTML page with Retry-After."""
    logger.warning(f"Rate limit exceeded for {get_remote_address(request)} on {request.url.path}")
    response = render_error(429, f"Rate limit exceeded: {exc.detail}", request.url.path)
    response.headers["Retry-After"] = "60"
    return response


def setup_rate_limiting(app):
    """Attach the limiter, its middleware and its error handler to an app."""
    app.state.limiter = limiter
    app.add_exception_handler(RateLimitExceeded, rate_limit_exceeded_handler)
    app.add_middleware(SlowAPIMiddleware)
