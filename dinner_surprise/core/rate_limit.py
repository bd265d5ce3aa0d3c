"""Rate limiting configuration using SlowAPI."""

from fastapi import Request
from slowapi import Limiter
from slowapi.util import get_remote_address

from dinner_surprise.core.config import settings


def get_user_identifier(request: Request) -> str:
    """
    Get rate limit identifier from request.

    Priority order:
    1. User ID resolved by the auth dependency (if authenticated)
    2. IP address (for non-authenticated requests, e.g. Stripe webhooks)

    Args:
        request: FastAPI request object

    Returns:
        Unique identifier string for rate limiting
    """
    user_id = getattr(request.state, "user_id", None)
    if user_id:
        return f"user:{user_id}"

    return f"ip:{get_remote_address(request)}"


limiter = Limiter(
    key_func=get_user_identifier,
    storage_uri=settings.REDIS_URL or "memory://",
    enabled=settings.RATE_LIMIT_ENABLED,
    default_limits=[settings.RATE_LIMIT_API_DEFAULT],
    headers_enabled=True,
)

# Recipe generation (AI calls are slow and billed per token)
generate_limit = limiter.limit(settings.RATE_LIMIT_GENERATE)

# Stripe webhook deliveries, keyed by source IP
webhook_limit = limiter.limit(settings.RATE_LIMIT_WEBHOOK)

# Client-triggered reconciliation
sync_limit = limiter.limit(settings.RATE_LIMIT_SYNC)
