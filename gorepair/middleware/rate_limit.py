"""
Rate limiting middleware for FastAPI
Uses slowapi with Redis backend for distributed rate limiting
"""
from slowapi import Limiter
from slowapi.util import get_remote_address
from slowapi.errors import RateLimitExceeded
from fastapi import Request, status
from fastapi.responses import JSONResponse

from gorepair.config import settings


def get_rate_limit_key(request: Request) -> str:
    """
    Get rate limit key based on user authentication or IP address
    Prioritizes authenticated users for better rate limiting
    """
    # Set by get_current_user once the bearer token is resolved
    user_id = getattr(request.state, "user_id", None)
    if user_id:
        return f"rate_limit:user:{user_id}"

    # Fallback to IP address
    return f"rate_limit:ip:{get_remote_address(request)}"


# Use Redis if configured, otherwise use in-memory storage
# Note: In-memory storage only works for single-instance deployments
storage_uri = settings.REDIS_URL if settings.REDIS_URL and settings.REDIS_URL != "redis://localhost:6379/0" else "memory://"

limiter = Limiter(
    key_func=get_rate_limit_key,
    storage_uri=storage_uri,
    default_limits=[f"{settings.RATE_LIMIT_PER_MINUTE}/minute", f"{settings.RATE_LIMIT_PER_HOUR}/hour"],
    headers_enabled=True,  # Include rate limit headers in response
    enabled=settings.RATE_LIMIT_ENABLED
)


def rate_limit_exceeded_handler(request: Request, exc: RateLimitExceeded):
    """
    Custom handler for rate limit exceeded errors
    """
    return JSONResponse(
        status_code=status.HTTP_429_TOO_MANY_REQUESTS,
        content={
            "status_code": status.HTTP_429_TOO_MANY_REQUESTS,
            "success": False,
            "message": f"Too many requests. Limit: {exc.detail}",
            "data": None
        }
    )
