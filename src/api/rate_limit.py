"""
Shared rate limiter.

Lives in its own module so routers can decorate endpoints without importing api.app.
"""

from fastapi import Request
from slowapi import Limiter
from slowapi.util import get_remote_address


def get_user_id(request: Request) -> str:
    """
    Extract user ID set by authentication, fallback to IP.

    For authenticated requests, rate limit per user.
    For unauthenticated requests, rate limit per IP.
    """
    if hasattr(request.state, 'user_id'):
        return f"user:{request.state.user_id}"
    return f"ip:{get_remote_address(request)}"


limiter = Limiter(key_func=get_user_id)
