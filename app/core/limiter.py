"""
Shared slowapi limiter.

The global default applies to every route through SlowAPIMiddleware; auth
routes add the stricter per-endpoint limit via ``@limiter.limit(AUTH_LIMIT)``.
"""
from fastapi import Request
from fastapi.responses import JSONResponse
from slowapi import Limiter
from slowapi.errors import RateLimitExceeded
from slowapi.util import get_remote_address

from app.core.config import settings

AUTH_LIMIT = settings.auth_rate_limit

limiter = Limiter(
    key_func=get_remote_address,
    default_limits=[settings.global_rate_limit],
    enabled=settings.rate_limit_enabled,
)


def rate_limit_exceeded_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    """JSON body instead of slowapi's plain-text default."""
    if request.url.path.startswith(f"{settings.api_prefix}/auth"):
        message = "Too many login attempts, please try again later"
    else:
        message = "Too many requests, please try again later"
    response = JSONResponse(status_code=429, content={"error": message})
    current_limit = getattr(request.state, "view_rate_limit", None)
    if current_limit is not None:
        response = request.app.state.limiter._inject_headers(response, current_limit)
    return response
