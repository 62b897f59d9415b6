"""
HTTP middleware stack.

Registered in app.main; the session middleware must wrap these so that
``request.session`` is populated by the time CSRFMiddleware runs.
"""
import logging
import secrets
import time
import uuid

from fastapi import Request
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

from app.core.config import settings
from app.core.logging import request_id_var

logger = logging.getLogger(__name__)

UNSAFE_METHODS = {"POST", "PUT", "PATCH", "DELETE"}


class CorrelationIdMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next):
        request_id = request.headers.get(settings.request_id_header) or str(uuid.uuid4())
        token = request_id_var.set(request_id)
        try:
            response = await call_next(request)
        finally:
            request_id_var.reset(token)
        response.headers[settings.request_id_header] = request_id
        return response


class LoggingMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next):
        start = time.perf_counter()
        response = await call_next(request)
        duration_ms = round((time.perf_counter() - start) * 1000, 2)
        response.headers["X-Process-Time"] = str(duration_ms)
        logger.info(
            "request completed",
            extra={
                "method": request.method,
                "path": request.url.path,
                "status_code": response.status_code,
                "duration_ms": duration_ms,
            },
        )
        return response


class SecureHeadersMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next):
        response = await call_next(request)
        response.headers.setdefault("X-Content-Type-Options", "nosniff")
        response.headers.setdefault("X-Frame-Options", "DENY")
        response.headers.setdefault("Referrer-Policy", "strict-origin-when-cross-origin")
        return response


def issue_csrf_token(session: dict) -> str:
    token = secrets.token_hex(32)
    session["csrf_token"] = token
    return token


class CSRFMiddleware(BaseHTTPMiddleware):
    """
    Double-submit check for authenticated sessions.

    The token lives in the session and is mirrored into a readable cookie;
    mutating requests must echo it back in the X-CSRF-Token header.
    Auth endpoints are exempt so login/logout work without a token.
    """

    exempt_prefix = f"{settings.api_prefix}/auth"

    async def dispatch(self, request: Request, call_next):
        session = request.scope.get("session")
        if (
            request.method in UNSAFE_METHODS
            and session
            and session.get("user_id")
            and not request.url.path.startswith(self.exempt_prefix)
        ):
            expected = session.get("csrf_token") or ""
            supplied = request.headers.get(settings.csrf_header_name) or ""
            if not expected or not secrets.compare_digest(expected, supplied):
                logger.warning("CSRF validation failed", extra={"path": request.url.path})
                return JSONResponse(status_code=403, content={"error": "CSRF validation failed"})

        response = await call_next(request)

        session = request.scope.get("session")
        token = session.get("csrf_token") if session else None
        if token:
            response.set_cookie(
                settings.csrf_cookie_name,
                token,
                httponly=False,
                samesite="lax",
                secure=settings.secure_cookies,
                max_age=settings.session_max_age_seconds,
            )
        elif request.cookies.get(settings.csrf_cookie_name):
            response.delete_cookie(settings.csrf_cookie_name)
        return response
