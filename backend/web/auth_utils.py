"""
Shared authentication utilities for the routers.

Why:
    Avoid duplicating cookie policy and session lookup across the auth and
    role routers. The helpers are small and pure enough to test in isolation.
"""

from __future__ import annotations

from typing import Optional

from fastapi import Request
from fastapi.responses import JSONResponse

from backend.identity_access.stores import SessionRecord

from .config import Settings
from .models.auth import ErrorResponse


def cookie_opts(settings: Settings) -> dict:
    """Return session cookie flags.

    SameSite=Lax keeps the cookie on top-level navigations back into the
    dashboard; HttpOnly keeps it away from scripts.
    """
    return {
        "httponly": True,
        "secure": bool(settings.cookie_secure or settings.is_prod_like),
        "samesite": "lax",
        "path": "/",
        "max_age": settings.session_ttl_seconds,
    }


def private_response(body: dict, *, status_code: int = 200) -> JSONResponse:
    return JSONResponse(body, status_code=status_code, headers={"Cache-Control": "private, no-store"})


def error_response(error: str, *, status_code: int, detail: Optional[str] = None) -> JSONResponse:
    """Render an ErrorResponse body; `detail` is omitted when unset."""
    body = ErrorResponse(error=error, detail=detail).model_dump(exclude_none=True)
    return private_response(body, status_code=status_code)


def current_session(request: Request) -> Optional[SessionRecord]:
    settings: Settings = request.app.state.settings
    sid = request.cookies.get(settings.session_cookie_name)
    if not sid:
        return None
    return request.app.state.services.sessions.get(sid)
