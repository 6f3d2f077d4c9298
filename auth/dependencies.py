"""
auth/dependencies.py -- FastAPI Depends() helpers for sessions.

The session token travels in an httpOnly cookie set by POST /auth/login.
There is no Bearer or API-key path: the cookie is the single canonical
"is logged in" mechanism, and clients ask GET /auth/me rather than caching
a user object of their own.

try_get_session() is the soft variant (returns None on failure).
require_session() wraps it and raises UnauthorizedError, which the API
exception handler turns into a 401 before the route body runs.

Layer rule: no imports from api/.
  This module may import from fastapi because it is part of the FastAPI
  dependency injection system.
"""

from __future__ import annotations

from fastapi import Request

from auth.errors import UnauthorizedError
from auth.models import AccountSummary
from auth.service import AuthService
from auth.sessions import SessionManager
from core.config import get_settings


def get_auth_service(request: Request) -> AuthService:
    return request.app.state.auth_service


def get_session_manager(request: Request) -> SessionManager:
    return request.app.state.session_manager


def session_token(request: Request) -> str | None:
    return request.cookies.get(get_settings().session_cookie_name)


def try_get_session(request: Request) -> AccountSummary | None:
    """Return the account summary behind the request's session cookie, or None. Never raises."""
    return get_session_manager(request).resolve(session_token(request))


def require_session(request: Request) -> AccountSummary:
    """Require a live session. Raises UnauthorizedError (401) otherwise.

    Use as a FastAPI dependency:
        @router.get("/protected")
        def route(account: AccountSummary = Depends(require_session)): ...
    """
    summary = try_get_session(request)
    if summary is None:
        raise UnauthorizedError()
    return summary
