"""
api/routes/auth.py -- Signup, OTP verification and session REST endpoints.

Routes:
  POST /auth/register      -- create unverified account, mail OTP; 201
  POST /auth/verify-otp    -- activate account with the mailed code
  POST /auth/resend-otp    -- replace the pending code and mail it again
  POST /auth/login         -- password login; sets session cookie
  POST /auth/logout        -- destroy session, clear cookie
  GET  /auth/dashboard     -- greeting for the signed-in user (requires session)
  GET  /auth/me            -- current account summary (requires session)

Errors are raised as AuthError subclasses by AuthService and rendered by the
handler in api/main.py. No handler here builds an error response itself.

Handlers are plain def: AuthService does blocking DB, bcrypt and SMTP work,
so FastAPI runs them in its thread pool.

Security:
  Cache-Control: no-store on login and logout responses.
  Login always rotates the session: any session already on the request is
  destroyed before a new one is issued.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse

from api.models import (
    DashboardResponse,
    LoginRequest,
    LoginResponse,
    MeResponse,
    MessageResponse,
    RegisterRequest,
    ResendOtpRequest,
    UserInfo,
    VerifyOtpRequest,
)
from auth.dependencies import get_auth_service, require_session, session_token
from auth.models import AccountSummary
from auth.service import AuthService
from auth.tokens import clear_session_cookie, set_session_cookie

# Auth policy:
# - POST /auth/register, /auth/verify-otp, /auth/resend-otp, /auth/login: public
# - POST /auth/logout:     public -- ending a session needs no live session
# - GET  /auth/dashboard:  requires session (require_session)
# - GET  /auth/me:         requires session (require_session)
router = APIRouter()


# ---------------------------------------------------------------------------
# Public endpoints
# ---------------------------------------------------------------------------


@router.post("/auth/register", response_model=MessageResponse, status_code=201)
def register(body: RegisterRequest, service: AuthService = Depends(get_auth_service)) -> MessageResponse:
    """Create an unverified account and mail it a one-time code. Never logs in."""
    service.register(body.email, body.name, body.password, body.dob)
    return MessageResponse(message="User registered. Please verify OTP sent to email.")


@router.post("/auth/verify-otp", response_model=MessageResponse)
def verify_otp(body: VerifyOtpRequest, service: AuthService = Depends(get_auth_service)) -> MessageResponse:
    service.verify_otp(body.email, body.otp)
    return MessageResponse(message="Email verified successfully. You can now log in.")


@router.post("/auth/resend-otp", response_model=MessageResponse)
def resend_otp(body: ResendOtpRequest, service: AuthService = Depends(get_auth_service)) -> MessageResponse:
    service.resend_otp(body.email)
    return MessageResponse(message="OTP resent successfully.")


@router.post("/auth/login", response_model=LoginResponse)
def login(request: Request, body: LoginRequest, service: AuthService = Depends(get_auth_service)) -> JSONResponse:
    """Authenticate with email and password; set the session cookie."""
    # The old session goes first so a failed destroy never leaves a new one behind.
    service.logout(session_token(request))
    summary, token = service.login(body.email, body.password)
    resp = JSONResponse(
        status_code=200,
        content=LoginResponse(
            message="Login successful",
            user=UserInfo(name=summary.display_name, email=summary.identity),
        ).model_dump(),
    )
    set_session_cookie(resp, token)
    resp.headers["Cache-Control"] = "no-store"
    return resp


@router.post("/auth/logout", response_model=MessageResponse)
def logout(request: Request, service: AuthService = Depends(get_auth_service)) -> JSONResponse:
    """Destroy the server-side session and clear the cookie. Succeeds with no session too."""
    service.logout(session_token(request))
    resp = JSONResponse(content=MessageResponse(message="Logged out successfully").model_dump())
    clear_session_cookie(resp)
    resp.headers["Cache-Control"] = "no-store"
    return resp


# ---------------------------------------------------------------------------
# Session-protected endpoints
# ---------------------------------------------------------------------------


@router.get("/auth/dashboard", response_model=DashboardResponse)
def dashboard(account: AccountSummary = Depends(require_session)) -> DashboardResponse:
    return DashboardResponse(
        message=f"Welcome to the dashboard, {account.display_name}",
        name=account.display_name,
    )


@router.get("/auth/me", response_model=MeResponse)
def me(account: AccountSummary = Depends(require_session)) -> MeResponse:
    """Return the account behind the current session."""
    return MeResponse.from_summary(account)
