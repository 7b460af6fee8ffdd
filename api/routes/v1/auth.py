"""
api/routes/v1/auth.py -- Account and session REST endpoints.

Routes:
  POST /api/v1/auth/signup    -- create account; 201 with user + token pair
  POST /api/v1/auth/login     -- password login; 200 with user + token pair
  POST /api/v1/auth/refresh   -- exchange refresh token; 200 with new access token
  POST /api/v1/auth/logout    -- clear stored refresh token (requires auth)
  GET  /api/v1/auth/me        -- current identity (requires auth)

Errors are raised as auth.errors.AuthError subclasses and rendered into the
envelope by the handlers in api/main.py; routes only shape success payloads.

Security:
  [H2] POST /login and POST /signup are rate-limited per IP.
  [C1] SessionService.login() provides timing equalization.
  [M5] Cache-Control: no-store on every response that carries tokens.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse

from api.limiter import limiter, login_limit, signup_limit
from api.models import (
    AccessTokenOut,
    Envelope,
    IdentityOut,
    LoginRequest,
    RefreshRequest,
    SessionOut,
    SignupRequest,
    UserOut,
)
from auth.dependencies import get_current_identity
from auth.models import Identity, SessionResult
from auth.sessions import SessionService

# Auth policy:
# - POST /api/v1/auth/signup:   public
# - POST /api/v1/auth/login:    public
# - POST /api/v1/auth/refresh:  public -- the refresh token is the credential
# - POST /api/v1/auth/logout:   requires auth (get_current_identity)
# - GET  /api/v1/auth/me:       requires auth (get_current_identity)
router = APIRouter()


@limiter.limit(signup_limit)  # [H2] must be ABOVE @router to preserve FastAPI introspection
@router.post("/auth/signup", status_code=201)
async def signup(request: Request, body: SignupRequest) -> JSONResponse:
    """Create an account and return its first session."""
    sessions: SessionService = request.app.state.sessions
    result = await sessions.signup(body.email, body.password, body.first_name, body.last_name)
    return _token_response(201, "User created successfully", _session_payload(result))


@limiter.limit(login_limit)  # [H2] brute-force mitigation
@router.post("/auth/login")
async def login(request: Request, body: LoginRequest) -> JSONResponse:
    """Authenticate with email and password.

    Unknown email and wrong password produce the same 401 "Invalid
    credentials" body to avoid leaking account existence.
    """
    sessions: SessionService = request.app.state.sessions
    result = await sessions.login(body.email, body.password)
    return _token_response(200, "Login successful", _session_payload(result))


@router.post("/auth/refresh")
async def refresh(request: Request, body: RefreshRequest) -> JSONResponse:
    """Mint a new access token. The refresh token is not rotated."""
    sessions: SessionService = request.app.state.sessions
    access_token = await sessions.refresh(body.refresh_token)
    payload = AccessTokenOut(access_token=access_token).model_dump(by_alias=True)
    return _token_response(200, "Token refreshed successfully", payload)


@router.post("/auth/logout")
async def logout(request: Request, identity: Identity = Depends(get_current_identity)) -> JSONResponse:
    """Clear the caller's refresh token. Safe to repeat.

    Access tokens already issued stay valid until they expire.
    """
    sessions: SessionService = request.app.state.sessions
    await sessions.logout(identity.user_id)
    return JSONResponse(status_code=200, content=Envelope(success=True, message="Logout successful").dump())


@router.get("/auth/me")
async def me(identity: Identity = Depends(get_current_identity)) -> JSONResponse:
    """Return the identity attached by the auth gate."""
    payload = IdentityOut.from_identity(identity).model_dump(by_alias=True)
    return JSONResponse(status_code=200, content=Envelope(success=True, data=payload).dump())


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _session_payload(result: SessionResult) -> dict:
    return SessionOut(
        user=UserOut.from_account(result.account),
        access_token=result.access_token,
        refresh_token=result.refresh_token,
    ).model_dump(by_alias=True)


def _token_response(status_code: int, message: str, payload: dict) -> JSONResponse:
    resp = JSONResponse(
        status_code=status_code,
        content=Envelope(success=True, message=message, data=payload).dump(),
    )
    resp.headers["Cache-Control"] = "no-store"  # [M5]
    return resp
