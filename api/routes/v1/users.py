"""
api/routes/v1/users.py -- Account and session REST endpoints.

Routes:
  POST  /api/v1/users/register         -- create account; 201
  POST  /api/v1/users/login            -- password login; sets both cookies
  POST  /api/v1/users/refresh-token    -- rotate refresh token; sets both cookies
  POST  /api/v1/users/logout           -- clears stored refresh token and cookies (requires auth)
  GET   /api/v1/users/current-user     -- current user profile (requires auth)
  POST  /api/v1/users/change-password  -- change password (requires auth)
  PATCH /api/v1/users/update-account   -- update full name / email (requires auth)

This module is the transport adapter for auth/session.py: it pulls credentials
out of cookies, body and headers, hands them to SessionService, and maps each
AuthFailure tag to a status code. Tokens travel both as httpOnly cookies and
in the response body (for clients that cannot use cookies).

Security:
  Login and refresh responses carry Cache-Control: no-store.
  Error bodies never contain token material; the exception boundary in
  api/main.py builds them from the message only.
"""

from __future__ import annotations

import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import JSONResponse
from sqlalchemy.exc import IntegrityError

from api.models import (
    ApiResponse,
    ChangePasswordRequest,
    LoginData,
    LoginRequest,
    RefreshRequest,
    RegisterRequest,
    TokenData,
    UpdateAccountRequest,
    UserResponse,
)
from auth.dependencies import get_current_user
from auth.models import User
from auth.session import AuthFailure, SessionOutcome, SessionService
from auth.store import UserStore
from auth.tokens import REFRESH_COOKIE, clear_auth_cookies, hash_password, set_auth_cookies, verify_password

logger = logging.getLogger("vidtube.api.users")

# Auth policy:
# - POST  /users/register:        public
# - POST  /users/login:           public
# - POST  /users/refresh-token:   public -- the refresh token is the credential
# - POST  /users/logout:          requires auth (get_current_user)
# - GET   /users/current-user:    requires auth (get_current_user)
# - POST  /users/change-password: requires auth (get_current_user)
# - PATCH /users/update-account:  requires auth (get_current_user)
router = APIRouter(prefix="/users")

REFRESH_HEADER = "X-Refresh-Token"

_FAILURE_STATUS: dict[AuthFailure, int] = {
    AuthFailure.BAD_REQUEST: 400,
    AuthFailure.MISSING_CREDENTIAL: 401,
    AuthFailure.INVALID_CREDENTIAL: 401,
    AuthFailure.CREDENTIAL_SUPERSEDED: 401,
    AuthFailure.INVALID_PASSWORD: 401,
    AuthFailure.USER_NOT_FOUND: 404,
    AuthFailure.ISSUANCE_FAILED: 500,
}


# ---------------------------------------------------------------------------
# Public endpoints
# ---------------------------------------------------------------------------


@router.post("/register", status_code=201)
def register(request: Request, body: RegisterRequest) -> JSONResponse:
    """Create a new account. Username and email must both be unused."""
    user_store: UserStore = request.app.state.user_store

    if user_store.exists(body.username, body.email):
        raise HTTPException(status_code=409, detail="User already exists")

    new_user = User(
        username=body.username,
        email=body.email,
        full_name=body.full_name,
        hashed_password=hash_password(body.password),
    )
    try:
        user_id = user_store.create_user(new_user)
    except IntegrityError as exc:
        # A concurrent request took the username or email after the check above
        raise HTTPException(status_code=409, detail="User already exists") from exc

    created = user_store.get_by_id(user_id)
    if created is None:
        raise HTTPException(status_code=500, detail="Error creating user")
    logger.info("User %s registered", user_id)
    return _envelope(201, _user_data(created), "User registered successfully")


@router.post("/login")
def login(request: Request, body: LoginRequest) -> JSONResponse:
    """Authenticate with username or email plus password; set both cookies."""
    service: SessionService = request.app.state.session_service
    outcome = _require_ok(service.login(body.password, username=body.username, email=body.email))

    data = LoginData(
        user=UserResponse.from_user(outcome.user),
        access_token=outcome.tokens.access_token,
        refresh_token=outcome.tokens.refresh_token,
    )
    return _session_response(request, outcome, data.model_dump(by_alias=True), "User logged in successfully")


@router.post("/refresh-token")
def refresh_token(request: Request, body: Optional[RefreshRequest] = None) -> JSONResponse:
    """Exchange a live refresh token for a new pair.

    The presented token is read from the refreshToken cookie, then the JSON
    body, then the X-Refresh-Token header. The old token is unusable afterwards.
    """
    presented = (
        request.cookies.get(REFRESH_COOKIE)
        or (body.refresh_token if body is not None else None)
        or request.headers.get(REFRESH_HEADER)
    )
    service: SessionService = request.app.state.session_service
    outcome = _require_ok(service.rotate(presented))

    data = TokenData(access_token=outcome.tokens.access_token, refresh_token=outcome.tokens.refresh_token)
    return _session_response(request, outcome, data.model_dump(by_alias=True), "Access token refreshed")


# ---------------------------------------------------------------------------
# Authenticated endpoints
# ---------------------------------------------------------------------------


@router.post("/logout")
def logout(request: Request, current_user: User = Depends(get_current_user)) -> JSONResponse:
    """Clear the stored refresh token and both cookies."""
    service: SessionService = request.app.state.session_service
    service.logout(current_user.id)
    resp = _envelope(200, {}, "User logged out")
    clear_auth_cookies(resp, request.app.state.settings)
    return resp


@router.get("/current-user")
async def current_user(current_user: User = Depends(get_current_user)) -> JSONResponse:
    """Return the profile of the authenticated user."""
    return _envelope(200, _user_data(current_user), "User fetched successfully")


@router.post("/change-password")
def change_password(
    request: Request,
    body: ChangePasswordRequest,
    current_user: User = Depends(get_current_user),
) -> JSONResponse:
    """Replace the password after checking the old one.

    The live refresh token is left in place: a password change does not end
    the current session.
    """
    if not verify_password(body.old_password, current_user.hashed_password):
        raise HTTPException(status_code=400, detail="Invalid old password")

    user_store: UserStore = request.app.state.user_store
    user_store.update_password(current_user.id, hash_password(body.new_password))
    logger.info("User %s changed password", current_user.id)
    return _envelope(200, {}, "Password changed successfully")


@router.patch("/update-account")
def update_account(
    request: Request,
    body: UpdateAccountRequest,
    current_user: User = Depends(get_current_user),
) -> JSONResponse:
    """Update full name and email. Both are required."""
    if not body.full_name or not body.email:
        raise HTTPException(status_code=400, detail="All fields are required")

    user_store: UserStore = request.app.state.user_store
    try:
        user_store.update_user(current_user.id, full_name=body.full_name, email=body.email)
    except IntegrityError as exc:
        raise HTTPException(status_code=409, detail="Email already in use") from exc

    updated = user_store.get_by_id(current_user.id)
    if updated is None:
        raise HTTPException(status_code=404, detail="User does not exist")
    return _envelope(200, _user_data(updated), "Account details updated successfully")


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _require_ok(outcome: SessionOutcome) -> SessionOutcome:
    """Turn a failed SessionOutcome into the matching HTTPException."""
    if not outcome.ok:
        raise HTTPException(status_code=_FAILURE_STATUS[outcome.failure], detail=outcome.failure.message)
    return outcome


def _user_data(user: User) -> dict:
    return UserResponse.from_user(user).model_dump(by_alias=True)


def _envelope(status: int, data, message: str) -> JSONResponse:
    return JSONResponse(status_code=status, content=ApiResponse.build(status, data, message).model_dump())


def _session_response(request: Request, outcome: SessionOutcome, data: dict, message: str) -> JSONResponse:
    resp = _envelope(200, data, message)
    set_auth_cookies(resp, outcome.tokens.access_token, outcome.tokens.refresh_token, request.app.state.settings)
    resp.headers["Cache-Control"] = "no-store"
    return resp
