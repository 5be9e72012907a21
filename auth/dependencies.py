"""
auth/dependencies.py -- FastAPI Depends() helpers for authentication.

Two ways to present the access token are checked in priority order:
  1. "accessToken" cookie -- set by POST /users/login and /users/refresh-token.
  2. Authorization: Bearer <token> header -- clients without cookie support.

try_get_current_user() is the soft variant (returns None on failure).
get_current_user() wraps it and raises HTTP 401 if unauthenticated.

Refresh tokens are never accepted here; they are signed with a different
secret and carry type="refresh", so TokenSigner.decode_access_token rejects them.

auth/dependencies.py may import from fastapi because it is part of the FastAPI
dependency injection system. It still does not import from api/.
"""

from __future__ import annotations

from fastapi import HTTPException, Request

from auth.models import User
from auth.tokens import ACCESS_COOKIE, subject_to_user_id


def _access_token_from(request: Request) -> str | None:
    token: str | None = request.cookies.get(ACCESS_COOKIE)
    if not token:
        auth_header = request.headers.get("Authorization", "")
        if auth_header.startswith("Bearer "):
            token = auth_header[7:].strip()
    return token or None


def try_get_current_user(request: Request) -> User | None:
    """Authenticate the request via cookie or Bearer header.

    Returns the User on success, None on any failure. Never raises.
    """
    token = _access_token_from(request)
    if token is None:
        return None
    claims = request.app.state.session_service.signer.decode_access_token(token)
    user_id = subject_to_user_id(claims) if claims else None
    if user_id is None:
        return None
    return request.app.state.user_store.get_by_id(user_id)


def get_current_user(request: Request) -> User:
    """Require authentication. Raises HTTP 401 if the request is not authenticated.

    A request with no token at all gets "Unauthorized request"; a token that
    fails verification or names an unknown user gets "Invalid access token".

    Use as a FastAPI dependency:
        @router.get("/protected")
        async def route(user: User = Depends(get_current_user)): ...
    """
    if _access_token_from(request) is None:
        raise HTTPException(status_code=401, detail="Unauthorized request")
    user = try_get_current_user(request)
    if user is None:
        raise HTTPException(status_code=401, detail="Invalid access token")
    return user
