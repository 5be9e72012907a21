"""
auth/tokens.py -- JWT signing, password hashing, and auth cookie utilities.

Security design decisions:
  JWT: python-jose with HS256. Access and refresh tokens are signed with two
       different secrets [S1] so a leaked access secret cannot mint refresh
       tokens and vice versa. Every token carries a random jti, so two tokens
       minted for the same user within the same second are still distinct.
       Verification returns None on any failure (bad signature, wrong secret,
       wrong type, malformed, expired) -- callers never need to tell those
       apart, and must not.

  Passwords: bcrypt directly (no passlib wrapper). bcrypt.checkpw does the
       constant-time comparison.

  Config: TokenSigner receives a Settings instance at construction. Nothing
       in this module reads the environment or a module-level settings
       singleton.

Layer rule: no imports from api/. Import from core/ is allowed.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timedelta, timezone
from typing import TYPE_CHECKING

import bcrypt
from jose import JWTError, jwt

if TYPE_CHECKING:
    from auth.models import User
    from core.config import Settings

_ALGORITHM = "HS256"

ACCESS_COOKIE = "accessToken"
REFRESH_COOKIE = "refreshToken"

# ---------------------------------------------------------------------------
# Password hashing (bcrypt -- direct usage)
# ---------------------------------------------------------------------------


def _pw_bytes(plain: str) -> bytes:
    return plain.encode("utf-8")[:72]


def hash_password(plain: str) -> str:
    """Return a bcrypt hash of the given plaintext password.

    bcrypt only reads the first 72 bytes; newer releases raise instead of
    truncating, so the input is cut to 72 bytes here for both hash and verify.
    """
    return bcrypt.hashpw(_pw_bytes(plain), bcrypt.gensalt()).decode("utf-8")


def verify_password(plain: str, hashed: str) -> bool:
    """Return True if the plaintext password matches the bcrypt hash."""
    try:
        return bcrypt.checkpw(_pw_bytes(plain), hashed.encode("utf-8"))
    except ValueError:
        # Malformed stored hash
        return False


# ---------------------------------------------------------------------------
# JWT encode / decode
# ---------------------------------------------------------------------------


class TokenSigner:
    """Mints and verifies the two credential kinds.

    Usage:
        signer = TokenSigner(settings)
        token = signer.create_refresh_token(user.id)
        claims = signer.decode_refresh_token(token)   # dict or None
    """

    def __init__(self, settings: Settings) -> None:
        self._access_secret = settings.access_token_secret
        self._refresh_secret = settings.refresh_token_secret
        self.access_ttl = timedelta(seconds=settings.access_token_expire_seconds)
        self.refresh_ttl = timedelta(seconds=settings.refresh_token_expire_seconds)

    def create_access_token(self, user: User, expires_delta: timedelta | None = None) -> str:
        """Encode a short-lived access token carrying the user's public identity."""
        claims = {
            "username": user.username,
            "email": user.email,
            "full_name": user.full_name,
        }
        ttl = expires_delta if expires_delta is not None else self.access_ttl
        return self._encode(user.id, "access", self._access_secret, ttl, claims)

    def create_refresh_token(self, user_id: int, expires_delta: timedelta | None = None) -> str:
        """Encode a long-lived refresh token. Carries the user id only.

        expires_delta overrides the configured lifetime; zero or a negative
        value produces an already-expired token.
        """
        ttl = expires_delta if expires_delta is not None else self.refresh_ttl
        return self._encode(user_id, "refresh", self._refresh_secret, ttl)

    def decode_access_token(self, token: str) -> dict | None:
        return self._decode(token, "access", self._access_secret)

    def decode_refresh_token(self, token: str) -> dict | None:
        return self._decode(token, "refresh", self._refresh_secret)

    @staticmethod
    def _encode(user_id: int | None, token_type: str, secret: str, ttl: timedelta, extra: dict | None = None) -> str:
        now = datetime.now(timezone.utc)
        payload = {
            "sub": str(user_id),
            "type": token_type,
            "jti": uuid.uuid4().hex,
            "iat": now,
            "exp": now + ttl,
        }
        if extra:
            payload.update(extra)
        return jwt.encode(payload, secret, algorithm=_ALGORITHM)

    @staticmethod
    def _decode(token: str, expected_type: str, secret: str) -> dict | None:
        """Decode and verify a JWT. Returns the claims dict or None on any failure.

        The exp claim is enforced by jose; an expired token is just another
        invalid token here.
        """
        try:
            payload = jwt.decode(token, secret, algorithms=[_ALGORITHM])
        except JWTError:
            return None
        if payload.get("type") != expected_type or not payload.get("sub"):
            return None
        return payload


def subject_to_user_id(claims: dict) -> int | None:
    """Return the numeric user id from a decoded token's sub claim, or None."""
    try:
        return int(claims["sub"])
    except (KeyError, TypeError, ValueError):
        return None


# ---------------------------------------------------------------------------
# Cookie helpers
# ---------------------------------------------------------------------------


def set_auth_cookies(response, access_token: str, refresh_token: str, settings: Settings) -> None:
    """Write both credentials as httpOnly cookies on the response.

    httponly=True: JS cannot read the cookies.
    samesite="lax": not sent on cross-site POST.
    secure: only sent over HTTPS when SECURE_COOKIES=true (the default).
    max_age: matches each token's lifetime so cookie and JWT expire together.
    """
    response.set_cookie(
        ACCESS_COOKIE,
        value=access_token,
        httponly=True,
        samesite="lax",
        secure=settings.secure_cookies,
        max_age=settings.access_token_expire_seconds,
        path="/",
    )
    response.set_cookie(
        REFRESH_COOKIE,
        value=refresh_token,
        httponly=True,
        samesite="lax",
        secure=settings.secure_cookies,
        max_age=settings.refresh_token_expire_seconds,
        path="/",
    )


def clear_auth_cookies(response, settings: Settings) -> None:
    """Delete both credential cookies.

    The attributes must match the ones used in set_auth_cookies(), otherwise
    browsers keep the existing cookies.
    """
    for name in (ACCESS_COOKIE, REFRESH_COOKIE):
        response.delete_cookie(
            name,
            httponly=True,
            samesite="lax",
            secure=settings.secure_cookies,
            path="/",
        )
