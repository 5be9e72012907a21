"""
auth/session.py -- Credential issuance and refresh-token rotation.

Two cooperating operations form the session lifecycle:

  issue(user_id)   -- Credential Issuer. Mints a refresh token, persists it as
                      the user's only live refresh credential, then mints an
                      access token. The access token is created only after the
                      write succeeded, so a failed write never hands out a
                      partial session.

  rotate(token)    -- Session Validator/Rotator. Walks the presented refresh
                      token through a fixed decision ladder:

        absent                      -> MISSING_CREDENTIAL
        bad signature / expired     -> INVALID_CREDENTIAL
        valid, user not found       -> INVALID_CREDENTIAL (no identity probing)
        valid, stored value differs -> CREDENTIAL_SUPERSEDED (reuse or forgery)
        valid, matches              -> issue(user_id)

login() and logout() complete the lifecycle.

Errors are returned, not raised: every operation yields a SessionOutcome that
carries either a TokenPair or an AuthFailure tag. The HTTP adapter maps tags
to status codes (see api/routes/v1/users.py).

Known limitation -- concurrent rotation:
  Two rotate() calls presenting the same still-valid refresh token can both
  pass the match check before either one writes. Both callers receive a fresh
  pair, only the last write persists, and the other caller's new refresh
  token is immediately superseded. Closing this needs a compare-and-swap
  write (UPDATE ... WHERE refresh_token = :presented) and is not done here.
  tests/test_session.py reproduces the interleaving.

Layer rule: no imports from api/.
"""

from __future__ import annotations

import enum
import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING

from sqlalchemy.exc import SQLAlchemyError

from auth.models import TokenPair, User
from auth.tokens import TokenSigner, subject_to_user_id, verify_password

if TYPE_CHECKING:
    from auth.store import UserStore
    from core.config import Settings

logger = logging.getLogger("vidtube.auth.session")


class AuthFailure(enum.Enum):
    """Why a session operation was refused. Values are the client-facing messages."""

    BAD_REQUEST = "username or email is required"
    MISSING_CREDENTIAL = "Unauthorized request"
    INVALID_CREDENTIAL = "Invalid refresh token"
    CREDENTIAL_SUPERSEDED = "Refresh token is expired or used"
    INVALID_PASSWORD = "Invalid user credentials"
    USER_NOT_FOUND = "User does not exist"
    ISSUANCE_FAILED = "Something went wrong while generating refresh and access tokens"

    @property
    def message(self) -> str:
        return self.value


@dataclass(frozen=True)
class SessionOutcome:
    """Result of a session operation: exactly one of tokens / failure is set.

    user is filled on successful issuance so the caller can echo the profile
    without a second lookup.
    """

    tokens: TokenPair | None = None
    user: User | None = None
    failure: AuthFailure | None = None

    @property
    def ok(self) -> bool:
        return self.failure is None

    @classmethod
    def fail(cls, failure: AuthFailure) -> "SessionOutcome":
        return cls(failure=failure)


class SessionService:
    """Issues, rotates and revokes the access/refresh credential pair.

    Both collaborators are injected; the service holds no other state, so one
    instance is shared by every request.
    """

    def __init__(self, store: UserStore, settings: Settings, signer: TokenSigner | None = None) -> None:
        self.store = store
        self.settings = settings
        self.signer = signer or TokenSigner(settings)

    # ------------------------------------------------------------------
    # Credential Issuer
    # ------------------------------------------------------------------

    def issue(self, user_id: int) -> SessionOutcome:
        """Mint and persist a new credential pair for user_id.

        The user is re-read from the store rather than trusted from the caller.
        Exactly one write hits the user record. If it fails, or the user
        vanished before it landed, no tokens are returned.
        """
        try:
            user = self.store.get_by_id(user_id)
            if user is None:
                logger.warning("Issuance failed: user %s not found", user_id)
                return SessionOutcome.fail(AuthFailure.ISSUANCE_FAILED)

            refresh_token = self.signer.create_refresh_token(user.id)
            if not self.store.set_refresh_token(user.id, refresh_token):
                logger.warning("Issuance failed: user %s vanished before refresh token write", user_id)
                return SessionOutcome.fail(AuthFailure.ISSUANCE_FAILED)
        except SQLAlchemyError:
            logger.exception("Issuance failed: store error for user %s", user_id)
            return SessionOutcome.fail(AuthFailure.ISSUANCE_FAILED)

        user.refresh_token = refresh_token
        access_token = self.signer.create_access_token(user)
        return SessionOutcome(tokens=TokenPair(access_token, refresh_token), user=user)

    # ------------------------------------------------------------------
    # Session Validator/Rotator
    # ------------------------------------------------------------------

    def rotate(self, presented: str | None) -> SessionOutcome:
        """Exchange a live refresh token for a new pair, invalidating the old one."""
        if not presented:
            return SessionOutcome.fail(AuthFailure.MISSING_CREDENTIAL)

        claims = self.signer.decode_refresh_token(presented)
        user_id = subject_to_user_id(claims) if claims else None
        if user_id is None:
            logger.info("Refresh rejected: invalid or expired token")
            return SessionOutcome.fail(AuthFailure.INVALID_CREDENTIAL)

        user = self.store.get_by_id(user_id)
        if user is None:
            # Same tag as a bad signature: do not reveal which ids exist.
            logger.info("Refresh rejected: token subject %s not found", user_id)
            return SessionOutcome.fail(AuthFailure.INVALID_CREDENTIAL)

        if user.refresh_token is None or user.refresh_token != presented:
            logger.warning("Refresh rejected: superseded token presented for user %s", user_id)
            return SessionOutcome.fail(AuthFailure.CREDENTIAL_SUPERSEDED)

        outcome = self.issue(user.id)
        if outcome.ok:
            logger.info("Refresh token rotated for user %s", user_id)
        return outcome

    def login(self, password: str, username: str | None = None, email: str | None = None) -> SessionOutcome:
        """Verify a username-or-email + password and open a session.

        Unlike rotate(), an unknown account and a wrong password produce
        different failures here (USER_NOT_FOUND vs INVALID_PASSWORD).
        """
        if not username and not email:
            return SessionOutcome.fail(AuthFailure.BAD_REQUEST)

        user = self.store.find_by_credentials(username=username, email=email)
        if user is None:
            logger.info("Login failed: no such user")
            return SessionOutcome.fail(AuthFailure.USER_NOT_FOUND)

        if not verify_password(password, user.hashed_password):
            logger.info("Login failed: bad password for user %s", user.id)
            return SessionOutcome.fail(AuthFailure.INVALID_PASSWORD)

        outcome = self.issue(user.id)
        if outcome.ok:
            logger.info("User %s logged in", user.id)
        return outcome

    def logout(self, user_id: int) -> None:
        """Clear the user's refresh credential. Safe to call repeatedly."""
        self.store.set_refresh_token(user_id, None)
        logger.info("User %s logged out", user_id)
