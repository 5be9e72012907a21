"""Unit tests for auth/session.py -- issuance, rotation, login and logout.

Covers:
- login: stores the returned refresh token; not-found vs bad-password tags
- rotate: decision ladder (missing, invalid, unknown user, superseded, match)
- rotation invalidates its predecessor; tamper and expiry beat a stored match
- issue: a failed or empty store write yields no tokens
- logout is idempotent
- the concurrent-rotation race (documented limitation, last write wins)
"""

from dataclasses import replace
from datetime import timedelta
from unittest.mock import MagicMock

import pytest
from sqlalchemy.exc import OperationalError

from auth.models import User
from auth.session import AuthFailure, SessionService
from auth.store import UserStore
from auth.tokens import TokenSigner
from tests.conftest import ALICE_PASSWORD, flip_signature_char


@pytest.fixture
def logged_in(service: SessionService, alice: User):
    outcome = service.login(ALICE_PASSWORD, username="alice")
    assert outcome.ok
    return outcome


class TestLogin:
    def test_login_by_username_persists_refresh_token(
        self, service: SessionService, store: UserStore, alice: User
    ) -> None:
        outcome = service.login(ALICE_PASSWORD, username="alice")
        assert outcome.ok
        assert outcome.user.id == alice.id
        assert store.get_by_id(alice.id).refresh_token == outcome.tokens.refresh_token

    def test_login_by_email(self, service: SessionService, alice: User) -> None:
        assert service.login(ALICE_PASSWORD, email="alice@example.com").ok

    def test_access_token_names_user(self, service: SessionService, signer: TokenSigner, alice: User) -> None:
        outcome = service.login(ALICE_PASSWORD, username="alice")
        claims = signer.decode_access_token(outcome.tokens.access_token)
        assert claims["sub"] == str(alice.id)
        assert claims["username"] == "alice"

    def test_no_identifier(self, service: SessionService) -> None:
        assert service.login(ALICE_PASSWORD).failure is AuthFailure.BAD_REQUEST

    def test_unknown_user(self, service: SessionService, alice: User) -> None:
        assert service.login(ALICE_PASSWORD, username="mallory").failure is AuthFailure.USER_NOT_FOUND

    def test_wrong_password(self, service: SessionService, store: UserStore, alice: User) -> None:
        outcome = service.login("nope", username="alice")
        assert outcome.failure is AuthFailure.INVALID_PASSWORD
        assert outcome.tokens is None
        assert store.get_by_id(alice.id).refresh_token is None

    def test_second_login_supersedes_first(self, service: SessionService, logged_in) -> None:
        second = service.login(ALICE_PASSWORD, username="alice")
        assert second.ok
        stale = service.rotate(logged_in.tokens.refresh_token)
        assert stale.failure is AuthFailure.CREDENTIAL_SUPERSEDED


class TestRotate:
    def test_rotation_issues_new_pair(
        self, service: SessionService, store: UserStore, alice: User, logged_in
    ) -> None:
        rotated = service.rotate(logged_in.tokens.refresh_token)
        assert rotated.ok
        assert rotated.tokens.refresh_token != logged_in.tokens.refresh_token
        assert rotated.tokens.access_token != logged_in.tokens.access_token
        assert store.get_by_id(alice.id).refresh_token == rotated.tokens.refresh_token

    def test_rotation_invalidates_predecessor(self, service: SessionService, logged_in) -> None:
        r1 = logged_in.tokens.refresh_token
        r2 = service.rotate(r1)
        assert r2.ok
        assert service.rotate(r1).failure is AuthFailure.CREDENTIAL_SUPERSEDED
        # The successor is still good
        assert service.rotate(r2.tokens.refresh_token).ok

    @pytest.mark.parametrize("presented", [None, ""])
    def test_missing(self, service: SessionService, presented) -> None:
        outcome = service.rotate(presented)
        assert outcome.failure is AuthFailure.MISSING_CREDENTIAL
        assert outcome.failure.message == "Unauthorized request"

    def test_tampered_is_invalid_not_superseded(self, service: SessionService, logged_in) -> None:
        tampered = flip_signature_char(logged_in.tokens.refresh_token)
        assert service.rotate(tampered).failure is AuthFailure.INVALID_CREDENTIAL

    def test_expired_rejected_even_when_stored(
        self, service: SessionService, signer: TokenSigner, store: UserStore, alice: User
    ) -> None:
        expired = signer.create_refresh_token(alice.id, expires_delta=timedelta(seconds=-30))
        store.set_refresh_token(alice.id, expired)
        assert service.rotate(expired).failure is AuthFailure.INVALID_CREDENTIAL
        assert store.get_by_id(alice.id).refresh_token == expired

    def test_access_token_is_not_a_refresh_token(self, service: SessionService, logged_in) -> None:
        assert service.rotate(logged_in.tokens.access_token).failure is AuthFailure.INVALID_CREDENTIAL

    def test_unknown_subject_looks_like_invalid_token(self, service: SessionService, signer: TokenSigner) -> None:
        """Rotation does not reveal whether the subject exists (login does, see TestLogin)."""
        orphan = signer.create_refresh_token(424242)
        outcome = service.rotate(orphan)
        assert outcome.failure is AuthFailure.INVALID_CREDENTIAL
        assert outcome.failure.message == "Invalid refresh token"

    def test_after_logout_superseded(self, service: SessionService, alice: User, logged_in) -> None:
        service.logout(alice.id)
        assert service.rotate(logged_in.tokens.refresh_token).failure is AuthFailure.CREDENTIAL_SUPERSEDED


class TestIssue:
    def test_store_failure_yields_no_tokens(self, settings, signer: TokenSigner, alice: User) -> None:
        store = MagicMock(spec=UserStore)
        store.get_by_id.return_value = alice
        store.set_refresh_token.side_effect = OperationalError("UPDATE users", {}, Exception("db down"))
        signer = MagicMock(wraps=signer)
        service = SessionService(store, settings, signer=signer)

        outcome = service.issue(alice.id)

        assert outcome.failure is AuthFailure.ISSUANCE_FAILED
        assert outcome.tokens is None
        signer.create_access_token.assert_not_called()

    def test_user_vanished_before_write(self, settings, alice: User) -> None:
        store = MagicMock(spec=UserStore)
        store.get_by_id.return_value = alice
        store.set_refresh_token.return_value = False
        outcome = SessionService(store, settings).issue(alice.id)
        assert outcome.failure is AuthFailure.ISSUANCE_FAILED
        assert outcome.tokens is None

    def test_unknown_user(self, service: SessionService) -> None:
        assert service.issue(424242).failure is AuthFailure.ISSUANCE_FAILED

    def test_single_write(self, settings, alice: User) -> None:
        store = MagicMock(spec=UserStore)
        store.get_by_id.return_value = replace(alice)
        store.set_refresh_token.return_value = True
        outcome = SessionService(store, settings).issue(alice.id)
        assert outcome.ok
        store.set_refresh_token.assert_called_once_with(alice.id, outcome.tokens.refresh_token)


class TestLogout:
    def test_logout_is_idempotent(self, service: SessionService, store: UserStore, alice: User, logged_in) -> None:
        service.logout(alice.id)
        assert store.get_by_id(alice.id).refresh_token is None
        service.logout(alice.id)
        assert store.get_by_id(alice.id).refresh_token is None


class TestConcurrentRotationRace:
    """Known limitation: no compare-and-swap on the stored refresh token.

    Both callers read the user before either writes, so both pass the match
    check. Both get a pair; the later write wins and the earlier caller's new
    refresh token is already superseded.
    """

    def test_last_write_wins(
        self, service: SessionService, store: UserStore, alice: User, logged_in, monkeypatch
    ) -> None:
        r1 = logged_in.tokens.refresh_token
        snapshot = store.get_by_id(alice.id)
        assert snapshot.refresh_token == r1

        # Both requests read the pre-rotation row
        monkeypatch.setattr(store, "get_by_id", lambda user_id: replace(snapshot))
        first = service.rotate(r1)
        second = service.rotate(r1)
        monkeypatch.undo()

        assert first.ok and second.ok
        assert store.get_by_id(alice.id).refresh_token == second.tokens.refresh_token
        assert service.rotate(first.tokens.refresh_token).failure is AuthFailure.CREDENTIAL_SUPERSEDED
