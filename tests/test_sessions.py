"""Unit tests for auth/sessions.py -- the account/session state machine.

Each test drives the async service with asyncio.run() against an isolated
in-memory store (see conftest.make_store).

Covers:
- signup: tokens decode to the new account, hash != plaintext, duplicates, atomicity
- login: identical failure for unknown email and wrong password, deactivation order
- refresh: stale after a newer login, stale after logout, orphaned, expired, no rotation
- logout: idempotent
- concurrent logins: last writer wins
"""

from __future__ import annotations

import asyncio
from datetime import datetime, timedelta, timezone

import pytest

from auth.errors import (
    AccountDeactivatedError,
    DuplicateEmailError,
    InvalidCredentialsError,
    SessionNotFoundError,
    TokenExpiredError,
    TokenInvalidError,
    TokenStaleError,
    ValidationError,
)
from auth.models import UserAccount
from auth.sessions import SessionService
from auth.store import UserStore
from auth.tokens import TokenService
from core.config import TokenConfig


def _signup(sessions: SessionService, email: str = "a@x.com", password: str = "secret1"):
    return asyncio.run(sessions.signup(email, password, "A", "B"))


class TestSignup:
    """signup() creates an active account and opens its first session."""

    def test_returns_tokens_for_the_new_account(self, sessions: SessionService, tokens: TokenService) -> None:
        """Both returned tokens must verify and carry the new account's id."""
        result = _signup(sessions)

        assert result.account.id is not None
        assert result.access_token and result.refresh_token
        assert result.access_token != result.refresh_token
        assert tokens.verify_access(result.access_token).user_id == result.account.id
        assert tokens.verify_refresh(result.refresh_token).user_id == result.account.id

    def test_persists_hash_and_session(self, sessions: SessionService, store: UserStore) -> None:
        """The stored row must hold a hash (not the plaintext) and the issued refresh token."""
        result = _signup(sessions, password="secret1")
        stored = store.find_by_id(result.account.id)

        assert stored.password_hash != "secret1"
        assert stored.refresh_token == result.refresh_token
        assert stored.is_active is True
        assert (stored.first_name, stored.last_name) == ("A", "B")

    def test_email_is_normalized(self, sessions: SessionService) -> None:
        """Signup must trim and lowercase the email."""
        result = _signup(sessions, email="  Mixed@X.com ")
        assert result.account.email == "mixed@x.com"

    def test_duplicate_email_case_insensitive(self, sessions: SessionService) -> None:
        """A second signup differing only in case must raise DuplicateEmailError."""
        _signup(sessions, email="dup@x.com")
        with pytest.raises(DuplicateEmailError):
            _signup(sessions, email="DUP@x.com")

    @pytest.mark.parametrize(
        "email,password,first,last",
        [
            ("", "secret1", "A", "B"),
            ("no-at-sign", "secret1", "A", "B"),
            ("a@x.com", "", "A", "B"),
            ("a@x.com", "secret1", " ", "B"),
            ("a@x.com", "x" * 73, "A", "B"),
            ("a@x.com", "é" * 37, "A", "B"),
        ],
    )
    def test_validation_before_store(
        self, sessions: SessionService, store: UserStore, email, password, first, last
    ) -> None:
        """Missing or malformed input must raise ValidationError and create nothing."""
        with pytest.raises(ValidationError):
            asyncio.run(sessions.signup(email, password, first, last))
        assert store.find_by_email("a@x.com") is None

    def test_overlong_password_never_reaches_bcrypt(
        self, sessions: SessionService, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        """A password over 72 UTF-8 bytes must be rejected before any hashing work."""

        async def must_not_hash(plaintext):
            raise AssertionError("hash_async called for an overlong password")

        monkeypatch.setattr(sessions.hasher, "hash_async", must_not_hash)
        with pytest.raises(ValidationError) as excinfo:
            asyncio.run(sessions.signup("long@x.com", "x" * 80, "A", "B"))
        assert excinfo.value.status_code == 400
        assert excinfo.value.errors[0]["field"] == "password"

    def test_password_at_the_byte_limit_is_accepted(self, sessions: SessionService) -> None:
        """Exactly 72 bytes is still a valid password."""
        result = _signup(sessions, email="edge@x.com", password="x" * 72)
        assert result.account.id is not None

    def test_token_failure_leaves_no_account(
        self, sessions: SessionService, store: UserStore, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        """If token issuance fails inside the transaction, the insert must roll back."""

        def broken(account):
            raise RuntimeError("signing backend down")

        monkeypatch.setattr(sessions.tokens, "issue_refresh", broken)
        with pytest.raises(RuntimeError):
            _signup(sessions, email="atomic@x.com")
        assert store.find_by_email("atomic@x.com") is None


class TestLogin:
    """login() verifies credentials and replaces the single session slot."""

    def test_success_replaces_session(self, sessions: SessionService, store: UserStore) -> None:
        """A successful login must store a new refresh token and stamp last_login_at."""
        first = _signup(sessions)
        result = asyncio.run(sessions.login("A@X.COM", "secret1"))

        stored = store.find_by_id(first.account.id)
        assert result.account.id == first.account.id
        assert result.refresh_token != first.refresh_token
        assert stored.refresh_token == result.refresh_token
        assert stored.last_login_at is not None

    def test_wrong_password_and_unknown_email_are_indistinguishable(self, sessions: SessionService) -> None:
        """Unknown email and wrong password must raise the same error with the same message."""
        _signup(sessions)
        with pytest.raises(InvalidCredentialsError) as wrong_password:
            asyncio.run(sessions.login("a@x.com", "wrong"))
        with pytest.raises(InvalidCredentialsError) as unknown_email:
            asyncio.run(sessions.login("nobody@x.com", "secret1"))

        assert type(wrong_password.value) is type(unknown_email.value)
        assert wrong_password.value.message == unknown_email.value.message == "Invalid credentials"
        assert wrong_password.value.status_code == unknown_email.value.status_code == 401

    def test_deactivated_account_with_right_password(self, sessions: SessionService, store: UserStore) -> None:
        """The correct password on a deactivated account must raise AccountDeactivatedError."""
        account = _signup(sessions).account
        store.update(account.id, is_active=False)
        with pytest.raises(AccountDeactivatedError):
            asyncio.run(sessions.login("a@x.com", "secret1"))

    def test_deactivated_account_with_wrong_password_reveals_nothing(
        self, sessions: SessionService, store: UserStore
    ) -> None:
        """A wrong password on a deactivated account must look like any other bad credential."""
        account = _signup(sessions).account
        store.update(account.id, is_active=False)
        with pytest.raises(InvalidCredentialsError):
            asyncio.run(sessions.login("a@x.com", "wrong"))

    def test_concurrent_logins_last_writer_wins(self, hasher, tokens: TokenService, tmp_path) -> None:
        """Of two racing logins, only the refresh token written last must remain usable."""
        # File-backed so racing writers wait on the busy timeout instead of
        # failing on a shared-cache table lock.
        store = UserStore(f"sqlite:///{tmp_path / 'race.db'}", pool_size=4, pool_timeout=2.0, statement_timeout=5.0)
        sessions = SessionService(store, hasher, tokens)
        account = _signup(sessions).account

        async def race():
            return await asyncio.gather(sessions.login("a@x.com", "secret1"), sessions.login("a@x.com", "secret1"))

        first, second = asyncio.run(race())
        stored = store.find_by_id(account.id).refresh_token
        assert stored in (first.refresh_token, second.refresh_token)

        winner = first if stored == first.refresh_token else second
        loser = second if winner is first else first
        assert asyncio.run(sessions.refresh(winner.refresh_token))
        with pytest.raises(TokenStaleError):
            asyncio.run(sessions.refresh(loser.refresh_token))
        store.close()


class TestRefresh:
    """refresh() mints an access token from the currently stored refresh token."""

    def test_superseded_token_is_stale(self, sessions: SessionService, tokens: TokenService) -> None:
        """After a second login the first refresh token must raise TokenStaleError."""
        r1 = _signup(sessions).refresh_token
        r2 = asyncio.run(sessions.login("a@x.com", "secret1")).refresh_token

        with pytest.raises(TokenStaleError):
            asyncio.run(sessions.refresh(r1))
        access = asyncio.run(sessions.refresh(r2))
        assert tokens.verify_access(access).claims["email"] == "a@x.com"

    def test_refresh_does_not_rotate(self, sessions: SessionService, store: UserStore) -> None:
        """Repeated refreshes must leave the stored refresh token unchanged."""
        result = _signup(sessions)
        asyncio.run(sessions.refresh(result.refresh_token))
        asyncio.run(sessions.refresh(result.refresh_token))
        assert store.find_by_id(result.account.id).refresh_token == result.refresh_token

    def test_after_logout_is_stale(self, sessions: SessionService) -> None:
        """A refresh token must stop working once its session is logged out."""
        result = _signup(sessions)
        asyncio.run(sessions.logout(result.account.id))
        with pytest.raises((TokenStaleError, SessionNotFoundError)):
            asyncio.run(sessions.refresh(result.refresh_token))

    def test_orphaned_token(self, sessions: SessionService, tokens: TokenService) -> None:
        """A validly signed token for a missing account must raise SessionNotFoundError."""
        ghost = UserAccount(id=9999, email="ghost@x.com", password_hash="x", first_name="G", last_name="H")
        with pytest.raises(SessionNotFoundError):
            asyncio.run(sessions.refresh(tokens.issue_refresh(ghost)))

    def test_expired_token(self, store: UserStore, hasher, token_config: TokenConfig) -> None:
        """A refresh token past its TTL must raise TokenExpiredError."""
        past = TokenService(token_config, clock=lambda: datetime.now(timezone.utc) - timedelta(days=8))
        stale_sessions = SessionService(store, hasher, past)
        result = _signup(stale_sessions)

        fresh_sessions = SessionService(store, hasher, TokenService(token_config))
        with pytest.raises(TokenExpiredError):
            asyncio.run(fresh_sessions.refresh(result.refresh_token))

    def test_access_token_cannot_refresh(self, sessions: SessionService) -> None:
        """An access token presented as a refresh token must raise TokenInvalidError."""
        result = _signup(sessions)
        with pytest.raises(TokenInvalidError):
            asyncio.run(sessions.refresh(result.access_token))

    def test_empty_token_is_validation_error(self, sessions: SessionService) -> None:
        """An empty refresh token must raise ValidationError."""
        with pytest.raises(ValidationError):
            asyncio.run(sessions.refresh(""))


class TestLogout:
    """logout() clears the session slot."""

    def test_idempotent(self, sessions: SessionService, store: UserStore) -> None:
        """Logging out twice must leave the slot empty without raising."""
        account = _signup(sessions).account
        asyncio.run(sessions.logout(account.id))
        asyncio.run(sessions.logout(account.id))
        assert store.find_by_id(account.id).refresh_token is None

    def test_unknown_user_is_a_no_op(self, sessions: SessionService) -> None:
        """Logging out an absent id must be a silent no-op."""
        assert asyncio.run(sessions.logout(424242)) is None

    def test_issued_access_token_outlives_logout(self, sessions: SessionService, tokens: TokenService) -> None:
        """Access tokens are stateless and must still verify after logout."""
        result = _signup(sessions)
        asyncio.run(sessions.logout(result.account.id))
        assert tokens.verify_access(result.access_token).user_id == result.account.id
