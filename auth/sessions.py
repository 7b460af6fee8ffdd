"""
auth/sessions.py -- Signup, login, refresh and logout over UserAccount.

Account states, as seen from this service:

    NoAccount --signup--> Active-WithSession
    Active-NoSession --login--> Active-WithSession
    Active-WithSession --login--> Active-WithSession  (refresh slot overwritten)
    Active-WithSession --logout--> Active-NoSession
    Deactivated: login fails after password check; middleware rejects every
                 request, including ones carrying unexpired access tokens.

Invariants:
  - One refresh-token slot per account. Login overwrites it, which silently
    revokes the previous session. Concurrent logins are last-writer-wins;
    there is no per-account lock and no compare-and-swap.
  - Refresh does not rotate the refresh token; it mints an access token only.
  - Access tokens are stateless. Overwriting or clearing the refresh slot does
    not revoke access tokens already issued; they live out their TTL.
  - Unknown email and wrong password raise the same InvalidCredentialsError
    after the same amount of bcrypt work [C1].

Threading: bcrypt runs on PasswordHasher's worker pool and blocking store
calls run via asyncio.to_thread, so none of this blocks the event loop.

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations

import asyncio
import hmac
import logging
from datetime import datetime, timezone

from auth.errors import (
    AccountDeactivatedError,
    DuplicateEmailError,
    InvalidCredentialsError,
    SessionNotFoundError,
    TokenStaleError,
    ValidationError,
)
from auth.models import SessionResult, UserAccount
from auth.passwords import PASSWORD_MAX_BYTES, PasswordHasher
from auth.store import UserStore, normalize_email
from auth.tokens import TokenService

logger = logging.getLogger("canvasauth.sessions")


class SessionService:
    """Orchestrates the account/session lifecycle.

    Usage:
        sessions = SessionService(store, hasher, tokens)
        result = await sessions.signup("a@x.com", "secret1", "A", "B")
        result = await sessions.login("a@x.com", "secret1")
        access = await sessions.refresh(result.refresh_token)
        await sessions.logout(result.account.id)
    """

    def __init__(self, store: UserStore, hasher: PasswordHasher, tokens: TokenService) -> None:
        self.store = store
        self.hasher = hasher
        self.tokens = tokens

    # ------------------------------------------------------------------
    # Signup
    # ------------------------------------------------------------------

    async def signup(self, email: str, password: str, first_name: str, last_name: str) -> SessionResult:
        """Create an active account and open its first session.

        The insert and the refresh-token write happen in one transaction
        (UserStore.create's on_created hook), so a failure between them
        leaves no half-made account behind.
        """
        email = _require_email(email)
        _require_password(password)
        first_name = _require(first_name, "firstName").strip()
        last_name = _require(last_name, "lastName").strip()

        if await asyncio.to_thread(self.store.find_by_email, email) is not None:
            logger.info("Signup rejected: email already registered")
            raise DuplicateEmailError("email already registered")

        password_hash = await self.hasher.hash_async(password)
        issued: dict[str, str] = {}

        def open_session(account: UserAccount) -> dict:
            issued["access"] = self.tokens.issue_access(account)
            issued["refresh"] = self.tokens.issue_refresh(account)
            return {"refresh_token": issued["refresh"]}

        account = await asyncio.to_thread(
            self.store.create,
            {
                "email": email,
                "password_hash": password_hash,
                "first_name": first_name,
                "last_name": last_name,
                "is_active": True,
            },
            open_session,
        )
        logger.info("Account %d created", account.id)
        return SessionResult(account=account, access_token=issued["access"], refresh_token=issued["refresh"])

    # ------------------------------------------------------------------
    # Login
    # ------------------------------------------------------------------

    async def login(self, email: str, password: str) -> SessionResult:
        """Verify credentials and replace the account's session.

        Order matters: the deactivation check runs only after the password
        verified, so a wrong guess against a deactivated account looks exactly
        like a wrong guess against a missing one.
        """
        email = _require_email(email)
        _require(password, "password")

        account = await asyncio.to_thread(self.store.find_by_email, email)
        if account is None:
            # Equalize timing -- do NOT return before running bcrypt [C1]
            await self.hasher.verify_dummy_async(password)
            logger.info("Login failed: unknown email")
            raise InvalidCredentialsError("unknown email")
        if not await self.hasher.verify_async(password, account.password_hash):
            logger.info("Login failed: wrong password for account %d", account.id)
            raise InvalidCredentialsError(f"wrong password for account {account.id}")
        if not account.is_active:
            logger.info("Login refused: account %d is deactivated", account.id)
            raise AccountDeactivatedError(f"account {account.id} is deactivated")

        access_token = self.tokens.issue_access(account)
        refresh_token = self.tokens.issue_refresh(account)
        now = datetime.now(timezone.utc)
        # Last writer wins if two logins for this account race.
        await asyncio.to_thread(self.store.update, account.id, refresh_token=refresh_token, last_login_at=now)
        account.refresh_token = refresh_token
        account.last_login_at = now
        logger.info("Account %d logged in", account.id)
        return SessionResult(account=account, access_token=access_token, refresh_token=refresh_token)

    # ------------------------------------------------------------------
    # Refresh
    # ------------------------------------------------------------------

    async def refresh(self, refresh_token: str) -> str:
        """Mint a new access token from the account's current refresh token.

        Raises TokenInvalidError / TokenExpiredError from verification,
        SessionNotFoundError if the account is gone, TokenStaleError if the
        token is not the one currently stored. The refresh token itself is
        not rotated.
        """
        _require(refresh_token, "refreshToken")
        verified = self.tokens.verify_refresh(refresh_token)

        account = await asyncio.to_thread(self.store.find_by_id, verified.user_id)
        if account is None:
            logger.info("Refresh rejected: account %d not found", verified.user_id)
            raise SessionNotFoundError(f"account {verified.user_id} not found")
        if not _same_token(account.refresh_token, refresh_token):
            logger.info("Refresh rejected: stale token for account %d", account.id)
            raise TokenStaleError(f"stale refresh token for account {account.id}")

        return self.tokens.issue_access(account)

    # ------------------------------------------------------------------
    # Logout
    # ------------------------------------------------------------------

    async def logout(self, user_id: int) -> None:
        """Clear the refresh-token slot. Idempotent: repeat calls are no-ops."""
        updated = await asyncio.to_thread(self.store.update, user_id, refresh_token=None)
        if updated:
            logger.info("Account %d logged out", user_id)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _require(value: str | None, field: str) -> str:
    if not isinstance(value, str) or not value.strip():
        raise ValidationError(f"{field} is required", errors=[{"field": field, "message": f"{field} is required"}])
    return value


def _require_password(password: str | None) -> str:
    _require(password, "password")
    if len(password.encode("utf-8")) > PASSWORD_MAX_BYTES:
        message = f"Password must be at most {PASSWORD_MAX_BYTES} bytes long"
        raise ValidationError("password too long", errors=[{"field": "password", "message": message}])
    return password


def _require_email(email: str | None) -> str:
    email = normalize_email(_require(email, "email"))
    if "@" not in email:
        raise ValidationError("invalid email", errors=[{"field": "email", "message": "Please enter a valid email"}])
    return email


def _same_token(stored: str | None, presented: str) -> bool:
    if stored is None:
        return False
    return hmac.compare_digest(stored.encode("utf-8"), presented.encode("utf-8"))
