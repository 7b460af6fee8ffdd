"""
auth/errors.py -- Failure taxonomy for the identity/session core.

Every error carries the HTTP status it maps to and a fixed public message.
The optional detail passed to the constructor is for server-side logs only;
api/main.py renders `message`, never `detail`, so no internal state (hashes,
secrets, which check failed) ever reaches a response body.

Credential and token failures share status 401. TokenError subclasses also
share one public message so a caller cannot tell an expired refresh token from
a stale or orphaned one.

Layer rule: no imports from api/ or core/. Framework-agnostic.
"""

from __future__ import annotations


class AuthError(Exception):
    """Base class for all identity/session failures."""

    status_code: int = 500
    message: str = "Internal server error"

    def __init__(self, detail: str = "") -> None:
        super().__init__(detail or self.message)
        self.detail = detail


class ValidationError(AuthError):
    """Input rejected before the credential store is touched."""

    status_code = 400
    message = "Validation errors"

    def __init__(self, detail: str = "", errors: list[dict] | None = None) -> None:
        super().__init__(detail)
        self.errors = errors or []


class DuplicateEmailError(AuthError):
    status_code = 409
    message = "User already exists with this email"


class InvalidCredentialsError(AuthError):
    """Unknown email OR wrong password. Deliberately indistinguishable."""

    status_code = 401
    message = "Invalid credentials"


class AccountDeactivatedError(AuthError):
    """Raised only after the password verified, so it leaks nothing to guessers."""

    status_code = 401
    message = "Account is deactivated"


class TokenError(AuthError):
    status_code = 401
    message = "Invalid refresh token"


class TokenInvalidError(TokenError):
    """Bad signature, malformed token, or missing claims."""


class TokenExpiredError(TokenError):
    """Signature is valid but the embedded expiry has passed."""


class TokenStaleError(TokenError):
    """Valid refresh token that no longer matches the account's stored one."""


class SessionNotFoundError(TokenError):
    """Refresh token names a user id with no account."""


class UnauthenticatedError(AuthError):
    """Collapsed outcome of every AuthMiddleware failure."""

    status_code = 401
    message = "Authentication required"


class StoreUnavailableError(AuthError):
    """Transient credential-store failure (pool exhausted, timeout, lost connection).

    Callers may retry with backoff; the core itself never retries.
    """

    status_code = 503
    message = "Service temporarily unavailable"
    retry_after: int = 1


class InternalError(AuthError):
    status_code = 500
    message = "Internal server error"
