"""
auth/models.py -- Domain dataclasses for authentication entities.

Pattern: Data class (pure data container, zero logic). Stores and services do
the work; these only own the shape.

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime


@dataclass
class UserAccount:
    """A user account as persisted by auth.store.UserStore.

    email is always stored lowercase; the store normalizes on write and
    compares case-insensitively on read.

    password_hash and refresh_token are excluded from repr() so an account
    that ends up in a log line or traceback does not carry credentials.

    refresh_token is the single session slot. Login overwrites it (revoking
    whatever was there), logout clears it.
    """

    email: str
    password_hash: str = field(repr=False)
    first_name: str
    last_name: str
    id: int | None = None
    is_active: bool = True
    refresh_token: str | None = field(default=None, repr=False)
    last_login_at: datetime | None = None
    created_at: datetime | None = None


@dataclass(frozen=True)
class Identity:
    """The verified caller attached to a request by AuthMiddleware.

    Deliberately narrow: downstream handlers get a user id and an email, never
    the raw token, the claims dict, or the account row.
    """

    user_id: int
    email: str


@dataclass(frozen=True)
class SessionResult:
    """What signup and login hand back to the route layer."""

    account: UserAccount
    access_token: str
    refresh_token: str
