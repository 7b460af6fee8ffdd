"""
API request and response models for Canvas Auth REST endpoints.

These Pydantic v2 models define the HTTP transport contract for the API layer.
They are intentionally separate from the dataclasses in auth/models.py, which
own the internal domain representation. Route handlers map between the two.

Wire format is camelCase (firstName, accessToken); Python attributes stay
snake_case via the shared alias generator. Always dump with by_alias=True.

UserOut has no password field at all, so an account can never be serialized
with its hash even by accident.
"""

from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from auth.models import Identity, UserAccount
from auth.passwords import PASSWORD_MAX_BYTES

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

# Pragmatic address check: something@something.tld, no whitespace.
EMAIL_PATTERN = r"^[^@\s]+@[^@\s]+\.[^@\s]+$"


class _CamelModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
    )


# ---------------------------------------------------------------------------
# Envelope
# ---------------------------------------------------------------------------


class Envelope(BaseModel):
    """Every response body, success or failure.

    HTTP status carries the primary signal; `success` mirrors it for clients
    that only look at the body.
    """

    success: bool
    message: Optional[str] = None
    data: Optional[Any] = None
    errors: Optional[list[dict[str, Any]]] = None

    def dump(self) -> dict:
        return self.model_dump(exclude_none=True, by_alias=True)


# ---------------------------------------------------------------------------
# Request models
# ---------------------------------------------------------------------------


def _check_password_bytes(value: str) -> str:
    if len(value.encode("utf-8")) > PASSWORD_MAX_BYTES:
        raise ValueError(f"Password must be at most {PASSWORD_MAX_BYTES} bytes long")
    return value


class SignupRequest(_CamelModel):
    """Request body for POST /api/v1/auth/signup."""

    email: str = Field(pattern=EMAIL_PATTERN, max_length=255)
    password: str = Field(min_length=6)
    first_name: str = Field(min_length=1, max_length=100)
    last_name: str = Field(min_length=1, max_length=100)

    @field_validator("email", "first_name", "last_name", mode="before")
    @classmethod
    def strip_text(cls, value):
        return value.strip() if isinstance(value, str) else value

    @field_validator("email")
    @classmethod
    def normalize_email(cls, value: str) -> str:
        return value.lower()

    @field_validator("password")
    @classmethod
    def password_fits_bcrypt(cls, value: str) -> str:
        return _check_password_bytes(value)


class LoginRequest(_CamelModel):
    """Request body for POST /api/v1/auth/login.

    No format checks beyond non-empty: a malformed email simply fails to match
    an account and yields the generic "Invalid credentials".
    """

    email: str = Field(min_length=1, max_length=255)
    password: str = Field(min_length=1)

    @field_validator("email", mode="before")
    @classmethod
    def normalize_email(cls, value):
        return value.strip().lower() if isinstance(value, str) else value


class RefreshRequest(_CamelModel):
    refresh_token: str = Field(min_length=1)


# ---------------------------------------------------------------------------
# Response payloads (the `data` member of the envelope)
# ---------------------------------------------------------------------------


class UserOut(_CamelModel):
    id: int
    email: str
    first_name: str
    last_name: str

    @classmethod
    def from_account(cls, account: UserAccount) -> "UserOut":
        return cls(
            id=account.id,
            email=account.email,
            first_name=account.first_name,
            last_name=account.last_name,
        )


class SessionOut(_CamelModel):
    user: UserOut
    access_token: str
    refresh_token: str


class AccessTokenOut(_CamelModel):
    access_token: str


class IdentityOut(_CamelModel):
    user_id: int
    email: str

    @classmethod
    def from_identity(cls, identity: Identity) -> "IdentityOut":
        return cls(user_id=identity.user_id, email=identity.email)


class HealthResponse(BaseModel):
    """Response body for GET /api/v1/health."""

    status: str = "healthy"
    version: str
    components: dict[str, str]
