"""
auth/tokens.py -- Signing and verification of access and refresh tokens.

Security design decisions:
  JWT: python-jose with HS256. Access and refresh tokens are signed with two
       independent secrets, so a leaked refresh secret cannot mint access
       tokens and an access token can never be replayed as a refresh token.

  Claims: access tokens carry {userId, email}, refresh tokens carry {userId}.
       Every token also gets iat, an absolute exp and a random jti. The jti
       keeps two tokens issued for the same user within the same second
       distinct, which the single-slot refresh comparison depends on.

  Failures: TokenVerifier raises TokenExpiredError when only the expiry is
       wrong and TokenInvalidError for everything else. Callers collapse both
       into one 401; the distinction is for logs.

  Configuration: TokenService is built from core.config.TokenConfig at
       startup. Nothing here reads the environment.

Layer rule: no imports from api/. core.config.TokenConfig is the only core/
import.
"""

from __future__ import annotations

import logging
import secrets
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any

from jose import ExpiredSignatureError, JWTError, jwt

from auth.errors import TokenExpiredError, TokenInvalidError
from auth.models import UserAccount
from core.config import TokenConfig

logger = logging.getLogger("canvasauth.tokens")

RESERVED_CLAIMS = frozenset({"iat", "exp", "jti", "nbf"})

_DECODE_OPTIONS = {
    "require_iat": True,
    "require_exp": True,
    "require_jti": True,
}


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class VerifiedToken:
    """Result of a successful verification.

    claims is exactly what was passed to TokenIssuer.issue(); the registered
    claims the issuer added are split out into their own fields.
    """

    claims: dict[str, Any]
    issued_at: datetime
    expires_at: datetime
    token_id: str

    @property
    def user_id(self) -> int:
        user_id = self.claims.get("userId")
        if not isinstance(user_id, int) or isinstance(user_id, bool):
            raise TokenInvalidError("token has no integer userId claim")
        return user_id


class TokenIssuer:
    """Signs claims with one secret."""

    def __init__(
        self,
        secret: str,
        algorithm: str = "HS256",
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._secret = secret
        self._algorithm = algorithm
        self._clock = clock

    def issue(self, claims: dict[str, Any], ttl: timedelta) -> str:
        """Return a signed token for claims that expires ttl from now.

        Raises ValueError for a non-positive ttl or a claim that collides with
        one the issuer sets itself.
        """
        if ttl <= timedelta(0):
            raise ValueError("ttl must be positive")
        clash = RESERVED_CLAIMS.intersection(claims)
        if clash:
            raise ValueError(f"reserved claim(s) not allowed: {sorted(clash)}")
        now = self._clock()
        payload = {
            **claims,
            "iat": int(now.timestamp()),
            "exp": int((now + ttl).timestamp()),
            "jti": secrets.token_hex(16),
        }
        return jwt.encode(payload, self._secret, algorithm=self._algorithm)


class TokenVerifier:
    """Checks signature and expiry against a caller-supplied secret."""

    def __init__(self, algorithm: str = "HS256") -> None:
        self._algorithm = algorithm

    def verify(self, token: str, secret: str) -> VerifiedToken:
        if not token or not isinstance(token, str):
            raise TokenInvalidError("empty token")
        try:
            payload = jwt.decode(token, secret, algorithms=[self._algorithm], options=_DECODE_OPTIONS)
        except ExpiredSignatureError as exc:
            raise TokenExpiredError("token expired") from exc
        except JWTError as exc:
            raise TokenInvalidError(f"token rejected: {exc}") from exc

        issued_at = payload.pop("iat")
        expires_at = payload.pop("exp")
        token_id = payload.pop("jti")
        payload.pop("nbf", None)
        try:
            return VerifiedToken(
                claims=payload,
                issued_at=datetime.fromtimestamp(issued_at, tz=timezone.utc),
                expires_at=datetime.fromtimestamp(expires_at, tz=timezone.utc),
                token_id=str(token_id),
            )
        except (TypeError, ValueError, OverflowError) as exc:
            raise TokenInvalidError("malformed registered claims") from exc


class TokenService:
    """Access/refresh issuance and verification bound to one TokenConfig.

    Usage:
        tokens = TokenService(settings.token_config())
        access = tokens.issue_access(account)
        verified = tokens.verify_access(access)
        verified.user_id, verified.claims["email"]
    """

    def __init__(self, config: TokenConfig, clock: Callable[[], datetime] = _utcnow) -> None:
        self.config = config
        self._access_issuer = TokenIssuer(config.access_secret, config.algorithm, clock)
        self._refresh_issuer = TokenIssuer(config.refresh_secret, config.algorithm, clock)
        self._verifier = TokenVerifier(config.algorithm)

    def issue_access(self, account: UserAccount) -> str:
        return self._access_issuer.issue({"userId": account.id, "email": account.email}, self.config.access_ttl)

    def issue_refresh(self, account: UserAccount) -> str:
        return self._refresh_issuer.issue({"userId": account.id}, self.config.refresh_ttl)

    def verify_access(self, token: str) -> VerifiedToken:
        verified = self._verifier.verify(token, self.config.access_secret)
        if verified.user_id < 1 or not isinstance(verified.claims.get("email"), str):
            raise TokenInvalidError("access token is missing identity claims")
        return verified

    def verify_refresh(self, token: str) -> VerifiedToken:
        verified = self._verifier.verify(token, self.config.refresh_secret)
        if verified.user_id < 1:
            raise TokenInvalidError("refresh token has no usable userId")
        return verified
