"""
auth/dependencies.py -- Per-request authentication gate and FastAPI Depends() helpers.

Token sources are interchangeable TokenExtractor strategies tried in priority
order; the first one that yields a value wins:
  1. Authorization: Bearer <token> header -- API clients.
  2. "token" field of a JSON request body -- form-style clients.
  3. "token" query parameter -- links and clients that cannot set headers.

AuthMiddleware.authenticate() then:
  - verifies the access token (signature + expiry),
  - reloads the account by the verified userId,
  - rejects the request if the account is gone or deactivated.

The reload is what makes deactivation immediate: an unexpired access token for
a deactivated account stops working on the very next request.

Every failure collapses into UnauthenticatedError (one 401, one message). Logs
record which check failed.

Layer rule: auth/dependencies.py may import from fastapi (Request) because it
is part of the FastAPI dependency injection system. No imports from api/.
"""

from __future__ import annotations

import asyncio
import json
import logging
from abc import ABC, abstractmethod
from collections.abc import Sequence

from fastapi import Request

from auth.errors import TokenError, TokenExpiredError, UnauthenticatedError
from auth.models import Identity
from auth.store import UserStore
from auth.tokens import TokenService

logger = logging.getLogger("canvasauth.auth")

TOKEN_FIELD = "token"


# ---------------------------------------------------------------------------
# Extractor strategies
# ---------------------------------------------------------------------------


class TokenExtractor(ABC):
    """One source of a candidate token. Returns None when the source is absent."""

    source: str = "unknown"

    @abstractmethod
    async def extract(self, request: Request) -> str | None: ...


class BearerHeaderExtractor(TokenExtractor):
    source = "header"

    async def extract(self, request: Request) -> str | None:
        scheme, _, value = request.headers.get("Authorization", "").partition(" ")
        if scheme.lower() != "bearer":
            return None
        return value.strip() or None


class BodyFieldExtractor(TokenExtractor):
    """Reads a string field from a JSON object body. Non-JSON bodies are ignored.

    Starlette caches the body on the Request, so reading it here does not
    starve the route's own body parameter.
    """

    source = "body"

    def __init__(self, field: str = TOKEN_FIELD) -> None:
        self.field = field

    async def extract(self, request: Request) -> str | None:
        if "json" not in request.headers.get("content-type", ""):
            return None
        raw = await request.body()
        if not raw:
            return None
        try:
            payload = json.loads(raw)
        except ValueError:
            return None
        if not isinstance(payload, dict):
            return None
        value = payload.get(self.field)
        return value if isinstance(value, str) and value else None


class QueryParamExtractor(TokenExtractor):
    source = "query"

    def __init__(self, param: str = TOKEN_FIELD) -> None:
        self.param = param

    async def extract(self, request: Request) -> str | None:
        return request.query_params.get(self.param) or None


DEFAULT_EXTRACTORS: tuple[TokenExtractor, ...] = (
    BearerHeaderExtractor(),
    BodyFieldExtractor(),
    QueryParamExtractor(),
)


# ---------------------------------------------------------------------------
# Gate
# ---------------------------------------------------------------------------


class AuthMiddleware:
    """Resolves a request to an Identity or raises UnauthenticatedError."""

    def __init__(
        self,
        tokens: TokenService,
        store: UserStore,
        extractors: Sequence[TokenExtractor] = DEFAULT_EXTRACTORS,
    ) -> None:
        self.tokens = tokens
        self.store = store
        self.extractors = tuple(extractors)

    async def extract(self, request: Request) -> str | None:
        for extractor in self.extractors:
            token = await extractor.extract(request)
            if token:
                return token
        return None

    async def authenticate(self, request: Request) -> Identity:
        token = await self.extract(request)
        if token is None:
            raise UnauthenticatedError("no token in header, body or query")

        try:
            verified = self.tokens.verify_access(token)
        except TokenExpiredError as exc:
            logger.info("Rejected %s %s: access token expired", request.method, request.url.path)
            raise UnauthenticatedError("access token expired") from exc
        except TokenError as exc:
            logger.info("Rejected %s %s: invalid access token", request.method, request.url.path)
            raise UnauthenticatedError("invalid access token") from exc

        account = await asyncio.to_thread(self.store.find_by_id, verified.user_id)
        if account is None:
            logger.info("Rejected %s %s: account %d not found", request.method, request.url.path, verified.user_id)
            raise UnauthenticatedError(f"account {verified.user_id} not found")
        if not account.is_active:
            logger.info("Rejected %s %s: account %d is deactivated", request.method, request.url.path, account.id)
            raise UnauthenticatedError(f"account {account.id} is deactivated")

        identity = Identity(user_id=account.id, email=account.email)
        request.state.identity = identity
        return identity


# ---------------------------------------------------------------------------
# FastAPI dependencies
# ---------------------------------------------------------------------------


async def get_current_identity(request: Request) -> Identity:
    """Require authentication. Raises UnauthenticatedError (401) otherwise.

    Use as a FastAPI dependency:
        @router.get("/protected")
        async def route(identity: Identity = Depends(get_current_identity)): ...
    """
    gate: AuthMiddleware = request.app.state.auth_gate
    return await gate.authenticate(request)
