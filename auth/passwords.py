"""
auth/passwords.py -- bcrypt password hashing on a bounded worker pool.

Security design decisions:
  bcrypt directly (no passlib wrapper): passlib's wrap-bug detection builds a
       password longer than 72 bytes, which bcrypt 4.x rejects. Direct usage
       has no compatibility shim. Passwords are capped at PASSWORD_MAX_BYTES
       UTF-8 bytes before they reach hash(), so truncation never happens
       silently.

  Work factor: fixed per process (BCRYPT_ROUNDS, default 12). Existing hashes
       carry their own cost, so raising the setting only affects new hashes.

  Timing equalization [C1]: verify_dummy() runs a full bcrypt check against a
       hash computed once at construction. SessionService.login() calls it
       when the email is unknown so response time does not reveal whether an
       account exists.

  Worker pool: bcrypt is CPU-bound and releases the GIL. The *_async methods
       hand it to a dedicated ThreadPoolExecutor so the event loop keeps
       serving other requests and at most `workers` hashes run at once.

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations

import asyncio
import logging
from concurrent.futures import ThreadPoolExecutor

import bcrypt

from auth.errors import InternalError

logger = logging.getLogger("canvasauth.passwords")

_DUMMY_PASSWORD = "canvasauth_timing_dummy"

# bcrypt only looks at the first 72 bytes; longer passwords are refused
# instead of being silently truncated.
PASSWORD_MAX_BYTES = 72


class PasswordHasher:
    """Salted one-way hashing and timing-safe verification.

    Usage:
        hasher = PasswordHasher(rounds=12, workers=4)
        hashed = await hasher.hash_async("secret1")
        ok = await hasher.verify_async("secret1", hashed)
        hasher.close()
    """

    def __init__(self, rounds: int = 12, workers: int = 4) -> None:
        self.rounds = rounds
        self._executor = ThreadPoolExecutor(max_workers=workers, thread_name_prefix="bcrypt")
        self._dummy_hash = self.hash(_DUMMY_PASSWORD)

    # ------------------------------------------------------------------
    # Synchronous primitives
    # ------------------------------------------------------------------

    def hash(self, plaintext: str) -> str:
        """Return a bcrypt hash of the plaintext. Library failure is fatal."""
        try:
            salt = bcrypt.gensalt(rounds=self.rounds)
            return bcrypt.hashpw(plaintext.encode("utf-8"), salt).decode("utf-8")
        except Exception as exc:
            logger.exception("bcrypt hashing failed")
            raise InternalError("password hashing failed") from exc

    def verify(self, plaintext: str, hashed: str | None) -> bool:
        """Return True if plaintext matches hashed. Never raises.

        A missing, truncated or otherwise malformed hash is simply a mismatch.
        bcrypt.checkpw compares in constant time.
        """
        if not hashed:
            return False
        try:
            return bcrypt.checkpw(plaintext.encode("utf-8"), hashed.encode("utf-8"))
        except (ValueError, TypeError):
            return False

    def verify_dummy(self, plaintext: str) -> bool:
        """Burn one bcrypt verification. Always returns False."""
        self.verify(plaintext, self._dummy_hash)
        return False

    # ------------------------------------------------------------------
    # Worker-pool variants
    # ------------------------------------------------------------------

    async def hash_async(self, plaintext: str) -> str:
        return await self._submit(self.hash, plaintext)

    async def verify_async(self, plaintext: str, hashed: str | None) -> bool:
        return await self._submit(self.verify, plaintext, hashed)

    async def verify_dummy_async(self, plaintext: str) -> bool:
        return await self._submit(self.verify_dummy, plaintext)

    async def _submit(self, fn, *args):
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(self._executor, fn, *args)

    def close(self) -> None:
        self._executor.shutdown(wait=True)
