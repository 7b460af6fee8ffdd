"""
auth/store.py -- SQLAlchemy Core persistence layer for user accounts.

Pattern: Repository + Data Mapper. UserStore is the repository; _row_to_account
is the mapper. Session and middleware code never touches SQL directly.

Security:
  All queries use bound parameters. No f-strings in SQL.

Case-insensitive email:
  Emails are lowercased before every write and compared with lower() on read.
  The UNIQUE constraint on the stored (already lowercase) value therefore
  enforces case-insensitive uniqueness at the DB level too, which is what
  turns a signup race into an IntegrityError -> DuplicateEmailError.

Bounded pool:
  QueuePool with pool_size connections and max_overflow=0 is the fixed
  concurrency ceiling. Requests beyond it wait up to pool_timeout seconds for
  a connection. Each statement is further bounded by a driver-level timeout
  (SQLite busy timeout, PostgreSQL statement_timeout, MySQL read/write
  timeout). Pool timeouts and operational failures surface as
  StoreUnavailableError, never as an indefinite hang.

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations

import functools
import logging
from collections.abc import Callable
from datetime import datetime, timezone

from sqlalchemy import Column, Integer, MetaData, String, Table, Text, create_engine, event, select, text
from sqlalchemy.engine import Connection, Engine
from sqlalchemy.exc import DisconnectionError, IntegrityError, InterfaceError, OperationalError
from sqlalchemy.exc import TimeoutError as PoolTimeoutError
from sqlalchemy.pool import QueuePool

from auth.errors import DuplicateEmailError, StoreUnavailableError
from auth.models import UserAccount

logger = logging.getLogger("canvasauth.store")

_DEFAULT_DB_URL = "sqlite:///canvas_auth.db"

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

_metadata = MetaData()

_users = Table(
    "users",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("email", String(255), nullable=False, unique=True),  # always lowercase
    Column("password_hash", Text, nullable=False),
    Column("first_name", String(100), nullable=False),
    Column("last_name", String(100), nullable=False),
    Column("is_active", Integer, nullable=False, server_default="1"),
    Column("refresh_token", Text),  # single session slot; NULL = logged out
    Column("last_login_at", String(32)),  # ISO 8601
    Column("created_at", String(32), nullable=False),
)

# Columns update() may touch. id and created_at are immutable.
_MUTABLE_FIELDS = frozenset(
    {"email", "password_hash", "first_name", "last_name", "is_active", "refresh_token", "last_login_at"}
)

_TRANSIENT_ERRORS = (PoolTimeoutError, OperationalError, InterfaceError, DisconnectionError)


# ---------------------------------------------------------------------------
# Engine construction
# ---------------------------------------------------------------------------


def _set_wal_mode(dbapi_conn, connection_record) -> None:
    """Enable WAL journal mode for concurrent read safety.

    Set per-connection because SQLite PRAGMAs are not inherited by new
    connections from the pool.
    """
    dbapi_conn.execute("PRAGMA journal_mode=WAL")


def _driver_timeouts(db_url: str, statement_timeout: float) -> dict:
    if db_url.startswith("sqlite"):
        # check_same_thread=False: connections are handed between threadpool workers
        return {"check_same_thread": False, "timeout": statement_timeout}
    if db_url.startswith("postgresql"):
        return {
            "connect_timeout": max(1, int(statement_timeout)),
            "options": f"-c statement_timeout={int(statement_timeout * 1000)}",
        }
    if db_url.startswith("mysql"):
        seconds = max(1, int(statement_timeout))
        return {"connect_timeout": seconds, "read_timeout": seconds, "write_timeout": seconds}
    return {}


def _guarded(method):
    """Translate transient SQLAlchemy failures into StoreUnavailableError."""

    @functools.wraps(method)
    def wrapper(self, *args, **kwargs):
        try:
            return method(self, *args, **kwargs)
        except _TRANSIENT_ERRORS as exc:
            logger.warning("Credential store unavailable during %s: %s", method.__name__, type(exc).__name__)
            raise StoreUnavailableError(f"{method.__name__}: {exc}") from exc

    return wrapper


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class UserStore:
    """Repository for UserAccount records.

    Usage:
        store = UserStore("sqlite:///canvas_auth.db", pool_size=10)
        account = store.create({"email": "a@x.com", "password_hash": h, "first_name": "A", "last_name": "B"})
        store.find_by_email("A@X.COM")  # same account
        store.update(account.id, refresh_token=None)
        store.close()
    """

    def __init__(
        self,
        db_url: str = _DEFAULT_DB_URL,
        pool_size: int = 10,
        pool_timeout: float = 5.0,
        statement_timeout: float = 5.0,
    ) -> None:
        self.engine: Engine = create_engine(
            db_url,
            poolclass=QueuePool,
            pool_size=pool_size,
            max_overflow=0,
            pool_timeout=pool_timeout,
            pool_pre_ping=True,
            connect_args=_driver_timeouts(db_url, statement_timeout),
        )
        if db_url.startswith("sqlite"):
            event.listen(self.engine, "connect", _set_wal_mode)
        self.create_schema()

    @_guarded
    def create_schema(self) -> None:
        """Create the users table if missing. Idempotent."""
        _metadata.create_all(self.engine)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    @_guarded
    def find_by_email(self, email: str) -> UserAccount | None:
        """Case-insensitive lookup; stored emails are already lowercase. Returns None if not found."""
        with self.engine.connect() as conn:
            row = conn.execute(_users.select().where(_users.c.email == normalize_email(email))).fetchone()
        return _row_to_account(row) if row is not None else None

    @_guarded
    def find_by_id(self, user_id: int) -> UserAccount | None:
        with self.engine.connect() as conn:
            return self._get(conn, user_id)

    @_guarded
    def create(
        self,
        fields: dict,
        on_created: Callable[[UserAccount], dict] | None = None,
    ) -> UserAccount:
        """Insert a new account and return it.

        on_created, when given, receives the freshly inserted account (id
        assigned) and returns extra column values to write. Insert and
        follow-up update share one transaction: if on_created raises or the
        update fails, the insert is rolled back and no account exists.

        Raises DuplicateEmailError if the email is already taken, including
        when a concurrent signup wins the race between lookup and insert.
        """
        values = _to_columns(fields)
        values.setdefault("is_active", 1)
        values["created_at"] = _now_iso()
        try:
            with self.engine.begin() as conn:
                result = conn.execute(_users.insert().values(**values))
                account = self._get(conn, result.inserted_primary_key[0])
                if on_created is not None:
                    extra = _to_columns(on_created(account))
                    if extra:
                        conn.execute(_users.update().where(_users.c.id == account.id).values(**extra))
                        account = self._get(conn, account.id)
        except IntegrityError as exc:
            raise DuplicateEmailError(f"email {values.get('email')!r} already registered") from exc
        return account

    @_guarded
    def update(self, user_id: int, **fields) -> bool:
        """Update mutable fields on an existing account.

        Accepted fields: email, password_hash, first_name, last_name,
        is_active, refresh_token, last_login_at. Unknown keys raise ValueError
        rather than being silently ignored.

        Plain overwrite, no compare-and-swap: concurrent writers to the same
        refresh_token slot are last-writer-wins.

        Returns True if a row was updated, False if user_id was not found.
        """
        unknown = set(fields) - _MUTABLE_FIELDS
        if unknown:
            raise ValueError(f"Unknown account fields: {sorted(unknown)!r}")
        if not fields:
            return False
        with self.engine.begin() as conn:
            result = conn.execute(_users.update().where(_users.c.id == user_id).values(**_to_columns(fields)))
        return result.rowcount > 0

    @_guarded
    def ping(self) -> bool:
        """Round-trip one trivial query. Used by the health endpoint."""
        with self.engine.connect() as conn:
            conn.execute(text("SELECT 1"))
        return True

    def close(self) -> None:
        self.engine.dispose()

    def _get(self, conn: Connection, user_id: int) -> UserAccount | None:
        row = conn.execute(select(_users).where(_users.c.id == user_id)).fetchone()
        return _row_to_account(row) if row is not None else None


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def normalize_email(email: str) -> str:
    return email.strip().lower()


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _to_columns(fields: dict) -> dict:
    """Convert domain values to their column representation."""
    values = dict(fields)
    if "email" in values:
        values["email"] = normalize_email(values["email"])
    if "is_active" in values:
        values["is_active"] = 1 if values["is_active"] else 0
    if isinstance(values.get("last_login_at"), datetime):
        values["last_login_at"] = values["last_login_at"].isoformat()
    return values


def _parse_iso(value: str | None) -> datetime | None:
    return datetime.fromisoformat(value) if value else None


def _row_to_account(row) -> UserAccount:
    return UserAccount(
        id=row.id,
        email=row.email,
        password_hash=row.password_hash,
        first_name=row.first_name,
        last_name=row.last_name,
        is_active=bool(row.is_active),
        refresh_token=row.refresh_token,
        last_login_at=_parse_iso(row.last_login_at),
        created_at=_parse_iso(row.created_at),
    )
