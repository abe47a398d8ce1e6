"""
auth/store.py -- SQLAlchemy Core persistence layer for auth entities.

Pattern: Repository + Data Mapper. UserStore and SessionStore are the
repositories; _row_to_user / _row_to_session are the mappers. Services never
touch SQL directly.

Security:
  All queries use bound parameters. No f-strings in SQL.

  Refresh tokens are never written here -- only their SHA-256 hash.

  Session validation (compare hash, check expiry, bump last_used_at) runs in
  one transaction. The UPDATE repeats the hash and expiry predicates, so a
  session deleted by a concurrent logout between the SELECT and the UPDATE
  simply matches zero rows.

Timestamps:
  Stored as ISO 8601 UTC strings with fixed microsecond precision so that
  string order equals time order and "expires_at <= :now" works on any
  backend, SQLite included.

Failure mapping:
  OperationalError and pool timeouts become StoreUnavailableError (retryable).
  A duplicate email on insert becomes EmailAlreadyRegisteredError.

Layer rule: no imports from api/.
"""

from __future__ import annotations

import hmac
import logging
import uuid
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import datetime, timezone

from sqlalchemy import JSON, Column, ForeignKey, MetaData, String, Table, Text, create_engine, event
from sqlalchemy.engine import Connection, Engine
from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.exc import TimeoutError as PoolTimeoutError

from auth.errors import EmailAlreadyRegisteredError, StoreUnavailableError
from auth.models import Session, User

logger = logging.getLogger("tradesauth.auth.store")

_DEFAULT_DB_URL = "sqlite:///tradesauth.db"

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

_metadata = MetaData()

_users = Table(
    "users",
    _metadata,
    Column("id", String(36), primary_key=True),
    Column("email", String(255), nullable=False, unique=True),
    Column("password_hash", String(255), nullable=False),
    Column("user_type", String(20), nullable=False),
    Column("account_status", String(20), nullable=False, server_default="pending"),
    Column("first_name", String(100), nullable=False, server_default=""),
    Column("last_name", String(100), nullable=False, server_default=""),
    Column("phone", String(20)),
    Column("profile_image_url", Text),
    Column("email_verified_at", String(32)),
    Column("phone_verified_at", String(32)),
    Column("last_login_at", String(32)),
    Column("created_at", String(32), nullable=False),
    Column("updated_at", String(32), nullable=False),
)

_sessions = Table(
    "user_sessions",
    _metadata,
    Column("id", String(36), primary_key=True),
    Column("user_id", String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True),
    Column("refresh_token_hash", String(64), nullable=False),  # SHA-256 hex
    Column("device_type", String(50), nullable=False, server_default="unknown"),
    Column("device_info", JSON),
    Column("ip_address", String(45)),
    Column("user_agent", Text),
    Column("created_at", String(32), nullable=False),
    Column("last_used_at", String(32), nullable=False),
    Column("expires_at", String(32), nullable=False, index=True),
)

# Columns callers may change through UserStore.update_user().
_USER_MUTABLE = {
    "password_hash",
    "user_type",
    "account_status",
    "first_name",
    "last_name",
    "phone",
    "profile_image_url",
    "email_verified_at",
    "phone_verified_at",
    "last_login_at",
}
_USER_TIMESTAMPS = {"email_verified_at", "phone_verified_at", "last_login_at"}


# ---------------------------------------------------------------------------
# Engine helpers
# ---------------------------------------------------------------------------


def _set_wal_mode(dbapi_conn, connection_record) -> None:
    """Enable WAL journal mode so cleanup sweeps do not block readers.

    Set per-connection because SQLite PRAGMAs are not inherited by new
    connections from the pool.
    """
    dbapi_conn.execute("PRAGMA journal_mode=WAL")


def create_store_engine(db_url: str = _DEFAULT_DB_URL, timeout: float = 5.0) -> Engine:
    """Create an Engine whose connections give up after `timeout` seconds.

    SQLite: busy timeout on the DBAPI connection.
    PostgreSQL: connect timeout plus a server-side statement_timeout.
    Everything else: pool checkout timeout only.
    """
    connect_args: dict = {}
    kwargs: dict = {}
    if db_url.startswith("sqlite"):
        connect_args["check_same_thread"] = False
        connect_args["timeout"] = timeout
    else:
        kwargs["pool_timeout"] = timeout
        kwargs["pool_pre_ping"] = True
        if db_url.startswith("postgresql"):
            connect_args["connect_timeout"] = max(1, int(timeout))
            connect_args["options"] = f"-c statement_timeout={int(timeout * 1000)}"
    engine = create_engine(db_url, connect_args=connect_args, **kwargs)
    if db_url.startswith("sqlite"):
        event.listen(engine, "connect", _set_wal_mode)
    _metadata.create_all(engine)
    return engine


def _to_iso(value: datetime | None) -> str | None:
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat(timespec="microseconds")


def _from_iso(value: str | None) -> datetime | None:
    return datetime.fromisoformat(value) if value else None


def _now() -> datetime:
    return datetime.now(timezone.utc)


def normalize_email(email: str) -> str:
    return email.strip().lower()


class _BaseStore:
    def __init__(self, db_url: str = _DEFAULT_DB_URL, timeout: float = 5.0, engine: Engine | None = None) -> None:
        self.engine: Engine = engine if engine is not None else create_store_engine(db_url, timeout)

    @contextmanager
    def _connect(self) -> Iterator[Connection]:
        try:
            with self.engine.connect() as conn:
                yield conn
        except (OperationalError, PoolTimeoutError) as exc:
            logger.warning("Store call failed: %s", exc.__class__.__name__)
            raise StoreUnavailableError() from exc

    @contextmanager
    def _transaction(self) -> Iterator[Connection]:
        """Connection inside BEGIN ... COMMIT; any exception rolls everything back."""
        try:
            with self.engine.begin() as conn:
                yield conn
        except (OperationalError, PoolTimeoutError) as exc:
            logger.warning("Store transaction failed: %s", exc.__class__.__name__)
            raise StoreUnavailableError() from exc

    def close(self) -> None:
        self.engine.dispose()


# ---------------------------------------------------------------------------
# Users
# ---------------------------------------------------------------------------


class UserStore(_BaseStore):
    """Repository for User records -- the user lookup the auth core consumes.

    Emails are stored and matched lowercased and stripped.

    Usage:
        store = UserStore("sqlite://")
        uid = store.create_user(User(email="a@x.com", password_hash=h, account_status="active"))
        store.find_active_by_id(uid)
    """

    def create_user(self, user: User) -> str:
        """Insert a new user and return its generated id.

        Raises EmailAlreadyRegisteredError if the email is taken, including
        when a concurrent request won the race for the same address.
        """
        user_id = user.id or str(uuid.uuid4())
        now = _to_iso(_now())
        try:
            with self._transaction() as conn:
                conn.execute(
                    _users.insert().values(
                        id=user_id,
                        email=normalize_email(user.email),
                        password_hash=user.password_hash,
                        user_type=user.user_type,
                        account_status=user.account_status,
                        first_name=user.first_name or "",
                        last_name=user.last_name or "",
                        phone=user.phone,
                        profile_image_url=user.profile_image_url,
                        email_verified_at=_to_iso(user.email_verified_at),
                        phone_verified_at=_to_iso(user.phone_verified_at),
                        created_at=now,
                        updated_at=now,
                    )
                )
        except IntegrityError as exc:
            raise EmailAlreadyRegisteredError() from exc
        return user_id

    def find_by_id(self, user_id: str) -> User | None:
        with self._connect() as conn:
            row = conn.execute(_users.select().where(_users.c.id == user_id)).fetchone()
        return _row_to_user(row) if row is not None else None

    def find_active_by_id(self, user_id: str) -> User | None:
        """Look up a user by id, returning None unless the account is active."""
        with self._connect() as conn:
            row = conn.execute(
                _users.select().where((_users.c.id == user_id) & (_users.c.account_status == "active"))
            ).fetchone()
        return _row_to_user(row) if row is not None else None

    def find_by_email(self, email: str) -> User | None:
        """Look up a user by email regardless of status. Returns None if not found."""
        with self._connect() as conn:
            row = conn.execute(_users.select().where(_users.c.email == normalize_email(email))).fetchone()
        return _row_to_user(row) if row is not None else None

    def update_user(self, user_id: str, **fields) -> bool:
        """Update mutable columns. Returns True if a row was updated.

        Unknown field names raise ValueError rather than being ignored.
        datetime values for the *_at columns are converted to ISO strings.
        """
        unknown = set(fields) - _USER_MUTABLE
        if unknown:
            raise ValueError(f"Unknown user fields: {unknown!r}")
        values = {k: (_to_iso(v) if k in _USER_TIMESTAMPS else v) for k, v in fields.items()}
        values["updated_at"] = _to_iso(_now())
        with self._transaction() as conn:
            result = conn.execute(_users.update().where(_users.c.id == user_id).values(**values))
        return result.rowcount > 0

    def update_last_login(self, user_id: str, when: datetime | None = None) -> None:
        self.update_user(user_id, last_login_at=when or _now())

    def update_password(self, user_id: str, password_hash: str) -> bool:
        return self.update_user(user_id, password_hash=password_hash)


# ---------------------------------------------------------------------------
# Sessions
# ---------------------------------------------------------------------------


class SessionStore(_BaseStore):
    """Repository for refresh sessions (user_sessions table).

    Every method is a single statement or a single transaction, so the store
    is safe to share between request threads and the cleanup task.
    """

    def create(self, session: Session) -> None:
        with self._transaction() as conn:
            conn.execute(
                _sessions.insert().values(
                    id=session.id,
                    user_id=session.user_id,
                    refresh_token_hash=session.refresh_token_hash,
                    device_type=session.device_type,
                    device_info=session.device_info,
                    ip_address=session.ip_address,
                    user_agent=session.user_agent,
                    created_at=_to_iso(session.created_at),
                    last_used_at=_to_iso(session.last_used_at or session.created_at),
                    expires_at=_to_iso(session.expires_at),
                )
            )

    def get(self, session_id: str) -> Session | None:
        with self._connect() as conn:
            row = conn.execute(_sessions.select().where(_sessions.c.id == session_id)).fetchone()
        return _row_to_session(row) if row is not None else None

    def touch_if_valid(self, session_id: str, user_id: str, token_hash: str, now: datetime) -> Session | None:
        """Match the token hash, check expiry, and bump last_used_at -- atomically.

        Returns the updated Session, or None when the session is missing,
        belongs to another user, has a different hash, or has expired. The
        caller cannot tell which; that is deliberate.
        """
        now_iso = _to_iso(now)
        with self._transaction() as conn:
            row = conn.execute(
                _sessions.select().where((_sessions.c.id == session_id) & (_sessions.c.user_id == user_id))
            ).fetchone()
            if row is None:
                return None
            if not hmac.compare_digest(row.refresh_token_hash, token_hash):
                return None
            if row.expires_at <= now_iso:
                return None
            result = conn.execute(
                _sessions.update()
                .where(
                    (_sessions.c.id == session_id)
                    & (_sessions.c.refresh_token_hash == token_hash)
                    & (_sessions.c.expires_at > now_iso)
                )
                .values(last_used_at=now_iso)
            )
            if result.rowcount != 1:
                return None
        session = _row_to_session(row)
        session.last_used_at = _from_iso(now_iso)
        return session

    def delete(self, session_id: str) -> bool:
        """Delete one session. Returns False (not an error) if it did not exist."""
        with self._transaction() as conn:
            result = conn.execute(_sessions.delete().where(_sessions.c.id == session_id))
        return result.rowcount > 0

    def delete_for_user(self, user_id: str) -> int:
        with self._transaction() as conn:
            result = conn.execute(_sessions.delete().where(_sessions.c.user_id == user_id))
        return result.rowcount

    def delete_expired(self, now: datetime) -> int:
        """DELETE ... WHERE expires_at <= now. Re-entrant: rows vanish at most once."""
        with self._transaction() as conn:
            result = conn.execute(_sessions.delete().where(_sessions.c.expires_at <= _to_iso(now)))
        return result.rowcount

    def list_for_user(self, user_id: str, now: datetime) -> list[Session]:
        """Return the user's unexpired sessions, most recently used first."""
        with self._connect() as conn:
            rows = conn.execute(
                _sessions.select()
                .where((_sessions.c.user_id == user_id) & (_sessions.c.expires_at > _to_iso(now)))
                .order_by(_sessions.c.last_used_at.desc())
            ).fetchall()
        return [_row_to_session(r) for r in rows]


# ---------------------------------------------------------------------------
# Row mappers (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _row_to_user(row) -> User:
    return User(
        id=row.id,
        email=row.email,
        password_hash=row.password_hash,
        user_type=row.user_type,
        account_status=row.account_status,
        first_name=row.first_name,
        last_name=row.last_name,
        phone=row.phone,
        profile_image_url=row.profile_image_url,
        email_verified_at=_from_iso(row.email_verified_at),
        phone_verified_at=_from_iso(row.phone_verified_at),
        last_login_at=_from_iso(row.last_login_at),
        created_at=_from_iso(row.created_at),
        updated_at=_from_iso(row.updated_at),
    )


def _row_to_session(row) -> Session:
    return Session(
        id=row.id,
        user_id=row.user_id,
        refresh_token_hash=row.refresh_token_hash,
        device_type=row.device_type,
        device_info=row.device_info or {},
        ip_address=row.ip_address,
        user_agent=row.user_agent,
        created_at=_from_iso(row.created_at),
        last_used_at=_from_iso(row.last_used_at),
        expires_at=_from_iso(row.expires_at),
    )
