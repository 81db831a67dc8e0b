"""
auth/store.py -- SQLAlchemy Core persistence layer for user records.

Pattern: Repository + Data Mapper.
UserStore is the repository; _row_to_user is the mapper. The OTP engine and
credential service never touch SQL directly.

Security:
  All queries use bound parameters. No f-strings in SQL.

  Username and email are unique case-insensitively. That is enforced in SQL
  with unique functional indexes on lower(username) and lower(email), so two
  concurrent registrations of "Alice" and "alice" cannot both commit -- the
  loser gets sqlalchemy.exc.IntegrityError from save().

Atomicity:
  save() writes one row in one transaction. Read-modify-write sequences in
  the OTP engine rely on the database serializing writes to the same row;
  the store does no locking of its own.

Timestamps are stored as ISO 8601 strings (same convention as created_at)
and mapped back to timezone-aware datetimes.

Layer rule: no imports from api/.
"""

from __future__ import annotations

from datetime import datetime, timezone

from sqlalchemy import Column, Index, Integer, MetaData, String, Table, Text, create_engine, event, func, or_, select
from sqlalchemy.engine import Engine

from auth.models import Role, User
from core.config import DEFAULT_DB_URL

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

_metadata = MetaData()

_users = Table(
    "users",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("username", String(255), nullable=False),
    Column("email", String(320), nullable=False),
    Column("password_hash", Text, nullable=False),
    Column("first_name", String(100)),
    Column("last_name", String(100)),
    Column("role", String(30), nullable=False, server_default=Role.USER.value),
    Column("verified", Integer, nullable=False, server_default="0"),
    Column("otp_code", String(6)),
    Column("otp_expires_at", String(32)),
    Column("reset_otp_code", String(6)),
    Column("reset_otp_expires_at", String(32)),
    Column("created_at", String(32), nullable=False),
)

Index("ux_users_username_lower", func.lower(_users.c.username), unique=True)
Index("ux_users_email_lower", func.lower(_users.c.email), unique=True)


# ---------------------------------------------------------------------------
# WAL mode
# ---------------------------------------------------------------------------


def _set_wal_mode(dbapi_conn, connection_record) -> None:
    """Enable WAL journal mode so readers don't block behind OTP writes."""
    dbapi_conn.execute("PRAGMA journal_mode=WAL")


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _to_iso(value: datetime | None) -> str | None:
    return value.isoformat() if value is not None else None


def _from_iso(value: str | None) -> datetime | None:
    if not value:
        return None
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class UserStore:
    """Repository for User records.

    Usage:
        store = UserStore()
        user = store.save(User(username="alice", email="alice@x.com", password_hash=h))
        same = store.find_by_username_or_email("ALICE@x.com")
        store.close()
    """

    def __init__(self, db_url: str = DEFAULT_DB_URL) -> None:
        connect_args: dict = {}
        if db_url.startswith("sqlite"):
            connect_args["check_same_thread"] = False
        self.engine: Engine = create_engine(db_url, connect_args=connect_args)
        if db_url.startswith("sqlite"):
            event.listen(self.engine, "connect", _set_wal_mode)
        _metadata.create_all(self.engine)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def find_by_username_or_email(self, value: str) -> User | None:
        """Case-insensitive lookup on either username or email.

        A username takes precedence if one account's username equals
        another's email (registration prevents that, but legacy rows may not).
        """
        key = value.lower()
        with self.engine.connect() as conn:
            rows = conn.execute(
                _users.select().where(or_(func.lower(_users.c.username) == key, func.lower(_users.c.email) == key))
            ).fetchall()
        if not rows:
            return None
        rows.sort(key=lambda r: r.username.lower() != key)
        return _row_to_user(rows[0])

    def find_by_email(self, email: str) -> User | None:
        """Case-insensitive lookup by email. Returns None if not found."""
        with self.engine.connect() as conn:
            row = conn.execute(_users.select().where(func.lower(_users.c.email) == email.lower())).fetchone()
        return _row_to_user(row) if row is not None else None

    def find_by_username(self, username: str) -> User | None:
        """Case-insensitive lookup by username. Returns None if not found."""
        with self.engine.connect() as conn:
            row = conn.execute(_users.select().where(func.lower(_users.c.username) == username.lower())).fetchone()
        return _row_to_user(row) if row is not None else None

    def exists_by_username_or_email(self, username: str, email: str) -> bool:
        """True if either value collides with any existing username OR email.

        Checking both columns for both values stops a new username from
        shadowing someone else's email on the username-or-email login path.
        """
        keys = [username.lower(), email.lower()]
        with self.engine.connect() as conn:
            row = conn.execute(
                select(_users.c.id)
                .where(or_(func.lower(_users.c.username).in_(keys), func.lower(_users.c.email).in_(keys)))
                .limit(1)
            ).fetchone()
        return row is not None

    def list_users(self) -> list[User]:
        """Return all users ordered by username. Admin-only operation."""
        with self.engine.connect() as conn:
            rows = conn.execute(_users.select().order_by(_users.c.username)).fetchall()
        return [_row_to_user(r) for r in rows]

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def save(self, user: User) -> User:
        """Insert (id is None) or update (id set) a user; return the stored record.

        Raises sqlalchemy.exc.IntegrityError on a username/email collision.
        The returned object is the same instance with id/created_at filled in.
        """
        values = {
            "username": user.username,
            "email": user.email,
            "password_hash": user.password_hash,
            "first_name": user.first_name,
            "last_name": user.last_name,
            "role": Role(user.role).value,
            "verified": 1 if user.verified else 0,
            "otp_code": user.otp_code,
            "otp_expires_at": _to_iso(user.otp_expires_at),
            "reset_otp_code": user.reset_otp_code,
            "reset_otp_expires_at": _to_iso(user.reset_otp_expires_at),
        }
        with self.engine.begin() as conn:
            if user.id is None:
                created_at = _now_iso()
                result = conn.execute(_users.insert().values(created_at=created_at, **values))
                user.id = result.inserted_primary_key[0]
                user.created_at = created_at
            else:
                conn.execute(_users.update().where(_users.c.id == user.id).values(**values))
        return user

    def close(self) -> None:
        self.engine.dispose()


# ---------------------------------------------------------------------------
# Row mapper (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _row_to_user(row) -> User:
    return User(
        id=row.id,
        username=row.username,
        email=row.email,
        password_hash=row.password_hash,
        first_name=row.first_name,
        last_name=row.last_name,
        role=Role(row.role),
        verified=bool(row.verified),
        otp_code=row.otp_code,
        otp_expires_at=_from_iso(row.otp_expires_at),
        reset_otp_code=row.reset_otp_code,
        reset_otp_expires_at=_from_iso(row.reset_otp_expires_at),
        created_at=row.created_at,
    )
