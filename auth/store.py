"""
auth/store.py -- SQLAlchemy Core persistence layer for user accounts.

Pattern: Repository + Data Mapper.
UserStore is the repository; _row_to_user is the mapper.
Route, dependency and service code never touches SQL directly.

Security:
  All queries use bound parameters. No f-strings in SQL.

Refresh credential writes:
  set_refresh_token() updates exactly one column with a single UPDATE
  statement. It does not load, validate or re-save the rest of the record, so
  it cannot fail on validation rules unrelated to the refresh field. Each
  statement runs in its own transaction; the store offers no compare-and-swap,
  which is what leaves the concurrent-rotation race open (see auth/session.py).

Layer rule: no imports from api/.
"""

from __future__ import annotations

from datetime import datetime, timezone

from sqlalchemy import Column, Integer, MetaData, String, Table, Text, create_engine, event, or_, select, text
from sqlalchemy.engine import Engine
from sqlalchemy.pool import StaticPool

from auth.models import User

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

_metadata = MetaData()

_users = Table(
    "users",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("username", String(255), nullable=False, unique=True),
    Column("email", String(255), nullable=False, unique=True),
    Column("full_name", String(255), nullable=False),
    Column("hashed_password", Text, nullable=False),
    Column("refresh_token", Text),  # NULL when logged out
    Column("created_at", String(32), nullable=False),
    Column("updated_at", String(32), nullable=False),
)

# Columns a caller may change through update_user(). refresh_token and
# hashed_password have dedicated methods.
_PROFILE_FIELDS = frozenset({"full_name", "email"})


# ---------------------------------------------------------------------------
# WAL mode
# ---------------------------------------------------------------------------


def _set_wal_mode(dbapi_conn, connection_record) -> None:
    """Enable WAL journal mode for concurrent read safety.

    Set per-connection because SQLite PRAGMAs are not inherited by new
    connections from the pool.
    """
    dbapi_conn.execute("PRAGMA journal_mode=WAL")


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class UserStore:
    """Repository for User entities.

    Usage:
        store = UserStore("sqlite:///:memory:")
        uid = store.create_user(User(username="alice", email="a@x.io", full_name="Alice", hashed_password=...))
        store.set_refresh_token(uid, token)
        store.close()
    """

    def __init__(self, db_url: str) -> None:
        connect_args: dict = {}
        if db_url.startswith("sqlite"):
            connect_args["check_same_thread"] = False
        engine_args: dict = {}
        if ":memory:" in db_url or "mode=memory" in db_url:
            # One connection for the whole store, or the in-memory database
            # disappears with the first connection that closes.
            engine_args["poolclass"] = StaticPool
        self.engine: Engine = create_engine(db_url, connect_args=connect_args, **engine_args)
        if db_url.startswith("sqlite"):
            event.listen(self.engine, "connect", _set_wal_mode)
        _metadata.create_all(self.engine)

    def ping(self) -> bool:
        """Return True if the database answers a trivial query."""
        with self.engine.connect() as conn:
            conn.execute(text("SELECT 1"))
        return True

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def create_user(self, user: User) -> int:
        """Insert a new user and return its assigned database ID.

        Raises sqlalchemy.exc.IntegrityError if the username or email already
        exists. The route layer turns that into 409.
        """
        now = _now_iso()
        with self.engine.connect() as conn:
            result = conn.execute(
                _users.insert().values(
                    username=user.username,
                    email=user.email,
                    full_name=user.full_name,
                    hashed_password=user.hashed_password,
                    refresh_token=None,
                    created_at=now,
                    updated_at=now,
                )
            )
            conn.commit()
            return result.inserted_primary_key[0]

    def get_by_id(self, user_id: int) -> User | None:
        """Look up a user by primary key. Returns None if not found."""
        with self.engine.connect() as conn:
            row = conn.execute(_users.select().where(_users.c.id == user_id)).fetchone()
        return _row_to_user(row) if row is not None else None

    def find_by_credentials(self, username: str | None = None, email: str | None = None) -> User | None:
        """Find the user whose username OR email matches exactly (case-sensitive).

        Either argument may be None; None arguments are left out of the
        predicate. Returns None when neither is given or nothing matches.
        """
        clauses = []
        if username:
            clauses.append(_users.c.username == username)
        if email:
            clauses.append(_users.c.email == email)
        if not clauses:
            return None
        with self.engine.connect() as conn:
            row = conn.execute(select(_users).where(or_(*clauses)).order_by(_users.c.id)).first()
        return _row_to_user(row) if row is not None else None

    def exists(self, username: str, email: str) -> bool:
        """Return True if either the username or the email is already taken."""
        return self.find_by_credentials(username=username, email=email) is not None

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def set_refresh_token(self, user_id: int, token: str | None) -> bool:
        """Overwrite (or clear, with None) the user's single refresh credential.

        Returns True if a row was updated, False if user_id was not found.
        Does not touch updated_at: session churn is not a profile change.
        """
        with self.engine.connect() as conn:
            result = conn.execute(_users.update().where(_users.c.id == user_id).values(refresh_token=token))
            conn.commit()
        return result.rowcount > 0

    def update_user(self, user_id: int, **fields) -> bool:
        """Update profile fields (full_name, email) on an existing user.

        Unknown keys raise ValueError rather than being silently ignored.
        Raises IntegrityError if the new email belongs to another user.
        Returns True if a row was updated, False if user_id was not found.
        """
        unknown = set(fields) - _PROFILE_FIELDS
        if unknown:
            raise ValueError(f"Unknown user fields: {unknown!r}")
        with self.engine.connect() as conn:
            result = conn.execute(
                _users.update().where(_users.c.id == user_id).values(**fields, updated_at=_now_iso())
            )
            conn.commit()
        return result.rowcount > 0

    def update_password(self, user_id: int, hashed_password: str) -> bool:
        """Replace the stored password hash. Leaves refresh_token untouched."""
        with self.engine.connect() as conn:
            result = conn.execute(
                _users.update()
                .where(_users.c.id == user_id)
                .values(hashed_password=hashed_password, updated_at=_now_iso())
            )
            conn.commit()
        return result.rowcount > 0

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
        full_name=row.full_name,
        hashed_password=row.hashed_password,
        refresh_token=row.refresh_token,
        created_at=row.created_at,
        updated_at=row.updated_at,
    )
