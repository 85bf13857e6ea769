"""
auth/store.py -- SQLAlchemy Core persistence layer for users.

Pattern: Repository + Data Mapper. UserStore is the repository; _row_to_record
and _row_to_public are the mappers. Service and route code never touches SQL.

Repository contract used by AuthSessionService:
  get_by_email(email)                  -> UserRecord | None
  get_by_id(user_id, field_set)        -> PublicUser | UserRecord | None
  create_user(user)                    -> new id
  update_user(user_id, values, unset)  -> bool
  count_users()                        -> int   (admin bootstrap check)
  list_users()                         -> list[PublicUser]

Sensitive columns (password hash, lockout, refresh state) are only read when
the caller asks for FieldSet.SENSITIVE or looks a user up by email for login.
Every other read maps to PublicUser.

Security:
  All queries use bound parameters. update_user() validates column names
  against a whitelist before building the statement.

Concurrency:
  update_user() is a plain UPDATE. There is no compare-and-swap, so lockout
  counters and refresh rotation are last-writer-wins under concurrent requests
  for the same user. Lock waits are bounded by the SQLite busy timeout.

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations

from collections.abc import Iterable
from datetime import datetime, timezone

from sqlalchemy import Column, Integer, MetaData, String, Table, Text, create_engine, event, func, select
from sqlalchemy.engine import Engine

from auth.models import FieldSet, PublicUser, UserRecord

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

_metadata = MetaData()

_users = Table(
    "users",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("name", String(100), nullable=False),
    Column("email", String(255), nullable=False, unique=True),  # stored lower-cased
    Column("password_hash", Text, nullable=False),  # "salt:key" hex
    Column("role", String(10), nullable=False, server_default="user"),
    Column("login_failures", Integer, nullable=False, server_default="0"),
    Column("lock_until", String(32)),
    Column("refresh_token_hash", String(64)),  # HMAC-SHA256 hex
    Column("refresh_token_expires_at", String(32)),
    Column("created_at", String(32), nullable=False),
    Column("updated_at", String(32), nullable=False),
)

_PUBLIC_COLUMNS = (
    _users.c.id,
    _users.c.name,
    _users.c.email,
    _users.c.role,
    _users.c.created_at,
    _users.c.updated_at,
)

# Columns update_user() may touch, with the value written when a column is unset.
_MUTABLE_COLUMNS: dict[str, object] = {
    "name": None,
    "role": None,
    "password_hash": None,
    "login_failures": 0,
    "lock_until": None,
    "refresh_token_hash": None,
    "refresh_token_expires_at": None,
}
_NOT_NULL = {"name", "role", "password_hash"}


# ---------------------------------------------------------------------------
# WAL mode
# ---------------------------------------------------------------------------


def _set_wal_mode(dbapi_conn, connection_record) -> None:
    """Enable WAL journal mode so readers are not blocked by a writer.

    Set per-connection because SQLite PRAGMAs are not inherited by new
    connections from the pool.
    """
    dbapi_conn.execute("PRAGMA journal_mode=WAL")


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def normalize_email(email: str) -> str:
    return email.strip().lower()


def _to_db(value):
    if isinstance(value, datetime):
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc).isoformat()
    return value


def _parse_ts(value: str | None) -> datetime | None:
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
    """Repository for user records.

    Usage:
        store = UserStore("sqlite:///:memory:")
        uid = store.create_user(UserRecord(name="Ada", email="ada@x.com", password_hash=h))
        user = store.get_by_id(uid)                      # PublicUser
        record = store.get_by_id(uid, FieldSet.SENSITIVE)  # UserRecord
        store.close()
    """

    def __init__(self, db_url: str, timeout: float = 5.0) -> None:
        connect_args: dict = {}
        if db_url.startswith("sqlite"):
            connect_args["check_same_thread"] = False
            connect_args["timeout"] = timeout
        self.engine: Engine = create_engine(db_url, connect_args=connect_args)
        if db_url.startswith("sqlite") and ":memory:" not in db_url and "mode=memory" not in db_url:
            event.listen(self.engine, "connect", _set_wal_mode)
        _metadata.create_all(self.engine)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def count_users(self) -> int:
        """Return the number of user records. Used for the admin bootstrap rule."""
        with self.engine.connect() as conn:
            result = conn.execute(select(func.count()).select_from(_users)).scalar()
        return result or 0

    def get_by_email(self, email: str) -> UserRecord | None:
        """Look up a user by email (case-insensitive), including sensitive fields."""
        with self.engine.connect() as conn:
            row = conn.execute(_users.select().where(_users.c.email == normalize_email(email))).fetchone()
        return _row_to_record(row) if row is not None else None

    def get_by_id(self, user_id: int, field_set: FieldSet = FieldSet.PUBLIC) -> PublicUser | UserRecord | None:
        """Look up a user by primary key in the requested view. Returns None if not found."""
        if field_set is FieldSet.SENSITIVE:
            stmt = _users.select().where(_users.c.id == user_id)
            mapper = _row_to_record
        else:
            stmt = select(*_PUBLIC_COLUMNS).where(_users.c.id == user_id)
            mapper = _row_to_public
        with self.engine.connect() as conn:
            row = conn.execute(stmt).fetchone()
        return mapper(row) if row is not None else None

    def list_users(self) -> list[PublicUser]:
        """Return all users, newest first."""
        with self.engine.connect() as conn:
            rows = conn.execute(
                select(*_PUBLIC_COLUMNS).order_by(_users.c.created_at.desc(), _users.c.id.desc())
            ).fetchall()
        return [_row_to_public(r) for r in rows]

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def create_user(self, user: UserRecord) -> int:
        """Insert a new user and return its assigned database ID.

        Raises sqlalchemy.exc.IntegrityError if the email already exists.
        The service maps that to Conflict for the check-then-insert race.
        """
        now = _now_iso()
        with self.engine.connect() as conn:
            result = conn.execute(
                _users.insert().values(
                    name=user.name,
                    email=normalize_email(user.email),
                    password_hash=user.password_hash,
                    role=user.role,
                    login_failures=user.login_failures,
                    lock_until=_to_db(user.lock_until),
                    refresh_token_hash=user.refresh_token_hash,
                    refresh_token_expires_at=_to_db(user.refresh_token_expires_at),
                    created_at=now,
                    updated_at=now,
                )
            )
            conn.commit()
            return result.inserted_primary_key[0]

    def update_user(self, user_id: int, values: dict | None = None, unset: Iterable[str] = ()) -> bool:
        """Set ``values`` and clear the ``unset`` columns on one user.

        Cleared columns become NULL, except login_failures which resets to 0.
        updated_at is always bumped. Unknown column names raise ValueError
        before any SQL runs.

        Returns True if a row was updated, False if user_id was not found.
        """
        values = dict(values or {})
        unset = tuple(unset)
        unknown = (set(values) | set(unset)) - set(_MUTABLE_COLUMNS)
        if unknown:
            raise ValueError(f"Unknown or immutable user columns: {sorted(unknown)!r}")
        cleared = _NOT_NULL.intersection(unset)
        if cleared:
            raise ValueError(f"Columns cannot be unset: {sorted(cleared)!r}")
        params = {name: _to_db(value) for name, value in values.items()}
        for name in unset:
            params.setdefault(name, _MUTABLE_COLUMNS[name])
        params["updated_at"] = _now_iso()
        with self.engine.connect() as conn:
            result = conn.execute(_users.update().where(_users.c.id == user_id).values(**params))
            conn.commit()
        return result.rowcount > 0

    def close(self) -> None:
        self.engine.dispose()


# ---------------------------------------------------------------------------
# Row mappers (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _row_to_public(row) -> PublicUser:
    return PublicUser(
        id=row.id,
        name=row.name,
        email=row.email,
        role=row.role,
        created_at=row.created_at,
        updated_at=row.updated_at,
    )


def _row_to_record(row) -> UserRecord:
    refresh_hash = row.refresh_token_hash
    refresh_expires = _parse_ts(row.refresh_token_expires_at)
    # Half a refresh pair is as good as none.
    if refresh_hash is None or refresh_expires is None:
        refresh_hash, refresh_expires = None, None
    return UserRecord(
        id=row.id,
        name=row.name,
        email=row.email,
        password_hash=row.password_hash,
        role=row.role,
        login_failures=row.login_failures or 0,
        lock_until=_parse_ts(row.lock_until),
        refresh_token_hash=refresh_hash,
        refresh_token_expires_at=refresh_expires,
        created_at=row.created_at,
        updated_at=row.updated_at,
    )
