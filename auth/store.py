"""
auth/store.py -- SQLAlchemy Core persistence layer for auth entities.

Pattern: Repository + Data Mapper.
UserStore and ResetTokenStore are the repositories; _row_to_user and
_row_to_reset_token are the mappers. Service and route code never touches SQL.

Security:
  All queries use bound parameters. No f-strings in SQL.

  UNIQUE(users.email) is the real guard against duplicate registration. Two
  concurrent inserts for the same normalized email cannot both commit; the
  loser's IntegrityError is translated to Conflict here.

  UNIQUE(password_reset_tokens.token). consume() is a single DELETE whose
  rowcount picks exactly one winner when the same token is confirmed twice
  concurrently.

  MFA confirmation and login-code consumption are compare-and-set UPDATEs
  (the WHERE clause pins the value that was verified), so a stale read can
  never enable the wrong secret or reuse a code.

DB URL: Settings.database_url (SQLite file beside this package by default).

Layer rule: no imports from api/.
"""

from __future__ import annotations

from datetime import datetime, timezone

from sqlalchemy import (
    Column,
    ForeignKey,
    Integer,
    MetaData,
    String,
    Table,
    Text,
    create_engine,
    event,
    func,
    select,
)
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError

from auth.errors import Conflict, NotFound
from auth.models import LoginCode, MfaState, MfaStatus, PasswordResetToken, Role, User

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

_metadata = MetaData()

_users = Table(
    "users",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("email", String(255), nullable=False, unique=True),  # always lower-cased
    Column("name", String(100), nullable=False, server_default=""),
    Column("hashed_password", Text),
    Column("role", String(30), nullable=False, server_default="staff"),
    Column("is_active", Integer, nullable=False, server_default="1"),
    Column("mfa_status", String(10), nullable=False, server_default="disabled"),
    Column("mfa_secret", String(64)),  # set only when mfa_status = enabled
    Column("mfa_pending_secret", String(64)),  # set only when mfa_status = pending
    Column("login_code", String(6)),
    Column("login_code_expires_at", String(32)),
    Column("last_login", String(32)),
    Column("created_at", String(32), nullable=False),
    Column("updated_at", String(32), nullable=False),
)

_reset_tokens = Table(
    "password_reset_tokens",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("token", String(64), nullable=False, unique=True),
    Column("user_id", Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True),
    Column("created_at", String(32), nullable=False),
    Column("expires_at", String(32), nullable=False),
)


# ---------------------------------------------------------------------------
# WAL mode
# ---------------------------------------------------------------------------


def _set_wal_mode(dbapi_conn, connection_record) -> None:
    """Enable WAL journal mode for concurrent read safety.

    Set per-connection because SQLite PRAGMAs are not inherited by new
    connections from the pool.
    """
    dbapi_conn.execute("PRAGMA journal_mode=WAL")


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _now_iso() -> str:
    return _now().isoformat()


def _parse_ts(value: str | None) -> datetime | None:
    if not value:
        return None
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def normalize_email(email: str) -> str:
    return email.strip().lower()


def create_store_engine(db_url: str) -> Engine:
    connect_args: dict = {}
    if db_url.startswith("sqlite"):
        connect_args["check_same_thread"] = False
    engine = create_engine(db_url, connect_args=connect_args)
    if db_url.startswith("sqlite"):
        event.listen(engine, "connect", _set_wal_mode)
    _metadata.create_all(engine)
    return engine


# ---------------------------------------------------------------------------
# Users
# ---------------------------------------------------------------------------


class UserStore:
    """Repository for User records.

    Usage:
        store = UserStore("sqlite:///lablive_auth.db")
        uid = store.create_user(User(email="a@example.com", name="A", hashed_password=h))
        user = store.get_by_email("A@Example.com")
        store.close()
    """

    # Columns update_user() may touch. Anything else goes through a dedicated
    # method that enforces its own invariant.
    _MUTABLE_FIELDS: frozenset = frozenset({"name", "role", "is_active", "hashed_password"})

    def __init__(self, db_url: str) -> None:
        self.engine: Engine = create_store_engine(db_url)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def has_users(self) -> bool:
        with self.engine.connect() as conn:
            result = conn.execute(select(func.count()).select_from(_users)).scalar()
        return (result or 0) > 0

    def count_active_admins(self) -> int:
        """Used by PATCH /users/{id} to prevent deactivating the last admin."""
        with self.engine.connect() as conn:
            result = conn.execute(
                select(func.count())
                .select_from(_users)
                .where((_users.c.role == Role.admin.value) & (_users.c.is_active == 1))
            ).scalar()
        return result or 0

    def get_by_email(self, email: str) -> User | None:
        """Look up a user by email, case-insensitively. Returns None if not found."""
        with self.engine.connect() as conn:
            row = conn.execute(_users.select().where(_users.c.email == normalize_email(email))).fetchone()
        return _row_to_user(row) if row is not None else None

    def get_by_id(self, user_id: int) -> User | None:
        with self.engine.connect() as conn:
            row = conn.execute(_users.select().where(_users.c.id == user_id)).fetchone()
        return _row_to_user(row) if row is not None else None

    def require(self, user_id: int) -> User:
        """Like get_by_id() but raises NotFound."""
        user = self.get_by_id(user_id)
        if user is None:
            raise NotFound("User not found.")
        return user

    def list_users(self) -> list[User]:
        with self.engine.connect() as conn:
            rows = conn.execute(_users.select().order_by(_users.c.email)).fetchall()
        return [_row_to_user(r) for r in rows]

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def create_user(self, user: User) -> int:
        """Insert a new user and return its assigned database ID.

        Raises Conflict if the normalized email already exists -- including
        when a concurrent request committed it between our caller's
        existence check and this insert.
        """
        now = _now_iso()
        try:
            with self.engine.begin() as conn:
                result = conn.execute(
                    _users.insert().values(
                        email=normalize_email(user.email),
                        name=user.name,
                        hashed_password=user.hashed_password,
                        role=Role(user.role).value,
                        is_active=1 if user.is_active else 0,
                        mfa_status=MfaStatus.disabled.value,
                        created_at=now,
                        updated_at=now,
                    )
                )
                return result.inserted_primary_key[0]
        except IntegrityError as exc:
            raise Conflict() from exc

    def update_user(self, user_id: int, **fields) -> bool:
        """Update mutable fields on an existing user.

        Accepted fields: name, role, is_active, hashed_password. Returns True
        if a row was updated, False if user_id was not found.
        """
        unknown = set(fields) - self._MUTABLE_FIELDS
        if unknown:
            raise ValueError(f"Unknown user fields: {unknown!r}")
        if "is_active" in fields:
            fields["is_active"] = 1 if fields["is_active"] else 0
        if "role" in fields:
            fields["role"] = Role(fields["role"]).value
        return self._update(user_id, **fields)

    def set_password(self, user_id: int, hashed_password: str) -> bool:
        return self._update(user_id, hashed_password=hashed_password)

    def update_last_login(self, user_id: int) -> None:
        self._update(user_id, last_login=_now_iso())

    def save_mfa(self, user_id: int, state: MfaState, *, expected_pending: str | None = None) -> bool:
        """Persist an MFA state transition.

        expected_pending pins the pending secret that was verified; if another
        request restarted enrollment meanwhile, nothing is written and False
        is returned.
        """
        stmt = _users.update().where(_users.c.id == user_id)
        if expected_pending is not None:
            stmt = stmt.where(_users.c.mfa_pending_secret == expected_pending)
        with self.engine.begin() as conn:
            result = conn.execute(
                stmt.values(
                    mfa_status=state.status.value,
                    mfa_secret=state.secret,
                    mfa_pending_secret=state.pending_secret,
                    updated_at=_now_iso(),
                )
            )
        return result.rowcount > 0

    def set_login_code(self, user_id: int, login_code: LoginCode | None) -> None:
        self._update(
            user_id,
            login_code=login_code.code if login_code else None,
            login_code_expires_at=login_code.expires_at.isoformat() if login_code else None,
        )

    def consume_login_code(self, user_id: int, code: str) -> bool:
        """Clear the login code if it still equals code. True for exactly one caller."""
        with self.engine.begin() as conn:
            result = conn.execute(
                _users.update()
                .where((_users.c.id == user_id) & (_users.c.login_code == code))
                .values(login_code=None, login_code_expires_at=None, updated_at=_now_iso())
            )
        return result.rowcount > 0

    def _update(self, user_id: int, **values) -> bool:
        values["updated_at"] = _now_iso()
        with self.engine.begin() as conn:
            result = conn.execute(_users.update().where(_users.c.id == user_id).values(**values))
        return result.rowcount > 0

    def close(self) -> None:
        self.engine.dispose()


# ---------------------------------------------------------------------------
# Password reset tokens
# ---------------------------------------------------------------------------


class ResetTokenStore:
    """Repository for PasswordResetToken records.

    Shares the UserStore engine; tokens live in their own table and are never
    embedded in the user row.
    """

    def __init__(self, engine: Engine) -> None:
        self.engine = engine
        _metadata.create_all(engine)

    def create(self, reset_token: PasswordResetToken) -> int:
        with self.engine.begin() as conn:
            result = conn.execute(
                _reset_tokens.insert().values(
                    token=reset_token.token,
                    user_id=reset_token.user_id,
                    created_at=(reset_token.created_at or _now()).isoformat(),
                    expires_at=reset_token.expires_at.isoformat(),
                )
            )
            return result.inserted_primary_key[0]

    def get(self, token: str) -> PasswordResetToken | None:
        with self.engine.connect() as conn:
            row = conn.execute(_reset_tokens.select().where(_reset_tokens.c.token == token)).fetchone()
        return _row_to_reset_token(row) if row is not None else None

    def consume(self, token: str) -> bool:
        """Delete the token. Returns True only for the caller that actually removed it."""
        with self.engine.begin() as conn:
            result = conn.execute(_reset_tokens.delete().where(_reset_tokens.c.token == token))
        return result.rowcount > 0

    def count_for_user(self, user_id: int) -> int:
        with self.engine.connect() as conn:
            result = conn.execute(
                select(func.count()).select_from(_reset_tokens).where(_reset_tokens.c.user_id == user_id)
            ).scalar()
        return result or 0

    def purge_expired(self) -> int:
        """Delete every expired token. Returns the number of rows removed.

        ISO-8601 UTC strings of equal format sort lexically, so the comparison
        runs in SQL.
        """
        with self.engine.begin() as conn:
            result = conn.execute(_reset_tokens.delete().where(_reset_tokens.c.expires_at <= _now_iso()))
        return result.rowcount


# ---------------------------------------------------------------------------
# Row mappers (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _row_to_user(row) -> User:
    login_code = None
    if row.login_code and row.login_code_expires_at:
        login_code = LoginCode(code=row.login_code, expires_at=_parse_ts(row.login_code_expires_at))
    return User(
        id=row.id,
        email=row.email,
        name=row.name,
        hashed_password=row.hashed_password,
        role=Role(row.role),
        is_active=bool(row.is_active),
        mfa=MfaState(
            status=MfaStatus(row.mfa_status),
            secret=row.mfa_secret,
            pending_secret=row.mfa_pending_secret,
        ),
        login_code=login_code,
        last_login=row.last_login,
        created_at=row.created_at,
        updated_at=row.updated_at,
    )


def _row_to_reset_token(row) -> PasswordResetToken:
    return PasswordResetToken(
        id=row.id,
        token=row.token,
        user_id=row.user_id,
        created_at=_parse_ts(row.created_at),
        expires_at=_parse_ts(row.expires_at),
    )
