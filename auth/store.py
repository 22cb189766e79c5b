"""
auth/store.py -- SQLAlchemy Core persistence layer for auth entities.

Pattern: Repository + Data Mapper (same as verification/store.py).
UserStore is the repository; _row_to_user / _row_to_oauth_account are the
mappers. Route and dependency code never touches SQL directly.

Security:
  All queries use bound parameters. No f-strings in SQL.

  Login identifier lookups go through _IDENTIFIER_COLUMNS, a fixed mapping
  from the public field name to a Column object, so a client-supplied field
  name can never select an arbitrary column.

  UNIQUE(phone) and UNIQUE(username) are fine in SQL here: SQLite treats
  NULLs as distinct, which is exactly what optional unique fields need.

Layer rule: no imports from api/ or verification/.
"""

from __future__ import annotations

from datetime import datetime, timezone

from sqlalchemy import (
    Column,
    Integer,
    MetaData,
    String,
    Table,
    Text,
    UniqueConstraint,
    create_engine,
    event,
    func,
    select,
)
from sqlalchemy.engine import Engine

from auth.models import OAuthAccount, User

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

_metadata = MetaData()

_users = Table(
    "users",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("email", String(255), nullable=False, unique=True),
    Column("first_name", String(255), nullable=False),
    Column("last_name", String(255)),
    Column("username", String(255), unique=True),
    Column("phone", String(255), unique=True),
    Column("hashed_password", Text, nullable=False),
    Column("created_at", String(32), nullable=False),
    Column("is_active", Integer, nullable=False, server_default="1"),
)

_oauth_accounts = Table(
    "oauth_accounts",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("user_id", Integer, nullable=False),
    Column("provider", String(30), nullable=False),
    Column("created_at", String(32), nullable=False),
    UniqueConstraint("user_id", "provider", name="uq_oauth_accounts_user_provider"),
)

# Public identifier name -> column. Used by login and contact lookups.
_IDENTIFIER_COLUMNS = {
    "email": _users.c.email,
    "phone": _users.c.phone,
    "username": _users.c.username,
}


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


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class UserStore:
    """Repository for User and OAuthAccount entities.

    Usage:
        store = UserStore()
        store.create_user(User(email="a@example.com", first_name="Ada", hashed_password=hash_password("secret")))
        user = store.get_by_email("a@example.com")
        store.close()
    """

    def __init__(self, db_url: str = "sqlite:///./userauth.db") -> None:
        connect_args: dict = {}
        if db_url.startswith("sqlite"):
            connect_args["check_same_thread"] = False
        self.engine: Engine = create_engine(db_url, connect_args=connect_args)
        if db_url.startswith("sqlite"):
            event.listen(self.engine, "connect", _set_wal_mode)
        _metadata.create_all(self.engine)

    # ------------------------------------------------------------------
    # User queries
    # ------------------------------------------------------------------

    def create_user(self, user: User) -> int:
        """Insert a new user and return its assigned database ID.

        Raises sqlalchemy.exc.IntegrityError if email, username or phone is
        already taken. The register route pre-checks these for a friendly
        422, and still catches IntegrityError for the concurrent case.
        """
        with self.engine.connect() as conn:
            result = conn.execute(
                _users.insert().values(
                    email=user.email,
                    first_name=user.first_name,
                    last_name=user.last_name,
                    username=user.username,
                    phone=user.phone,
                    hashed_password=user.hashed_password,
                    created_at=_now_iso(),
                    is_active=1 if user.is_active else 0,
                )
            )
            conn.commit()
            return result.inserted_primary_key[0]

    def get_by_id(self, user_id: int) -> User | None:
        """Look up a user by primary key. Returns None if not found."""
        with self.engine.connect() as conn:
            row = conn.execute(_users.select().where(_users.c.id == user_id)).fetchone()
        return _row_to_user(row) if row is not None else None

    def get_by_identifier(self, field: str, value: str) -> User | None:
        """Look up a user by email, phone or username (exact match).

        Raises ValueError for any other field name.
        """
        column = _IDENTIFIER_COLUMNS.get(field)
        if column is None:
            raise ValueError(f"Unknown identifier field: {field!r}")
        with self.engine.connect() as conn:
            row = conn.execute(_users.select().where(column == value)).fetchone()
        return _row_to_user(row) if row is not None else None

    def get_by_email(self, email: str) -> User | None:
        return self.get_by_identifier("email", email)

    def get_by_username(self, username: str) -> User | None:
        return self.get_by_identifier("username", username)

    def get_by_phone(self, phone: str) -> User | None:
        return self.get_by_identifier("phone", phone)

    def contact_taken(self, contact_type: str, contact: str) -> bool:
        """True if an account already owns this email or phone.

        This is the ContactRegistry the verification gate depends on.
        """
        if contact_type not in ("email", "phone"):
            raise ValueError(f"Unknown contact type: {contact_type!r}")
        return self.get_by_identifier(contact_type, contact) is not None

    def update_password(self, user_id: int, hashed_password: str) -> bool:
        """Replace a user's password hash. Returns True if the user existed."""
        with self.engine.connect() as conn:
            result = conn.execute(
                _users.update().where(_users.c.id == user_id).values(hashed_password=hashed_password)
            )
            conn.commit()
        return result.rowcount > 0

    def count_users(self) -> int:
        with self.engine.connect() as conn:
            result = conn.execute(select(func.count()).select_from(_users)).scalar()
        return result or 0

    # ------------------------------------------------------------------
    # OAuth accounts
    # ------------------------------------------------------------------

    def link_oauth_account(self, user_id: int, provider: str) -> bool:
        """Record that user_id has signed in with provider (first-or-create).

        Returns True if a new link was created, False if it already existed.
        """
        with self.engine.connect() as conn:
            existing = conn.execute(
                _oauth_accounts.select().where(
                    (_oauth_accounts.c.user_id == user_id) & (_oauth_accounts.c.provider == provider)
                )
            ).fetchone()
            if existing is not None:
                return False
            conn.execute(_oauth_accounts.insert().values(user_id=user_id, provider=provider, created_at=_now_iso()))
            conn.commit()
        return True

    def get_oauth_accounts(self, user_id: int) -> list[OAuthAccount]:
        with self.engine.connect() as conn:
            rows = conn.execute(
                _oauth_accounts.select().where(_oauth_accounts.c.user_id == user_id).order_by(_oauth_accounts.c.id)
            ).fetchall()
        return [_row_to_oauth_account(r) for r in rows]

    def close(self) -> None:
        self.engine.dispose()


# ---------------------------------------------------------------------------
# Row mappers (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _row_to_user(row) -> User:
    return User(
        id=row.id,
        email=row.email,
        first_name=row.first_name,
        last_name=row.last_name,
        username=row.username,
        phone=row.phone,
        hashed_password=row.hashed_password,
        created_at=row.created_at,
        is_active=bool(row.is_active),
    )


def _row_to_oauth_account(row) -> OAuthAccount:
    return OAuthAccount(
        id=row.id,
        user_id=row.user_id,
        provider=row.provider,
        created_at=row.created_at,
    )
