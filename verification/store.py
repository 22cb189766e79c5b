"""
verification/store.py -- SQLAlchemy Core persistence for verification records.

Pattern: Repository + Data Mapper (same as auth/store.py).
VerificationStore is the repository; _row_to_record is the mapper.
The gate and providers never touch SQL directly.

Concurrency:
  upsert() is a single INSERT ... ON CONFLICT (contact, purpose) DO UPDATE
  statement, so two concurrent sends for the same pair cannot create two
  rows. Last writer wins, which invalidates the earlier code -- the intended
  behaviour.

Timestamps:
  Stored as ISO 8601 UTC strings with fixed microsecond precision. Every
  value has the same shape, so SQL string comparison is chronological and the
  expiry queries can run in the database.

Security:
  All queries use bound parameters. No f-strings in SQL.

Layer rule: no imports from api/ or auth/.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

from sqlalchemy import (
    Column,
    Index,
    Integer,
    MetaData,
    String,
    Table,
    UniqueConstraint,
    create_engine,
    event,
    func,
    select,
)
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError

from verification.models import VerificationRecord

_metadata = MetaData()

_codes = Table(
    "verification_codes",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("contact", String(255), nullable=False),
    Column("code_hash", String(255), nullable=False),  # bcrypt
    Column("purpose", String(64), nullable=False),  # e.g. registration_email
    Column("expires_at", String(32), nullable=False),
    Column("verified_at", String(32)),
    Column("created_at", String(32), nullable=False),
    Column("updated_at", String(32), nullable=False),
    UniqueConstraint("contact", "purpose", name="uq_verification_codes_contact_purpose"),
    Index("ix_verification_codes_expires_at", "expires_at"),
)


def _set_wal_mode(dbapi_conn, connection_record) -> None:
    """Enable WAL journal mode so readers do not block on the send path's writes."""
    dbapi_conn.execute("PRAGMA journal_mode=WAL")


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def to_iso(dt: datetime) -> str:
    """Normalize to UTC and render with fixed precision (sortable as text)."""
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc).isoformat(timespec="microseconds")


def from_iso(value: str | None) -> datetime | None:
    if not value:
        return None
    return datetime.fromisoformat(value)


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class VerificationStore:
    """Repository for VerificationRecord entities.

    Usage:
        store = VerificationStore("sqlite:///:memory:")
        store.upsert("a@example.com", "registration_email", hash_code("123456"), expires_at)
        record = store.find("a@example.com", "registration_email")
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

    def _insert(self):
        """Dialect-specific INSERT that supports ON CONFLICT DO UPDATE."""
        if self.engine.dialect.name == "postgresql":
            return postgresql.insert(_codes)
        return sqlite.insert(_codes)

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def upsert(self, contact: str, purpose: str, code_hash: str, expires_at: datetime) -> None:
        """Store a fresh code for (contact, purpose), replacing any previous one.

        verified_at is reset to NULL: a re-send always returns the pair to
        the SENT state, even if an earlier code had already been verified.
        """
        now = to_iso(utcnow())
        stmt = self._insert().values(
            contact=contact,
            purpose=purpose,
            code_hash=code_hash,
            expires_at=to_iso(expires_at),
            verified_at=None,
            created_at=now,
            updated_at=now,
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=["contact", "purpose"],
            set_={
                "code_hash": stmt.excluded.code_hash,
                "expires_at": stmt.excluded.expires_at,
                "verified_at": None,
                "updated_at": stmt.excluded.updated_at,
            },
        )
        with self.engine.connect() as conn:
            conn.execute(stmt)
            conn.commit()

    def mark_verified(self, record_id: int, now: datetime | None = None) -> bool:
        """Stamp verified_at. expires_at is left untouched."""
        stamp = to_iso(now or utcnow())
        with self.engine.connect() as conn:
            result = conn.execute(
                _codes.update().where(_codes.c.id == record_id).values(verified_at=stamp, updated_at=stamp)
            )
            conn.commit()
        return result.rowcount > 0

    def delete(self, record_id: int) -> bool:
        """Delete one record. Returns True if a row was removed."""
        with self.engine.connect() as conn:
            result = conn.execute(_codes.delete().where(_codes.c.id == record_id))
            conn.commit()
        return result.rowcount > 0

    def delete_expired(self, before: datetime | None = None) -> int:
        """Bulk-delete records whose expires_at is before `before` (default now).

        Called opportunistically before every self-managed send. Expired rows
        are already inert -- no lookup treats them as usable -- so this is
        storage hygiene, not a correctness requirement.
        """
        cutoff = to_iso(before or utcnow())
        with self.engine.connect() as conn:
            result = conn.execute(_codes.delete().where(_codes.c.expires_at < cutoff))
            conn.commit()
        return result.rowcount

    def delete_verified_older_than(self, duration: timedelta = timedelta(hours=1), now: datetime | None = None) -> int:
        """Bulk-delete verified records whose verification is older than `duration`."""
        cutoff = to_iso((now or utcnow()) - duration)
        with self.engine.connect() as conn:
            result = conn.execute(
                _codes.delete().where(_codes.c.verified_at.is_not(None) & (_codes.c.verified_at < cutoff))
            )
            conn.commit()
        return result.rowcount

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def find(self, contact: str, purpose: str) -> VerificationRecord | None:
        """Exact (contact, purpose) lookup, regardless of state."""
        with self.engine.connect() as conn:
            row = conn.execute(
                _codes.select().where((_codes.c.contact == contact) & (_codes.c.purpose == purpose))
            ).fetchone()
        return _row_to_record(row) if row is not None else None

    def find_usable(self, contact: str, purpose: str, now: datetime | None = None) -> VerificationRecord | None:
        """Return the record only if it is verified and unexpired at `now`."""
        stamp = to_iso(now or utcnow())
        with self.engine.connect() as conn:
            row = conn.execute(
                _codes.select().where(
                    (_codes.c.contact == contact)
                    & (_codes.c.purpose == purpose)
                    & _codes.c.verified_at.is_not(None)
                    & (_codes.c.expires_at > stamp)
                )
            ).fetchone()
        return _row_to_record(row) if row is not None else None

    def count(self) -> int:
        with self.engine.connect() as conn:
            result = conn.execute(select(func.count()).select_from(_codes)).scalar()
        return result or 0

    def ping(self) -> bool:
        """Cheap connectivity check for the health endpoint."""
        try:
            self.count()
        except SQLAlchemyError:
            return False
        return True

    def close(self) -> None:
        self.engine.dispose()


# ---------------------------------------------------------------------------
# Row mapper (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _row_to_record(row) -> VerificationRecord:
    return VerificationRecord(
        id=row.id,
        contact=row.contact,
        purpose=row.purpose,
        code_hash=row.code_hash,
        expires_at=from_iso(row.expires_at),
        verified_at=from_iso(row.verified_at),
        created_at=from_iso(row.created_at),
        updated_at=from_iso(row.updated_at),
    )
