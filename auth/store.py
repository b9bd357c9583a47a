"""
auth/store.py -- SQLAlchemy Core persistence layer for identities and secrets.

Pattern: Repository + Data Mapper. IdentityStore is the repository and
implements every store capability in auth/ports.py; _row_to_identity is the
mapper. Services never touch SQL directly.

Security:
  All queries use bound parameters. No f-strings in SQL.
  Only digests are written. Plaintext codes and refresh tokens never reach
  this module.

Tables:
  identities          -- one row per email (UNIQUE). Profile columns are NULL
                         until the profile routes fill them in.
  confirmation_codes  -- one row per identity (PK = identity_id). expires_at is
                         epoch seconds; rows past it are invisible to reads and
                         removed by purge_expired_codes().
  refresh_tokens      -- one row per identity (PK = identity_id). Upsert
                         replaces the digest, so only the newest token verifies.

Upserts run UPDATE then INSERT inside one transaction. A concurrent INSERT for
the same identity surfaces as IntegrityError and is retried as an UPDATE --
last writer wins.

Every SQLAlchemyError leaving this module is wrapped in StorageError.

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations

import logging
import time
import uuid
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import Column, Float, Integer, MetaData, String, Table, Text, create_engine, event, select, text
from sqlalchemy.engine import Connection, Engine
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from auth.errors import IdentityConflictError, StorageError, UsernameTakenError
from auth.models import Identity, ProfileInfo, ProfileUpdate

logger = logging.getLogger("identity.store")

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

_metadata = MetaData()

_identities = Table(
    "identities",
    _metadata,
    Column("id", String(36), primary_key=True),  # UUID string
    Column("email", String(320), nullable=False, unique=True),
    Column("is_confirmed", Integer, nullable=False, server_default="0"),
    Column("username", String(64), unique=True),  # NULL until profile is created
    Column("first_name", String(255)),
    Column("last_name", String(255)),
    Column("created_at", String(32), nullable=False),
)

_confirmation_codes = Table(
    "confirmation_codes",
    _metadata,
    Column("identity_id", String(36), primary_key=True),
    Column("code_digest", Text, nullable=False),  # bcrypt
    Column("expires_at", Float, nullable=False),  # epoch seconds
)

_refresh_tokens = Table(
    "refresh_tokens",
    _metadata,
    Column("identity_id", String(36), primary_key=True),
    Column("token_digest", Text, nullable=False),  # bcrypt
    Column("issued_at", String(32), nullable=False),
)


# ---------------------------------------------------------------------------
# WAL mode
# ---------------------------------------------------------------------------


def _set_wal_mode(dbapi_conn, connection_record) -> None:
    """Enable WAL journal mode so readers do not block during writes.

    Set per-connection because SQLite PRAGMAs are not inherited by new
    connections from the pool.
    """
    dbapi_conn.execute("PRAGMA journal_mode=WAL")


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


@contextmanager
def _storage_errors(action: str) -> Iterator[None]:
    """Wrap driver failures in StorageError, keeping the cause chained."""
    try:
        yield
    except SQLAlchemyError as exc:
        logger.error("Store failure while trying to %s: %s", action, exc.__class__.__name__)
        raise StorageError(f"failed to {action}") from exc


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class IdentityStore:
    """Repository for identities, confirmation code digests and refresh token digests.

    Usage:
        store = IdentityStore("sqlite:///:memory:")
        identity = store.create_identity("a@b.com")
        store.upsert_code_digest(identity.id, digest, ttl_seconds=300)
        store.close()

    clock is injectable so TTL behaviour can be tested without sleeping.
    """

    def __init__(self, db_url: str, clock: Callable[[], float] = time.time) -> None:
        connect_args: dict = {}
        if db_url.startswith("sqlite"):
            connect_args["check_same_thread"] = False
        self.engine: Engine = create_engine(db_url, connect_args=connect_args)
        if db_url.startswith("sqlite"):
            event.listen(self.engine, "connect", _set_wal_mode)
        self._clock = clock
        _metadata.create_all(self.engine)

    def ping(self) -> bool:
        """Return True if the database answers a trivial query. Used by /health."""
        try:
            with self.engine.connect() as conn:
                conn.execute(text("SELECT 1"))
        except SQLAlchemyError:
            logger.warning("Database ping failed", exc_info=True)
            return False
        return True

    # ------------------------------------------------------------------
    # Identities
    # ------------------------------------------------------------------

    def create_identity(self, email: str) -> Identity:
        """Insert a new identity with a fresh UUID.

        Raises IdentityConflictError if the email is already registered. The
        UNIQUE constraint is the arbiter, so two concurrent first-time
        authentications for one email cannot both succeed.
        """
        identity = Identity(id=uuid.uuid4(), email=email, created_at=_now_iso())
        try:
            with self.engine.begin() as conn:
                conn.execute(
                    _identities.insert().values(
                        id=str(identity.id),
                        email=identity.email,
                        is_confirmed=0,
                        created_at=identity.created_at,
                    )
                )
        except IntegrityError as exc:
            raise IdentityConflictError() from exc
        except SQLAlchemyError as exc:
            logger.error("Store failure while trying to create identity: %s", exc.__class__.__name__)
            raise StorageError("failed to create identity") from exc
        logger.debug("Inserted identity %s", identity.id)
        return identity

    def find_identity_by_id(self, identity_id: uuid.UUID) -> Optional[Identity]:
        with _storage_errors("find identity by id"), self.engine.connect() as conn:
            row = conn.execute(_identities.select().where(_identities.c.id == str(identity_id))).fetchone()
        return _row_to_identity(row) if row is not None else None

    def find_identity_by_email(self, email: str) -> Optional[Identity]:
        """Exact, case-sensitive match on the stored email."""
        with _storage_errors("find identity by email"), self.engine.connect() as conn:
            row = conn.execute(_identities.select().where(_identities.c.email == email)).fetchone()
        return _row_to_identity(row) if row is not None else None

    def confirm_identity(self, identity_id: uuid.UUID) -> None:
        with _storage_errors("confirm identity"), self.engine.begin() as conn:
            conn.execute(_identities.update().where(_identities.c.id == str(identity_id)).values(is_confirmed=1))

    def create_profile(self, identity_id: uuid.UUID, profile: ProfileInfo) -> bool:
        """Fill the profile columns of an identity that has no profile yet.

        Returns False if the identity does not exist or already has a profile
        (username is NOT NULL). Raises UsernameTakenError if another identity
        holds the username.
        """
        stmt = (
            _identities.update()
            .where((_identities.c.id == str(identity_id)) & _identities.c.username.is_(None))
            .values(username=profile.username, first_name=profile.first_name, last_name=profile.last_name)
        )
        return self._write_profile(stmt, "create profile")

    def update_profile(self, identity_id: uuid.UUID, update: ProfileUpdate) -> bool:
        """Write only the fields set on update. Returns False if there is no profile to change.

        Raises UsernameTakenError if another identity holds the new username.
        """
        changes = update.changes()
        if not changes:
            return False
        stmt = (
            _identities.update()
            .where((_identities.c.id == str(identity_id)) & _identities.c.username.is_not(None))
            .values(**changes)
        )
        return self._write_profile(stmt, "update profile")

    def _write_profile(self, stmt, action: str) -> bool:
        try:
            with self.engine.begin() as conn:
                result = conn.execute(stmt)
        except IntegrityError as exc:
            raise UsernameTakenError() from exc
        except SQLAlchemyError as exc:
            logger.error("Store failure while trying to %s: %s", action, exc.__class__.__name__)
            raise StorageError(f"failed to {action}") from exc
        return result.rowcount > 0

    # ------------------------------------------------------------------
    # Confirmation codes
    # ------------------------------------------------------------------

    def upsert_code_digest(self, identity_id: uuid.UUID, digest: str, ttl_seconds: int) -> None:
        """Store the code digest for identity_id, replacing any prior live code."""
        values = {"code_digest": digest, "expires_at": self._clock() + ttl_seconds}
        with _storage_errors("save confirmation code"):
            self._upsert(_confirmation_codes, identity_id, values)

    def get_code_digest(self, identity_id: uuid.UUID) -> Optional[str]:
        """Return the live code digest, or None when absent or past its TTL."""
        query = select(_confirmation_codes.c.code_digest).where(
            (_confirmation_codes.c.identity_id == str(identity_id))
            & (_confirmation_codes.c.expires_at > self._clock())
        )
        with _storage_errors("get confirmation code"), self.engine.connect() as conn:
            return conn.execute(query).scalar()

    def delete_code_digest(self, identity_id: uuid.UUID) -> None:
        with _storage_errors("delete confirmation code"), self.engine.begin() as conn:
            conn.execute(_confirmation_codes.delete().where(_confirmation_codes.c.identity_id == str(identity_id)))

    def purge_expired_codes(self) -> int:
        """Delete all code rows past their TTL. Returns number of rows removed."""
        with _storage_errors("purge expired codes"), self.engine.begin() as conn:
            result = conn.execute(_confirmation_codes.delete().where(_confirmation_codes.c.expires_at <= self._clock()))
        return result.rowcount

    # ------------------------------------------------------------------
    # Refresh tokens
    # ------------------------------------------------------------------

    def upsert_refresh_digest(self, identity_id: uuid.UUID, digest: str) -> None:
        """Store the refresh token digest for identity_id, replacing the previous one."""
        with _storage_errors("save refresh token"):
            self._upsert(_refresh_tokens, identity_id, {"token_digest": digest, "issued_at": _now_iso()})

    def get_refresh_digest(self, identity_id: uuid.UUID) -> Optional[str]:
        query = select(_refresh_tokens.c.token_digest).where(_refresh_tokens.c.identity_id == str(identity_id))
        with _storage_errors("find refresh token"), self.engine.connect() as conn:
            return conn.execute(query).scalar()

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _upsert(self, table: Table, identity_id: uuid.UUID, values: dict) -> None:
        key = str(identity_id)
        try:
            with self.engine.begin() as conn:
                self._update_or_insert(conn, table, key, values)
        except IntegrityError:
            # Lost the INSERT race to a concurrent writer; the row exists now.
            with self.engine.begin() as conn:
                conn.execute(table.update().where(table.c.identity_id == key).values(**values))

    @staticmethod
    def _update_or_insert(conn: Connection, table: Table, key: str, values: dict) -> None:
        result = conn.execute(table.update().where(table.c.identity_id == key).values(**values))
        if result.rowcount == 0:
            conn.execute(table.insert().values(identity_id=key, **values))

    def close(self) -> None:
        self.engine.dispose()


# ---------------------------------------------------------------------------
# Row mappers (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _row_to_identity(row) -> Identity:
    profile = None
    if row.username is not None:
        profile = ProfileInfo(first_name=row.first_name or "", username=row.username, last_name=row.last_name)
    return Identity(
        id=uuid.UUID(row.id),
        email=row.email,
        is_confirmed=bool(row.is_confirmed),
        profile=profile,
        created_at=row.created_at,
    )
