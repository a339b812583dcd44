"""
auth/store.py -- SQLAlchemy Core persistence layer for identities and OTPs.

Pattern: Repository + Data Mapper. IdentityStore and OtpStore are the
repositories; _row_to_identity / _row_to_otp are the mappers. Service code
never touches SQL directly.

Security:
  All queries use bound parameters. No f-strings in SQL.

Error classification happens here, at the point of detection:
  IntegrityError on users.email        -> EmailInUse
  sqlalchemy TimeoutError / busy lock  -> OperationTimeout
  any other SQLAlchemyError            -> StoreUnavailable
Nothing above this layer ever sees a raw SQLAlchemy exception.

OTP atomicity: OtpStore.consume() is a compare-and-delete. It reads the
matching rows, then deletes every row for (email, code). Only a caller whose
DELETE removes rows gets a record back; a concurrent caller that read the
same rows sees rowcount 0 and gets None. Identical codes issued twice to one
email are therefore spent together.

Nonce atomicity: IdentityStore.rotate_nonce() is a compare-and-set on
wallet_nonce, so two link attempts over the same challenge cannot both win.

Timestamps: expires_at is stored as REAL epoch seconds so purge_expired()
is a plain numeric comparison. created_at / last_login are ISO 8601 text.

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import datetime, timezone

from sqlalchemy import Column, Float, Integer, MetaData, String, Table, Text, create_engine, event, select
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError, OperationalError, SQLAlchemyError
from sqlalchemy.exc import TimeoutError as PoolTimeoutError

from auth.errors import EmailInUse, OperationTimeout, StoreUnavailable, UserNotFound
from auth.models import Identity, OtpRecord

logger = logging.getLogger("credcore.store")

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

_metadata = MetaData()

_users = Table(
    "users",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("email", String(320), nullable=False, unique=True),
    Column("password_hash", Text, nullable=False),
    Column("wallet_address", String(64)),
    Column("wallet_nonce", String(128), nullable=False),
    Column("profile", Text),  # JSON blob
    Column("refresh_token_hash", Text),
    Column("created_at", String(32), nullable=False),
    Column("last_login", String(32)),
)

_otp_codes = Table(
    "otp_codes",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("email", String(320), nullable=False, index=True),
    Column("code", String(16), nullable=False),
    Column("expires_at", Float, nullable=False),  # epoch seconds, UTC
)


# ---------------------------------------------------------------------------
# Engine helpers
# ---------------------------------------------------------------------------


def _set_wal_mode(dbapi_conn, connection_record) -> None:
    """Enable WAL journal mode so readers do not block during writes.

    Set per-connection because SQLite PRAGMAs are not inherited by new
    connections from the pool.
    """
    dbapi_conn.execute("PRAGMA journal_mode=WAL")


def create_store_engine(db_url: str, timeout_seconds: float = 5.0) -> Engine:
    """Build an Engine with the busy/pool timeouts applied and the schema created."""
    connect_args: dict = {}
    engine_kwargs: dict = {}
    if db_url.startswith("sqlite"):
        connect_args["check_same_thread"] = False
        connect_args["timeout"] = timeout_seconds
    else:
        engine_kwargs["pool_timeout"] = timeout_seconds
    engine = create_engine(db_url, connect_args=connect_args, **engine_kwargs)
    if db_url.startswith("sqlite") and ":memory:" not in db_url and "mode=memory" not in db_url:
        event.listen(engine, "connect", _set_wal_mode)
    _metadata.create_all(engine)
    return engine


def _engine_for(db_url: str | None, timeout_seconds: float) -> Engine:
    if not db_url:
        raise ValueError("db_url is required when no engine is given")
    return create_store_engine(db_url, timeout_seconds)


@contextmanager
def _classified(operation: str) -> Iterator[None]:
    """Translate SQLAlchemy failures into the auth error taxonomy."""
    try:
        yield
    except PoolTimeoutError as exc:
        logger.warning("Store operation %s timed out waiting for a connection", operation)
        raise OperationTimeout() from exc
    except OperationalError as exc:
        if "locked" in str(exc).lower():
            logger.warning("Store operation %s timed out on a database lock", operation)
            raise OperationTimeout() from exc
        logger.error("Store operation %s failed: %s", operation, exc.__class__.__name__)
        raise StoreUnavailable() from exc
    except SQLAlchemyError as exc:
        logger.error("Store operation %s failed: %s", operation, exc.__class__.__name__)
        raise StoreUnavailable() from exc


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


# ---------------------------------------------------------------------------
# Identity repository
# ---------------------------------------------------------------------------


class IdentityStore:
    """Repository for Identity records.

    Usage:
        store = IdentityStore(settings.database_url)
        identity = store.create(Identity(email="a@x.com", password_hash=..., wallet_nonce=...))
        identity = store.find_by_email("a@x.com")
        store.close()
    """

    def __init__(
        self,
        db_url: str | None = None,
        timeout_seconds: float = 5.0,
        engine: Engine | None = None,
    ) -> None:
        self._owns_engine = engine is None
        self.engine: Engine = engine if engine is not None else _engine_for(db_url, timeout_seconds)

    def find_by_email(self, email: str) -> Identity | None:
        """Look up an identity by exact email. Returns None if not found."""
        with _classified("find_by_email"), self.engine.connect() as conn:
            row = conn.execute(_users.select().where(_users.c.email == email)).fetchone()
        return _row_to_identity(row) if row is not None else None

    def find_by_id(self, user_id: int) -> Identity | None:
        with _classified("find_by_id"), self.engine.connect() as conn:
            row = conn.execute(_users.select().where(_users.c.id == user_id)).fetchone()
        return _row_to_identity(row) if row is not None else None

    def create(self, identity: Identity) -> Identity:
        """Insert a new identity and return it with id and created_at filled in.

        Raises EmailInUse if the email already exists, including when a
        concurrent registration wins the UNIQUE constraint after the caller's
        own existence check passed.
        """
        created_at = _now_iso()
        with _classified("create"), self.engine.connect() as conn:
            try:
                result = conn.execute(
                    _users.insert().values(
                        email=identity.email,
                        password_hash=identity.password_hash,
                        wallet_address=identity.wallet_address,
                        wallet_nonce=identity.wallet_nonce,
                        profile=json.dumps(identity.profile or {}),
                        refresh_token_hash=identity.refresh_token_hash,
                        created_at=created_at,
                    )
                )
                conn.commit()
            except IntegrityError as exc:
                conn.rollback()
                raise EmailInUse() from exc
        identity.id = result.inserted_primary_key[0]
        identity.created_at = created_at
        return identity

    def save(self, identity: Identity) -> Identity:
        """Write every mutable field of identity back to its row.

        Raises UserNotFound if the row no longer exists.
        """
        with _classified("save"), self.engine.connect() as conn:
            result = conn.execute(
                _users.update()
                .where(_users.c.id == identity.id)
                .values(
                    email=identity.email,
                    password_hash=identity.password_hash,
                    wallet_address=identity.wallet_address,
                    wallet_nonce=identity.wallet_nonce,
                    profile=json.dumps(identity.profile or {}),
                    refresh_token_hash=identity.refresh_token_hash,
                )
            )
            conn.commit()
        if result.rowcount == 0:
            raise UserNotFound()
        return identity

    def rotate_nonce(
        self,
        user_id: int,
        expected_nonce: str,
        new_nonce: str,
        wallet_address: str | None = None,
    ) -> bool:
        """Replace wallet_nonce only if it still equals expected_nonce.

        When wallet_address is given it is written in the same UPDATE. Returns
        False if another caller rotated the nonce first or the row is gone.
        """
        values = {"wallet_nonce": new_nonce}
        if wallet_address is not None:
            values["wallet_address"] = wallet_address
        with _classified("rotate_nonce"), self.engine.connect() as conn:
            result = conn.execute(
                _users.update()
                .where((_users.c.id == user_id) & (_users.c.wallet_nonce == expected_nonce))
                .values(**values)
            )
            conn.commit()
        return result.rowcount == 1

    def update_refresh_token_hash(self, user_id: int, token_hash: str | None) -> None:
        """Store (or clear, with None) a refresh-token hash for user_id.

        The stateless token flow never calls this; it exists for deployments
        that pin refresh tokens outside AuthService.
        """
        with _classified("update_refresh_token_hash"), self.engine.connect() as conn:
            conn.execute(_users.update().where(_users.c.id == user_id).values(refresh_token_hash=token_hash))
            conn.commit()

    def update_last_login(self, user_id: int) -> None:
        """Stamp the current UTC timestamp as last_login for user_id."""
        with _classified("update_last_login"), self.engine.connect() as conn:
            conn.execute(_users.update().where(_users.c.id == user_id).values(last_login=_now_iso()))
            conn.commit()

    def delete(self, user_id: int) -> bool:
        """Permanently delete an identity. Returns True if a row was removed.

        Tokens already issued to the identity stay cryptographically valid;
        AuthService.refresh() re-looks-up the identity and rejects them.
        """
        with _classified("delete"), self.engine.connect() as conn:
            result = conn.execute(_users.delete().where(_users.c.id == user_id))
            conn.commit()
        return result.rowcount > 0

    def close(self) -> None:
        if self._owns_engine:
            self.engine.dispose()


# ---------------------------------------------------------------------------
# OTP repository
# ---------------------------------------------------------------------------


class OtpStore:
    """Repository for OtpRecord rows.

    Multiple outstanding codes per email are allowed; save() always inserts.
    """

    def __init__(
        self,
        db_url: str | None = None,
        timeout_seconds: float = 5.0,
        engine: Engine | None = None,
    ) -> None:
        self._owns_engine = engine is None
        self.engine: Engine = engine if engine is not None else _engine_for(db_url, timeout_seconds)

    def save(self, record: OtpRecord) -> OtpRecord:
        with _classified("otp_save"), self.engine.connect() as conn:
            result = conn.execute(
                _otp_codes.insert().values(
                    email=record.email,
                    code=record.code,
                    expires_at=record.expires_at.timestamp(),
                )
            )
            conn.commit()
        record.id = result.inserted_primary_key[0]
        return record

    def find_by_email_and_code(self, email: str, code: str) -> OtpRecord | None:
        """Return the oldest record matching (email, code), or None."""
        with _classified("otp_find"), self.engine.connect() as conn:
            row = conn.execute(_matching(email, code).limit(1)).first()
        return _row_to_otp(row) if row is not None else None

    def list_for_email(self, email: str) -> list[OtpRecord]:
        """Return every outstanding record for email, oldest first."""
        with _classified("otp_list"), self.engine.connect() as conn:
            rows = conn.execute(
                _otp_codes.select().where(_otp_codes.c.email == email).order_by(_otp_codes.c.id)
            ).fetchall()
        return [_row_to_otp(r) for r in rows]

    def delete(self, email: str, code: str) -> int:
        """Delete every record matching (email, code). Returns rows removed."""
        with _classified("otp_delete"), self.engine.connect() as conn:
            result = conn.execute(
                _otp_codes.delete().where((_otp_codes.c.email == email) & (_otp_codes.c.code == code))
            )
            conn.commit()
        return result.rowcount

    def consume(self, email: str, code: str) -> OtpRecord | None:
        """Atomically remove every record matching (email, code).

        Returns the matching record with the latest expiry, or None when
        nothing matched or a concurrent caller's DELETE removed the rows
        first. Of any number of concurrent callers, at most one gets a record.
        """
        with _classified("otp_consume"), self.engine.connect() as conn:
            # fetchall() closes the cursor, ending the read before the DELETE takes the write lock.
            rows = conn.execute(_matching(email, code)).fetchall()
            if not rows:
                return None
            result = conn.execute(
                _otp_codes.delete().where((_otp_codes.c.email == email) & (_otp_codes.c.code == code))
            )
            conn.commit()
        if result.rowcount == 0:
            return None
        return _row_to_otp(max(rows, key=lambda r: r.expires_at))

    def purge_expired(self, now: datetime) -> int:
        """Delete all records whose expiry is at or before now. Returns rows removed."""
        with _classified("otp_purge"), self.engine.connect() as conn:
            result = conn.execute(_otp_codes.delete().where(_otp_codes.c.expires_at <= now.timestamp()))
            conn.commit()
        return result.rowcount

    def close(self) -> None:
        if self._owns_engine:
            self.engine.dispose()


def _matching(email: str, code: str):
    return (
        select(_otp_codes)
        .where((_otp_codes.c.email == email) & (_otp_codes.c.code == code))
        .order_by(_otp_codes.c.id)
    )


# ---------------------------------------------------------------------------
# Row mappers (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _row_to_identity(row) -> Identity:
    return Identity(
        id=row.id,
        email=row.email,
        password_hash=row.password_hash,
        wallet_address=row.wallet_address,
        wallet_nonce=row.wallet_nonce,
        profile=json.loads(row.profile) if row.profile else {},
        refresh_token_hash=row.refresh_token_hash,
        created_at=row.created_at,
        last_login=row.last_login,
    )


def _row_to_otp(row) -> OtpRecord:
    return OtpRecord(
        id=row.id,
        email=row.email,
        code=row.code,
        expires_at=datetime.fromtimestamp(row.expires_at, tz=timezone.utc),
    )
