"""
auth/store.py -- SQLAlchemy Core persistence layer for accounts and sessions.

Pattern: Repository + Data Mapper.
AccountStore is the repository; _row_to_account / _row_to_session are the
mappers. Service and route code never touches SQL directly.

Security:
  All queries use bound parameters. No f-strings in SQL.
  Session rows hold only the HMAC digest of the token.

Uniqueness:
  UNIQUE(identity) on the accounts table is the only arbiter between two
  concurrent registrations. create() translates the loser's IntegrityError
  into ConflictError; there is no application-level lock.

Timestamps are stored as ISO 8601 UTC strings and mapped back to aware
datetimes, so comparisons behave the same on every backend.

Layer rule: no imports from api/.
"""

from __future__ import annotations

import logging
from datetime import date, datetime, timezone

from sqlalchemy import Column, Integer, MetaData, String, Table, Text, create_engine, event, text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError

from auth.errors import ConflictError
from auth.models import Account, Session
from core.config import get_settings

logger = logging.getLogger("otpgate.auth")

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

_metadata = MetaData()

_accounts = Table(
    "accounts",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("identity", String(320), nullable=False, unique=True),
    Column("display_name", String(255), nullable=False),
    Column("password_hash", Text, nullable=False),
    Column("birth_date", String(10)),  # YYYY-MM-DD
    Column("verified", Integer, nullable=False, server_default="0"),
    Column("pending_otp", String(64)),  # HMAC-SHA256 hex of the pending code
    Column("otp_expires_at", String(32)),
    Column("created_at", String(32), nullable=False),
)

_sessions = Table(
    "sessions",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("token_hash", String(64), nullable=False, unique=True),
    Column("identity", String(320), nullable=False, index=True),
    Column("expires_at", String(32), nullable=False),
    Column("created_at", String(32), nullable=False),
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
    return datetime.now(timezone.utc).isoformat(timespec="microseconds")


def _to_iso(value: datetime | None) -> str | None:
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat(timespec="microseconds")


def _from_iso(value: str | None) -> datetime | None:
    if not value:
        return None
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _check_invariants(account: Account) -> None:
    """Reject account states the rest of the system assumes cannot exist."""
    if (account.pending_otp is None) != (account.otp_expires_at is None):
        raise ValueError("pending_otp and otp_expires_at must be set or cleared together")
    if account.verified and account.pending_otp is not None:
        raise ValueError("a verified account cannot hold a pending OTP")


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class AccountStore:
    """Repository for Account and Session entities.

    Usage:
        store = AccountStore()
        store.create(Account(identity="j@x.com", display_name="Jonas", password_hash=hash_password("pw1")))
        account = store.find_by_identity("j@x.com")
        store.close()

    Construction creates the schema, so an unreachable database fails here,
    at startup, rather than on the first request.
    """

    def __init__(self, db_url: str | None = None) -> None:
        db_url = db_url or get_settings().database_url
        connect_args: dict = {}
        if db_url.startswith("sqlite"):
            connect_args["check_same_thread"] = False
        self.engine: Engine = create_engine(db_url, connect_args=connect_args)
        if db_url.startswith("sqlite"):
            event.listen(self.engine, "connect", _set_wal_mode)
        _metadata.create_all(self.engine)

    def ping(self) -> bool:
        """Return True if the database answers a trivial query."""
        try:
            with self.engine.connect() as conn:
                conn.execute(text("SELECT 1"))
        except Exception:
            logger.exception("Database ping failed")
            return False
        return True

    # ------------------------------------------------------------------
    # Accounts
    # ------------------------------------------------------------------

    def find_by_identity(self, identity: str) -> Account | None:
        """Look up an account by exact identity. Returns None if not found."""
        with self.engine.connect() as conn:
            row = conn.execute(_accounts.select().where(_accounts.c.identity == identity)).fetchone()
        return _row_to_account(row) if row is not None else None

    def create(self, account: Account) -> Account:
        """Insert a new account and return it with id and created_at filled in.

        Raises ConflictError if the identity already exists, including when a
        concurrent request inserted it between the caller's lookup and now.
        """
        _check_invariants(account)
        created_at = _now_iso()
        try:
            with self.engine.connect() as conn:
                result = conn.execute(
                    _accounts.insert().values(
                        identity=account.identity,
                        display_name=account.display_name,
                        password_hash=account.password_hash,
                        birth_date=account.birth_date.isoformat() if account.birth_date else None,
                        verified=1 if account.verified else 0,
                        pending_otp=account.pending_otp,
                        otp_expires_at=_to_iso(account.otp_expires_at),
                        created_at=created_at,
                    )
                )
                conn.commit()
        except IntegrityError as exc:
            raise ConflictError() from exc
        account.id = result.inserted_primary_key[0]
        account.created_at = created_at
        return account

    def save(self, account: Account) -> None:
        """Persist the verification state of an existing account.

        Only verified, pending_otp and otp_expires_at are written; identity,
        display_name and password_hash are immutable after create().
        """
        _check_invariants(account)
        with self.engine.connect() as conn:
            result = conn.execute(
                _accounts.update()
                .where(_accounts.c.identity == account.identity)
                .values(
                    verified=1 if account.verified else 0,
                    pending_otp=account.pending_otp,
                    otp_expires_at=_to_iso(account.otp_expires_at),
                )
            )
            conn.commit()
        if result.rowcount == 0:
            raise LookupError(f"no account with identity {account.identity!r}")

    def count_accounts(self) -> int:
        with self.engine.connect() as conn:
            result = conn.execute(text("SELECT COUNT(*) FROM accounts")).scalar()
        return result or 0

    # ------------------------------------------------------------------
    # Sessions
    # ------------------------------------------------------------------

    def create_session(self, session: Session) -> None:
        created_at = _now_iso()
        with self.engine.connect() as conn:
            conn.execute(
                _sessions.insert().values(
                    token_hash=session.token_hash,
                    identity=session.identity,
                    expires_at=_to_iso(session.expires_at),
                    created_at=created_at,
                )
            )
            conn.commit()
        session.created_at = created_at

    def get_session(self, token_hash: str) -> Session | None:
        """Look up a session by token digest. O(1) via the UNIQUE index."""
        with self.engine.connect() as conn:
            row = conn.execute(_sessions.select().where(_sessions.c.token_hash == token_hash)).fetchone()
        return _row_to_session(row) if row is not None else None

    def delete_session(self, token_hash: str) -> bool:
        """Delete a session. Returns True if a row was removed."""
        with self.engine.connect() as conn:
            result = conn.execute(_sessions.delete().where(_sessions.c.token_hash == token_hash))
            conn.commit()
        return result.rowcount > 0

    def purge_expired_sessions(self, now: datetime | None = None) -> int:
        """Delete every session whose expiry is at or before now. Returns rows removed.

        ISO 8601 strings in a single UTC offset sort chronologically, so the
        comparison can run in SQL.
        """
        cutoff = _to_iso(now or datetime.now(timezone.utc))
        with self.engine.connect() as conn:
            result = conn.execute(_sessions.delete().where(_sessions.c.expires_at <= cutoff))
            conn.commit()
        return result.rowcount

    def close(self) -> None:
        self.engine.dispose()


# ---------------------------------------------------------------------------
# Row mappers (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _row_to_account(row) -> Account:
    return Account(
        id=row.id,
        identity=row.identity,
        display_name=row.display_name,
        password_hash=row.password_hash,
        birth_date=date.fromisoformat(row.birth_date) if row.birth_date else None,
        verified=bool(row.verified),
        pending_otp=row.pending_otp,
        otp_expires_at=_from_iso(row.otp_expires_at),
        created_at=row.created_at,
    )


def _row_to_session(row) -> Session:
    return Session(
        token_hash=row.token_hash,
        identity=row.identity,
        expires_at=_from_iso(row.expires_at),
        created_at=row.created_at,
    )
