"""
auth/models.py -- Domain dataclasses for accounts and sessions.

Pattern: Data class (pure data container, zero logic). The store and the
service do the work; these only own the shape.

Layer rule: no imports from api/.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime


@dataclass
class Account:
    """One registrant, keyed by email address (identity).

    pending_otp holds the HMAC digest of the code currently awaiting
    verification, never the code itself. It is paired with otp_expires_at:
    both set or both None. A verified account never has a pending code.
    """

    identity: str  # lower-cased email, UNIQUE
    display_name: str
    password_hash: str  # bcrypt
    birth_date: date | None = None
    verified: bool = False
    pending_otp: str | None = None
    otp_expires_at: datetime | None = None  # UTC, aware
    id: int | None = None
    created_at: str | None = None


@dataclass(frozen=True)
class AccountSummary:
    """What a session exposes about its account. Resolved fresh on every read."""

    identity: str
    display_name: str
    birth_date: date | None = None


@dataclass
class Session:
    """A server-held login session.

    token_hash is HMAC-SHA256(SECRET_KEY, raw_token). The raw token only ever
    exists in the client's cookie. identity is a reference to the Account.
    """

    token_hash: str
    identity: str
    expires_at: datetime  # UTC, aware
    created_at: str | None = None
