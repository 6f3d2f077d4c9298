"""
auth/sessions.py -- Server-held sessions keyed by an opaque cookie token.

The session row references the account by identity only. resolve() loads
the account on every call, so the summary it returns always reflects the
current record, and a session whose account is missing or unverified is
treated as no session at all.

Expiry is strict: a session whose expires_at equals now is already dead.
Expired rows are deleted the moment resolve() notices them; the rest are
swept by purge_expired(), which the API lifespan runs on a timer.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import datetime, timedelta, timezone

from auth.models import AccountSummary, Session
from auth.store import AccountStore
from auth.tokens import generate_session_token, keyed_digest

logger = logging.getLogger("otpgate.auth")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class SessionManager:
    def __init__(
        self,
        store: AccountStore,
        expire_seconds: int = 3600,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self.store = store
        self.ttl = timedelta(seconds=expire_seconds)
        self.clock = clock

    def issue(self, summary: AccountSummary) -> str:
        """Mint a new session for summary.identity and return the raw token."""
        token = generate_session_token()
        self.store.create_session(
            Session(
                token_hash=keyed_digest(token),
                identity=summary.identity,
                expires_at=self.clock() + self.ttl,
            )
        )
        logger.info("Session issued for %s", summary.identity)
        return token

    def resolve(self, token: str | None) -> AccountSummary | None:
        """Return the live session's account summary, or None."""
        if not token:
            return None
        token_hash = keyed_digest(token)
        session = self.store.get_session(token_hash)
        if session is None:
            return None
        if self.clock() >= session.expires_at:
            self.store.delete_session(token_hash)
            return None
        account = self.store.find_by_identity(session.identity)
        if account is None or not account.verified:
            return None
        return AccountSummary(
            identity=account.identity,
            display_name=account.display_name,
            birth_date=account.birth_date,
        )

    def destroy(self, token: str | None) -> None:
        """Delete the session for token. Unknown or empty tokens are a no-op."""
        if not token:
            return
        if self.store.delete_session(keyed_digest(token)):
            logger.info("Session destroyed")

    def purge_expired(self) -> int:
        removed = self.store.purge_expired_sessions(self.clock())
        if removed:
            logger.info("Purged %d expired session(s)", removed)
        return removed
