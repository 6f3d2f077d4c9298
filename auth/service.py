"""
auth/service.py -- The registration / verification / login state machine.

Per-account states:

    Unregistered --register--> PendingVerification --verify_otp--> Verified
                                   |        ^
                                   +resend--+

Only a Verified account can log in, and only login() creates a session.
Every failure is an AuthError subclass (auth/errors.py); the API layer maps
them to responses, so nothing here knows about HTTP.

Store, issuer and session manager are passed in. There is no module-level
state, which is what lets the tests run each case against its own database
and clock.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import date, datetime

from sqlalchemy.exc import SQLAlchemyError

from auth.errors import (
    AlreadyVerifiedError,
    ConflictError,
    InvalidCredentialError,
    InvalidOrExpiredError,
    NotFoundError,
    NotVerifiedError,
    SessionError,
)
from auth.models import Account, AccountSummary
from auth.otp import OtpIssuer, generate_otp
from auth.sessions import SessionManager
from auth.store import AccountStore
from auth.tokens import burn_password_check, digests_match, hash_password, verify_password

logger = logging.getLogger("otpgate.auth")


def normalize_identity(identity: str) -> str:
    """Canonical form of an email identity: surrounding whitespace stripped, lower case."""
    return identity.strip().lower()


class AuthService:
    """Orchestrates register -> verify -> login -> logout.

    Usage:
        service = AuthService(store, OtpIssuer(store, SmtpNotifier()), SessionManager(store))
        service.register("j@x.com", "Jonas", "pw1", date(2000, 1, 1))
        service.verify_otp("j@x.com", "123456")
        summary, token = service.login("j@x.com", "pw1")
        service.logout(token)
    """

    def __init__(
        self,
        store: AccountStore,
        issuer: OtpIssuer,
        sessions: SessionManager,
        code_factory: Callable[[], str] = generate_otp,
    ) -> None:
        self.store = store
        self.issuer = issuer
        self.sessions = sessions
        self.code_factory = code_factory

    def _now(self) -> datetime:
        return self.issuer.clock()

    def _pending_account(self, identity: str) -> Account:
        """Load an account that is still awaiting verification."""
        account = self.store.find_by_identity(normalize_identity(identity))
        if account is None:
            raise NotFoundError()
        if account.verified:
            raise AlreadyVerifiedError()
        return account

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    def register(self, identity: str, display_name: str, secret: str, birth_date: date | None = None) -> Account:
        """Create an unverified account and mail it a code.

        The lookup is a fast path for the common duplicate case. A concurrent
        registration that slips past it is still rejected by the store's
        UNIQUE constraint with the same ConflictError.

        The account row is written before the mail goes out. DeliveryError
        from the send propagates with the account already in place.
        """
        identity = normalize_identity(identity)
        if self.store.find_by_identity(identity) is not None:
            raise ConflictError()

        account = Account(
            identity=identity,
            display_name=display_name,
            password_hash=hash_password(secret),
            birth_date=birth_date,
        )
        code = self.code_factory()
        self.issuer.attach(account, code)
        self.store.create(account)
        logger.info("Registered %s, awaiting verification", identity)
        self.issuer.dispatch(account, code)
        return account

    def verify_otp(self, identity: str, code: str) -> Account:
        """Activate the account if code matches the pending one and has not expired.

        A wrong code and an expired code raise the same InvalidOrExpiredError
        and leave the stored account untouched.
        """
        account = self._pending_account(identity)
        expired = account.otp_expires_at is None or self._now() >= account.otp_expires_at
        matches = digests_match(code, account.pending_otp)
        if expired or not matches:
            logger.info("OTP verification failed for %s", account.identity)
            raise InvalidOrExpiredError()

        account.verified = True
        account.pending_otp = None
        account.otp_expires_at = None
        self.store.save(account)
        logger.info("Verified %s", account.identity)
        return account

    def resend_otp(self, identity: str) -> None:
        """Replace the pending code with a fresh one and mail it. The old code stops working."""
        account = self._pending_account(identity)
        self.issuer.issue(account, self.code_factory(), resend=True)

    def login(self, identity: str, secret: str) -> tuple[AccountSummary, str]:
        """Check the password and verification state, then open a session.

        The password is checked before the verification state, so
        NotVerifiedError is only reachable with the right password.
        """
        account = self.store.find_by_identity(normalize_identity(identity))
        if account is None:
            burn_password_check(secret)
            raise NotFoundError()
        if not verify_password(secret, account.password_hash):
            raise InvalidCredentialError()
        if not account.verified:
            raise NotVerifiedError()

        summary = AccountSummary(
            identity=account.identity,
            display_name=account.display_name,
            birth_date=account.birth_date,
        )
        token = self.sessions.issue(summary)
        logger.info("Login succeeded for %s", account.identity)
        return summary, token

    def logout(self, token: str | None) -> None:
        """Destroy the session behind token. No session is not an error."""
        try:
            self.sessions.destroy(token)
        except SQLAlchemyError as exc:
            logger.exception("Session destruction failed")
            raise SessionError() from exc
