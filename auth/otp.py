"""
auth/otp.py -- One-time code generation and issuance.

generate_otp() draws from secrets, never random: the code is the only thing
standing between a typo'd or hostile email address and an activated account.

OtpIssuer.issue() writes the code digest and expiry first, then sends the
mail. If the send fails the pending code stays in place and DeliveryError
propagates; the user recovers with resend, which overwrites it.
"""

from __future__ import annotations

import logging
import secrets
from collections.abc import Callable
from datetime import datetime, timedelta, timezone

from auth.mailer import Notifier
from auth.models import Account
from auth.store import AccountStore
from auth.tokens import keyed_digest

logger = logging.getLogger("otpgate.auth")

OTP_MIN = 100000
OTP_MAX = 999999

REGISTER_SUBJECT = "OTP Verification"
REGISTER_BODY = "Your OTP is: {code}"
RESEND_SUBJECT = "Resend OTP Verification"
RESEND_BODY = "Your new OTP is: {code}"


def generate_otp() -> str:
    """Return a 6-digit code uniformly distributed over [100000, 999999]."""
    return str(OTP_MIN + secrets.randbelow(OTP_MAX - OTP_MIN + 1))


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class OtpIssuer:
    def __init__(
        self,
        store: AccountStore,
        notifier: Notifier,
        expire_minutes: int = 10,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self.store = store
        self.notifier = notifier
        self.ttl = timedelta(minutes=expire_minutes)
        self.clock = clock

    def attach(self, account: Account, code: str) -> None:
        """Set the pending code digest and expiry on account without persisting."""
        account.pending_otp = keyed_digest(code)
        account.otp_expires_at = self.clock() + self.ttl

    def dispatch(self, account: Account, code: str, resend: bool = False) -> None:
        subject, body = (RESEND_SUBJECT, RESEND_BODY) if resend else (REGISTER_SUBJECT, REGISTER_BODY)
        self.notifier.send(account.identity, subject, body.format(code=code))

    def issue(self, account: Account, code: str, resend: bool = False) -> None:
        """Replace any pending code with code, persist, then mail it.

        Raises DeliveryError if the notifier fails. The persisted code is
        kept in that case.
        """
        self.attach(account, code)
        self.store.save(account)
        logger.info("Issued OTP for %s (expires %s)", account.identity, account.otp_expires_at.isoformat())
        self.dispatch(account, code, resend=resend)
