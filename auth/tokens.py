"""
auth/tokens.py -- Password hashing, keyed digests and session cookie utilities.

Security design decisions:
  Passwords: bcrypt, used directly. Bcrypt's cost factor makes brute-force of
       low-entropy secrets expensive. checkpw compares in constant time. The
       _DUMMY_HASH constant lets burn_password_check() spend the same
       bcrypt work when the identity does not exist.

  Session tokens: secrets.token_urlsafe(32) gives 256 bits of entropy. The
       server stores HMAC-SHA256(SECRET_KEY, token) so a leaked sessions table
       cannot be replayed as cookies, and lookup stays O(1).

  OTP codes: same keyed digest. A six-digit code has only 900000 values, so
       the HMAC key (not the hash) is what keeps a dumped table from being
       brute-forced offline.

  SECRET_KEY: sourced from core.config.get_settings().

Layer rule: no imports from api/. Import from core/ is allowed.
"""

from __future__ import annotations

import hashlib
import hmac
import logging
import secrets

import bcrypt

from core.config import get_settings

logger = logging.getLogger("otpgate.auth")

_settings = get_settings()

# bcrypt input window.
PASSWORD_MAX_BYTES = 72

# ---------------------------------------------------------------------------
# Password hashing (bcrypt -- direct usage, no passlib wrapper)
# ---------------------------------------------------------------------------


def hash_password(plain: str) -> str:
    """Return a salted bcrypt hash of the given plaintext password.

    Raises ValueError if the password is longer than bcrypt's 72-byte input
    window once UTF-8 encoded. The API models reject such passwords first.
    """
    encoded = plain.encode("utf-8")
    if len(encoded) > PASSWORD_MAX_BYTES:
        raise ValueError(f"password must be at most {PASSWORD_MAX_BYTES} bytes when UTF-8 encoded")
    return bcrypt.hashpw(encoded, bcrypt.gensalt()).decode("utf-8")


def verify_password(plain: str, hashed: str) -> bool:
    """Return True if the plaintext password matches the bcrypt hash."""
    try:
        return bcrypt.checkpw(plain.encode("utf-8"), hashed.encode("utf-8"))
    except ValueError:
        # Malformed stored hash or over-long input.
        return False


# Computed once at module load so the first login is not measurably slower.
_DUMMY_HASH: str = hash_password("otpgate_timing_dummy")


def burn_password_check(plain: str) -> None:
    """Spend one bcrypt comparison against a dummy hash.

    Called when the identity is unknown so that response time does not
    depend on whether the account exists.
    """
    verify_password(plain, _DUMMY_HASH)


# ---------------------------------------------------------------------------
# Keyed digests (session tokens, OTP codes)
# ---------------------------------------------------------------------------


def keyed_digest(value: str) -> str:
    """Return HMAC-SHA256(SECRET_KEY, value) as a hex string."""
    return hmac.new(
        _settings.secret_key.encode(),
        value.encode(),
        hashlib.sha256,
    ).hexdigest()


def digests_match(value: str, digest: str | None) -> bool:
    """Constant-time check that value hashes to digest. False if digest is None."""
    if digest is None:
        return False
    return hmac.compare_digest(keyed_digest(value), digest)


def generate_session_token() -> str:
    return secrets.token_urlsafe(32)


# ---------------------------------------------------------------------------
# Cookie helpers
# ---------------------------------------------------------------------------


def set_session_cookie(response, token: str) -> None:
    """Write the session token as an httpOnly cookie on the response.

    httponly=True: JS cannot read the cookie (XSS mitigation).
    samesite="lax": not sent on cross-site POST (CSRF mitigation).
    secure: only sent over HTTPS when SECURE_COOKIES=true.
    max_age: matches the server-side session expiry.
    """
    response.set_cookie(
        _settings.session_cookie_name,
        value=token,
        httponly=True,
        samesite="lax",
        secure=_settings.secure_cookies,
        max_age=_settings.session_expire_seconds,
    )


def clear_session_cookie(response) -> None:
    response.delete_cookie(
        _settings.session_cookie_name,
        httponly=True,
        samesite="lax",
        secure=_settings.secure_cookies,
    )
