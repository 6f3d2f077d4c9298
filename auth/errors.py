"""
auth/errors.py -- Error kinds raised by the auth core.

Every error carries a stable machine-readable code and the HTTP status the
API layer answers with. api/main.py registers one exception handler for
AuthError that turns any of these into the standard error envelope, so route
handlers never translate errors themselves.

InvalidOrExpiredError is deliberately used for both a wrong code and an
expired one. Callers cannot tell the two apart.
"""

from __future__ import annotations


class AuthError(Exception):
    code: str = "auth_error"
    status_code: int = 400
    message: str = "Authentication error."

    def __init__(self, message: str | None = None) -> None:
        super().__init__(message or self.message)
        if message:
            self.message = message


class ConflictError(AuthError):
    code = "conflict"
    message = "User already exists."


class NotFoundError(AuthError):
    code = "not_found"
    message = "User not found."


class AlreadyVerifiedError(AuthError):
    code = "already_verified"
    message = "User already verified."


class InvalidOrExpiredError(AuthError):
    code = "invalid_or_expired"
    message = "Invalid or expired OTP."


class InvalidCredentialError(AuthError):
    code = "invalid_credential"
    message = "Incorrect password."


class NotVerifiedError(AuthError):
    code = "not_verified"
    message = "Email not verified. Please verify OTP."


class UnauthorizedError(AuthError):
    code = "unauthorized"
    status_code = 401
    message = "Unauthorized. Please log in first."


class DeliveryError(AuthError):
    code = "delivery_error"
    status_code = 502
    message = "Could not deliver the verification email. Request a new code."


class SessionError(AuthError):
    code = "session_error"
    status_code = 500
    message = "Error logging out."
