"""
API request and response models for OTPGate REST endpoints.

These Pydantic v2 models define the HTTP transport contract for the API layer.
They are intentionally separate from the dataclasses in auth/models.py, which
own the internal domain representation. Route handlers map between the two.

Field names follow the browser client's JSON (name, email, password, dob,
otp) rather than the domain names (display_name, identity, ...).
"""

from datetime import date
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from auth.models import AccountSummary
from auth.tokens import PASSWORD_MAX_BYTES

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

# Deliberately loose: one "@" with something on each side and a dot in the
# domain. Deliverability is proven by the OTP round trip, not by a regex.
EMAIL_PATTERN = r"^[^@\s]+@[^@\s]+\.[^@\s]+$"

# bcrypt refuses input past 72 bytes, so the limit is on the UTF-8 encoding,
# not the character count.
PASSWORD_MAX = PASSWORD_MAX_BYTES


# ---------------------------------------------------------------------------
# Request models
# ---------------------------------------------------------------------------

# Only these fields are trimmed. Passwords and OTP codes are compared exactly
# as typed, so surrounding whitespace in them is significant.


def _strip(value: object) -> object:
    return value.strip() if isinstance(value, str) else value


def _check_password_bytes(value: str) -> str:
    if len(value.encode("utf-8")) > PASSWORD_MAX:
        raise ValueError(f"password must be at most {PASSWORD_MAX} bytes when UTF-8 encoded")
    return value


class RegisterRequest(BaseModel):
    """Request body for POST /auth/register."""

    name: str = Field(min_length=1, max_length=255)
    email: str = Field(max_length=320, pattern=EMAIL_PATTERN)
    password: str = Field(min_length=1)
    dob: Optional[date] = None

    strip_text = field_validator("name", "email", mode="before")(_strip)
    password_bytes = field_validator("password")(_check_password_bytes)


class VerifyOtpRequest(BaseModel):
    """Request body for POST /auth/verify-otp.

    otp is a string so a code with leading zeros survives intact. Its shape is
    not validated here: a malformed code is just another wrong code and gets
    the same invalid_or_expired answer.
    """

    email: str = Field(max_length=320)
    otp: str = Field(max_length=16)

    strip_text = field_validator("email", mode="before")(_strip)


class ResendOtpRequest(BaseModel):
    """Request body for POST /auth/resend-otp."""

    email: str = Field(max_length=320)

    strip_text = field_validator("email", mode="before")(_strip)


class LoginRequest(BaseModel):
    """Request body for POST /auth/login."""

    email: str = Field(max_length=320)
    password: str = Field(min_length=1)

    strip_text = field_validator("email", mode="before")(_strip)
    password_bytes = field_validator("password")(_check_password_bytes)


# ---------------------------------------------------------------------------
# Response models
# ---------------------------------------------------------------------------


class MessageResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    message: str


class UserInfo(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: str
    email: str


class LoginResponse(BaseModel):
    """Response for POST /auth/login. The session itself travels in the cookie."""

    model_config = ConfigDict(frozen=True)

    message: str
    user: UserInfo


class DashboardResponse(BaseModel):
    """Response for GET /auth/dashboard."""

    model_config = ConfigDict(frozen=True)

    message: str
    name: str


class MeResponse(BaseModel):
    """Response for GET /auth/me -- the server's answer to "who is logged in"."""

    model_config = ConfigDict(frozen=True)

    email: str
    name: str
    dob: Optional[date] = None

    @classmethod
    def from_summary(cls, summary: AccountSummary) -> "MeResponse":
        return cls(email=summary.identity, name=summary.display_name, dob=summary.birth_date)


class ErrorDetail(BaseModel):
    """Machine-readable error payload."""

    model_config = ConfigDict(frozen=True)

    code: str
    message: str
    detail: Optional[str] = None


class ErrorResponse(BaseModel):
    """Top-level error envelope returned on 4xx/5xx responses."""

    model_config = ConfigDict(frozen=True)

    error: ErrorDetail


class HealthResponse(BaseModel):
    """Response for GET /health."""

    model_config = ConfigDict(frozen=True)

    status: str = "healthy"
    version: str
    components: dict[str, str] = Field(default_factory=dict)
