"""
tests/test_auth_routes.py -- Integration tests for the /auth/* endpoints.

These tests exercise the full stack: FastAPI routing -> dependency injection
-> AuthService -> AccountStore -> response model serialization and the
AuthError exception handler. The notifier is a recorder, so the mailed code
is read straight out of it.

Coverage:
  - Register 201, duplicate 400 conflict, validation 422, delivery 502
  - Passwords and OTP codes are taken exactly as typed; name and email are trimmed
  - Verify: wrong / expired / unknown / already verified / success
  - Resend invalidates the previous code
  - Login: not_found / invalid_credential / not_verified / success + cookie
  - Dashboard and /me behind the session cookie; 401 without it
  - Logout clears the server session; replaying the old token is 401
  - The end-to-end signup scenario
"""

from __future__ import annotations

from unittest.mock import patch

from sqlalchemy.exc import OperationalError

from conftest import ApiHarness

_JONAS = {"name": "Jonas", "email": "j@x.com", "password": "pw1", "dob": "2000-01-01"}


def _error_code(resp) -> str:
    return resp.json()["error"]["code"]


def _register(h: ApiHarness, body: dict | None = None) -> None:
    resp = h.client.post("/auth/register", json=body or _JONAS)
    assert resp.status_code == 201, resp.text


def _verified(h: ApiHarness) -> None:
    _register(h)
    resp = h.client.post("/auth/verify-otp", json={"email": "j@x.com", "otp": h.notifier.last_code("j@x.com")})
    assert resp.status_code == 200, resp.text


def _login(h: ApiHarness) -> str:
    resp = h.client.post("/auth/login", json={"email": "j@x.com", "password": "pw1"})
    assert resp.status_code == 200, resp.text
    return resp.cookies["session_id"]


class TestRegister:
    def test_created(self, api_client: ApiHarness) -> None:
        resp = api_client.client.post("/auth/register", json=_JONAS)
        assert resp.status_code == 201
        assert resp.json() == {"message": "User registered. Please verify OTP sent to email."}
        assert "session_id" not in resp.cookies
        assert api_client.notifier.sent[0].recipient == "j@x.com"

    def test_dob_optional(self, api_client: ApiHarness) -> None:
        body = {k: v for k, v in _JONAS.items() if k != "dob"}
        resp = api_client.client.post("/auth/register", json=body)
        assert resp.status_code == 201

    def test_duplicate_is_conflict(self, api_client: ApiHarness) -> None:
        _register(api_client)
        resp = api_client.client.post("/auth/register", json=_JONAS)
        assert resp.status_code == 400
        assert _error_code(resp) == "conflict"

    def test_bad_email_is_validation_error(self, api_client: ApiHarness) -> None:
        resp = api_client.client.post("/auth/register", json={**_JONAS, "email": "not-an-email"})
        assert resp.status_code == 422
        assert _error_code(resp) == "validation_error"

    def test_missing_fields_is_validation_error(self, api_client: ApiHarness) -> None:
        resp = api_client.client.post("/auth/register", json={"email": "j@x.com"})
        assert resp.status_code == 422

    def test_multibyte_password_over_72_bytes_is_validation_error(self, api_client: ApiHarness) -> None:
        # 40 characters, 80 bytes.
        resp = api_client.client.post("/auth/register", json={**_JONAS, "password": "é" * 40})
        assert resp.status_code == 422
        assert _error_code(resp) == "validation_error"
        assert api_client.store.find_by_identity("j@x.com") is None

    def test_multibyte_password_within_72_bytes(self, api_client: ApiHarness) -> None:
        _register(api_client, {**_JONAS, "password": "é" * 36})
        api_client.client.post("/auth/verify-otp", json={"email": "j@x.com", "otp": api_client.notifier.last_code("j@x.com")})
        resp = api_client.client.post("/auth/login", json={"email": "j@x.com", "password": "é" * 36})
        assert resp.status_code == 200

    def test_password_whitespace_is_significant(self, api_client: ApiHarness) -> None:
        _register(api_client, {**_JONAS, "password": "  pw1  "})
        api_client.client.post("/auth/verify-otp", json={"email": "j@x.com", "otp": api_client.notifier.last_code("j@x.com")})

        resp = api_client.client.post("/auth/login", json={"email": "j@x.com", "password": "pw1"})
        assert resp.status_code == 400
        assert _error_code(resp) == "invalid_credential"
        resp = api_client.client.post("/auth/login", json={"email": "j@x.com", "password": "  pw1  "})
        assert resp.status_code == 200

    def test_name_and_email_are_trimmed(self, api_client: ApiHarness) -> None:
        _register(api_client, {**_JONAS, "name": "  Jonas ", "email": " j@x.com "})
        account = api_client.store.find_by_identity("j@x.com")
        assert account.display_name == "Jonas"

    def test_delivery_failure(self, api_client: ApiHarness) -> None:
        api_client.notifier.fail = True
        resp = api_client.client.post("/auth/register", json=_JONAS)
        assert resp.status_code == 502
        assert _error_code(resp) == "delivery_error"
        # The account exists; resend is the way forward.
        api_client.notifier.fail = False
        resp = api_client.client.post("/auth/resend-otp", json={"email": "j@x.com"})
        assert resp.status_code == 200


class TestVerifyOtp:
    def test_success(self, api_client: ApiHarness) -> None:
        _register(api_client)
        code = api_client.notifier.last_code("j@x.com")
        resp = api_client.client.post("/auth/verify-otp", json={"email": "j@x.com", "otp": code})
        assert resp.status_code == 200
        assert resp.json()["message"] == "Email verified successfully. You can now log in."
        assert api_client.store.find_by_identity("j@x.com").verified is True

    def test_wrong_code(self, api_client: ApiHarness) -> None:
        _register(api_client)
        resp = api_client.client.post("/auth/verify-otp", json={"email": "j@x.com", "otp": "abc"})
        assert resp.status_code == 400
        assert _error_code(resp) == "invalid_or_expired"

    def test_expired_code(self, api_client: ApiHarness) -> None:
        _register(api_client)
        api_client.clock.advance(minutes=10)
        code = api_client.notifier.last_code("j@x.com")
        resp = api_client.client.post("/auth/verify-otp", json={"email": "j@x.com", "otp": code})
        assert resp.status_code == 400
        assert _error_code(resp) == "invalid_or_expired"

    def test_padded_code_is_rejected(self, api_client: ApiHarness) -> None:
        _register(api_client)
        code = api_client.notifier.last_code("j@x.com")
        resp = api_client.client.post("/auth/verify-otp", json={"email": "j@x.com", "otp": f" {code} "})
        assert resp.status_code == 400
        assert _error_code(resp) == "invalid_or_expired"
        assert api_client.store.find_by_identity("j@x.com").verified is False

    def test_unknown_account(self, api_client: ApiHarness) -> None:
        resp = api_client.client.post("/auth/verify-otp", json={"email": "ghost@x.com", "otp": "123456"})
        assert resp.status_code == 400
        assert _error_code(resp) == "not_found"

    def test_already_verified(self, api_client: ApiHarness) -> None:
        _verified(api_client)
        code = api_client.notifier.last_code("j@x.com")
        resp = api_client.client.post("/auth/verify-otp", json={"email": "j@x.com", "otp": code})
        assert resp.status_code == 400
        assert _error_code(resp) == "already_verified"


class TestResendOtp:
    def test_resend_replaces_code(self, api_client: ApiHarness) -> None:
        _register(api_client)
        old = api_client.notifier.last_code("j@x.com")
        resp = api_client.client.post("/auth/resend-otp", json={"email": "j@x.com"})
        assert resp.status_code == 200
        assert resp.json() == {"message": "OTP resent successfully."}
        new = api_client.notifier.last_code("j@x.com")

        if new != old:
            resp = api_client.client.post("/auth/verify-otp", json={"email": "j@x.com", "otp": old})
            assert _error_code(resp) == "invalid_or_expired"
        resp = api_client.client.post("/auth/verify-otp", json={"email": "j@x.com", "otp": new})
        assert resp.status_code == 200

    def test_unknown_account(self, api_client: ApiHarness) -> None:
        resp = api_client.client.post("/auth/resend-otp", json={"email": "ghost@x.com"})
        assert resp.status_code == 400
        assert _error_code(resp) == "not_found"

    def test_already_verified(self, api_client: ApiHarness) -> None:
        _verified(api_client)
        resp = api_client.client.post("/auth/resend-otp", json={"email": "j@x.com"})
        assert resp.status_code == 400
        assert _error_code(resp) == "already_verified"


class TestLogin:
    def test_success_sets_cookie(self, api_client: ApiHarness) -> None:
        _verified(api_client)
        resp = api_client.client.post("/auth/login", json={"email": "j@x.com", "password": "pw1"})
        assert resp.status_code == 200
        assert resp.json() == {"message": "Login successful", "user": {"name": "Jonas", "email": "j@x.com"}}
        assert resp.headers["Cache-Control"] == "no-store"
        set_cookie = resp.headers["set-cookie"].lower()
        assert "session_id=" in set_cookie
        assert "httponly" in set_cookie

    def test_unknown_account(self, api_client: ApiHarness) -> None:
        resp = api_client.client.post("/auth/login", json={"email": "ghost@x.com", "password": "pw1"})
        assert resp.status_code == 400
        assert _error_code(resp) == "not_found"

    def test_wrong_password(self, api_client: ApiHarness) -> None:
        _verified(api_client)
        resp = api_client.client.post("/auth/login", json={"email": "j@x.com", "password": "wrong"})
        assert resp.status_code == 400
        assert _error_code(resp) == "invalid_credential"

    def test_unverified(self, api_client: ApiHarness) -> None:
        _register(api_client)
        resp = api_client.client.post("/auth/login", json={"email": "j@x.com", "password": "pw1"})
        assert resp.status_code == 400
        assert _error_code(resp) == "not_verified"
        assert "session_id" not in resp.cookies

    def test_login_rotates_existing_session(self, api_client: ApiHarness) -> None:
        _verified(api_client)
        first = _login(api_client)
        second = _login(api_client)
        assert first != second
        assert api_client.client.app.state.session_manager.resolve(first) is None

    def test_failed_destroy_of_old_session_issues_no_new_one(self, api_client: ApiHarness) -> None:
        _verified(api_client)
        _login(api_client)
        failure = OperationalError("DELETE FROM sessions", {}, Exception("disk I/O error"))

        with patch.object(api_client.store, "delete_session", side_effect=failure):
            resp = api_client.client.post("/auth/login", json={"email": "j@x.com", "password": "pw1"})

        assert resp.status_code == 500
        assert _error_code(resp) == "session_error"
        assert "session_id=" not in resp.headers.get("set-cookie", "")
        with api_client.store.engine.connect() as conn:
            count = conn.exec_driver_sql("SELECT COUNT(*) FROM sessions").scalar()
        assert count == 1


class TestProtectedRoutes:
    def test_dashboard_requires_session(self, api_client: ApiHarness) -> None:
        resp = api_client.client.get("/auth/dashboard")
        assert resp.status_code == 401
        assert _error_code(resp) == "unauthorized"

    def test_forged_cookie_rejected(self, api_client: ApiHarness) -> None:
        api_client.client.cookies.set("session_id", "forged")
        assert api_client.client.get("/auth/dashboard").status_code == 401

    def test_me_returns_account(self, api_client: ApiHarness) -> None:
        _verified(api_client)
        _login(api_client)
        resp = api_client.client.get("/auth/me")
        assert resp.status_code == 200
        assert resp.json() == {"email": "j@x.com", "name": "Jonas", "dob": "2000-01-01"}

    def test_expired_session(self, api_client: ApiHarness) -> None:
        _verified(api_client)
        _login(api_client)
        api_client.clock.advance(hours=2)
        assert api_client.client.get("/auth/dashboard").status_code == 401


class TestLogout:
    def test_logout_without_session(self, api_client: ApiHarness) -> None:
        resp = api_client.client.post("/auth/logout")
        assert resp.status_code == 200
        assert resp.json() == {"message": "Logged out successfully"}

    def test_replayed_token_after_logout(self, api_client: ApiHarness) -> None:
        _verified(api_client)
        token = _login(api_client)
        assert api_client.client.post("/auth/logout").status_code == 200

        api_client.client.cookies.set("session_id", token)
        resp = api_client.client.get("/auth/dashboard")
        assert resp.status_code == 401


def test_signup_scenario(api_client: ApiHarness) -> None:
    """Register -> wrong code -> right code -> login -> dashboard -> logout -> dashboard."""
    client, notifier = api_client.client, api_client.notifier

    resp = client.post("/auth/register", json=_JONAS)
    assert resp.status_code == 201

    code = notifier.last_code("j@x.com")
    wrong = "100000" if code != "100000" else "100001"
    resp = client.post("/auth/verify-otp", json={"email": "j@x.com", "otp": wrong})
    assert resp.status_code == 400
    assert _error_code(resp) == "invalid_or_expired"

    resp = client.post("/auth/verify-otp", json={"email": "j@x.com", "otp": code})
    assert resp.status_code == 200
    assert api_client.store.find_by_identity("j@x.com").verified is True

    resp = client.post("/auth/login", json={"email": "j@x.com", "password": "pw1"})
    assert resp.status_code == 200
    token = resp.cookies["session_id"]

    resp = client.get("/auth/dashboard")
    assert resp.status_code == 200
    assert resp.json() == {"message": "Welcome to the dashboard, Jonas", "name": "Jonas"}

    resp = client.post("/auth/logout")
    assert resp.status_code == 200

    client.cookies.set("session_id", token)
    resp = client.get("/auth/dashboard")
    assert resp.status_code == 401
