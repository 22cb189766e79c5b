"""
tests/test_auth_routes.py -- Integration tests for register/login/logout/me.

Covers:
  - register: 201 {user, token}, no password hash in output, duplicate
    fields 422, body validation 422
  - registration gate: 422 "Email verification required..." until the
    email is verified, then 201; phone gate only when a phone is given;
    verified record consumed after registration
  - login: email/phone/username identifiers, 401 "Invalid credentials" for
    unknown user and wrong password alike, cookie set
  - logout / me: require auth, Bearer and cookie both accepted
  - events dispatched for register/login/logout
"""

from __future__ import annotations

from verification.events import UserLoggedIn, UserLoggedOut, UserRegistered

TEST_PASSWORD = "correct-horse-battery"  # Harness.create_user default
REGISTER = "/api/register"
LOGIN = "/api/login"
EMAIL = "ada@example.com"
PHONE = "+15551234567"


def _register_body(**overrides) -> dict:
    body = {"email": EMAIL, "first_name": "Ada", "last_name": "Lovelace", "password": TEST_PASSWORD}
    body.update(overrides)
    return body


def _verify(h, contact: str, contact_type: str) -> None:
    h.client.post("/api/send-verification-code", json={"contact": contact, "type": contact_type})
    resp = h.client.post("/api/verify-code", json={"contact": contact, "code": h.last_code(), "type": contact_type})
    assert resp.status_code == 200


# ---------------------------------------------------------------------------
# Register
# ---------------------------------------------------------------------------


class TestRegister:
    def test_register_success(self, harness) -> None:
        registered: list = []
        harness.events.subscribe(UserRegistered, registered.append)

        resp = harness.client.post(REGISTER, json=_register_body(username="ada", phone=PHONE))
        assert resp.status_code == 201
        body = resp.json()
        assert body["success"] is True
        assert body["message"] == "User registered successfully"
        user = body["data"]["user"]
        assert user["email"] == EMAIL
        assert user["username"] == "ada"
        assert "hashed_password" not in user
        assert "password" not in user
        assert body["data"]["token"]
        assert "access_token" in resp.cookies
        assert registered[0].email == EMAIL

    def test_duplicate_fields(self, harness) -> None:
        harness.create_user(EMAIL, username="ada")
        resp = harness.client.post(REGISTER, json=_register_body(username="ada"))
        assert resp.status_code == 422
        body = resp.json()
        assert body["message"] == "Validation failed."
        assert set(body["errors"]) == {"email", "username"}

    def test_short_password(self, harness) -> None:
        resp = harness.client.post(REGISTER, json=_register_body(password="short"))
        assert resp.status_code == 422
        assert resp.json()["success"] is False

    def test_invalid_email(self, harness) -> None:
        resp = harness.client.post(REGISTER, json=_register_body(email="nope"))
        assert resp.status_code == 422


class TestRegistrationGate:
    def test_unverified_email_blocks_then_verified_passes(self, make_harness) -> None:
        h = make_harness(require_email_verification=True)
        resp = h.client.post(REGISTER, json=_register_body())
        assert resp.status_code == 422
        assert resp.json()["message"] == "Email verification required. Please verify your email first."
        assert h.user_store.get_by_email(EMAIL) is None

        _verify(h, EMAIL, "email")
        resp = h.client.post(REGISTER, json=_register_body())
        assert resp.status_code == 201

    def test_verification_is_consumed(self, make_harness) -> None:
        h = make_harness(require_email_verification=True)
        _verify(h, EMAIL, "email")
        assert h.client.post(REGISTER, json=_register_body()).status_code == 201
        assert h.verification_store.find(EMAIL, "registration_email") is None

    def test_consume_can_be_disabled(self, make_harness) -> None:
        h = make_harness(require_email_verification=True, consume_registration_verification=False)
        _verify(h, EMAIL, "email")
        assert h.client.post(REGISTER, json=_register_body()).status_code == 201
        assert h.verification_store.find(EMAIL, "registration_email") is not None

    def test_login_verification_does_not_satisfy_registration(self, make_harness) -> None:
        h = make_harness(require_email_verification=True)
        h.client.post("/api/send-verification-code", json={"contact": EMAIL, "type": "email", "purpose": "login"})
        h.client.post(
            "/api/verify-code", json={"contact": EMAIL, "code": h.last_code(), "type": "email", "purpose": "login"}
        )
        assert h.client.post(REGISTER, json=_register_body()).status_code == 422

    def test_phone_gate(self, make_harness) -> None:
        h = make_harness(require_phone_verification=True)
        # No phone submitted: nothing to verify.
        assert h.client.post(REGISTER, json=_register_body(email="first@example.com")).status_code == 201

        resp = h.client.post(REGISTER, json=_register_body(phone=PHONE))
        assert resp.status_code == 422
        assert resp.json()["message"] == "Phone verification required. Please verify your phone first."

        _verify(h, PHONE, "phone")
        assert h.client.post(REGISTER, json=_register_body(phone=PHONE)).status_code == 201


# ---------------------------------------------------------------------------
# Login / logout / me
# ---------------------------------------------------------------------------


class TestLogin:
    def test_login_by_each_identifier(self, harness) -> None:
        harness.create_user(EMAIL, username="ada", phone=PHONE)
        for identifier in ({"email": EMAIL}, {"username": "ada"}, {"phone": PHONE}):
            resp = harness.client.post(LOGIN, json={**identifier, "password": TEST_PASSWORD})
            assert resp.status_code == 200, identifier
            data = resp.json()["data"]
            assert data["token_type"] == "Bearer"
            assert data["user"]["email"] == EMAIL
            assert resp.headers["Cache-Control"] == "no-store"

    def test_bad_credentials_are_uniform(self, harness) -> None:
        harness.create_user(EMAIL)
        wrong_password = harness.client.post(LOGIN, json={"email": EMAIL, "password": "wrong-password"})
        unknown_user = harness.client.post(LOGIN, json={"email": "nobody@example.com", "password": TEST_PASSWORD})
        assert wrong_password.status_code == unknown_user.status_code == 401
        assert wrong_password.json() == unknown_user.json()
        assert wrong_password.json()["message"] == "Invalid credentials"

    def test_identifier_required(self, harness) -> None:
        resp = harness.client.post(LOGIN, json={"password": TEST_PASSWORD})
        assert resp.status_code == 422

    def test_login_event(self, harness) -> None:
        seen: list = []
        harness.events.subscribe(UserLoggedIn, seen.append)
        harness.create_user(EMAIL)
        harness.client.post(LOGIN, json={"email": EMAIL, "password": TEST_PASSWORD})
        assert [e.email for e in seen] == [EMAIL]


class TestSession:
    def _token(self, h) -> str:
        h.create_user(EMAIL)
        return h.client.post(LOGIN, json={"email": EMAIL, "password": TEST_PASSWORD}).json()["data"]["token"]

    def test_me_requires_auth(self, harness) -> None:
        harness.client.cookies.clear()
        resp = harness.client.get("/api/me")
        assert resp.status_code == 401
        assert resp.json() == {"success": False, "message": "Unauthenticated.", "errors": []}

    def test_me_with_bearer(self, harness) -> None:
        token = self._token(harness)
        harness.client.cookies.clear()
        resp = harness.client.get("/api/me", headers={"Authorization": f"Bearer {token}"})
        assert resp.status_code == 200
        assert resp.json()["data"]["email"] == EMAIL
        assert resp.json()["data"]["oauth_providers"] == []

    def test_me_with_cookie(self, harness) -> None:
        self._token(harness)
        assert harness.client.get("/api/me").status_code == 200

    def test_logout(self, harness) -> None:
        seen: list = []
        harness.events.subscribe(UserLoggedOut, seen.append)
        token = self._token(harness)
        resp = harness.client.post("/api/logout", headers={"Authorization": f"Bearer {token}"})
        assert resp.status_code == 200
        assert resp.json()["message"] == "User has been logged out successfully"
        assert [e.email for e in seen] == [EMAIL]

    def test_logout_requires_auth(self, harness) -> None:
        harness.client.cookies.clear()
        assert harness.client.post("/api/logout").status_code == 401

    def test_garbage_token_rejected(self, harness) -> None:
        harness.client.cookies.clear()
        resp = harness.client.get("/api/me", headers={"Authorization": "Bearer not.a.jwt"})
        assert resp.status_code == 401
