"""
tests/test_verification_routes.py -- Integration tests for send/verify endpoints.

Covers:
  - POST /api/send-verification-code: success message per type, body
    validation, invalid contact, already-registered contact, 429 with
    Retry-After after N sends, delegated provider refusal and outage
  - POST /api/verify-code: success, wrong code, second send invalidates
    the first code, identical 400 body for every failure
"""

from __future__ import annotations

from unittest.mock import MagicMock

import requests

SEND = "/api/send-verification-code"
VERIFY = "/api/verify-code"
EMAIL = "ada@example.com"
INVALID = {"success": False, "message": "Invalid or expired code.", "errors": []}


class TestSendVerificationCode:
    def test_email_success(self, harness) -> None:
        resp = harness.client.post(SEND, json={"contact": EMAIL, "type": "email"})
        assert resp.status_code == 200
        body = resp.json()
        assert body["success"] is True
        assert body["message"] == "Verification code sent to your email."
        assert harness.codes[-1].purpose == "registration_email"

    def test_phone_success(self, harness) -> None:
        resp = harness.client.post(SEND, json={"contact": "+15551234567", "type": "phone", "purpose": "login"})
        assert resp.status_code == 200
        assert resp.json()["message"] == "Verification code sent to your phone."
        assert harness.codes[-1].purpose == "login_phone"

    def test_code_not_in_response(self, harness) -> None:
        resp = harness.client.post(SEND, json={"contact": EMAIL, "type": "email"})
        assert harness.codes[-1].code not in resp.text

    def test_missing_fields(self, harness) -> None:
        resp = harness.client.post(SEND, json={"contact": EMAIL})
        assert resp.status_code == 422
        body = resp.json()
        assert body["success"] is False
        assert body["message"] == "Validation failed."
        assert body["errors"]

    def test_bad_type_and_purpose(self, harness) -> None:
        assert harness.client.post(SEND, json={"contact": EMAIL, "type": "fax"}).status_code == 422
        resp = harness.client.post(SEND, json={"contact": EMAIL, "type": "email", "purpose": "admin"})
        assert resp.status_code == 422

    def test_invalid_email(self, harness) -> None:
        resp = harness.client.post(SEND, json={"contact": "not-an-email", "type": "email"})
        assert resp.status_code == 422
        assert resp.json()["message"] == "Invalid email address."

    def test_already_registered(self, harness) -> None:
        harness.create_user(EMAIL)
        resp = harness.client.post(SEND, json={"contact": EMAIL, "type": "email"})
        assert resp.status_code == 422
        assert resp.json()["message"] == "This email is already registered."

        # Login codes for an existing account are fine.
        resp = harness.client.post(SEND, json={"contact": EMAIL, "type": "email", "purpose": "login"})
        assert resp.status_code == 200

    def test_rate_limited_after_attempts(self, make_harness) -> None:
        h = make_harness(rate_limit_attempts=2)
        for _ in range(2):
            assert h.client.post(SEND, json={"contact": EMAIL, "type": "email"}).status_code == 200
        resp = h.client.post(SEND, json={"contact": EMAIL, "type": "email"})
        assert resp.status_code == 429
        assert resp.json()["message"] == "Too many attempts, please try again later."
        assert int(resp.headers["Retry-After"]) > 0

    def test_delegated_refusal_is_500_with_provider_message(self, make_harness) -> None:
        session = MagicMock()
        session.headers = {}
        session.post.return_value = MagicMock(status_code=200, json=MagicMock(return_value={"success": False}))
        h = make_harness(
            session=session,
            provider="smartpings",
            self_managed=False,
            smartpings_client_id="id",
            smartpings_secret_id="secret",
        )
        resp = h.client.post(SEND, json={"contact": EMAIL, "type": "email"})
        assert resp.status_code == 500
        assert resp.json() == {"success": False, "message": "Failed to send verification", "errors": []}

    def test_delegated_outage_is_503(self, make_harness) -> None:
        session = MagicMock()
        session.headers = {}
        session.post.side_effect = requests.ConnectionError("down")
        h = make_harness(
            session=session,
            provider="smartpings",
            self_managed=False,
            smartpings_client_id="id",
            smartpings_secret_id="secret",
        )
        resp = h.client.post(SEND, json={"contact": EMAIL, "type": "email"})
        assert resp.status_code == 503
        assert resp.json()["message"] == "Verification service unavailable. Please try again later."


class TestVerifyCode:
    def test_verify_success(self, harness) -> None:
        harness.client.post(SEND, json={"contact": EMAIL, "type": "email"})
        resp = harness.client.post(VERIFY, json={"contact": EMAIL, "code": harness.last_code(), "type": "email"})
        assert resp.status_code == 200
        assert resp.json()["message"] == "Code verified successfully."
        assert harness.gate.is_gate_satisfied(EMAIL, "registration_email")

    def test_numeric_code_accepted(self, harness) -> None:
        harness.client.post(SEND, json={"contact": EMAIL, "type": "email"})
        code = harness.last_code()
        if code.startswith("0"):
            return  # a JSON number cannot carry leading zeros
        resp = harness.client.post(VERIFY, json={"contact": EMAIL, "code": int(code), "type": "email"})
        assert resp.status_code == 200

    def test_wrong_code_and_unknown_contact_look_the_same(self, harness) -> None:
        harness.client.post(SEND, json={"contact": EMAIL, "type": "email"})
        wrong = "000000" if harness.last_code() != "000000" else "111111"

        r1 = harness.client.post(VERIFY, json={"contact": EMAIL, "code": wrong, "type": "email"})
        r2 = harness.client.post(VERIFY, json={"contact": "nobody@example.com", "code": wrong, "type": "email"})
        assert r1.status_code == r2.status_code == 400
        assert r1.json() == r2.json() == INVALID

    def test_second_send_invalidates_first(self, harness, monkeypatch) -> None:
        issued = iter(["111111", "222222"])
        monkeypatch.setattr("verification.providers.generate_code", lambda length: next(issued))
        harness.client.post(SEND, json={"contact": EMAIL, "type": "email"})
        harness.client.post(SEND, json={"contact": EMAIL, "type": "email"})
        assert [c.code for c in harness.codes] == ["111111", "222222"]

        resp = harness.client.post(VERIFY, json={"contact": EMAIL, "code": "111111", "type": "email"})
        assert resp.status_code == 400
        resp = harness.client.post(VERIFY, json={"contact": EMAIL, "code": "222222", "type": "email"})
        assert resp.status_code == 200

    def test_code_verifies_only_once(self, make_harness) -> None:
        h = make_harness(consume_registration_verification=False)
        h.client.post(SEND, json={"contact": EMAIL, "type": "email"})
        body = {"contact": EMAIL, "code": h.last_code(), "type": "email"}

        assert h.client.post(VERIFY, json=body).status_code == 200
        resp = h.client.post(VERIFY, json=body)
        assert resp.status_code == 400
        assert resp.json() == INVALID

    def test_login_code_verifies_only_once(self, harness) -> None:
        harness.client.post(SEND, json={"contact": EMAIL, "type": "email", "purpose": "login"})
        body = {"contact": EMAIL, "code": harness.last_code(), "type": "email", "purpose": "login"}

        assert harness.client.post(VERIFY, json=body).status_code == 200
        assert harness.client.post(VERIFY, json=body).status_code == 400

    def test_purpose_must_match(self, harness) -> None:
        harness.client.post(SEND, json={"contact": EMAIL, "type": "email", "purpose": "login"})
        resp = harness.client.post(VERIFY, json={"contact": EMAIL, "code": harness.last_code(), "type": "email"})
        assert resp.status_code == 400
