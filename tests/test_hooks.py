"""
tests/test_hooks.py -- Before/after hooks around authentication actions.

Covers:
  - hooks run in list order with the right HookAction
  - after-hooks also run when the route renders a domain failure
  - an after-hook can replace the response
"""

from __future__ import annotations

from fastapi.responses import JSONResponse

from api.hooks import HookAction


class Recorder:
    def __init__(self, name: str, log: list) -> None:
        self.name = name
        self.log = log

    def before(self, request, action):
        self.log.append((self.name, "before", action))
        return None

    def after(self, request, response, action):
        self.log.append((self.name, "after", action, response.status_code))
        return None


class Stamp:
    def before(self, request, action):
        return None

    def after(self, request, response, action):
        if action is HookAction.SEND_VERIFICATION_CODE:
            replaced = JSONResponse(status_code=response.status_code, content={"stamped": True})
            return replaced
        return None


def test_hooks_run_in_order(harness) -> None:
    log: list = []
    harness.app.state.hooks.extend([Recorder("a", log), Recorder("b", log)])

    harness.client.post("/api/send-verification-code", json={"contact": "ada@example.com", "type": "email"})

    action = HookAction.SEND_VERIFICATION_CODE
    assert log == [
        ("a", "before", action),
        ("b", "before", action),
        ("a", "after", action, 200),
        ("b", "after", action, 200),
    ]


def test_after_hooks_see_failures(harness) -> None:
    log: list = []
    harness.app.state.hooks.append(Recorder("a", log))

    harness.client.post("/api/verify-code", json={"contact": "ada@example.com", "code": "123456", "type": "email"})
    harness.client.post("/api/login", json={"email": "nobody@example.com", "password": "whatever-123"})

    assert ("a", "after", HookAction.VERIFY_CODE, 400) in log
    assert ("a", "after", HookAction.LOGIN, 401) in log


def test_after_hook_can_replace_response(harness) -> None:
    harness.app.state.hooks.append(Stamp())
    resp = harness.client.post("/api/send-verification-code", json={"contact": "ada@example.com", "type": "email"})
    assert resp.json() == {"stamped": True}
