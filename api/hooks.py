"""
api/hooks.py -- Before/after hooks around every authentication action.

The host application customizes behaviour (audit trails, extra checks,
response decoration) by appending hook objects to app.state.hooks. Each
route calls run_before_hooks() on entry and run_after_hooks() on every exit
path that renders a response, including domain failures.

A hook is any object with:
    before(request, action) -> Request | None
    after(request, response, action) -> Response | None

Returning None keeps the current request/response; returning an object
replaces it for the remaining hooks and the route. Hooks run in list order.
"""

from __future__ import annotations

import logging
from enum import Enum
from typing import Protocol

from fastapi import Request
from starlette.responses import Response

logger = logging.getLogger("userauth.api.hooks")


class HookAction(str, Enum):
    REGISTER = "register"
    LOGIN = "login"
    LOGOUT = "logout"
    OAUTH_LOGIN = "oauthLogin"
    OAUTH_CALLBACK = "oauthCallback"
    SEND_VERIFICATION_CODE = "sendVerificationCode"
    VERIFY_CODE = "verifyCode"
    PASSWORD_RESET_REQUEST = "passwordResetRequest"
    PASSWORD_RESET = "passwordReset"


class MiddlewareHook(Protocol):
    def before(self, request: Request, action: HookAction) -> Request | None: ...

    def after(self, request: Request, response: Response, action: HookAction) -> Response | None: ...


def _hooks(request: Request) -> list[MiddlewareHook]:
    return list(getattr(request.app.state, "hooks", None) or [])


def run_before_hooks(request: Request, action: HookAction) -> Request:
    for hook in _hooks(request):
        result = hook.before(request, action)
        if isinstance(result, Request):
            request = result
    return request


def run_after_hooks(request: Request, response: Response, action: HookAction) -> Response:
    for hook in _hooks(request):
        result = hook.after(request, response, action)
        if isinstance(result, Response):
            logger.debug("Hook %s replaced the %s response", type(hook).__name__, action.value)
            response = result
    return response
